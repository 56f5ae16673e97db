"""Bearer JWT authentication for FastAPI."""

import uuid
from dataclasses import dataclass

import jwt as pyjwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ideaforge.core.config import get_settings
from ideaforge.core.exceptions import AuthError

_bearer_scheme = HTTPBearer(auto_error=False)

# Fixed namespace so the same client address always maps to the same identity
ANONYMOUS_NAMESPACE = uuid.UUID("6f1c2a8e-3b7d-4e59-9a0c-5d2e8f41b7a3")


@dataclass(frozen=True)
class AuthUser:
    """Authenticated user extracted from a session JWT."""

    user_id: str
    claims: dict


def decode_session_jwt(token: str) -> AuthUser:
    """Verify and decode an HS256 session JWT.

    Raises ``AuthError`` on any validation failure.
    """
    settings = get_settings()
    if not settings.jwt_secret:
        raise AuthError("Authentication is not configured")

    options = {
        "verify_exp": True,
        "require": ["sub", "exp"],
    }
    kwargs = {}
    if settings.jwt_audience:
        kwargs["audience"] = settings.jwt_audience
    else:
        options["verify_aud"] = False

    try:
        payload = pyjwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            options=options,
            **kwargs,
        )
    except pyjwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except pyjwt.MissingRequiredClaimError as exc:
        raise AuthError(f"Missing required claim: {exc.claim}")
    except pyjwt.InvalidTokenError:
        raise AuthError("Invalid token")

    sub = payload.get("sub")
    if not sub:
        raise AuthError("Token missing sub claim")

    return AuthUser(user_id=str(sub), claims=payload)


def client_address(request: Request) -> str:
    """Return the originating client address.

    Uses the first ``X-Forwarded-For`` hop when behind a proxy, else the socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client is not None:
        return request.client.host
    return "unknown"


def anonymous_identity(request: Request) -> str:
    """Deterministic identity for unauthenticated callers."""
    return str(uuid.uuid5(ANONYMOUS_NAMESPACE, client_address(request)))


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthUser:
    """FastAPI dependency that extracts and validates the bearer JWT.

    Usage::

        @router.get("/protected")
        async def protected(user: AuthUser = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise AuthError("Missing authorization header")

    user = decode_session_jwt(credentials.credentials)
    request.state.user_id = user.user_id
    return user


async def optional_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthUser | None:
    """Like ``require_auth`` but returns None for anonymous callers.

    A present but invalid token is still rejected.
    """
    if credentials is None:
        return None
    return await require_auth(request, credentials)
