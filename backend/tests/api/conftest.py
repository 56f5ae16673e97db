"""API-specific test fixtures."""

import time

import jwt as pyjwt
import pytest
from httpx import ASGITransport, AsyncClient

from ideaforge.api.deps import get_runner
from ideaforge.core.auth import AuthUser, require_auth
from ideaforge.core.config import get_settings
from ideaforge.db.redis import get_redis


def override_auth(user: AuthUser):
    """Create auth override for a specific user."""

    async def _override():
        return user

    return _override


def session_token(user_id: str, ttl_seconds: int = 3600) -> str:
    """Sign a session JWT the way the identity provider does."""
    now = int(time.time())
    return pyjwt.encode(
        {"sub": user_id, "iat": now, "exp": now + ttl_seconds},
        get_settings().jwt_secret,
        algorithm="HS256",
    )


def bearer(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {session_token(user_id)}"}


@pytest.fixture
def app(engine, redis, runner_fake):
    """Application wired to the SQLite test database, fakeredis and RunnerFake.

    The lifespan is not run, so no real Postgres or Redis is contacted.
    """
    from ideaforge.main import create_app

    app = create_app()
    app.dependency_overrides[get_redis] = lambda: redis
    app.dependency_overrides[get_runner] = lambda: runner_fake
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    """In-process client. Background tasks finish before the response is returned."""
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers():
    """Build Authorization headers for a user id."""
    return bearer


@pytest.fixture
def as_user(app):
    """Bypass JWT verification and authenticate every request as ``user_id``."""

    def _as_user(user_id: str) -> AuthUser:
        user = AuthUser(user_id=user_id, claims={"sub": user_id})
        app.dependency_overrides[require_auth] = override_auth(user)
        return user

    return _as_user
