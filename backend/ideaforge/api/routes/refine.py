"""Refine-text route: anonymous-friendly, deduplicated and rate limited."""

from fastapi import APIRouter, Depends, Request, Response

from ideaforge.api.deps import get_refine_service
from ideaforge.core.auth import AuthUser, anonymous_identity, optional_auth
from ideaforge.schemas.ideas import RefineTextRequest, RefineTextResponse
from ideaforge.services.refine_service import RefineService

router = APIRouter()


@router.post("/refine-text", response_model=RefineTextResponse)
async def refine_text(
    body: RefineTextRequest,
    request: Request,
    response: Response,
    user: AuthUser | None = Depends(optional_auth),
    service: RefineService = Depends(get_refine_service),
):
    """Rewrite a short idea more clearly.

    Identity is the user id when authenticated, otherwise derived from the
    client address. Repeats within the dedup TTL are served from cache.
    """
    identity = user.user_id if user else anonymous_identity(request)
    result, limit = await service.refine(identity, body.text)
    if limit is not None:
        response.headers.update(limit.headers())
    return RefineTextResponse(**result)
