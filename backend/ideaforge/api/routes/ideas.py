"""Idea API routes: lifecycle, autosave, wizard completion and conditional reads."""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from fastapi.responses import JSONResponse

from ideaforge.api.conditional import (
    cache_control,
    compute_etag,
    is_not_modified,
    last_modified_header,
    parse_include,
    serialize_idea,
)
from ideaforge.api.deps import get_idea_service, get_rate_limiter
from ideaforge.core.auth import AuthUser, require_auth
from ideaforge.core.config import get_settings
from ideaforge.core.exceptions import RateLimited
from ideaforge.core.rate_limit import RateLimiter
from ideaforge.schemas.ideas import (
    CompleteWizardResponse,
    CreateIdeaRequest,
    CreateIdeaResponse,
    DeleteIdeaResponse,
    IdeaListResponse,
    IdeaSummary,
    ListMeta,
    UpdateIdeaRequest,
    UpdateIdeaResponse,
)
from ideaforge.services.idea_service import IdeaService

router = APIRouter()

IDEA_READ_ENDPOINT = "idea-read"


@router.post("", response_model=CreateIdeaResponse, status_code=201)
async def create_idea(
    body: CreateIdeaRequest,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(require_auth),
    service: IdeaService = Depends(get_idea_service),
):
    """Submit a new idea and start question generation.

    Raises:
        ForbiddenError(403): The user already has the maximum number of ideas
        AdmissionDenied(429): Too many ideas generating for this user
    """
    idea = await service.create_idea(user.user_id, body.idea_text, body.start_generation, background_tasks)
    return CreateIdeaResponse(id=str(idea.id), status=idea.status)


@router.get("", response_model=IdeaListResponse)
async def list_ideas(
    limit: int = Query(default=5, ge=1),
    offset: int = Query(default=0, ge=0),
    user: AuthUser = Depends(require_auth),
    service: IdeaService = Depends(get_idea_service),
):
    """List the caller's ideas, newest first. ``limit`` is capped server-side."""
    ideas, total = await service.list_ideas(user.user_id, limit, offset)
    effective_limit = min(limit, get_settings().max_ideas_page_size)
    return IdeaListResponse(
        ideas=[
            IdeaSummary(
                id=str(idea.id),
                title=idea.title,
                status=idea.status,
                created_at=idea.created_at,
                updated_at=idea.updated_at,
            )
            for idea in ideas
        ],
        meta=ListMeta(
            total=total,
            limit=effective_limit,
            offset=offset,
            remaining=max(0, total - offset - len(ideas)),
        ),
    )


@router.get("/{idea_id}")
async def get_idea(
    idea_id: str,
    request: Request,
    include: str | None = Query(default=None),
    user: AuthUser = Depends(require_auth),
    service: IdeaService = Depends(get_idea_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Read one idea, honouring If-None-Match / If-Modified-Since.

    Returns an empty 304 when the client's copy is current. Cache-Control
    forbids caching while a job is generating.
    """
    settings = get_settings()
    limit = await limiter.check_rate_limit(
        user.user_id,
        IDEA_READ_ENDPOINT,
        settings.idea_read_rate_limit,
        settings.idea_read_rate_window_seconds,
    )
    if not limit.allowed:
        raise RateLimited(retry_after=limit.retry_after(), headers=limit.headers())

    idea = await service.get_owned(user.user_id, idea_id)

    headers = {
        **limit.headers(),
        "ETag": compute_etag(idea),
        "Last-Modified": last_modified_header(idea),
        "Cache-Control": cache_control(idea.status),
    }
    if is_not_modified(idea, request.headers.get("if-none-match"), request.headers.get("if-modified-since")):
        return Response(status_code=304, headers=headers)

    return JSONResponse(
        content={"success": True, "idea": serialize_idea(idea, parse_include(include))},
        headers=headers,
    )


@router.patch("/{idea_id}", response_model=UpdateIdeaResponse)
async def update_idea(
    idea_id: str,
    body: UpdateIdeaRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(require_auth),
    service: IdeaService = Depends(get_idea_service),
):
    """Autosave wizard answers / current step, or submit a draft for generation."""
    updated_at = await service.update_idea(
        user.user_id,
        idea_id,
        wizard_answers=body.wizard_answers,
        current_step=body.current_step,
        status=body.status,
        background_tasks=background_tasks,
    )
    response.headers["X-Auto-Save"] = "true"
    response.headers["X-Updated-At"] = updated_at.isoformat()
    return UpdateIdeaResponse(updated_at=updated_at)


@router.delete("/{idea_id}", response_model=DeleteIdeaResponse)
async def delete_idea(
    idea_id: str,
    user: AuthUser = Depends(require_auth),
    service: IdeaService = Depends(get_idea_service),
):
    await service.delete_idea(user.user_id, idea_id)
    return DeleteIdeaResponse()


@router.post("/{idea_id}/complete-wizard", response_model=CompleteWizardResponse)
async def complete_wizard(
    idea_id: str,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(require_auth),
    service: IdeaService = Depends(get_idea_service),
):
    """Validate the wizard and start Stage-1 analysis.

    Raises:
        StateGuardError(400): Status is not questions_ready / stage1_failed
        ValidationError(400): Answers fail question rules (``errors`` map)
        AdmissionDenied(429): Per-user or global Stage-1 cap reached
        InvalidStateTransition(409): Another request won the transition
    """
    status = await service.complete_wizard(user.user_id, idea_id, background_tasks)
    return CompleteWizardResponse(
        status=status.value,
        message="Wizard completed. Analysis is starting.",
    )
