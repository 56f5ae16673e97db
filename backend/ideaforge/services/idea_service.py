"""IdeaService: idea lifecycle operations behind the /api/ideas routes."""

import uuid
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import BackgroundTasks
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ideaforge.core.config import get_settings
from ideaforge.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StateGuardError,
    ValidationError,
)
from ideaforge.db.models.idea import Idea
from ideaforge.queue.admission import question_generation_admission, stage1_admission
from ideaforge.queue.schemas import (
    ANSWERABLE_STATUSES,
    WIZARD_SUBMITTABLE_STATUSES,
    IdeaStatus,
    JobKind,
)
from ideaforge.queue.state_machine import IdeaStateMachine
from ideaforge.schemas.questions import parse_questions, validate_answers
from ideaforge.services.job_launcher import JobLauncher

logger = structlog.get_logger(__name__)

TITLE_FALLBACK_LENGTH = 50
# Optimistic merge attempts before giving up with 409
AUTOSAVE_MAX_ATTEMPTS = 5


def fallback_title(idea_text: str) -> str:
    if len(idea_text) > TITLE_FALLBACK_LENGTH:
        return idea_text[:TITLE_FALLBACK_LENGTH] + "..."
    return idea_text


def _parse_id(idea_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(idea_id))
    except ValueError:
        raise NotFoundError()


class IdeaService:
    """Create, read, autosave, submit and delete ideas.

    Status changes go through IdeaStateMachine; background work through
    JobLauncher, which is only called by the winner of the guarded transition.
    """

    def __init__(self, launcher: JobLauncher, session_factory: async_sessionmaker[AsyncSession]):
        self.launcher = launcher
        self.session_factory = session_factory
        self.state_machine = IdeaStateMachine(session_factory)
        self.settings = get_settings()

    async def get_owned(self, user_id: str, idea_id: str) -> Idea:
        """Load an idea the caller owns. 404 if missing, 403 if someone else's."""
        key = _parse_id(idea_id)
        async with self.session_factory() as session:
            idea = await session.scalar(select(Idea).where(Idea.id == key))
        if idea is None:
            raise NotFoundError()
        if idea.user_id != user_id:
            logger.warning("idea_access_denied", idea_id=str(key), user_id=user_id)
            raise ForbiddenError("Unauthorized access")
        return idea

    async def create_idea(
        self,
        user_id: str,
        idea_text: str,
        start_generation: bool = True,
        background_tasks: BackgroundTasks | None = None,
    ) -> Idea:
        """Insert a draft idea and, by default, submit it for question generation."""
        async with self.session_factory() as session:
            existing = await session.scalar(select(func.count()).select_from(Idea).where(Idea.user_id == user_id))
        if (existing or 0) >= self.settings.max_ideas_per_user:
            raise ForbiddenError(
                f"You've reached the maximum of {self.settings.max_ideas_per_user} ideas. "
                "Please delete an existing idea to create a new one."
            )

        admission = question_generation_admission(self.session_factory)
        if start_generation:
            await admission.try_admit(user_id)

        now = datetime.now(UTC)
        idea = Idea(
            user_id=user_id,
            idea_text=idea_text,
            title=fallback_title(idea_text),
            status=IdeaStatus.DRAFT.value,
            wizard_answers={},
            current_step=0,
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as session:
            session.add(idea)
            await session.commit()
        logger.info("idea_created", idea_id=str(idea.id), user_id=user_id)

        if start_generation:
            await self._submit(idea, user_id, background_tasks)
            idea.status = IdeaStatus.GENERATING_QUESTIONS.value
        return idea

    async def list_ideas(self, user_id: str, limit: int, offset: int) -> tuple[list[Idea], int]:
        """Newest first. Returns (page, total)."""
        limit = max(1, min(limit, self.settings.max_ideas_page_size))
        async with self.session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(Idea).where(Idea.user_id == user_id))
            result = await session.execute(
                select(Idea)
                .where(Idea.user_id == user_id)
                .order_by(Idea.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            ideas = list(result.scalars().all())
        return ideas, int(total or 0)

    async def update_idea(
        self,
        user_id: str,
        idea_id: str,
        wizard_answers: dict[str, Any] | None = None,
        current_step: int | None = None,
        status: str | None = None,
        background_tasks: BackgroundTasks | None = None,
    ) -> datetime:
        """Apply an autosave delta or submit a draft. Returns the new updated_at."""
        if status is not None:
            if wizard_answers is not None or current_step is not None:
                raise ValidationError("Status changes cannot be combined with other fields")
            idea = await self.get_owned(user_id, idea_id)
            if idea.status != IdeaStatus.DRAFT.value:
                raise StateGuardError("Can only start question generation from draft status")
            return await self._submit(idea, user_id, background_tasks)

        return await self.autosave(user_id, idea_id, wizard_answers, current_step)

    async def _submit(self, idea: Idea, user_id: str, background_tasks: BackgroundTasks | None) -> datetime:
        """draft -> generating_questions, then launch the question job."""
        admission = question_generation_admission(self.session_factory)
        await admission.try_admit(user_id)
        updated_at = await self.state_machine.transition(
            idea.id,
            IdeaStatus.DRAFT,
            IdeaStatus.GENERATING_QUESTIONS,
            user_id=user_id,
            admission=admission,
            error_message=None,
            error_occurred_at=None,
        )
        await self.launcher.launch(JobKind.QUESTION_GENERATION, str(idea.id), user_id, background_tasks)
        return updated_at

    async def autosave(
        self,
        user_id: str,
        idea_id: str,
        wizard_answers: dict[str, Any] | None,
        current_step: int | None,
        now: datetime | None = None,
    ) -> datetime:
        """Shallow-merge ``wizard_answers`` into the stored answers.

        Existing keys absent from the delta are kept. The write is conditional
        on the row being unchanged since it was read; if another writer got in
        first the merge is recomputed from the fresh row.
        """
        key = _parse_id(idea_id)
        for _attempt in range(AUTOSAVE_MAX_ATTEMPTS):
            idea = await self.get_owned(user_id, idea_id)
            if idea.status not in {s.value for s in ANSWERABLE_STATUSES}:
                raise StateGuardError(
                    f"Cannot save answers while status is {idea.status}. Questions must be ready first."
                )
            if current_step is not None and idea.total_questions and current_step >= idea.total_questions:
                raise ValidationError(f"current_step must be less than {idea.total_questions}")

            values: dict[str, Any] = {"updated_at": now or datetime.now(UTC)}
            if wizard_answers is not None:
                values["wizard_answers"] = {**(idea.wizard_answers or {}), **wizard_answers}
            if current_step is not None:
                values["current_step"] = current_step

            async with self.session_factory() as session:
                result = await session.execute(
                    update(Idea)
                    .where(Idea.id == key, Idea.updated_at == idea.updated_at)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()

            if result.rowcount == 1:
                logger.info(
                    "idea_autosaved",
                    idea_id=str(key),
                    keys=sorted(wizard_answers) if wizard_answers else [],
                    current_step=current_step,
                )
                return values["updated_at"]

            logger.info("idea_autosave_conflict_retrying", idea_id=str(key))
            now = None

        raise ConflictError()

    async def complete_wizard(
        self,
        user_id: str,
        idea_id: str,
        background_tasks: BackgroundTasks | None = None,
    ) -> IdeaStatus:
        """Validate answers, admit, and move the idea into Stage-1 analysis."""
        idea = await self.get_owned(user_id, idea_id)
        if idea.status not in {s.value for s in WIZARD_SUBMITTABLE_STATUSES}:
            raise StateGuardError(f"Cannot complete wizard. Current status: {idea.status}")
        if not idea.questions:
            raise StateGuardError("Questions not found. Please regenerate questions.")

        errors = validate_answers(parse_questions(idea.questions), idea.wizard_answers or {})
        if errors:
            logger.info("wizard_validation_failed", idea_id=idea_id, error_count=len(errors))
            raise ValidationError("Please complete all required questions", errors=errors)

        admission = stage1_admission(self.session_factory)
        await admission.try_admit(user_id)

        now = datetime.now(UTC)
        await self.state_machine.transition(
            idea.id,
            IdeaStatus(idea.status),
            IdeaStatus.GENERATING_STAGE1,
            user_id=user_id,
            admission=admission,
            now=now,
            wizard_completed_at=now,
            error_message=None,
            error_occurred_at=None,
        )
        logger.info("stage1_admitted", idea_id=idea_id, user_id=user_id)
        await self.launcher.launch(JobKind.STAGE1_ANALYSIS, str(idea.id), user_id, background_tasks)
        return IdeaStatus.GENERATING_STAGE1

    async def delete_idea(self, user_id: str, idea_id: str) -> None:
        """Hard delete. A job still running for the idea discards its result."""
        idea = await self.get_owned(user_id, idea_id)
        async with self.session_factory() as session:
            await session.execute(delete(Idea).where(Idea.id == idea.id))
            await session.commit()
        logger.info("idea_deleted", idea_id=str(idea.id), user_id=user_id)
