"""Idea status state machine with guarded compare-and-set transitions."""

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ideaforge.core.exceptions import AdmissionDenied, InvalidStateTransition, NotFoundError
from ideaforge.db.models.idea import Idea
from ideaforge.queue.schemas import IdeaStatus

if TYPE_CHECKING:
    from ideaforge.queue.admission import AdmissionController

logger = structlog.get_logger(__name__)


def _as_uuid(idea_id: str | uuid.UUID) -> uuid.UUID:
    if isinstance(idea_id, uuid.UUID):
        return idea_id
    try:
        return uuid.UUID(str(idea_id))
    except ValueError:
        raise NotFoundError()


class IdeaStateMachine:
    """Manages idea status transitions with validation.

    Every transition is a single conditional UPDATE on ``(id, status)``: of any
    number of concurrent callers expecting the same status, exactly one wins.
    The winner's write is the lock for that stage's background work.
    """

    # Valid state transitions
    TRANSITIONS = {
        IdeaStatus.DRAFT: [IdeaStatus.GENERATING_QUESTIONS],
        IdeaStatus.GENERATING_QUESTIONS: [IdeaStatus.QUESTIONS_READY, IdeaStatus.GENERATION_FAILED],
        IdeaStatus.QUESTIONS_READY: [IdeaStatus.GENERATING_STAGE1],
        IdeaStatus.GENERATION_FAILED: [],  # Terminal for the question stage
        IdeaStatus.GENERATING_STAGE1: [IdeaStatus.COMPLETE, IdeaStatus.STAGE1_FAILED],
        IdeaStatus.COMPLETE: [],  # Terminal state
        IdeaStatus.STAGE1_FAILED: [IdeaStatus.GENERATING_STAGE1],  # Retry
    }

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @classmethod
    def can_transition(cls, current: IdeaStatus, target: IdeaStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, [])

    async def transition(
        self,
        idea_id: str | uuid.UUID,
        expected: IdeaStatus,
        target: IdeaStatus,
        *,
        user_id: str | None = None,
        admission: "AdmissionController | None" = None,
        now: datetime | None = None,
        **fields,
    ) -> datetime:
        """Move an idea from ``expected`` to ``target`` if it is still in ``expected``.

        Args:
            idea_id: Idea identifier
            expected: Status the caller observed
            target: Status to move to
            user_id: Owner, required when ``admission`` is given
            admission: Enforce this controller's ceiling inside the same write
            now: Current time (for deterministic testing)
            **fields: Additional columns written in the same statement

        Returns:
            The new updated_at

        Raises:
            InvalidStateTransition: Edge not in the graph, or status no longer ``expected``
            AdmissionDenied: The admission ceiling was reached inside the write
            NotFoundError: The idea does not exist (only detected with ``admission``)
        """
        now = now or datetime.now(UTC)
        key = _as_uuid(idea_id)

        if not self.can_transition(expected, target):
            raise InvalidStateTransition(
                str(idea_id),
                expected.value,
                target.value,
                message=f"Cannot move idea from {expected.value} to {target.value}",
            )

        stmt = (
            update(Idea)
            .where(Idea.id == key, Idea.status == expected.value)
            .values(status=target.value, updated_at=now, **fields)
            .execution_options(synchronize_session=False)
        )
        if admission is not None:
            stmt = stmt.where(*admission.ceiling_predicates(user_id, now=now))

        async with self.session_factory() as session:
            if admission is not None:
                await admission.serialize(session)
            result = await session.execute(stmt)
            await session.commit()

        if result.rowcount == 1:
            logger.info(
                "idea_status_changed",
                idea_id=str(key),
                from_status=expected.value,
                to_status=target.value,
            )
            return now

        if admission is not None:
            current = await self.get_status(key)
            if current is None:
                raise NotFoundError()
            if current == expected:
                logger.info("idea_admission_denied_in_write", idea_id=str(key), user_id=user_id)
                raise AdmissionDenied(admission.policy.message)

        logger.info(
            "idea_transition_lost",
            idea_id=str(key),
            expected=expected.value,
            target=target.value,
        )
        raise InvalidStateTransition(str(idea_id), expected.value, target.value)

    async def get_status(self, idea_id: str | uuid.UUID) -> IdeaStatus | None:
        """Get current status of an idea, or None if it doesn't exist."""
        async with self.session_factory() as session:
            status = await session.scalar(select(Idea.status).where(Idea.id == _as_uuid(idea_id)))
        return IdeaStatus(status) if status else None
