"""Admission control for expensive background jobs.

Counts ideas in the in-flight statuses per user and globally. The pre-check
(``try_admit``) rejects early with a 429; ``ceiling_predicates`` lets the
guarded transition re-check the same caps inside its UPDATE.

On PostgreSQL the re-check runs under a transaction-scoped advisory lock per
policy (``serialize``). Under READ COMMITTED two UPDATEs on different rows
would otherwise each count a snapshot without the other and both commit.
SQLite serializes writers on its own.
"""

import hashlib
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from ideaforge.core.config import get_settings
from ideaforge.core.exceptions import AdmissionDenied
from ideaforge.db.models.idea import Idea
from ideaforge.queue.schemas import IdeaStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AdmissionPolicy:
    """Which statuses count as in flight and how many are allowed."""

    name: str
    statuses: frozenset[IdeaStatus]
    user_cap: int
    global_cap: int | None = None
    window_seconds: int | None = None  # only count ideas created within this window
    message: str = AdmissionDenied.default_message


class AdmissionController:
    """Per-user and global concurrency caps over idea rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], policy: AdmissionPolicy):
        self.session_factory = session_factory
        self.policy = policy

    def _filters(self, table, user_id: str | None, now: datetime) -> list:
        filters = [table.status.in_([s.value for s in self.policy.statuses])]
        if user_id is not None:
            filters.append(table.user_id == user_id)
        if self.policy.window_seconds is not None:
            filters.append(table.created_at >= now - timedelta(seconds=self.policy.window_seconds))
        return filters

    async def count(self, user_id: str | None = None, now: datetime | None = None) -> int:
        """Return the number of in-flight ideas for ``user_id`` (or globally)."""
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(Idea).where(*self._filters(Idea, user_id, now))
            )
        return int(total or 0)

    async def try_admit(self, user_id: str, now: datetime | None = None) -> None:
        """Raise AdmissionDenied if either cap is already reached."""
        now = now or datetime.now(UTC)
        per_user = await self.count(user_id, now=now)
        global_count = await self.count(None, now=now) if self.policy.global_cap is not None else 0

        user_full = per_user >= self.policy.user_cap
        global_full = self.policy.global_cap is not None and global_count >= self.policy.global_cap
        if user_full or global_full:
            logger.info(
                "admission_denied",
                policy=self.policy.name,
                user_id=user_id,
                per_user=per_user,
                global_count=global_count,
                user_cap=self.policy.user_cap,
                global_cap=self.policy.global_cap,
            )
            raise AdmissionDenied(self.policy.message)

    @property
    def lock_key(self) -> int:
        """Signed 64-bit advisory lock id, stable across processes."""
        digest = hashlib.sha256(f"ideaforge:admission:{self.policy.name}".encode()).digest()
        return int.from_bytes(digest[:8], "big", signed=True)

    async def serialize(self, session: AsyncSession) -> None:
        """Block until no other transaction is admitting under this policy.

        Released on commit or rollback. A no-op outside PostgreSQL.
        """
        if session.get_bind().dialect.name != "postgresql":
            return
        await session.execute(select(func.pg_advisory_xact_lock(self.lock_key)))

    def ceiling_predicates(self, user_id: str | None, now: datetime | None = None) -> list:
        """WHERE clauses that hold only while both caps have room.

        Uses an alias so the count subquery does not correlate with the
        table being updated.
        """
        now = now or datetime.now(UTC)
        other = aliased(Idea)
        predicates = []
        if user_id is not None:
            user_count = (
                select(func.count()).select_from(other).where(*self._filters(other, user_id, now)).scalar_subquery()
            )
            predicates.append(user_count < self.policy.user_cap)
        if self.policy.global_cap is not None:
            global_count = (
                select(func.count()).select_from(other).where(*self._filters(other, None, now)).scalar_subquery()
            )
            predicates.append(global_count < self.policy.global_cap)
        return predicates


def stage1_admission(session_factory: async_sessionmaker[AsyncSession]) -> AdmissionController:
    """Caps for concurrent Stage-1 analyses."""
    settings = get_settings()
    return AdmissionController(
        session_factory,
        AdmissionPolicy(
            name="stage1",
            statuses=frozenset({IdeaStatus.GENERATING_STAGE1}),
            user_cap=settings.stage1_user_cap,
            global_cap=settings.stage1_global_cap,
        ),
    )


def question_generation_admission(session_factory: async_sessionmaker[AsyncSession]) -> AdmissionController:
    """Per-user cap on ideas generating in the last five minutes."""
    settings = get_settings()
    return AdmissionController(
        session_factory,
        AdmissionPolicy(
            name="question_generation",
            statuses=frozenset({IdeaStatus.GENERATING_QUESTIONS, IdeaStatus.GENERATING_STAGE1}),
            user_cap=settings.question_generation_user_cap,
            window_seconds=300,
            message=(
                "You have too many ideas generating. "
                "Please wait for them to complete before starting another one."
            ),
        ),
    )
