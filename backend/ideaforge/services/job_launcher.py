"""JobLauncher: runs AI jobs off the request path and resolves ideas to a terminal state.

Launch is called only after the caller won the guarded transition into the
in-flight status, so at most one job per idea stage exists. The job is put
on the durable queue and the worker is scheduled on FastAPI BackgroundTasks;
the request returns immediately.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ideaforge.agent.runner import Runner
from ideaforge.core.config import get_settings
from ideaforge.core.exceptions import (
    IdeaForgeError,
    InvalidStateTransition,
    NonRetryableError,
    UpstreamUnavailable,
)
from ideaforge.core.retry import retry_with_backoff
from ideaforge.db.models.idea import Idea
from ideaforge.queue.manager import JobQueue
from ideaforge.queue.schemas import JOB_OUTCOMES, IdeaStatus, JobKind, JobPayload
from ideaforge.queue.state_machine import IdeaStateMachine

logger = structlog.get_logger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 500

FAILURE_MESSAGES = {
    JobKind.QUESTION_GENERATION: "Question generation failed. Please try again.",
    JobKind.STAGE1_ANALYSIS: "Analysis failed. Please try again.",
}


def user_safe_error(kind: JobKind, exc: Exception) -> str:
    """Message stored on the idea: our own error text, never raw exception detail."""
    if isinstance(exc, IdeaForgeError):
        message = exc.message
    else:
        message = FAILURE_MESSAGES[kind]
    return message[:MAX_ERROR_MESSAGE_LENGTH]


def _is_retryable(exc: BaseException) -> bool:
    return not isinstance(exc, NonRetryableError)


class JobLauncher:
    """Enqueues jobs and executes them to a terminal idea status."""

    def __init__(
        self,
        runner: Runner,
        session_factory: async_sessionmaker[AsyncSession],
        queue: JobQueue,
    ):
        self.runner = runner
        self.session_factory = session_factory
        self.queue = queue
        self.state_machine = IdeaStateMachine(session_factory)
        self.settings = get_settings()

    async def launch(
        self,
        kind: JobKind,
        idea_id: str,
        user_id: str,
        background_tasks: BackgroundTasks | None = None,
        now: datetime | None = None,
    ) -> JobPayload:
        """Queue a job for an idea that is already in the kind's in-flight status.

        If the queue cannot be reached the idea is moved to the failure status
        so it is never left in flight without a job.
        """
        now = now or datetime.now(UTC)
        job = JobPayload(
            job_id=str(uuid.uuid4()),
            kind=kind,
            idea_id=str(idea_id),
            user_id=user_id,
            enqueued_at=now,
        )

        try:
            position = await self.queue.enqueue(job)
        except Exception as exc:
            logger.error("job_enqueue_failed", idea_id=job.idea_id, kind=kind.value, error=str(exc), exc_info=True)
            in_flight, _success, failure = JOB_OUTCOMES[kind]
            await self.state_machine.transition(
                job.idea_id,
                in_flight,
                failure,
                error_message="Could not start processing. Please try again.",
                error_occurred_at=now,
            )
            raise UpstreamUnavailable("Could not start processing. Please try again.") from exc

        logger.info("job_enqueued", job_id=job.job_id, kind=kind.value, idea_id=job.idea_id, position=position)

        if background_tasks is not None:
            from ideaforge.queue.worker import drain_queue

            background_tasks.add_task(drain_queue, self.runner, self.queue.redis, self.session_factory)
        return job

    async def execute(self, job: JobPayload) -> IdeaStatus | None:
        """Run one dequeued job to completion and acknowledge it.

        Returns:
            The terminal status written, or None if the job was stale
        """
        in_flight, success, failure = JOB_OUTCOMES[job.kind]
        log = logger.bind(job_id=job.job_id, kind=job.kind.value, idea_id=job.idea_id, attempt=job.attempt)

        async with self.session_factory() as session:
            idea = await session.scalar(select(Idea).where(Idea.id == uuid.UUID(job.idea_id)))

        if idea is None:
            log.warning("job_idea_missing")
            await self.queue.ack(job.job_id)
            return None
        if idea.status != in_flight.value:
            # Redelivered after a previous delivery already resolved the idea
            log.info("job_stale_skipped", status=idea.status)
            await self.queue.ack(job.job_id)
            return None

        try:
            fields = await retry_with_backoff(
                lambda: self._run(job.kind, idea),
                max_retries=self.settings.ai_max_retries,
                base_delay=self.settings.ai_retry_base_delay,
                max_delay=self.settings.ai_retry_max_delay,
                retry_if=_is_retryable,
                operation_name=job.kind.value,
            )
        except Exception as exc:
            log.error("job_failed", error=str(exc), error_type=type(exc).__name__, exc_info=True)
            target = failure
            fields = {
                "error_message": user_safe_error(job.kind, exc),
                "error_occurred_at": datetime.now(UTC),
            }
        else:
            target = success
            if job.kind is JobKind.QUESTION_GENERATION:
                title = await self._generate_title(idea)
                if title:
                    fields["title"] = title

        return await self._resolve(job, in_flight, target, fields)

    async def _run(self, kind: JobKind, idea: Idea) -> dict[str, Any]:
        now = datetime.now(UTC)
        if kind is JobKind.QUESTION_GENERATION:
            questions = await self.runner.generate_questions(idea.idea_text)
            if not questions:
                raise NonRetryableError("The AI service returned no questions")
            return {
                "questions": questions,
                "total_questions": len(questions),
                "questions_generated_at": now,
                "current_step": 0,
                "error_message": None,
                "error_occurred_at": None,
            }

        result = await self.runner.analyze_stage1(idea.idea_text, idea.questions or [], idea.wizard_answers or {})
        return {
            "score": result["score"],
            "risk_score": result["risk_score"],
            "risk_analysis": result["risk_analysis"],
            "ai_insights": result["ai_insights"],
            "competitors": result.get("competitors", []),
            "error_message": None,
            "error_occurred_at": None,
        }

    async def _generate_title(self, idea: Idea) -> str | None:
        """Best-effort AI title; the fallback title set at creation stays on failure."""
        try:
            return await self.runner.generate_title(idea.idea_text)
        except Exception as exc:
            logger.warning("title_generation_failed", idea_id=str(idea.id), error=str(exc), error_type=type(exc).__name__)
            return None

    async def _resolve(
        self,
        job: JobPayload,
        in_flight: IdeaStatus,
        target: IdeaStatus,
        fields: dict[str, Any],
    ) -> IdeaStatus | None:
        try:
            await self.state_machine.transition(job.idea_id, in_flight, target, **fields)
        except InvalidStateTransition:
            # Idea deleted or already resolved by another delivery
            logger.warning("job_result_discarded", job_id=job.job_id, idea_id=job.idea_id, target=target.value)
            await self.queue.ack(job.job_id)
            return None
        except Exception as exc:
            logger.error(
                "job_resolve_failed",
                job_id=job.job_id,
                idea_id=job.idea_id,
                target=target.value,
                error=str(exc),
                exc_info=True,
            )
            await self.queue.dead_letter(job, reason=f"resolve_failed: {type(exc).__name__}")
            return None

        await self.queue.ack(job.job_id)
        logger.info("job_completed", job_id=job.job_id, idea_id=job.idea_id, status=target.value)
        return target
