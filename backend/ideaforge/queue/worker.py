"""Job worker: pulls jobs from the queue and runs them through JobLauncher."""

import asyncio
from datetime import UTC, datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ideaforge.agent.runner import Runner
from ideaforge.core.config import get_settings
from ideaforge.core.exceptions import InvalidStateTransition
from ideaforge.db.base import get_session_factory
from ideaforge.db.redis import get_redis
from ideaforge.queue.manager import JobQueue
from ideaforge.queue.schemas import JOB_OUTCOMES
from ideaforge.queue.state_machine import IdeaStateMachine

logger = structlog.get_logger(__name__)

INTERRUPTED_MESSAGE = "Processing was interrupted. Please try again."


async def recover_stale_jobs(redis, session_factory: async_sessionmaker[AsyncSession], now: datetime | None = None) -> int:
    """Redeliver jobs with expired leases; fail ideas whose jobs are exhausted.

    Returns:
        Number of ideas moved to a failure status
    """
    now = now or datetime.now(UTC)
    settings = get_settings()
    queue = JobQueue(redis)
    state_machine = IdeaStateMachine(session_factory)

    exhausted = await queue.requeue_stale(settings.job_max_deliveries, now=now)
    failed = 0
    for job in exhausted:
        in_flight, _success, failure = JOB_OUTCOMES[job.kind]
        try:
            await state_machine.transition(
                job.idea_id,
                in_flight,
                failure,
                error_message=INTERRUPTED_MESSAGE,
                error_occurred_at=now,
                now=now,
            )
            failed += 1
        except InvalidStateTransition:
            logger.info("exhausted_job_idea_already_resolved", job_id=job.job_id, idea_id=job.idea_id)
    return failed


async def process_next_job(
    runner: Runner,
    redis=None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> bool:
    """Pull next job from queue and process it.

    Called by FastAPI BackgroundTasks and by ``run_worker``.

    Steps:
    1. Redeliver jobs whose lease expired (crashed workers)
    2. Dequeue the oldest job and lease it
    3. Run it through JobLauncher, which writes the terminal status and acks

    Args:
        runner: Runner used for the AI calls
        redis: Redis client instance (injected by caller, or uses get_redis() if None)
        session_factory: Session factory (injected by caller, or the global one)

    Returns:
        True if a job was processed, False if queue empty
    """
    from ideaforge.services.job_launcher import JobLauncher

    if redis is None:
        redis = get_redis()
    if session_factory is None:
        session_factory = get_session_factory()
    settings = get_settings()
    queue = JobQueue(redis)

    await recover_stale_jobs(redis, session_factory)

    job = await queue.dequeue(lease_seconds=settings.job_lease_seconds)
    if job is None:
        return False

    launcher = JobLauncher(runner, session_factory, queue)
    await launcher.execute(job)
    return True


async def drain_queue(
    runner: Runner,
    redis=None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> int:
    """Process jobs until the queue is empty.

    The BackgroundTasks target for every launch, and the startup task when
    redelivered jobs are waiting. Redelivered jobs sit ahead of new ones, so
    a single ``process_next_job`` per launch would leave the newest job behind.

    Returns:
        Number of jobs processed
    """
    processed = 0
    while await process_next_job(runner, redis, session_factory):
        processed += 1
    if processed > 1:
        logger.info("queue_drained", jobs=processed)
    return processed


async def run_worker(runner: Runner, poll_interval: float = 1.0, stop: asyncio.Event | None = None) -> None:
    """Drain the queue until ``stop`` is set, sleeping when it is empty.

    For deployments that run workers in a separate process.
    """
    stop = stop or asyncio.Event()
    logger.info("worker_started", poll_interval=poll_interval)
    while not stop.is_set():
        try:
            processed = await process_next_job(runner)
        except Exception as exc:
            logger.error("worker_iteration_failed", error=str(exc), error_type=type(exc).__name__, exc_info=True)
            processed = False
        if not processed:
            try:
                await asyncio.wait_for(stop.wait(), timeout=poll_interval)
            except TimeoutError:
                pass
    logger.info("worker_stopped")
