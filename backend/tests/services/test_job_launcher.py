"""Tests for JobLauncher and the worker that drives it."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import BackgroundTasks

from ideaforge.core.exceptions import UpstreamUnavailable
from ideaforge.queue.manager import JobQueue
from ideaforge.queue.schemas import IdeaStatus, JobKind
import ideaforge.queue.worker as worker_mod
from ideaforge.queue.worker import INTERRUPTED_MESSAGE, drain_queue, process_next_job, recover_stale_jobs, run_worker
from ideaforge.services.idea_service import IdeaService
from ideaforge.services.job_launcher import JobLauncher

pytestmark = pytest.mark.unit


class _BrokenQueue:
    """Queue whose Redis connection is down."""

    redis = None

    async def enqueue(self, job):
        raise ConnectionError("Connection refused")


async def _launch_and_run(runner, redis, session_factory, idea, kind):
    launcher = JobLauncher(runner, session_factory, JobQueue(redis))
    await launcher.launch(kind, str(idea.id), idea.user_id)
    return await process_next_job(runner, redis, session_factory)


async def test_question_generation_success(runner_fake, redis, session_factory, make_idea, load_idea):
    idea = await make_idea(status=IdeaStatus.GENERATING_QUESTIONS)

    assert await _launch_and_run(runner_fake, redis, session_factory, idea, JobKind.QUESTION_GENERATION) is True

    stored = await load_idea(idea.id)
    assert stored.status == "questions_ready"
    assert stored.total_questions == 5
    assert len(stored.questions) == 5
    assert stored.questions_generated_at is not None
    assert stored.title == "A Marketplace Connecting Dog"
    assert await JobQueue(redis).get_length() == 0


async def test_stage1_success_writes_results(runner_fake, redis, session_factory, make_idea, load_idea):
    idea = await make_idea(status=IdeaStatus.GENERATING_STAGE1, questions=[], wizard_answers={"a": 1})

    await _launch_and_run(runner_fake, redis, session_factory, idea, JobKind.STAGE1_ANALYSIS)

    stored = await load_idea(idea.id)
    assert stored.status == "complete"
    assert stored.score == 72
    assert stored.risk_score == 4.2
    assert stored.ai_insights["verdict"] == "proceed"
    assert len(stored.competitors) == 2
    assert stored.error_message is None


async def test_failure_after_retries(runner_fake_failing, redis, session_factory, make_idea, load_idea):
    idea = await make_idea(status=IdeaStatus.GENERATING_STAGE1, questions=[])

    await _launch_and_run(runner_fake_failing, redis, session_factory, idea, JobKind.STAGE1_ANALYSIS)

    stored = await load_idea(idea.id)
    assert stored.status == "stage1_failed"
    assert stored.error_message == "Anthropic API overloaded. Retry after 60 seconds."
    assert stored.error_occurred_at is not None
    assert stored.score is None
    assert runner_fake_failing.calls["analyze_stage1"] == 4


async def test_malformed_output_is_not_retried(runner_fake_malformed, redis, session_factory, make_idea, load_idea):
    idea = await make_idea(status=IdeaStatus.GENERATING_QUESTIONS)

    await _launch_and_run(runner_fake_malformed, redis, session_factory, idea, JobKind.QUESTION_GENERATION)

    stored = await load_idea(idea.id)
    assert stored.status == "generation_failed"
    assert runner_fake_malformed.calls["generate_questions"] == 1


async def test_transient_failure_recovers(runner_fake_flaky, redis, session_factory, make_idea, load_idea):
    idea = await make_idea(status=IdeaStatus.GENERATING_QUESTIONS)

    await _launch_and_run(runner_fake_flaky, redis, session_factory, idea, JobKind.QUESTION_GENERATION)

    stored = await load_idea(idea.id)
    assert stored.status == "questions_ready"
    assert runner_fake_flaky.calls["generate_questions"] == 2
    # Title generation failed once and is not retried; the fallback title stays
    assert stored.title == idea.title


async def test_stale_job_is_skipped(runner_fake, redis, session_factory, make_idea, load_idea):
    idea = await make_idea(status=IdeaStatus.QUESTIONS_READY)

    await _launch_and_run(runner_fake, redis, session_factory, idea, JobKind.QUESTION_GENERATION)

    assert (await load_idea(idea.id)).status == "questions_ready"
    assert runner_fake.calls["generate_questions"] == 0


async def test_deleted_idea_job_is_acked(runner_fake, redis, session_factory, make_idea):
    idea = await make_idea(status=IdeaStatus.GENERATING_QUESTIONS)
    launcher = JobLauncher(runner_fake, session_factory, JobQueue(redis))
    await launcher.launch(JobKind.QUESTION_GENERATION, str(idea.id), idea.user_id)

    await IdeaService(launcher, session_factory).delete_idea(idea.user_id, str(idea.id))
    assert await process_next_job(runner_fake, redis, session_factory) is True

    assert await JobQueue(redis).get_dead_letters() == []
    assert await redis.zcard(JobQueue.PROCESSING_KEY) == 0


async def test_empty_queue(runner_fake, redis, session_factory):
    assert await process_next_job(runner_fake, redis, session_factory) is False


async def test_launch_schedules_background_task(runner_fake, redis, session_factory, make_idea):
    idea = await make_idea(status=IdeaStatus.GENERATING_QUESTIONS)
    launcher = JobLauncher(runner_fake, session_factory, JobQueue(redis))
    background_tasks = BackgroundTasks()

    job = await launcher.launch(JobKind.QUESTION_GENERATION, str(idea.id), idea.user_id, background_tasks)

    assert job.attempt == 1
    assert len(background_tasks.tasks) == 1
    assert await JobQueue(redis).get_position(job.job_id) == 1


async def test_enqueue_failure_fails_the_idea(runner_fake, session_factory, make_idea, load_idea):
    idea = await make_idea(status=IdeaStatus.GENERATING_STAGE1)
    launcher = JobLauncher(runner_fake, session_factory, _BrokenQueue())

    with pytest.raises(UpstreamUnavailable):
        await launcher.launch(JobKind.STAGE1_ANALYSIS, str(idea.id), idea.user_id)

    stored = await load_idea(idea.id)
    assert stored.status == "stage1_failed"
    assert stored.error_message == "Could not start processing. Please try again."


async def test_recover_stale_jobs_fails_exhausted_ideas(runner_fake, redis, session_factory, make_idea, load_idea):
    idea = await make_idea(status=IdeaStatus.GENERATING_STAGE1)
    queue = JobQueue(redis)
    launcher = JobLauncher(runner_fake, session_factory, queue)
    job = await launcher.launch(JobKind.STAGE1_ANALYSIS, str(idea.id), idea.user_id)

    now = datetime.now(UTC)
    # Three deliveries, each abandoned by a crashed worker
    for delivery in range(3):
        leased = await queue.dequeue(lease_seconds=60, now=now)
        assert leased.attempt == delivery + 1
        now += timedelta(seconds=61)
        failed = await recover_stale_jobs(redis, session_factory, now=now)

    assert failed == 1
    stored = await load_idea(idea.id)
    assert stored.status == "stage1_failed"
    assert stored.error_message == INTERRUPTED_MESSAGE
    assert (await queue.get_dead_letters())[0]["job"]["job_id"] == job.job_id


async def test_run_worker_drains_queue_until_stopped(runner_fake, redis, engine, make_idea, load_idea, monkeypatch):
    monkeypatch.setattr(worker_mod, "get_redis", lambda: redis)
    idea = await make_idea(status=IdeaStatus.GENERATING_QUESTIONS)
    await JobLauncher(runner_fake, worker_mod.get_session_factory(), JobQueue(redis)).launch(
        JobKind.QUESTION_GENERATION, str(idea.id), idea.user_id
    )

    stop = asyncio.Event()
    task = asyncio.create_task(run_worker(runner_fake, poll_interval=0.01, stop=stop))
    for _ in range(200):
        if (await load_idea(idea.id)).status == "questions_ready":
            break
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=5)

    assert (await load_idea(idea.id)).status == "questions_ready"
    assert await JobQueue(redis).get_length() == 0


async def test_redelivered_job_does_not_starve_new_launch(runner_fake, redis, session_factory, make_idea, load_idea):
    orphaned = await make_idea(status=IdeaStatus.GENERATING_QUESTIONS)
    fresh = await make_idea(status=IdeaStatus.GENERATING_QUESTIONS)
    queue = JobQueue(redis)
    launcher = JobLauncher(runner_fake, session_factory, queue)

    # Leased by a worker that died before finishing; the lease is already over
    await launcher.launch(JobKind.QUESTION_GENERATION, str(orphaned.id), orphaned.user_id)
    await queue.dequeue(lease_seconds=60, now=datetime.now(UTC) - timedelta(seconds=120))

    background_tasks = BackgroundTasks()
    await launcher.launch(JobKind.QUESTION_GENERATION, str(fresh.id), fresh.user_id, background_tasks)
    await background_tasks()

    assert (await load_idea(orphaned.id)).status == "questions_ready"
    assert (await load_idea(fresh.id)).status == "questions_ready"
    assert await queue.get_length() == 0
    assert await redis.zcard(JobQueue.PROCESSING_KEY) == 0


async def test_drain_queue_processes_every_pending_job(runner_fake, redis, session_factory, make_idea, load_idea):
    ideas = []
    for i in range(3):
        ideas.append(
            await make_idea(status=IdeaStatus.GENERATING_STAGE1, user_id=f"user_{i}", questions=[], wizard_answers={"a": 1})
        )
    launcher = JobLauncher(runner_fake, session_factory, JobQueue(redis))
    for idea in ideas:
        await launcher.launch(JobKind.STAGE1_ANALYSIS, str(idea.id), idea.user_id)

    assert await drain_queue(runner_fake, redis, session_factory) == 3

    for idea in ideas:
        assert (await load_idea(idea.id)).status == "complete"
    assert await drain_queue(runner_fake, redis, session_factory) == 0
