"""FastAPI dependencies shared by the idea and refine routes.

Override these in tests via ``app.dependency_overrides``.
"""

from fastapi import Depends

from ideaforge.agent.runner import Runner
from ideaforge.agent.runner_fake import RunnerFake
from ideaforge.core.config import get_settings
from ideaforge.core.dedup_cache import DedupCache
from ideaforge.core.rate_limit import RateLimiter, RedisRateLimiter
from ideaforge.db.base import get_session_factory
from ideaforge.db.redis import get_redis
from ideaforge.queue.manager import JobQueue
from ideaforge.services.idea_service import IdeaService
from ideaforge.services.job_launcher import JobLauncher
from ideaforge.services.refine_service import RefineService


def get_runner() -> Runner:
    """Dependency that provides Runner instance.

    Returns RunnerReal in production (when ANTHROPIC_API_KEY is set).
    Falls back to RunnerFake for local dev without API key.
    """
    settings = get_settings()

    if settings.anthropic_api_key:
        from ideaforge.agent.runner_real import RunnerReal

        return RunnerReal()
    return RunnerFake()


def get_rate_limiter(redis=Depends(get_redis)) -> RateLimiter:
    return RedisRateLimiter(redis)


def get_idea_service(runner: Runner = Depends(get_runner), redis=Depends(get_redis)) -> IdeaService:
    session_factory = get_session_factory()
    launcher = JobLauncher(runner, session_factory, JobQueue(redis))
    return IdeaService(launcher, session_factory)


def get_refine_service(
    runner: Runner = Depends(get_runner),
    redis=Depends(get_redis),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> RefineService:
    cache = DedupCache(redis, ttl_seconds=get_settings().dedup_ttl_seconds)
    return RefineService(runner, cache, limiter)
