import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from ideaforge.db.base import get_session_factory
from ideaforge.db.redis import get_redis
from ideaforge.queue.manager import JobQueue

logger = structlog.get_logger(__name__)

router = APIRouter()

SERVICE_NAME = "ideaforge-backend"


@router.get("/health")
async def health_check(request: Request):
    """Liveness for the load balancer; 503 once SIGTERM starts the drain."""
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(status_code=503, content={"status": "shutting_down", "service": SERVICE_NAME})
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/ready")
async def readiness_check(redis=Depends(get_redis)):
    """Readiness: database and Redis reachable, plus job queue depth.

    Queue depth and dead-letter count are informational and never fail the check.
    """
    checks = {"database": False, "redis": False}
    queue_stats: dict[str, int] = {}

    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as exc:
        logger.error("readiness_database_failed", error=str(exc), error_type=type(exc).__name__)

    try:
        await redis.ping()
        checks["redis"] = True
        queue = JobQueue(redis)
        queue_stats = {
            "pending": await queue.get_length(),
            "dead_letters": await redis.llen(JobQueue.DEAD_LETTER_KEY),
        }
    except Exception as exc:
        logger.error("readiness_redis_failed", error=str(exc), error_type=type(exc).__name__)

    ready = all(checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "degraded", "checks": checks, "queue": queue_stats},
    )
