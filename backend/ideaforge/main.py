"""IdeaForge Backend: FastAPI application entry point."""

import asyncio
import signal
import uuid
from contextlib import asynccontextmanager

# Logging is configured before the remaining ideaforge imports create their loggers.
from ideaforge.core.logging import configure_structlog
from ideaforge.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ideaforge.api.deps import get_runner
from ideaforge.api.routes import api_router
from ideaforge.core.config import get_settings
from ideaforge.core.exceptions import IdeaForgeError, RateLimited
from ideaforge.db import close_db, close_redis, get_redis, get_session_factory, init_db, init_redis
from ideaforge.middleware.correlation import (
    get_correlation_id,
    setup_correlation_middleware,
)
from ideaforge.queue.manager import JobQueue
from ideaforge.queue.worker import drain_queue, recover_stale_jobs

logger = structlog.get_logger(__name__)

EXPOSED_HEADERS = [
    "ETag",
    "Last-Modified",
    "Retry-After",
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
    "X-Auto-Save",
    "X-Updated-At",
    "X-Request-ID",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database and Redis, redeliver jobs orphaned by a previous process."""
    app.state.shutting_down = False

    def mark_draining(signum, frame):
        app.state.shutting_down = True
        logger.info("drain_started", signal=signum)

    signal.signal(signal.SIGTERM, mark_draining)

    settings = get_settings()
    logger.info("ideaforge_starting", app_name=settings.app_name, debug=settings.debug)

    await init_db()
    await init_redis()

    failed = await recover_stale_jobs(get_redis(), get_session_factory())
    pending = await JobQueue(get_redis()).get_length()
    logger.info("ideaforge_ready", pending_jobs=pending, interrupted_ideas=failed)

    drain_task = None
    if pending:
        runner = app.dependency_overrides.get(get_runner, get_runner)()
        drain_task = asyncio.create_task(drain_queue(runner))

    try:
        yield
    finally:
        if drain_task is not None:
            drain_task.cancel()
            # A job cut off here keeps its lease and is redelivered on the next start
            await asyncio.gather(drain_task, return_exceptions=True)
        await close_redis()
        await close_db()
        logger.info("ideaforge_stopped")


def _envelope(status_code: int, message: str, debug_id: str, errors: dict | None = None, headers=None) -> JSONResponse:
    content: dict = {"success": False, "message": message, "debug_id": debug_id}
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def ideaforge_exception_handler(request: Request, exc: IdeaForgeError) -> JSONResponse:
    """Render domain errors into the response envelope with a debug_id.

    4xx are logged at info level, 5xx at error level with the cause.
    """
    debug_id = str(uuid.uuid4())
    log_kwargs = dict(
        status_code=exc.status_code,
        error_type=type(exc).__name__,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        detail=exc.message,
    )
    if exc.status_code >= 500:
        logger.error("request_failed", **log_kwargs, exc_info=exc)
    else:
        logger.info("request_rejected", **log_kwargs)

    headers = None
    if isinstance(exc, RateLimited):
        headers = {**exc.headers, "Retry-After": str(exc.retry_after)}
    return _envelope(exc.status_code, exc.message, debug_id, exc.errors, headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies and parameters are a 400 with per-field messages."""
    debug_id = str(uuid.uuid4())
    errors: dict[str, str] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        message = str(error.get("msg", "Invalid value")).removeprefix("Value error, ")
        errors.setdefault(field, message)

    message = next(iter(errors.values()), "Invalid request")
    logger.info(
        "request_validation_failed",
        debug_id=debug_id,
        path=request.url.path,
        method=request.method,
        errors=errors,
    )
    return _envelope(400, message, debug_id, errors)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework-raised HTTP errors (404 route, 405 method) in the same envelope."""
    debug_id = str(uuid.uuid4())
    logger.info(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        path=request.url.path,
        method=request.method,
        detail=exc.detail,
    )
    return _envelope(exc.status_code, str(exc.detail), debug_id, headers=getattr(exc, "headers", None))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything outside the IdeaForgeError hierarchy: full traceback in the log, bare 500 to the caller."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    # No internal details leaked
    return _envelope(500, "Internal server error", debug_id)


def register_exception_handlers(app: FastAPI) -> None:
    app.exception_handler(IdeaForgeError)(ideaforge_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(StarletteHTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="IdeaForge - idea validation wizard and Stage-1 analysis",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list({settings.frontend_url, *settings.allowed_origins}),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
    )

    setup_correlation_middleware(app)

    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ideaforge.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
