"""Standalone job worker: drains the idea job queue outside the API process.

Run from backend/:
    python -m scripts.run_worker

Stops cleanly on SIGINT / SIGTERM after the current job.
"""

import asyncio
import signal

from ideaforge.core.logging import configure_structlog
from ideaforge.core.config import get_settings

settings = get_settings()
configure_structlog(log_level="DEBUG" if settings.debug else "INFO", json_logs=not settings.debug)

from ideaforge.api.deps import get_runner
from ideaforge.db import close_db, close_redis, init_db, init_redis
from ideaforge.queue.worker import run_worker


async def main() -> None:
    await init_db()
    await init_redis()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await run_worker(get_runner(), stop=stop)
    finally:
        await close_redis()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
