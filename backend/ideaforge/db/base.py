"""Declarative base, async engine and the process-wide session factory.

Idea rows are the coordination point between API instances: status changes,
admission checks and autosave merges are conditional UPDATEs, so every
session is short-lived and commits immediately. PostgreSQL (asyncpg) in
deployment; SQLite (aiosqlite) works for local runs and tests.
"""

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ideaforge.core.config import get_settings


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(url: str) -> dict[str, Any]:
    """create_async_engine kwargs for the URL's backend."""
    settings = get_settings()
    if make_url(url).get_backend_name() == "sqlite":
        # Concurrent writers wait for the file lock instead of failing fast
        return {"connect_args": {"timeout": 30}}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
    }


def bind_engine(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Make ``engine`` the process-wide engine and return its session factory."""
    global _engine, _session_factory

    _engine = engine
    _session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return _session_factory


async def init_db(url: str | None = None) -> None:
    """Create the engine once per process and create missing tables."""
    if _engine is not None:
        return

    settings = get_settings()
    db_url = url or settings.database_url
    engine = create_async_engine(db_url, echo=settings.debug, **engine_options(db_url))
    bind_engine(engine)

    # Import all models so metadata is populated before create_all
    import ideaforge.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and release all connections."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the configured session factory.

    Raises RuntimeError if init_db() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory
