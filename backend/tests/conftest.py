"""Shared test fixtures for all test groups."""

import os

# Settings are cached on first use, so the test environment is set before any
# ideaforge import reads it.
os.environ["AI_RETRY_BASE_DELAY"] = "0"
os.environ["JWT_SECRET"] = "test-secret-key-for-session-tokens"
os.environ["ANTHROPIC_API_KEY"] = ""

import uuid
from datetime import UTC, datetime

import pytest
from fakeredis import FakeAsyncRedis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ideaforge.agent.runner_fake import RunnerFake
from ideaforge.core.config import get_settings
from ideaforge.db.base import Base, bind_engine, engine_options
from ideaforge.db.models.idea import Idea
from ideaforge.queue.schemas import IdeaStatus

get_settings.cache_clear()


@pytest.fixture
def runner_fake():
    """Fresh RunnerFake with happy_path scenario (default)."""
    return RunnerFake(scenario="happy_path")


@pytest.fixture
def runner_fake_failing():
    """RunnerFake with llm_failure scenario."""
    return RunnerFake(scenario="llm_failure")


@pytest.fixture
def runner_fake_malformed():
    """RunnerFake with malformed_output scenario."""
    return RunnerFake(scenario="malformed_output")


@pytest.fixture
def runner_fake_flaky():
    """RunnerFake with flaky scenario."""
    return RunnerFake(scenario="flaky")


@pytest.fixture
async def redis():
    """Create a fake Redis instance for testing."""
    fake_redis = FakeAsyncRedis(decode_responses=True)
    yield fake_redis
    await fake_redis.flushall()
    await fake_redis.aclose()


@pytest.fixture
async def engine(tmp_path) -> AsyncEngine:
    """File-backed SQLite engine so concurrent connections see each other's writes.

    Sets the global session factory so code calling get_session_factory()
    uses the test database.
    """
    import ideaforge.db.base as db_mod
    import ideaforge.db.models  # noqa: F401

    url = f"sqlite+aiosqlite:///{tmp_path / 'ideaforge_test.db'}"
    engine = create_async_engine(url, echo=False, **engine_options(url))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    bind_engine(engine)

    yield engine

    db_mod._engine = None
    db_mod._session_factory = None
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def make_idea(session_factory):
    """Insert an idea row directly, bypassing the service layer."""

    async def _make(
        user_id: str = "user_a",
        status: IdeaStatus = IdeaStatus.DRAFT,
        idea_text: str = "A marketplace connecting dog walkers with busy owners",
        **fields,
    ) -> Idea:
        now = datetime.now(UTC)
        values = {
            "id": uuid.uuid4(),
            "user_id": user_id,
            "idea_text": idea_text,
            "title": idea_text[:50],
            "status": status.value,
            "wizard_answers": {},
            "current_step": 0,
            "created_at": now,
            "updated_at": now,
        }
        values.update(fields)
        idea = Idea(**values)
        async with session_factory() as session:
            session.add(idea)
            await session.commit()
        return idea

    return _make


@pytest.fixture
def load_idea(session_factory):
    """Fetch the current row for an idea."""

    async def _load(idea_id) -> Idea | None:
        async with session_factory() as session:
            return await session.get(Idea, uuid.UUID(str(idea_id)))

    return _load
