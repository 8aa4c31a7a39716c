"""Pytest fixtures for database-backed integration tests."""
import pytest
import logging
import fakeredis.aioredis
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from app.core.database import Base
from app.models import TokenCall

logger = logging.getLogger(__name__)


@pytest.fixture
async def test_engine(tmp_path):
    """
    Create a throwaway SQLite database with the full schema.

    Each test gets its own file so check constraints and conditional updates
    run against a real engine.
    """
    url = f"sqlite+aiosqlite:///{tmp_path / 'calls.db'}"
    logger.info(f"Creating test engine for: {url}")

    engine = create_async_engine(url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    logger.info("Disposing test engine")
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )


@pytest.fixture
def seed_calls(session_factory):
    """Insert calls and return them."""
    async def _seed(*calls: TokenCall):
        async with session_factory() as db:
            db.add_all(calls)
            await db.commit()
        return calls
    return _seed


@pytest.fixture
def load_call(session_factory):
    """Reload a call from the database."""
    async def _load(call_id: str) -> TokenCall:
        async with session_factory() as db:
            return await db.get(TokenCall, call_id)
    return _load


@pytest.fixture
async def fake_redis():
    """In-memory Redis."""
    redis = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield redis
    await redis.flushall()
