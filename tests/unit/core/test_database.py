"""Unit tests for database engine configuration."""
import pytest

from app.core.database import mask_db_url, build_engine_args
from app.core.config import settings


@pytest.mark.unit
class TestDatabaseSetup:
    """Test engine option helpers."""

    def test_mask_db_url(self):
        """✅ Password never reaches the logs."""
        url = "postgresql+asyncpg://verifier:s3cret@db:5432/calls"
        assert mask_db_url(url) == "postgresql+asyncpg://verifier:****@db:5432/calls"

    def test_sqlite_has_no_pool_sizing(self):
        args = build_engine_args("sqlite+aiosqlite:///./data/calls.db")
        assert "pool_size" not in args
        assert args["pool_pre_ping"] is True

    def test_postgres_pool_follows_worker_pool(self):
        """✅ One connection per worker slot plus headroom."""
        args = build_engine_args("postgresql+asyncpg://verifier@db/calls")
        assert args["pool_size"] == settings.verification_worker_pool_size + settings.database_pool_headroom
        assert args["max_overflow"] == settings.database_max_overflow
