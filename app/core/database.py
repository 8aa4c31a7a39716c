"""Database setup with async SQLAlchemy for PostgreSQL or SQLite."""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from app.core.config import settings
import logging
import re

logger = logging.getLogger(__name__)


def mask_db_url(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r'://([^:]+):([^@]+)@', r'://\1:****@', url)


def build_engine_args(database_url: str) -> dict:
    """
    Engine options for the configured backend.

    Each verification worker slot holds at most one session, so the
    PostgreSQL pool is sized from the worker pool plus headroom for the
    candidate listing and scripts. SQLite keeps its own default pool.
    """
    engine_args = {
        "echo": settings.log_level == "DEBUG",  # Log all SQL if DEBUG
        "pool_pre_ping": True,  # Verify connections before using
    }

    if database_url.startswith("sqlite"):
        return engine_args

    engine_args.update({
        "pool_size": settings.verification_worker_pool_size + settings.database_pool_headroom,
        "max_overflow": settings.database_max_overflow,
        "pool_timeout": 30,
        "pool_recycle": 3600,  # Recycle connections every hour
    })
    logger.info(
        f"Configuring connection pool: pool_size={engine_args['pool_size']}, "
        f"max_overflow={engine_args['max_overflow']}, pool_timeout=30s, pool_recycle=3600s"
    )
    return engine_args


logger.info(f"Connecting to database: {mask_db_url(settings.database_url)}")

engine = create_async_engine(
    settings.database_url,
    **build_engine_args(settings.database_url)
)

# One session per unit of work; the worker opens and closes its own
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass
