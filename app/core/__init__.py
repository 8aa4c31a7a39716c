"""Core package initialization."""
from app.core.config import settings
from app.core.database import Base
from app.core.redis import get_redis, close_redis

__all__ = ["settings", "Base", "get_redis", "close_redis"]
