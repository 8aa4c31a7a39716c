"""Shared Redis client for rate-limit backoff, outcome queues and health heartbeats."""
import asyncio
import redis.asyncio as redis
from app.core.config import settings

_client: redis.Redis | None = None
_client_lock = asyncio.Lock()


def create_redis(url: str | None = None) -> redis.Redis:
    """
    Build a Redis client with string responses.

    Every worker slot may touch backoff state and publish an event while a
    heartbeat is written, so the pool scales with the worker pool.
    """
    return redis.from_url(
        url or settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.verification_worker_pool_size * 4 + 10
    )


async def get_redis() -> redis.Redis:
    """Return the process-wide client, creating it on first use."""
    global _client

    if _client is None:
        async with _client_lock:
            if _client is None:
                _client = create_redis()
    return _client


async def close_redis():
    """Close the process-wide client if one was opened."""
    global _client
    async with _client_lock:
        if _client is not None:
            await _client.aclose()
            _client = None
