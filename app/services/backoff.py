"""Per-token rate-limit backoff using Redis."""
from typing import List, Optional
from datetime import datetime
from app.core.config import settings
from app.core.redis import get_redis
from app.utils.time import as_utc
import asyncio


class RateLimitBackoff:
    """Track exponential backoff windows for tokens the price source throttled.

    State lives in Redis so every scheduler replica honours the same window.
    """

    def __init__(
        self,
        base_seconds: Optional[int] = None,
        max_seconds: Optional[int] = None,
        redis=None
    ):
        self.base_seconds = base_seconds or settings.rate_limit_backoff_base_seconds
        self.max_seconds = max_seconds or settings.rate_limit_backoff_max_seconds
        self.redis = redis
        self._lock = asyncio.Lock()

    async def _get_redis(self):
        """Get Redis connection."""
        if self.redis is None:
            async with self._lock:
                if self.redis is None:
                    self.redis = await get_redis()
        return self.redis

    KEY_PREFIX = "rate_limit:"
    # Sorted set of token -> window end, for listing open windows in one call
    WINDOWS_KEY = "rate_limit_windows"

    def _make_key(self, token_id: str) -> str:
        return f"{self.KEY_PREFIX}{token_id}"

    def compute_delay(self, attempts: int, retry_after: Optional[float] = None) -> int:
        """
        Delay in seconds for the given consecutive rate-limit count.

        base * 2^(attempts-1), capped at max; an upstream Retry-After wins
        when it asks for longer.
        """
        delay = min(self.base_seconds * (2 ** max(0, attempts - 1)), self.max_seconds)
        if retry_after is not None and retry_after > delay:
            delay = min(int(retry_after + 0.999), self.max_seconds)
        return int(delay)

    async def record_rate_limit(
        self,
        token_id: str,
        now: datetime,
        retry_after: Optional[float] = None
    ) -> int:
        """
        Register a rate-limit hit and open (or extend) the backoff window.

        Returns:
            Backoff delay in seconds
        """
        redis = await self._get_redis()
        key = self._make_key(token_id)

        attempts = await redis.hincrby(key, "attempts", 1)
        delay = self.compute_delay(attempts, retry_after)
        until = as_utc(now).timestamp() + delay

        await redis.hset(key, "until", str(until))
        # Keep the attempt counter a little longer than the window so the next
        # hit after expiry still escalates
        await redis.expire(key, delay + self.max_seconds)

        await redis.zremrangebyscore(self.WINDOWS_KEY, min="-inf", max=as_utc(now).timestamp())
        await redis.zadd(self.WINDOWS_KEY, {token_id: until})
        return delay

    async def is_backing_off(self, token_id: str, now: datetime) -> bool:
        """Whether calls for this token should be skipped right now."""
        redis = await self._get_redis()
        until = await redis.hget(self._make_key(token_id), "until")
        if until is None:
            return False
        return as_utc(now).timestamp() < float(until)

    async def active_tokens(self, now: datetime) -> List[str]:
        """Tokens whose backoff window is still open at ``now``."""
        redis = await self._get_redis()
        # Window end strictly after now
        return await redis.zrangebyscore(
            self.WINDOWS_KEY,
            min=f"({as_utc(now).timestamp()}",
            max="+inf"
        )

    async def reset(self, token_id: str):
        """Clear backoff state after a successful fetch."""
        redis = await self._get_redis()
        await redis.delete(self._make_key(token_id))
        await redis.zrem(self.WINDOWS_KEY, token_id)
