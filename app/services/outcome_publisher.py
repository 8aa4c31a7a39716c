"""Outcome events emitted when a call reaches a terminal status."""
import json
import logging
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List
from app.core.redis import get_redis

logger = logging.getLogger(__name__)

OUTCOME_QUEUE = "call_outcome_queue"


@dataclass(frozen=True)
class OutcomeEvent:
    """
    Terminal transition of a call.

    Delivery is at-least-once; consumers deduplicate on ``idempotency_key``.
    """
    call_id: str
    user_id: str
    token_id: str
    old_status: str
    new_status: str
    verified_at: datetime
    derived_metrics: Dict[str, Any] = field(default_factory=dict)
    message: str = ""

    @property
    def idempotency_key(self) -> str:
        return f"{self.call_id}:{self.new_status}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "user_id": self.user_id,
            "token_id": self.token_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "verified_at": self.verified_at.isoformat(),
            "derived_metrics": self.derived_metrics,
            "message": self.message,
            "idempotency_key": self.idempotency_key,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class OutcomePublisher(ABC):
    """Destination for outcome events."""

    @abstractmethod
    async def publish(self, event: OutcomeEvent) -> None:
        """
        Deliver an event downstream.

        Raises:
            Exception: Any delivery failure; the caller logs it and moves on
        """
        pass


class RedisOutcomePublisher(OutcomePublisher):
    """Push outcome events onto a Redis list for badge, reputation and notification routers."""

    def __init__(self, queue: str = OUTCOME_QUEUE, redis=None):
        self.queue = queue
        self.redis = redis
        self._lock = asyncio.Lock()

    async def _get_redis(self):
        """Get Redis connection."""
        if self.redis is None:
            async with self._lock:
                if self.redis is None:
                    self.redis = await get_redis()
        return self.redis

    async def publish(self, event: OutcomeEvent) -> None:
        redis = await self._get_redis()
        await redis.lpush(self.queue, event.to_json())
        logger.debug(f"Queued outcome event {event.idempotency_key} on {self.queue}")


class InMemoryOutcomePublisher(OutcomePublisher):
    """Collect events in memory (dry runs and tests)."""

    def __init__(self):
        self.events: List[OutcomeEvent] = []

    async def publish(self, event: OutcomeEvent) -> None:
        self.events.append(event)
