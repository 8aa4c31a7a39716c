"""Abstract interface for token price history providers."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional
from app.providers.models import PricePoint


class PriceHistorySource(ABC):
    """Abstract base class for price history data providers."""

    @abstractmethod
    async def get_price_series(self, token_id: str, start: datetime, end: datetime) -> List[PricePoint]:
        """
        Fetch price history for a token over [start, end].

        Args:
            token_id: Token mint address
            start: Window start (UTC)
            end: Window end (UTC)

        Returns:
            Price points; may be unordered or extend past the window

        Raises:
            SourceRateLimited: Upstream throttled the request
            SourceNoData: Token has no price history for the window
            SourceTransient: Timeout, connection or upstream server failure
            SourceFatal: Malformed or unexpected upstream response
        """
        pass

    @property
    def fetch_budget(self) -> Optional[float]:
        """Worst-case seconds one get_price_series call may take, retries included; None if unknown."""
        return None

    async def close(self):
        """Release any held resources."""
        pass


class PriceSourceError(Exception):
    """Base exception raised when a price history source fails."""
    pass


class SourceRateLimited(PriceSourceError):
    """Upstream rate limit hit; back off before retrying this token."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class SourceNoData(PriceSourceError):
    """Token has no price history yet."""
    pass


class SourceTransient(PriceSourceError):
    """Generic I/O failure that is expected to clear on retry."""
    pass


class SourceFatal(PriceSourceError):
    """Malformed or unexpected response; may indicate an upstream contract break."""
    pass
