"""Birdeye price history provider implementation."""
import httpx
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)
import logging
from app.providers import (
    PriceHistorySource,
    SourceRateLimited,
    SourceNoData,
    SourceTransient,
    SourceFatal,
)
from app.providers.models import PricePoint
from app.core.config import settings
from app.utils.time import to_unix, from_unix, select_resolution


logger = logging.getLogger(__name__)


def _parse_retry_after(value) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class BirdeyeProvider(PriceHistorySource):
    """Birdeye implementation of the price history source."""

    HISTORY_PATH = "/defi/history_price"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_wait_min: float = 2.0,
        retry_wait_max: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.birdeye_api_key
        self.base_url = (base_url or settings.birdeye_base_url).rstrip("/")
        self.max_attempts = max_attempts or settings.source_max_attempts
        self.retry_wait_min = retry_wait_min
        self.retry_wait_max = retry_wait_max if retry_wait_max is not None else settings.source_retry_wait_max_seconds
        self.timeout = timeout or settings.source_timeout_seconds
        self.client = httpx.AsyncClient(timeout=self.timeout)

    @property
    def fetch_budget(self) -> float:
        """Worst-case duration of one request: every attempt times out and every wait is at its cap."""
        longest_wait = max(self.retry_wait_min, self.retry_wait_max)
        return self.timeout * self.max_attempts + longest_wait * (self.max_attempts - 1)

    @property
    def headers(self) -> dict:
        return {
            "X-API-KEY": self.api_key,
            "x-chain": settings.birdeye_chain,
            "accept": "application/json",
        }

    async def _make_request(self, url: str, params: dict) -> dict:
        """Make HTTP request with retry logic for transient failures.

        Retries with exponential backoff for:
        - Timeout errors
        - Connection errors

        Does NOT retry for:
        - HTTP errors (4xx, 5xx) - those are classified by the caller
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=self.retry_wait_min, max=self.retry_wait_max),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                response = await self.client.get(url, params=params, headers=self.headers)
                response.raise_for_status()
        return response.json()

    async def get_price_series(self, token_id: str, start: datetime, end: datetime) -> List[PricePoint]:
        """
        Fetch price history from Birdeye.

        Resolution is chosen from the window length so short calls are
        sampled finely enough to catch brief spikes.
        """
        time_from = to_unix(start)
        time_to = to_unix(end)

        if time_from >= time_to:
            raise SourceNoData(f"Empty price window for {token_id}: {time_from} >= {time_to}")

        resolution = select_resolution(end - start)
        url = f"{self.base_url}{self.HISTORY_PATH}"
        params = {
            "address": token_id,
            "address_type": "token",
            "type": resolution,
            "time_from": time_from,
            "time_to": time_to,
        }

        logger.debug(f"Fetching {resolution} price history for {token_id} ({time_from}-{time_to})")

        try:
            data = await self._make_request(url, params)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429:
                raise SourceRateLimited(
                    f"Birdeye rate limit exceeded (429) for {token_id}",
                    retry_after=_parse_retry_after(e.response.headers.get("Retry-After")),
                )
            if status == 404:
                raise SourceNoData(f"Birdeye has no price history for {token_id}")
            if status >= 500:
                raise SourceTransient(f"Birdeye server error ({status}) for {token_id}")
            raise SourceFatal(f"Birdeye API error ({status}) for {token_id}: {str(e)}")
        except httpx.TimeoutException as e:
            raise SourceTransient(f"Birdeye API timeout after retries: {str(e)}")
        except httpx.HTTPError as e:
            raise SourceTransient(f"Birdeye API connection error: {str(e)}")
        except ValueError as e:
            raise SourceFatal(f"Birdeye returned malformed JSON for {token_id}: {str(e)}")

        return self._parse_items(token_id, data)

    def _parse_items(self, token_id: str, data) -> List[PricePoint]:
        """Parse Birdeye history payload into PricePoint objects."""
        if not isinstance(data, dict):
            raise SourceFatal(f"Unexpected Birdeye payload type for {token_id}: {type(data).__name__}")

        if data.get("success") is False:
            raise SourceFatal(f"Birdeye reported failure for {token_id}: {data.get('message')}")

        items = (data.get("data") or {}).get("items")
        if not items:
            raise SourceNoData(f"No price history items in Birdeye response for {token_id}")

        points = []
        for item in items:
            try:
                unix_time = item["unixTime"]
                value = item["value"]
                if value is None or isinstance(value, bool):
                    raise TypeError("missing price value")
                price = Decimal(str(value))
                if not price.is_finite():
                    raise InvalidOperation("non-finite price")
                points.append(PricePoint(timestamp=from_unix(unix_time), price=price))
            except (KeyError, TypeError, ValueError, InvalidOperation, OverflowError) as e:
                raise SourceFatal(f"Malformed price item for {token_id}: {item!r} ({e})")

        return points

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
