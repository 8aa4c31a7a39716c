"""Unit tests for BirdeyeProvider.

This module tests the Birdeye price history integration including request
construction, response parsing, and error classification.
"""
import pytest
from unittest.mock import AsyncMock, patch
from datetime import timedelta
from decimal import Decimal
import httpx

from app.providers.birdeye import BirdeyeProvider
from app.providers import SourceRateLimited, SourceNoData, SourceTransient, SourceFatal
from app.utils.time import to_unix
from tests.conftest import T0, TOKEN_MINT, days


START = T0
END = T0 + days(10)
URL = "https://public-api.birdeye.so/defi/history_price"


def make_response(status_code: int = 200, json=None, content=None, headers=None) -> httpx.Response:
    """Real httpx response so raise_for_status behaves as in production."""
    kwargs = {"headers": headers or {}, "request": httpx.Request("GET", URL)}
    if json is not None:
        kwargs["json"] = json
    elif content is not None:
        kwargs["content"] = content
    return httpx.Response(status_code, **kwargs)


def history_payload(*items):
    return {"success": True, "data": {"items": list(items)}}


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def mock_client():
    """Mock httpx AsyncClient."""
    with patch("httpx.AsyncClient") as mock:
        client_instance = AsyncMock()
        mock.return_value = client_instance
        yield client_instance


@pytest.fixture
def provider(mock_client):
    """Create BirdeyeProvider instance with a single attempt per request."""
    return BirdeyeProvider(
        api_key="test-key",
        base_url="https://public-api.birdeye.so/",
        max_attempts=1,
        retry_wait_min=0
    )


# ============================================================================
# Tests for get_price_series
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestGetPriceSeries:
    """Test get_price_series method."""

    async def test_success(self, provider, mock_client):
        """✅ Success → PricePoints with exact decimal prices."""
        mock_client.get.return_value = make_response(json=history_payload(
            {"unixTime": to_unix(T0 + days(1)), "value": 1.2},
            {"unixTime": to_unix(T0 + days(2)), "value": "0.00001234"},
        ))

        points = await provider.get_price_series(TOKEN_MINT, START, END)

        assert len(points) == 2
        assert points[0].timestamp == T0 + days(1)
        assert points[0].price == Decimal("1.2")
        assert points[1].price == Decimal("0.00001234")

    async def test_request_parameters(self, provider, mock_client):
        """✅ Window, resolution and auth headers are sent."""
        mock_client.get.return_value = make_response(json=history_payload(
            {"unixTime": to_unix(T0 + days(1)), "value": 1.0},
        ))

        await provider.get_price_series(TOKEN_MINT, START, END)

        args, kwargs = mock_client.get.call_args
        assert args[0] == URL
        assert kwargs["params"] == {
            "address": TOKEN_MINT,
            "address_type": "token",
            "type": "2H",
            "time_from": to_unix(START),
            "time_to": to_unix(END),
        }
        assert kwargs["headers"]["X-API-KEY"] == "test-key"
        assert "x-chain" in kwargs["headers"]

    async def test_short_window_uses_fine_resolution(self, provider, mock_client):
        """✅ One hour window → 1m candles."""
        mock_client.get.return_value = make_response(json=history_payload(
            {"unixTime": to_unix(T0 + timedelta(minutes=5)), "value": 1.0},
        ))

        await provider.get_price_series(TOKEN_MINT, START, START + timedelta(hours=1))

        assert mock_client.get.call_args.kwargs["params"]["type"] == "1m"

    async def test_empty_window(self, provider, mock_client):
        """❌ start >= end → SourceNoData without a request."""
        with pytest.raises(SourceNoData):
            await provider.get_price_series(TOKEN_MINT, END, START)

        mock_client.get.assert_not_called()


# ============================================================================
# Tests for error classification
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestErrorClassification:
    """Test mapping of upstream failures onto source errors."""

    async def test_rate_limited(self, provider, mock_client):
        """❌ 429 → SourceRateLimited carrying Retry-After."""
        mock_client.get.return_value = make_response(429, headers={"Retry-After": "30"})

        with pytest.raises(SourceRateLimited) as exc_info:
            await provider.get_price_series(TOKEN_MINT, START, END)

        assert exc_info.value.retry_after == 30.0

    async def test_rate_limited_without_retry_after(self, provider, mock_client):
        mock_client.get.return_value = make_response(429)

        with pytest.raises(SourceRateLimited) as exc_info:
            await provider.get_price_series(TOKEN_MINT, START, END)

        assert exc_info.value.retry_after is None

    async def test_not_found(self, provider, mock_client):
        """❌ 404 → SourceNoData."""
        mock_client.get.return_value = make_response(404)

        with pytest.raises(SourceNoData):
            await provider.get_price_series(TOKEN_MINT, START, END)

    @pytest.mark.parametrize("status", [500, 502, 503])
    async def test_server_error(self, provider, mock_client, status):
        """❌ 5xx → SourceTransient."""
        mock_client.get.return_value = make_response(status)

        with pytest.raises(SourceTransient):
            await provider.get_price_series(TOKEN_MINT, START, END)

    @pytest.mark.parametrize("status", [400, 401, 403])
    async def test_client_error(self, provider, mock_client, status):
        """❌ Other 4xx → SourceFatal."""
        mock_client.get.return_value = make_response(status)

        with pytest.raises(SourceFatal):
            await provider.get_price_series(TOKEN_MINT, START, END)

    async def test_timeout(self, provider, mock_client):
        """❌ Timeout → SourceTransient."""
        mock_client.get.side_effect = httpx.ReadTimeout("read timed out")

        with pytest.raises(SourceTransient):
            await provider.get_price_series(TOKEN_MINT, START, END)

    async def test_connection_error(self, provider, mock_client):
        mock_client.get.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(SourceTransient):
            await provider.get_price_series(TOKEN_MINT, START, END)

    async def test_timeout_is_retried(self, mock_client):
        """✅ Timeouts are retried before giving up."""
        provider = BirdeyeProvider(api_key="test-key", max_attempts=2, retry_wait_min=0)
        mock_client.get.side_effect = [
            httpx.ReadTimeout("read timed out"),
            make_response(json=history_payload({"unixTime": to_unix(T0 + days(1)), "value": 1.0})),
        ]

        points = await provider.get_price_series(TOKEN_MINT, START, END)

        assert len(points) == 1
        assert mock_client.get.call_count == 2

    async def test_malformed_json(self, provider, mock_client):
        """❌ Non-JSON body → SourceFatal."""
        mock_client.get.return_value = make_response(content=b"<html>oops</html>")

        with pytest.raises(SourceFatal):
            await provider.get_price_series(TOKEN_MINT, START, END)


# ============================================================================
# Tests for payload parsing
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestParseItems:
    """Test Birdeye payload validation."""

    async def test_empty_items(self, provider, mock_client):
        """❌ No items → SourceNoData."""
        mock_client.get.return_value = make_response(json=history_payload())

        with pytest.raises(SourceNoData):
            await provider.get_price_series(TOKEN_MINT, START, END)

    async def test_missing_data(self, provider, mock_client):
        mock_client.get.return_value = make_response(json={"success": True, "data": None})

        with pytest.raises(SourceNoData):
            await provider.get_price_series(TOKEN_MINT, START, END)

    async def test_success_false(self, provider, mock_client):
        """❌ success=false → SourceFatal."""
        mock_client.get.return_value = make_response(json={"success": False, "message": "Unauthorized"})

        with pytest.raises(SourceFatal, match="Unauthorized"):
            await provider.get_price_series(TOKEN_MINT, START, END)

    async def test_unexpected_payload_type(self, provider, mock_client):
        mock_client.get.return_value = make_response(json=[1, 2, 3])

        with pytest.raises(SourceFatal):
            await provider.get_price_series(TOKEN_MINT, START, END)

    @pytest.mark.parametrize("item", [
        {"value": 1.0},
        {"unixTime": 1772366400},
        {"unixTime": 1772366400, "value": None},
        {"unixTime": 1772366400, "value": "abc"},
        {"unixTime": 1772366400, "value": "NaN"},
        {"unixTime": "soon", "value": 1.0},
    ])
    async def test_malformed_item(self, provider, mock_client, item):
        """❌ Malformed item → SourceFatal."""
        mock_client.get.return_value = make_response(json=history_payload(item))

        with pytest.raises(SourceFatal):
            await provider.get_price_series(TOKEN_MINT, START, END)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_close(provider, mock_client):
    """✅ close() releases the HTTP client."""
    await provider.close()
    mock_client.aclose.assert_awaited_once()


@pytest.mark.unit
class TestFetchBudget:
    """Test the worst-case duration of one request."""

    def test_budget_covers_attempts_and_waits(self, mock_client):
        """✅ Three 15s attempts with waits capped at 10s → 65s."""
        provider = BirdeyeProvider(api_key="test-key", timeout=15, max_attempts=3, retry_wait_min=2, retry_wait_max=10)

        assert provider.fetch_budget == 65

    def test_single_attempt_budget_is_timeout(self, mock_client):
        provider = BirdeyeProvider(api_key="test-key", timeout=15, max_attempts=1)

        assert provider.fetch_budget == 15
