"""Shared pytest fixtures and factories for verification engine tests."""
import pytest
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple, Union

from app.models import TokenCall, CallStatus
from app.providers.models import PricePoint


# Call creation time used throughout the suite
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

TOKEN_MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"


def days(n: float) -> timedelta:
    return timedelta(days=n)


def create_call(
    call_id: Optional[str] = None,
    user_id: str = "user-1",
    token_id: str = TOKEN_MINT,
    reference_price: Union[str, Decimal] = "1.00",
    target_price: Union[str, Decimal] = "2.00",
    call_timestamp: datetime = T0,
    target_date: Optional[datetime] = None,
    status: CallStatus = CallStatus.PENDING,
    last_checked_at: Optional[datetime] = None,
    **kwargs
) -> TokenCall:
    """Factory function to create TokenCall instances for testing."""
    return TokenCall(
        id=call_id or str(uuid.uuid4()),
        user_id=user_id,
        token_id=token_id,
        reference_price=Decimal(reference_price),
        target_price=Decimal(target_price),
        call_timestamp=call_timestamp,
        target_date=target_date or call_timestamp + days(10),
        timeframe_duration=kwargs.pop("timeframe_duration", "10d"),
        status=status.value,
        last_checked_at=last_checked_at,
        error_count=kwargs.pop("error_count", 0),
        **kwargs
    )


def create_series(
    entries: Sequence[Tuple[timedelta, Union[str, Decimal]]],
    start: datetime = T0
) -> List[PricePoint]:
    """Factory building a price series from (offset from start, price) pairs."""
    return [
        PricePoint(timestamp=start + offset, price=Decimal(price))
        for offset, price in entries
    ]


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def sample_call():
    """Call made at T0 with reference 1.00, target 2.00 and a 10 day deadline."""
    return create_call(call_id="call-1")


@pytest.fixture
def hit_series():
    """Series that crosses 2.00 on day 3 and falls back afterwards."""
    return create_series([
        (days(2), "1.50"),
        (days(3), "2.10"),
        (days(9), "1.80"),
    ])


@pytest.fixture
def miss_series():
    """Series that never exceeds 1.90 and closes at 1.85 on the deadline."""
    return create_series([
        (days(1), "1.20"),
        (days(5), "1.90"),
        (days(10), "1.85"),
    ])
