"""Time utilities for call windows and timezone handling."""
from datetime import datetime, timedelta, timezone
from typing import Optional


ONE_HOUR = timedelta(hours=1)
SIX_HOURS = timedelta(hours=6)
ONE_DAY = timedelta(days=1)
THREE_DAYS = timedelta(days=3)
ONE_WEEK = timedelta(days=7)
ONE_MONTH = timedelta(days=30)


def utc_now() -> datetime:
    """Current wall-clock time in UTC. Only entry points should call this."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to an aware UTC datetime.

    SQLite hands back naive datetimes; they are stored as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_unix(value: datetime) -> int:
    """Convert a datetime to whole unix seconds."""
    return int(as_utc(value).timestamp())


def from_unix(seconds: float) -> datetime:
    """Convert unix seconds to an aware UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def select_resolution(duration: timedelta) -> str:
    """
    Pick a price history resolution for a call window.

    Short calls need fine-grained candles to catch brief spikes; long calls
    use coarser data to stay within upstream response limits.

    Args:
        duration: Length of the call window (target date minus call time)

    Returns:
        Resolution code understood by the price provider
    """
    if duration <= ONE_HOUR:
        return "1m"
    if duration <= SIX_HOURS:
        return "5m"
    if duration <= ONE_DAY:
        return "15m"
    if duration <= THREE_DAYS:
        return "30m"
    if duration <= ONE_WEEK:
        return "1H"
    if duration <= ONE_MONTH:
        return "2H"
    return "1D"


RESOLUTION_WIDTHS = {
    "1m": timedelta(minutes=1),
    "5m": timedelta(minutes=5),
    "15m": timedelta(minutes=15),
    "30m": timedelta(minutes=30),
    "1H": timedelta(hours=1),
    "2H": timedelta(hours=2),
    "1D": timedelta(days=1),
}


def resolution_width(resolution: str) -> timedelta:
    """Width of one candle for a resolution code."""
    return RESOLUTION_WIDTHS[resolution]
