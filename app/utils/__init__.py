"""Utilities package initialization."""
from app.utils.time import utc_now, as_utc, select_resolution
from app.utils.formatting import format_price, format_outcome_message

__all__ = [
    "utc_now",
    "as_utc",
    "select_resolution",
    "format_price",
    "format_outcome_message"
]
