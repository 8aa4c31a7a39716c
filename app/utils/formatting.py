"""Message formatting utilities for call outcomes."""
from decimal import Decimal
from typing import Optional


def format_price(price: Optional[Decimal]) -> str:
    """
    Format a price for display, keeping up to 8 decimal places.

    Args:
        price: Price value (None renders as "n/a")

    Returns:
        Formatted price string without trailing zeros
    """
    if price is None:
        return "n/a"

    quantized = Decimal(price).quantize(Decimal("0.00000001"))
    text = f"{quantized:,f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_ratio(ratio: Optional[float]) -> str:
    """Format a time-to-hit ratio as a percentage of the call window."""
    if ratio is None:
        return "n/a"
    return f"{ratio * 100:.1f}%"


def format_outcome_message(
    status: str,
    token_display: str,
    target_price: Decimal,
    time_to_hit_ratio: Optional[float] = None
) -> str:
    """
    Format the user-facing message for a verified call.

    Args:
        status: New call status (VERIFIED_SUCCESS or VERIFIED_FAIL)
        token_display: Token symbol or mint address
        target_price: Call target price
        time_to_hit_ratio: Fraction of the window used, for successes

    Returns:
        Message string
    """
    target = format_price(target_price)

    if status == "VERIFIED_SUCCESS":
        message = f"✅ Your call for ${token_display} reached its target price of ${target}!"
        if time_to_hit_ratio is not None:
            message += f" Hit after {format_ratio(time_to_hit_ratio)} of the timeframe."
        return message

    return f"❌ Your call for ${token_display} did not reach its target price of ${target}."
