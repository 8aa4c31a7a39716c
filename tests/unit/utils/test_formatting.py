"""Unit tests for Formatting Utils.

This module tests price formatting and outcome notification messages.
"""
import pytest
from decimal import Decimal

from app.utils.formatting import format_price, format_ratio, format_outcome_message


# ============================================================================
# Tests for format_price
# ============================================================================

@pytest.mark.unit
class TestFormatPrice:
    """Test format_price function."""

    def test_strips_trailing_zeros(self):
        """✅ 2.00000000 → 2."""
        assert format_price(Decimal("2.00000000")) == "2"

    def test_small_price(self):
        """✅ Memecoin prices keep their significant decimals."""
        assert format_price(Decimal("0.00001234")) == "0.00001234"

    def test_rounds_to_eight_places(self):
        assert format_price(Decimal("0.123456789")) == "0.12345679"

    def test_thousands_separator(self):
        assert format_price(Decimal("12345.5")) == "12,345.5"

    def test_none(self):
        assert format_price(None) == "n/a"


@pytest.mark.unit
def test_format_ratio():
    assert format_ratio(0.3) == "30.0%"
    assert format_ratio(None) == "n/a"


# ============================================================================
# Tests for format_outcome_message
# ============================================================================

@pytest.mark.unit
class TestFormatOutcome:
    """Test format_outcome_message function."""

    def test_success_message(self):
        """✅ Success message names the token, target and hit timing."""
        message = format_outcome_message("VERIFIED_SUCCESS", "BONK", Decimal("0.00002500"), 0.25)
        assert message == (
            "✅ Your call for $BONK reached its target price of $0.000025! "
            "Hit after 25.0% of the timeframe."
        )

    def test_success_without_ratio(self):
        message = format_outcome_message("VERIFIED_SUCCESS", "BONK", Decimal("2"))
        assert message == "✅ Your call for $BONK reached its target price of $2!"

    def test_fail_message(self):
        """✅ Fail message."""
        message = format_outcome_message("VERIFIED_FAIL", "WIF", Decimal("3.50"))
        assert message == "❌ Your call for $WIF did not reach its target price of $3.5."
