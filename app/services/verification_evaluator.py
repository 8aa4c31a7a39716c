"""Core evaluator deciding whether a token call came true.

Pure functions only: no I/O and no ambient clock. The worker passes the
current time in explicitly.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Sequence, Dict, Any
from app.models.token_call import CallStatus
from app.providers.models import PricePoint
from app.utils.time import as_utc


class Outcome(str, Enum):
    """Result of evaluating a call against a price series."""

    SUCCESS = "SUCCESS"
    FAIL = "FAIL"
    INDETERMINATE = "INDETERMINATE"


class InvalidInput(ValueError):
    """Evaluator called with a series that breaks its contract."""
    pass


# Reasons attached to INDETERMINATE results
NOT_DUE = "not_due"
NO_FINAL_PRICE = "no_final_price"


@dataclass(frozen=True)
class CallTerms:
    """Immutable inputs of a call needed for evaluation."""
    call_timestamp: datetime
    target_date: datetime
    target_price: Decimal

    @classmethod
    def from_call(cls, call) -> "CallTerms":
        """Build terms from a TokenCall (or anything with the same attributes)."""
        if isinstance(call, cls):
            return call
        return cls(
            call_timestamp=as_utc(call.call_timestamp),
            target_date=as_utc(call.target_date),
            target_price=_to_decimal(call.target_price, "target_price"),
        )


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of a single evaluation plus the derived metrics."""
    outcome: Outcome
    peak_price: Decimal
    peak_price_timestamp: datetime
    final_price: Optional[Decimal] = None
    target_hit_at: Optional[datetime] = None
    time_to_hit_ratio: Optional[float] = None
    reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not Outcome.INDETERMINATE

    @property
    def new_status(self) -> Optional[CallStatus]:
        """Status this result moves a call to, or None if it stays pending."""
        if self.outcome is Outcome.SUCCESS:
            return CallStatus.VERIFIED_SUCCESS
        if self.outcome is Outcome.FAIL:
            return CallStatus.VERIFIED_FAIL
        return None

    def verification_fields(self, verified_at: datetime) -> Dict[str, Any]:
        """
        Column values to persist for a terminal result.

        Raises:
            ValueError: If the result is not terminal
        """
        status = self.new_status
        if status is None:
            raise ValueError("Indeterminate results are not persisted")

        return {
            "status": status,
            "verification_timestamp": verified_at,
            "peak_price_during_period": self.peak_price,
            "final_price_at_target_date": self.final_price,
            "target_hit_timestamp": self.target_hit_at,
            "time_to_hit_ratio": self.time_to_hit_ratio,
        }

    def metrics(self) -> Dict[str, Any]:
        """Derived metrics in a JSON-friendly form."""
        return {
            "peak_price": str(self.peak_price),
            "peak_price_timestamp": self.peak_price_timestamp.isoformat(),
            "final_price": str(self.final_price) if self.final_price is not None else None,
            "target_hit_at": self.target_hit_at.isoformat() if self.target_hit_at else None,
            "time_to_hit_ratio": self.time_to_hit_ratio,
        }


def _to_decimal(value, field: str) -> Decimal:
    """Coerce a price to Decimal without passing through binary floats."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise InvalidInput(f"{field} must be a number, got {value!r}")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation:
            raise InvalidInput(f"{field} is not a number: {value!r}")
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        raise InvalidInput(f"{field} must be a number, got {type(value).__name__}")

    if not result.is_finite():
        raise InvalidInput(f"{field} must be finite, got {value!r}")
    return result


def time_to_hit_ratio(call_timestamp: datetime, target_date: datetime, hit_at: datetime) -> float:
    """
    Fraction of the call window elapsed when the target was first reached.

    Clamped to [0, 1]. A zero-length window counts as an immediate hit.
    """
    total = target_date - call_timestamp
    if total <= timedelta(0):
        return 0.0
    ratio = (hit_at - call_timestamp) / total
    return min(1.0, max(0.0, ratio))


def validate_series(terms: CallTerms, series: Sequence[PricePoint], now: datetime) -> None:
    """
    Check the evaluator's input contract.

    The series must be non-empty, strictly ascending in time, and lie within
    [call_timestamp, min(now, target_date)].

    Raises:
        InvalidInput: On any violation
    """
    if not series:
        raise InvalidInput("Price series is empty")

    window_end = min(now, terms.target_date)
    previous = None
    for point in series:
        ts = as_utc(point.timestamp)
        if ts < terms.call_timestamp or ts > window_end:
            raise InvalidInput(
                f"Sample at {ts.isoformat()} outside window "
                f"[{terms.call_timestamp.isoformat()}, {window_end.isoformat()}]"
            )
        if previous is not None and ts <= previous:
            raise InvalidInput(f"Series not strictly ascending at {ts.isoformat()}")
        previous = ts


def evaluate(
    call,
    series: Sequence[PricePoint],
    now: datetime,
    settlement_grace: timedelta = timedelta(0),
) -> EvaluationResult:
    """
    Decide the outcome of a call from its price series.

    Algorithm:
    1. Single scan tracking the running peak (earliest timestamp wins ties)
       and the first sample whose price reaches the target.
    2. Peak >= target → SUCCESS, regardless of whether the price fell back.
    3. Otherwise, before the deadline → INDETERMINATE (not due).
    4. Otherwise, FAIL with the last sample at/after the deadline as the
       final price; without such a sample → INDETERMINATE.

    Args:
        call: TokenCall or CallTerms
        series: Time-ascending samples within the call window
        now: Current time (UTC)
        settlement_grace: How far before the deadline a sample may lie and
            still settle the final price (candle-aligned data rarely lands
            exactly on the deadline)

    Returns:
        EvaluationResult

    Raises:
        InvalidInput: If the series breaks the input contract
    """
    terms = CallTerms.from_call(call)
    now = as_utc(now)
    validate_series(terms, series, now)

    peak_price = None
    peak_ts = None
    hit_at = None

    for point in series:
        price = _to_decimal(point.price, "price")
        ts = as_utc(point.timestamp)

        # Strict comparison keeps the earliest timestamp on ties
        if peak_price is None or price > peak_price:
            peak_price = price
            peak_ts = ts

        if hit_at is None and price >= terms.target_price:
            hit_at = ts

    last = series[-1]
    last_price = _to_decimal(last.price, "price")
    last_ts = as_utc(last.timestamp)

    if hit_at is not None:
        return EvaluationResult(
            outcome=Outcome.SUCCESS,
            peak_price=peak_price,
            peak_price_timestamp=peak_ts,
            final_price=last_price,
            target_hit_at=hit_at,
            time_to_hit_ratio=time_to_hit_ratio(terms.call_timestamp, terms.target_date, hit_at),
        )

    if now < terms.target_date:
        return EvaluationResult(
            outcome=Outcome.INDETERMINATE,
            peak_price=peak_price,
            peak_price_timestamp=peak_ts,
            final_price=last_price,
            reason=NOT_DUE,
        )

    if last_ts < terms.target_date - settlement_grace:
        return EvaluationResult(
            outcome=Outcome.INDETERMINATE,
            peak_price=peak_price,
            peak_price_timestamp=peak_ts,
            reason=NO_FINAL_PRICE,
        )

    return EvaluationResult(
        outcome=Outcome.FAIL,
        peak_price=peak_price,
        peak_price_timestamp=peak_ts,
        final_price=last_price,
    )
