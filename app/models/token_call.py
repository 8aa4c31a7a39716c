"""Token call model: a user's prediction that a token will reach a target price by a deadline."""
from sqlalchemy import Column, String, DateTime, Float, Integer, Numeric, CheckConstraint, Index
from sqlalchemy.orm import validates
from datetime import datetime, timezone
from enum import Enum
import uuid
from app.core.database import Base


class CallStatus(str, Enum):
    """Lifecycle status of a token call, persisted as a plain string."""

    PENDING = "PENDING"
    VERIFIED_SUCCESS = "VERIFIED_SUCCESS"
    VERIFIED_FAIL = "VERIFIED_FAIL"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({CallStatus.VERIFIED_SUCCESS, CallStatus.VERIFIED_FAIL})

# Statuses the engine may pick up and re-evaluate
CHECKABLE_STATUSES = (CallStatus.PENDING, CallStatus.ERROR)

# Fixed-point price columns
PRICE = Numeric(18, 8)


class TokenCall(Base):
    """
    A single price prediction.

    Inputs (prices, call timestamp, target date) are written once by the call
    creation flow. Verification outputs are written once by the verification
    worker through a conditional update on status.
    """

    __tablename__ = "token_calls"

    __table_args__ = (
        CheckConstraint(
            "status != 'VERIFIED_SUCCESS' OR target_hit_timestamp IS NOT NULL",
            name="ck_token_calls_success_hit_timestamp",
        ),
        CheckConstraint(
            "status != 'VERIFIED_SUCCESS' OR time_to_hit_ratio IS NOT NULL",
            name="ck_token_calls_success_hit_ratio",
        ),
        CheckConstraint(
            "time_to_hit_ratio IS NULL OR (time_to_hit_ratio >= 0 AND time_to_hit_ratio <= 1)",
            name="ck_token_calls_hit_ratio_range",
        ),
        CheckConstraint(
            "target_date > call_timestamp",
            name="ck_token_calls_target_after_call",
        ),
        Index("ix_token_calls_status_target_date", "status", "target_date"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    token_id = Column(String, nullable=False, index=True)  # token mint address

    # Call details
    call_timestamp = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    reference_price = Column(PRICE, nullable=False)
    reference_supply = Column(Numeric(30, 8), nullable=True)
    target_price = Column(PRICE, nullable=False)
    timeframe_duration = Column(String, nullable=True)  # e.g. "3d", "1w"
    target_date = Column(DateTime(timezone=True), nullable=False)

    # Verification details
    status = Column(String(32), default=CallStatus.PENDING.value, nullable=False)
    verification_timestamp = Column(DateTime(timezone=True), nullable=True)
    peak_price_during_period = Column(PRICE, nullable=True)
    final_price_at_target_date = Column(PRICE, nullable=True)

    # Success metrics (only if VERIFIED_SUCCESS)
    target_hit_timestamp = Column(DateTime(timezone=True), nullable=True)
    time_to_hit_ratio = Column(Float, nullable=True)

    # Engine bookkeeping
    last_checked_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(String, nullable=True)
    error_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @validates("status")
    def validate_status(self, key, value):
        """Only the closed set of statuses may be stored."""
        if isinstance(value, CallStatus):
            return value.value
        if value not in {s.value for s in CallStatus}:
            raise ValueError(f"Invalid call status: {value}")
        return value

    @property
    def call_status(self) -> CallStatus:
        return CallStatus(self.status)

    def __repr__(self) -> str:
        return f"<TokenCall {self.id} token={self.token_id} status={self.status}>"
