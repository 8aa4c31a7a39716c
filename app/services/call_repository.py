"""Token call repository: candidate selection and conditional status updates."""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import select, update, or_, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from app.models import TokenCall, CallStatus, CHECKABLE_STATUSES

logger = logging.getLogger(__name__)

# Columns the verification engine is allowed to write
WRITABLE_FIELDS = frozenset({
    "status",
    "verification_timestamp",
    "peak_price_during_period",
    "final_price_at_target_date",
    "target_hit_timestamp",
    "time_to_hit_ratio",
    "last_checked_at",
    "last_error",
    "error_count",
})

MAX_ERROR_LENGTH = 500


class RepositoryUnavailable(Exception):
    """Storage failed; the call is left as-is and retried next tick."""
    pass


def _status_values(statuses: Iterable[CallStatus]) -> List[str]:
    return [CallStatus(s).value for s in statuses]


def validate_update_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check an update payload before it reaches the database.

    A VERIFIED_SUCCESS payload must carry the hit timestamp and ratio,
    mirroring the table's check constraints.

    Returns:
        Payload with the status normalized to its string value

    Raises:
        ValueError: On unknown columns, statuses or a broken success payload
    """
    unknown = set(fields) - WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not writable by the verification engine: {sorted(unknown)}")

    values = dict(fields)
    if "status" in values:
        status = CallStatus(values["status"])
        values["status"] = status.value

        if status is CallStatus.VERIFIED_SUCCESS:
            if values.get("target_hit_timestamp") is None:
                raise ValueError("VERIFIED_SUCCESS requires target_hit_timestamp")
            if values.get("time_to_hit_ratio") is None:
                raise ValueError("VERIFIED_SUCCESS requires time_to_hit_ratio")

    ratio = values.get("time_to_hit_ratio")
    if ratio is not None and not 0.0 <= ratio <= 1.0:
        raise ValueError(f"time_to_hit_ratio must be within [0, 1], got {ratio}")

    return values


class CallRepository:
    """Persistence operations used by the verification worker."""

    @staticmethod
    async def list_checkable(
        db: AsyncSession,
        now: datetime,
        recheck_before: datetime,
        limit: Optional[int] = None,
        exclude_tokens: Optional[Iterable[str]] = None
    ) -> List[TokenCall]:
        """
        Get calls that should be evaluated this tick.

        Selects every ERROR call, plus PENDING calls that are due, never
        checked, or last checked at or before ``recheck_before``. Due calls
        come first (oldest deadline first), then ERROR and never-checked
        calls, then the stalest.

        Args:
            db: Database session
            now: Current time
            recheck_before: Cut-off for re-sampling calls that are not yet due
            limit: Maximum number of calls to return
            exclude_tokens: Tokens to leave out (e.g. rate-limit backoff), so
                they do not take batch slots

        Raises:
            RepositoryUnavailable: On storage failure
        """
        is_due = TokenCall.target_date <= now
        is_error = TokenCall.status == CallStatus.ERROR.value

        query = (
            select(TokenCall)
            .where(
                TokenCall.status.in_(_status_values(CHECKABLE_STATUSES)),
                or_(
                    is_due,
                    is_error,
                    TokenCall.last_checked_at.is_(None),
                    TokenCall.last_checked_at <= recheck_before,
                ),
            )
            .order_by(
                case((is_due, 0), else_=1),
                # Due calls: oldest deadline first, staleness is irrelevant
                case((is_due, TokenCall.target_date), else_=None),
                case((is_error, 0), (TokenCall.last_checked_at.is_(None), 0), else_=1),
                TokenCall.last_checked_at,
                TokenCall.target_date,
            )
        )
        exclude_tokens = list(exclude_tokens or [])
        if exclude_tokens:
            query = query.where(TokenCall.token_id.notin_(exclude_tokens))
        if limit:
            query = query.limit(limit)

        try:
            result = await db.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise RepositoryUnavailable(f"Failed to list checkable calls: {e}") from e

    @staticmethod
    async def get_call(db: AsyncSession, call_id: str) -> Optional[TokenCall]:
        """Get a call by id."""
        try:
            result = await db.execute(select(TokenCall).where(TokenCall.id == call_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise RepositoryUnavailable(f"Failed to load call {call_id}: {e}") from e

    @staticmethod
    async def conditional_update(
        db: AsyncSession,
        call_id: str,
        expected_statuses: Iterable[CallStatus],
        fields: Dict[str, Any]
    ) -> bool:
        """
        Atomically update a call only if its stored status is still expected.

        Issues a single ``UPDATE ... WHERE id = :id AND status IN (...)``
        and commits. Two writers racing on the same call cannot both apply.

        Args:
            db: Database session
            call_id: Call ID
            expected_statuses: Statuses the stored row must currently have
            fields: Column values to write

        Returns:
            True if the row was updated, False if another writer got there first

        Raises:
            ValueError: If the payload is invalid (nothing is written)
            RepositoryUnavailable: On storage failure
        """
        values = validate_update_fields(fields)
        expected = _status_values(expected_statuses)

        stmt = (
            update(TokenCall)
            .where(TokenCall.id == call_id, TokenCall.status.in_(expected))
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        try:
            result = await db.execute(stmt)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise RepositoryUnavailable(f"Conditional update failed for call {call_id}: {e}") from e

        applied = result.rowcount == 1
        if not applied:
            logger.debug(f"Conditional update for call {call_id} rejected (expected status in {expected})")
        return applied

    @staticmethod
    async def mark_checked(db: AsyncSession, call_id: str, now: datetime) -> bool:
        """
        Record a check that produced no outcome.

        Only bookkeeping changes: a call in ERROR goes back to PENDING and its
        error reason is cleared.
        """
        return await CallRepository.conditional_update(
            db,
            call_id,
            CHECKABLE_STATUSES,
            {
                "status": CallStatus.PENDING,
                "last_checked_at": now,
                "last_error": None,
            },
        )

    @staticmethod
    async def mark_error(db: AsyncSession, call_id: str, reason: str, now: datetime) -> bool:
        """Move a call to ERROR after a data source failure."""
        return await CallRepository.conditional_update(
            db,
            call_id,
            CHECKABLE_STATUSES,
            {
                "status": CallStatus.ERROR,
                "last_checked_at": now,
                "last_error": reason[:MAX_ERROR_LENGTH],
                "error_count": TokenCall.error_count + 1,
            },
        )
