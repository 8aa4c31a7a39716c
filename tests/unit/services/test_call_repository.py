"""Unit tests for CallRepository payload validation and failure mapping."""
import pytest
from unittest.mock import AsyncMock
from decimal import Decimal
from sqlalchemy.exc import OperationalError

from app.models import CallStatus, CHECKABLE_STATUSES
from app.services.call_repository import (
    CallRepository,
    RepositoryUnavailable,
    validate_update_fields,
)
from tests.conftest import T0, days


# ============================================================================
# Tests for validate_update_fields
# ============================================================================

@pytest.mark.unit
class TestValidateUpdateFields:
    """Test validate_update_fields function."""

    def test_status_normalized_to_string(self):
        """✅ Enum status is stored as its value."""
        values = validate_update_fields({"status": CallStatus.VERIFIED_FAIL})
        assert values["status"] == "VERIFIED_FAIL"

    def test_valid_success_payload(self):
        values = validate_update_fields({
            "status": CallStatus.VERIFIED_SUCCESS,
            "target_hit_timestamp": T0 + days(3),
            "time_to_hit_ratio": 0.3,
        })
        assert values["status"] == "VERIFIED_SUCCESS"

    def test_input_not_mutated(self):
        fields = {"status": CallStatus.PENDING}
        validate_update_fields(fields)
        assert fields["status"] is CallStatus.PENDING

    @pytest.mark.parametrize("field", ["target_price", "reference_price", "call_timestamp", "target_date", "user_id"])
    def test_input_columns_rejected(self, field):
        """❌ Call inputs are never written by the engine."""
        with pytest.raises(ValueError, match=field):
            validate_update_fields({field: Decimal("1")})

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            validate_update_fields({"status": "MAYBE"})

    @pytest.mark.parametrize("missing", ["target_hit_timestamp", "time_to_hit_ratio"])
    def test_success_requires_hit_fields(self, missing):
        """❌ Success without hit evidence."""
        fields = {
            "status": CallStatus.VERIFIED_SUCCESS,
            "target_hit_timestamp": T0 + days(3),
            "time_to_hit_ratio": 0.3,
        }
        del fields[missing]

        with pytest.raises(ValueError, match=missing):
            validate_update_fields(fields)

    @pytest.mark.parametrize("ratio", [-0.01, 1.01])
    def test_ratio_range(self, ratio):
        with pytest.raises(ValueError, match="time_to_hit_ratio"):
            validate_update_fields({"time_to_hit_ratio": ratio})


# ============================================================================
# Tests for storage failures
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestStorageFailures:
    """Test mapping of database errors onto RepositoryUnavailable."""

    async def test_conditional_update_failure_rolls_back(self):
        """❌ Database error → rollback and RepositoryUnavailable."""
        db = AsyncMock()
        db.execute.side_effect = OperationalError("UPDATE token_calls", {}, Exception("connection lost"))

        with pytest.raises(RepositoryUnavailable):
            await CallRepository.conditional_update(
                db, "call-1", CHECKABLE_STATUSES, {"status": CallStatus.VERIFIED_FAIL}
            )

        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()

    async def test_list_checkable_failure(self):
        db = AsyncMock()
        db.execute.side_effect = OperationalError("SELECT", {}, Exception("connection lost"))

        with pytest.raises(RepositoryUnavailable):
            await CallRepository.list_checkable(db, T0, T0)

    async def test_invalid_payload_never_reaches_database(self):
        db = AsyncMock()

        with pytest.raises(ValueError):
            await CallRepository.conditional_update(db, "call-1", CHECKABLE_STATUSES, {"target_price": 1})

        db.execute.assert_not_awaited()
