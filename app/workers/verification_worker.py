"""Verification worker: resolves pending token calls against price history."""
import logging
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional
from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.core.redis import get_redis
from app.models import TokenCall, CallStatus, CHECKABLE_STATUSES
from app.providers import (
    PriceHistorySource,
    SourceRateLimited,
    SourceNoData,
    SourceTransient,
    SourceFatal,
)
from app.providers.birdeye import BirdeyeProvider
from app.providers.models import normalize_series
from app.services.backoff import RateLimitBackoff
from app.services.call_repository import CallRepository, RepositoryUnavailable
from app.services.outcome_publisher import OutcomePublisher, OutcomeEvent, RedisOutcomePublisher
from app.services.verification_evaluator import evaluate, EvaluationResult, InvalidInput
from app.utils.formatting import format_outcome_message
from app.utils.time import as_utc, select_resolution, resolution_width

logger = logging.getLogger(__name__)

HEALTH_KEY = "verification:health"


class CallResult(str, Enum):
    """What happened to a single candidate during a tick."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    INDETERMINATE = "indeterminate"
    ERROR = "error"
    SKIPPED = "skipped"
    CONFLICT = "conflict"
    INVALID = "invalid"
    UNAVAILABLE = "unavailable"


@dataclass
class TickReport:
    """Summary of one verification tick."""
    started_at: datetime
    candidates: int = 0
    succeeded: int = 0
    failed: int = 0
    indeterminate: int = 0
    errors: int = 0
    skipped: int = 0
    conflicts: int = 0
    invalid: int = 0
    unavailable: int = 0
    deferred: int = 0
    deadline_exceeded: bool = False
    repository_error: Optional[str] = None

    def record(self, result: CallResult):
        field_name = {
            CallResult.SUCCEEDED: "succeeded",
            CallResult.FAILED: "failed",
            CallResult.INDETERMINATE: "indeterminate",
            CallResult.ERROR: "errors",
            CallResult.SKIPPED: "skipped",
            CallResult.CONFLICT: "conflicts",
            CallResult.INVALID: "invalid",
            CallResult.UNAVAILABLE: "unavailable",
        }[result]
        setattr(self, field_name, getattr(self, field_name) + 1)

    def summary(self) -> str:
        return (
            f"candidates={self.candidates} succeeded={self.succeeded} failed={self.failed} "
            f"indeterminate={self.indeterminate} errors={self.errors} skipped={self.skipped} "
            f"conflicts={self.conflicts} invalid={self.invalid} unavailable={self.unavailable} "
            f"deferred={self.deferred}"
        )


class VerificationWorker:
    """Worker that fetches, evaluates, persists and publishes call outcomes."""

    def __init__(
        self,
        provider: Optional[PriceHistorySource] = None,
        publisher: Optional[OutcomePublisher] = None,
        backoff: Optional[RateLimitBackoff] = None,
        session_factory=None,
        redis=None,
        pool_size: Optional[int] = None,
        batch_size: Optional[int] = None,
        fetch_timeout: Optional[float] = None,
        tick_deadline: Optional[float] = None,
        recheck_interval: Optional[timedelta] = None,
    ):
        self.provider = provider or BirdeyeProvider()
        self.publisher = publisher or RedisOutcomePublisher(redis=redis)
        self.backoff = backoff or RateLimitBackoff(redis=redis)
        self.session_factory = session_factory or AsyncSessionLocal
        self.redis = redis
        self.pool_size = pool_size or settings.verification_worker_pool_size
        self.batch_size = batch_size or settings.verification_batch_size
        # Outer bound on one fetch; must leave room for the provider's own retries
        self.fetch_timeout = fetch_timeout or self.provider.fetch_budget or settings.source_fetch_budget_seconds
        self.tick_deadline = tick_deadline or settings.verification_tick_deadline_seconds
        self.recheck_interval = recheck_interval or timedelta(minutes=settings.recheck_interval_minutes)
        self.consecutive_repository_failures = 0

    async def _get_redis(self):
        """Get Redis connection."""
        if self.redis is None:
            self.redis = await get_redis()
        return self.redis

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def run_tick(self, now: datetime) -> TickReport:
        """
        Run one verification pass.

        Candidates are processed by a bounded pool. Once the tick's time
        budget is spent, candidates that have not started are left for the
        next tick; started ones run to completion so no call is left
        half-processed.

        Args:
            now: Logical current time used for selection and evaluation

        Returns:
            TickReport
        """
        now = as_utc(now)
        report = TickReport(started_at=now)

        backing_off = await self._backing_off_tokens(now)

        try:
            async with self.session_factory() as db:
                calls = await CallRepository.list_checkable(
                    db,
                    now=now,
                    recheck_before=now - self.recheck_interval,
                    limit=self.batch_size,
                    exclude_tokens=backing_off
                )
        except RepositoryUnavailable as e:
            report.repository_error = str(e)
            await self._record_repository_failure(now, str(e))
            return report

        await self._record_repository_success(now)

        report.candidates = len(calls)
        if not calls:
            logger.info("No token calls to verify")
            return report

        logger.info(f"Verifying {len(calls)} token calls (pool size {self.pool_size})")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.tick_deadline
        semaphore = asyncio.Semaphore(self.pool_size)

        async def run_one(call: TokenCall) -> Optional[CallResult]:
            async with semaphore:
                if loop.time() >= deadline:
                    return None
                return await self.process_call(call, now)

        results = await asyncio.gather(*(run_one(call) for call in calls))

        for result in results:
            if result is None:
                report.deferred += 1
            else:
                report.record(result)

        if report.deferred:
            report.deadline_exceeded = True
            logger.warning(
                f"Tick deadline of {self.tick_deadline}s exceeded; "
                f"{report.deferred} calls deferred to next tick"
            )

        logger.info(f"Verification tick complete: {report.summary()}")
        return report

    # ------------------------------------------------------------------
    # Single call
    # ------------------------------------------------------------------

    async def process_call(self, call: TokenCall, now: datetime) -> CallResult:
        """
        Process one candidate end-to-end: fetch, evaluate, persist, publish.

        Never raises; every failure is mapped to a CallResult so one call
        cannot abort the batch.
        """
        try:
            return await self._process_call(call, now)
        except RepositoryUnavailable as e:
            logger.warning(f"Repository unavailable while verifying call {call.id}: {e}")
            return CallResult.UNAVAILABLE
        except Exception as e:
            logger.error(f"Unexpected error verifying call {call.id}: {e}", exc_info=True)
            return CallResult.ERROR

    async def _process_call(self, call: TokenCall, now: datetime) -> CallResult:
        call_id = call.id
        token_id = call.token_id

        if await self._is_backing_off(token_id, now):
            logger.debug(f"Skipping call {call_id}: token {token_id} is rate-limit backing off")
            return CallResult.SKIPPED

        start = as_utc(call.call_timestamp)
        end = min(now, as_utc(call.target_date))

        try:
            raw = await asyncio.wait_for(
                self.provider.get_price_series(token_id, start, end),
                timeout=self.fetch_timeout
            )
        except asyncio.TimeoutError:
            reason = f"SourceTransient: price fetch timed out after {self.fetch_timeout}s"
            logger.warning(f"Call {call_id} (token {token_id}): {reason}")
            return await self._record_error(call, reason, now)
        except SourceRateLimited as e:
            delay = await self._record_rate_limit(token_id, now, e.retry_after)
            reason = f"SourceRateLimited: {e}"
            logger.warning(f"Call {call_id} (token {token_id}): {reason}; backing off token for {delay}s")
            return await self._record_error(call, reason, now)
        except SourceNoData as e:
            logger.info(f"No price history yet for call {call_id} (token {token_id}): {e}")
            return await self._record_checked(call, now)
        except SourceTransient as e:
            reason = f"SourceTransient: {e}"
            logger.warning(f"Call {call_id} (token {token_id}): {reason}")
            return await self._record_error(call, reason, now)
        except SourceFatal as e:
            reason = f"SourceFatal: {e}"
            logger.error(f"ALERT call {call_id} (token {token_id}): {reason}")
            return await self._record_error(call, reason, now)
        except Exception as e:
            reason = f"SourceFatal: unexpected {type(e).__name__}: {e}"
            logger.error(f"ALERT call {call_id} (token {token_id}): {reason}", exc_info=True)
            return await self._record_error(call, reason, now)

        await self._reset_backoff(token_id)

        series = normalize_series(raw, start, end)
        if not series:
            logger.info(f"No price samples inside window for call {call_id} (token {token_id})")
            return await self._record_checked(call, now)

        grace = resolution_width(select_resolution(end - start))

        try:
            result = evaluate(call, series, now, settlement_grace=grace)
        except InvalidInput as e:
            logger.error(f"ALERT evaluator rejected input for call {call_id} (token {token_id}): {e}")
            return CallResult.INVALID

        if not result.is_terminal:
            logger.debug(f"Call {call_id} indeterminate ({result.reason}), peak {result.peak_price}")
            return await self._record_checked(call, now)

        return await self._commit_outcome(call, result, now)

    async def _commit_outcome(self, call: TokenCall, result: EvaluationResult, now: datetime) -> CallResult:
        """Persist a terminal result and emit its outcome event."""
        fields = result.verification_fields(verified_at=now)
        fields.update({"last_checked_at": now, "last_error": None})

        async with self.session_factory() as db:
            applied = await CallRepository.conditional_update(db, call.id, CHECKABLE_STATUSES, fields)

        if not applied:
            logger.info(f"Call {call.id} already resolved by another worker; skipping event")
            return CallResult.CONFLICT

        new_status = result.new_status
        logger.info(
            f"Call {call.id} (token {call.token_id}) {call.status} -> {new_status.value}; "
            f"peak {result.peak_price}, target {call.target_price}"
        )

        event = OutcomeEvent(
            call_id=call.id,
            user_id=call.user_id,
            token_id=call.token_id,
            old_status=call.status,
            new_status=new_status.value,
            verified_at=now,
            derived_metrics=result.metrics(),
            message=format_outcome_message(
                new_status.value,
                call.token_id,
                call.target_price,
                result.time_to_hit_ratio
            ),
        )

        try:
            await self.publisher.publish(event)
        except Exception as e:
            # Status change is already durable; consumers tolerate redelivery
            logger.error(f"Failed to publish outcome for call {call.id}: {e}", exc_info=True)

        if new_status is CallStatus.VERIFIED_SUCCESS:
            return CallResult.SUCCEEDED
        return CallResult.FAILED

    async def _record_checked(self, call: TokenCall, now: datetime) -> CallResult:
        async with self.session_factory() as db:
            await CallRepository.mark_checked(db, call.id, now)
        return CallResult.INDETERMINATE

    async def _record_error(self, call: TokenCall, reason: str, now: datetime) -> CallResult:
        async with self.session_factory() as db:
            await CallRepository.mark_error(db, call.id, reason, now)
        return CallResult.ERROR

    # ------------------------------------------------------------------
    # Backoff and health (Redis problems never block verification)
    # ------------------------------------------------------------------

    async def _is_backing_off(self, token_id: str, now: datetime) -> bool:
        try:
            return await self.backoff.is_backing_off(token_id, now)
        except Exception as e:
            logger.warning(f"Could not read backoff state for {token_id}: {e}")
            return False

    async def _backing_off_tokens(self, now: datetime) -> List[str]:
        try:
            tokens = await self.backoff.active_tokens(now)
        except Exception as e:
            logger.warning(f"Could not list rate-limited tokens: {e}")
            return []
        if tokens:
            logger.info(f"Leaving {len(tokens)} rate-limited tokens out of this tick")
        return tokens

    async def _record_rate_limit(self, token_id: str, now: datetime, retry_after: Optional[float]) -> int:
        try:
            return await self.backoff.record_rate_limit(token_id, now, retry_after)
        except Exception as e:
            logger.warning(f"Could not record backoff for {token_id}: {e}")
            return 0

    async def _reset_backoff(self, token_id: str):
        try:
            await self.backoff.reset(token_id)
        except Exception as e:
            logger.warning(f"Could not reset backoff for {token_id}: {e}")

    async def _record_repository_failure(self, now: datetime, error: str):
        self.consecutive_repository_failures += 1
        failures = self.consecutive_repository_failures

        if failures >= settings.repository_failure_alert_ticks:
            logger.error(f"ALERT call repository unavailable for {failures} consecutive ticks: {error}")
            await self._write_health({
                "status": "degraded",
                "consecutive_failures": failures,
                "last_error": error[:500],
                "updated_at": now.isoformat(),
            })
        else:
            logger.warning(f"Call repository unavailable (tick {failures}): {error}")

    async def _record_repository_success(self, now: datetime):
        if self.consecutive_repository_failures:
            logger.info(
                f"Call repository recovered after {self.consecutive_repository_failures} failed ticks"
            )
        self.consecutive_repository_failures = 0
        await self._write_health({
            "status": "ok",
            "consecutive_failures": 0,
            "last_error": "",
            "updated_at": now.isoformat(),
        })

    async def _write_health(self, mapping: dict):
        try:
            redis = await self._get_redis()
            await redis.hset(HEALTH_KEY, mapping=mapping)
        except Exception as e:
            logger.warning(f"Could not write verification health heartbeat: {e}")

    async def cleanup(self):
        """Cleanup resources."""
        await self.provider.close()
