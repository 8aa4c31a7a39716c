#!/usr/bin/env python3
"""
Token Call Verification Script

Runs verification outside the scheduler: a single tick over all checkable
calls, or a targeted pass over specific call ids.

Usage:
    python scripts/verify_calls.py
    python scripts/verify_calls.py --call-id 3f6c... --call-id 9a1e...
    python scripts/verify_calls.py --dry-run --now 2026-03-10T12:00:00+00:00
"""
import asyncio
import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

# Add parent directory to path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.core.redis import close_redis
from app.services.call_repository import CallRepository
from app.services.outcome_publisher import InMemoryOutcomePublisher
from app.workers.verification_worker import VerificationWorker, TickReport
from app.utils.time import as_utc, utc_now

logger = logging.getLogger("verify_calls")


def parse_now(value: Optional[str]) -> datetime:
    """Parse an ISO timestamp override, defaulting to the current time."""
    if not value:
        return utc_now()
    return as_utc(datetime.fromisoformat(value))


async def verify_specific(worker: VerificationWorker, call_ids: List[str], now: datetime) -> TickReport:
    """Verify the given calls regardless of cadence (terminal calls are reported and skipped)."""
    report = TickReport(started_at=now)

    for call_id in call_ids:
        async with AsyncSessionLocal() as db:
            call = await CallRepository.get_call(db, call_id)

        if call is None:
            print(f"  ✗ {call_id}: not found")
            continue

        if call.call_status.is_terminal:
            print(f"  - {call_id}: already {call.status}")
            continue

        report.candidates += 1
        result = await worker.process_call(call, now)
        report.record(result)
        print(f"  ✓ {call_id}: {result.value}")

    return report


async def main_async(args) -> int:
    now = parse_now(args.now)
    publisher = InMemoryOutcomePublisher() if args.dry_run else None
    worker = VerificationWorker(publisher=publisher)

    print(f"Verifying token calls as of {now.isoformat()}")
    if args.dry_run:
        print("Dry run: outcome events are collected locally, not queued")

    try:
        if args.call_id:
            report = await verify_specific(worker, args.call_id, now)
        else:
            report = await worker.run_tick(now)
    finally:
        await worker.cleanup()
        await close_redis()

    print("=" * 60)
    print(report.summary())
    if report.repository_error:
        print(f"Repository error: {report.repository_error}")
    if publisher is not None:
        for event in publisher.events:
            print(f"  {event.idempotency_key}: {event.message}")
    print("=" * 60)

    return 1 if report.repository_error else 0


def main():
    parser = argparse.ArgumentParser(description="Verify token calls against price history")
    parser.add_argument("--call-id", action="append", help="Verify only this call (repeatable)")
    parser.add_argument("--now", help="ISO-8601 timestamp to evaluate at (default: current time)")
    parser.add_argument("--dry-run", action="store_true", help="Do not queue outcome events")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    sys.exit(asyncio.run(main_async(args)))


if __name__ == "__main__":
    main()
