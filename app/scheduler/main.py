"""Verification scheduler running the worker on a fixed tick."""
import logging
import asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from app.core.config import settings
from app.core.redis import close_redis
from app.workers.verification_worker import VerificationWorker
from app.utils.time import utc_now

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class VerificationScheduler:
    """Scheduler that triggers token call verification ticks."""

    JOB_ID = "verify_token_calls"

    def __init__(self, worker: VerificationWorker = None):
        logger.info("Initializing VerificationScheduler...")
        self.scheduler = AsyncIOScheduler()
        self.worker = worker or VerificationWorker()
        self.last_report = None

    async def verify_calls(self):
        """Run one verification tick with the current wall-clock time."""
        try:
            self.last_report = await self.worker.run_tick(utc_now())
        except Exception as e:
            logger.error(f"Error during token call verification tick: {e}", exc_info=True)

    def start(self):
        """Start the scheduler with the verification job."""
        logger.info("="*60)
        logger.info("Starting verification scheduler...")
        logger.info(f"Log level: {settings.log_level}")
        logger.info(f"Tick interval: every {settings.verification_interval_minutes} minutes")
        logger.info(f"Re-check cadence for open calls: every {settings.recheck_interval_minutes} minutes")
        logger.info(
            f"Batch size: {settings.verification_batch_size}, "
            f"worker pool: {settings.verification_worker_pool_size}, "
            f"tick deadline: {settings.verification_tick_deadline_seconds}s"
        )
        logger.info("="*60)

        # A tick still running when the next fires is skipped, not stacked
        self.scheduler.add_job(
            self.verify_calls,
            trigger=IntervalTrigger(minutes=settings.verification_interval_minutes),
            id=self.JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=utc_now()
        )

        self.scheduler.start()
        logger.info("Scheduler started successfully")

    async def shutdown(self):
        """Stop scheduling and release resources."""
        logger.info("Shutting down verification scheduler...")
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.worker.cleanup()
        await close_redis()

    async def run(self):
        """Run scheduler indefinitely."""
        self.start()

        try:
            while True:
                await asyncio.sleep(1)
        except (KeyboardInterrupt, SystemExit):
            logger.info("Received shutdown signal")
        finally:
            await self.shutdown()


async def main():
    """Main entry point for scheduler."""
    scheduler = VerificationScheduler()
    await scheduler.run()


if __name__ == "__main__":
    asyncio.run(main())
