"""APScheduler-based publisher for newly created products.

Every few minutes, products created within the lookback window are published
to the default sales channels. The lookback is longer than the interval so a
late or slow run never leaves a gap. A tick that fires while the previous run
is still going is skipped.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from channelsync.config import settings
from channelsync.sync.sync_service import ProductSyncService

logger = structlog.get_logger(__name__)

JOB_ID = "publish_new_products"


class NewProductScheduler:
    """Runs the new-product publishing job on a fixed interval."""

    def __init__(
        self,
        service: Optional[ProductSyncService] = None,
        interval_minutes: int = settings.NEW_PRODUCT_INTERVAL_MINUTES,
        lookback_minutes: int = settings.NEW_PRODUCT_LOOKBACK_MINUTES,
    ):
        """Initialize the scheduler.

        Args:
            service: Sync service, defaults to one on the global factory
            interval_minutes: How often the job fires
            lookback_minutes: How far back to look for new products
        """
        self.service = service or ProductSyncService()
        self.interval_minutes = interval_minutes
        self.lookback_minutes = lookback_minutes
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="new_product_scheduler")
        self.job_in_progress = False
        self.last_run_at: Optional[datetime] = None
        self.last_result: Optional[dict] = None

    def start(self) -> Optional[Job]:
        """Start the scheduler and register the job."""
        if self.scheduler.running:
            self.logger.warning("scheduler_already_running")
            return None

        trigger = IntervalTrigger(
            minutes=self.interval_minutes,
            start_date=datetime.now(timezone.utc),
            timezone="UTC",
        )
        job = self.scheduler.add_job(
            func=self._run_wrapper,
            trigger=trigger,
            id=JOB_ID,
            name="Publish new products",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        self.logger.info(
            "scheduler_started",
            interval_minutes=self.interval_minutes,
            lookback_minutes=self.lookback_minutes,
        )
        return job

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("scheduler_stopped")
        else:
            self.logger.warning("scheduler_not_running")

    def is_running(self) -> bool:
        return self.scheduler.running

    async def _run_wrapper(self) -> None:
        """Job entry point; failures are logged so the scheduler keeps going."""
        try:
            await self.run_once()
        except Exception as e:
            self.logger.error("new_product_job_failed", error=str(e), exc_info=True)

    async def run_once(self) -> bool:
        """Publish products created within the lookback window.

        Returns:
            False if skipped because a previous run is still in progress
        """
        if self.job_in_progress:
            self.logger.info("new_product_job_skipped", reason="previous run in progress")
            return False

        self.job_in_progress = True
        started = datetime.now(timezone.utc)
        try:
            outcome = await self.service.publish_new_products(self.lookback_minutes)
            self.last_result = outcome.to_response() if outcome else None
            self.logger.info(
                "new_product_job_completed",
                duration_seconds=(datetime.now(timezone.utc) - started).total_seconds(),
                updated=len(outcome.succeeded_ids) if outcome else 0,
                failed=len(outcome.failed_ids) if outcome else 0,
            )
        finally:
            self.job_in_progress = False
            self.last_run_at = started
        return True

    def get_status(self) -> dict:
        job = self.scheduler.get_job(JOB_ID) if self.scheduler.running else None
        return {
            "running": self.is_running(),
            "jobInProgress": self.job_in_progress,
            "lastRunAt": self.last_run_at.isoformat() if self.last_run_at else None,
            "nextRunAt": job.next_run_time.isoformat() if job and job.next_run_time else None,
        }


# Global scheduler instance
_scheduler: Optional[NewProductScheduler] = None


def get_new_product_scheduler() -> NewProductScheduler:
    global _scheduler

    if _scheduler is None:
        _scheduler = NewProductScheduler()
    return _scheduler
