"""
Cron scheduler — APScheduler wrapper that triggers reconciliation runs.

max_instances=1 plus the shared run lock means a trigger that fires while a
run is still in progress is skipped, never run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

if TYPE_CHECKING:
    from expiryguard.config import Config
    from expiryguard.reconciler import ReconciliationJob

logger = logging.getLogger(__name__)

JOB_ID = "expiry-notifications"


class ExpiryScheduler:
    """APScheduler-based cron scheduler for reconciliation runs."""

    def __init__(self, config: Config, job: ReconciliationJob) -> None:
        self.config = config
        self.job = job
        self.scheduler = AsyncIOScheduler(timezone=config.scheduler.timezone)

    def register(self) -> bool:
        """Add the cron job. Returns False when disabled or the cron is invalid."""
        sched = self.config.scheduler
        if not sched.enabled:
            logger.info("ExpiryGuard: scheduler disabled, no cron job registered")
            return False

        try:
            trigger = CronTrigger.from_crontab(sched.cron, timezone=sched.timezone)
        except Exception as e:
            logger.error("Invalid cron expression %r (%s): %s", sched.cron, sched.timezone, e)
            return False

        self.scheduler.add_job(
            self._run,
            trigger=trigger,
            id=JOB_ID,
            name="expiry:notifications",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
            replace_existing=True,
        )
        logger.info("Registered notification job: %s (%s)", sched.cron, sched.timezone)
        return True

    async def start(self) -> None:
        """Register the job, start the scheduler and keep running."""
        self.register()
        self.scheduler.start()
        logger.info("Cron scheduler started")

        while True:
            await asyncio.sleep(60)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    async def _run(self) -> None:
        try:
            summary = await self.job.run_once()
        except Exception as e:
            logger.error("Scheduled notification run crashed: %s", e)
            return
        logger.info(
            "Cron complete: status=%s candidates=%d notified=%d",
            summary.status.value,
            summary.candidates,
            summary.notified,
        )
