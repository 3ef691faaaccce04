"""
Scheduler infrastructure for running the periodic harvest.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from croniter import croniter
from dateutil import tz


logger = logging.getLogger(__name__)


class Scheduler:
    """Async task scheduler wrapper around APScheduler.

    Jobs live in the in-memory store and are registered again on every start.
    """

    def __init__(self, timezone: str = "UTC"):
        job_defaults = {
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 300,  # seconds
        }

        self.timezone = timezone
        self._scheduler = AsyncIOScheduler(
            job_defaults=job_defaults,
            timezone=timezone,
        )
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the scheduler."""
        if not self._started:
            self._scheduler.start()
            self._started = True
            logger.info(f"Scheduler started ({self.timezone})")

    async def stop(self) -> None:
        """Stop the scheduler."""
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Scheduler stopped")

    @staticmethod
    def validate_cron_expression(cron_expression: str) -> bool:
        """Validate a five-field cron expression using croniter."""
        if len(cron_expression.split()) != 5:
            return False
        try:
            croniter(cron_expression)
            return True
        except (ValueError, KeyError) as e:
            logger.error(f"Invalid cron expression '{cron_expression}': {e}")
            return False

    def add_cron_job(
        self,
        func: Callable,
        cron_expression: str,
        job_id: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Add a job that runs on a cron schedule."""
        if not self.validate_cron_expression(cron_expression):
            raise ValueError(f"Invalid cron expression: {cron_expression}")

        trigger = CronTrigger.from_crontab(cron_expression, timezone=self.timezone)
        self._scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            replace_existing=True,
            **kwargs,
        )
        logger.info(f"Added cron job: {job_id or func.__name__} ({cron_expression})")

    def next_fire_time(self, cron_expression: str, base: Optional[datetime] = None) -> datetime:
        """When ``cron_expression`` would next fire after ``base``.

        Without ``base`` the current time in the scheduler's timezone is used.
        """
        if base is None:
            base = datetime.now(tz.gettz(self.timezone) or tz.UTC)
        return croniter(cron_expression, base).get_next(datetime)

    def list_jobs(self) -> Dict[str, Any]:
        """List all scheduled jobs."""
        jobs = {}
        for job in self._scheduler.get_jobs():
            jobs[job.id] = {
                "name": job.name,
                "next_run": getattr(job, "next_run_time", None),
                "trigger": str(job.trigger),
            }
        return jobs
