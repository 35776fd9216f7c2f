"""APScheduler wrapper for periodic analytics refreshes.

Provides a small interface for scheduling jobs with cron expressions
and managing the scheduler lifecycle.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import METRICS_REFRESH_CRON

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "refresh_analytics_snapshots"


class MetricsScheduler:
    """Scheduler for analytics snapshot refresh jobs.

    Jobs are kept in memory; they are re-registered on every start from
    configuration, so nothing needs to survive a restart.
    """

    def __init__(self, max_workers: int = 2) -> None:
        self.max_workers = max_workers
        self._scheduler: BackgroundScheduler | None = None
        self._started = False

    def _create_scheduler(self) -> BackgroundScheduler:
        job_defaults = {
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,
            "misfire_grace_time": 60,
        }
        return BackgroundScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": ThreadPoolExecutor(max_workers=self.max_workers)},
            job_defaults=job_defaults,
            timezone="UTC",
        )

    def start(self) -> None:
        if self._started:
            logger.warning("Scheduler already started")
            return

        self._scheduler = self._create_scheduler()
        self._scheduler.start()
        self._started = True
        logger.info("Scheduler started")

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the scheduler.

        Args:
            wait: Whether to wait for running jobs to complete
        """
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=wait)
            self._started = False
            logger.info("Scheduler shutdown")

    @property
    def is_running(self) -> bool:
        return self._started and self._scheduler is not None

    def add_job(
        self,
        job_id: str,
        func: Callable[..., Any],
        cron_expression: str,
        args: tuple[Any, ...] | None = None,
        kwargs: dict[str, Any] | None = None,
    ) -> None:
        """Add (or replace) a cron-scheduled job.

        Args:
            job_id: Unique identifier for the job
            func: Function to execute
            cron_expression: Cron schedule (e.g., "*/5 * * * *")
        """
        if not self._scheduler:
            raise RuntimeError("Scheduler not started")

        self._scheduler.add_job(
            func,
            trigger=self._parse_cron(cron_expression),
            id=job_id,
            args=args or (),
            kwargs=kwargs or {},
            replace_existing=True,
        )
        logger.info(f"Added scheduled job: {job_id} with schedule: {cron_expression}")

    def remove_job(self, job_id: str) -> bool:
        if not self._scheduler or self._scheduler.get_job(job_id) is None:
            return False
        self._scheduler.remove_job(job_id)
        logger.info(f"Removed scheduled job: {job_id}")
        return True

    def get_jobs(self) -> list[dict[str, Any]]:
        if not self._scheduler:
            return []

        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat()
                if job.next_run_time
                else None,
                "trigger": str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]

    def schedule_snapshot_refresh(
        self, refresh: Callable[[], Any], cron_expression: str = METRICS_REFRESH_CRON
    ) -> None:
        """Register the analytics snapshot refresh job."""

        def run_refresh() -> None:
            try:
                refresh()
            except Exception as e:
                logger.error(f"Analytics snapshot refresh failed: {e}", exc_info=True)

        self.add_job(REFRESH_JOB_ID, run_refresh, cron_expression)

    @staticmethod
    def _parse_cron(cron_expression: str) -> CronTrigger:
        """Parse a cron expression into an APScheduler trigger.

        Accepts standard 5-field cron, or 6 fields with leading seconds.
        """
        parts = cron_expression.strip().split()

        if len(parts) == 5:
            return CronTrigger(
                minute=parts[0],
                hour=parts[1],
                day=parts[2],
                month=parts[3],
                day_of_week=parts[4],
                timezone="UTC",
            )
        if len(parts) == 6:
            return CronTrigger(
                second=parts[0],
                minute=parts[1],
                hour=parts[2],
                day=parts[3],
                month=parts[4],
                day_of_week=parts[5],
                timezone="UTC",
            )
        raise ValueError(
            f"Invalid cron expression: {cron_expression}. "
            "Expected 5 or 6 space-separated fields."
        )


_scheduler_instance: MetricsScheduler | None = None


def get_scheduler() -> MetricsScheduler:
    global _scheduler_instance

    if _scheduler_instance is None:
        _scheduler_instance = MetricsScheduler()

    return _scheduler_instance


def start_scheduler() -> MetricsScheduler:
    scheduler = get_scheduler()
    if not scheduler.is_running:
        scheduler.start()
    return scheduler


def shutdown_scheduler(wait: bool = True) -> None:
    global _scheduler_instance

    if _scheduler_instance:
        _scheduler_instance.shutdown(wait=wait)
        _scheduler_instance = None
