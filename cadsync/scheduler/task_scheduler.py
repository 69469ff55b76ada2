"""
Task Scheduler

APScheduler integration for periodic sync runs.

Author: CADSync Project
License: MIT
"""

from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config.schema import Config
from ..core.exceptions import SyncInProgressError
from ..utils.logger import get_logger

logger = get_logger(__name__)

SYNC_JOB_ID = 'scheduled_sync'
STARTUP_JOB_ID = 'startup_sync'


def build_cron_trigger(cron_expr: str) -> CronTrigger:
    """
    Build a trigger from a 5-field cron expression.

    Format: "minute hour day month day_of_week"

    Raises:
        ValueError: If the expression is malformed
    """
    parts = cron_expr.split()
    if len(parts) != 5:
        raise ValueError(f"Invalid cron expression: {cron_expr}")

    return CronTrigger(
        minute=parts[0],
        hour=parts[1],
        day=parts[2],
        month=parts[3],
        day_of_week=parts[4],
        timezone='UTC'
    )


class TaskScheduler:
    """
    Runs sync on a cron schedule.

    Missed runs are coalesced and at most one scheduled run executes at a
    time; a run that finds a manual sync in progress is skipped.
    """

    def __init__(self, config: Config, sync_callback: Optional[Callable[[], object]] = None):
        """
        Initialize task scheduler.

        Args:
            config: Configuration object
            sync_callback: Called to perform one sync run
        """
        self.config = config
        self.scheduler = BackgroundScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,  # Combine missed executions
                'max_instances': 1  # Only one instance per job
            }
        )

        self._sync_callback = sync_callback

        logger.info("TaskScheduler initialized")

    def start(self):
        """Start the scheduler and register the sync job if enabled."""
        if self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        if self.config.scheduling.enabled:
            self.add_sync_job(self.config.scheduling.schedule)
        else:
            logger.info("Scheduled sync disabled")

        self.scheduler.start()
        logger.info("Scheduler started")

        if self.config.scheduling.enabled and self.config.scheduling.run_on_start:
            # Runs on a scheduler thread, not in the caller
            self.scheduler.add_job(
                func=self._execute_sync,
                trigger='date',
                id=STARTUP_JOB_ID,
                name='Startup Sync',
                replace_existing=True
            )
            logger.info("Startup sync queued")

    def stop(self):
        """Stop the scheduler."""
        if not self.scheduler.running:
            return

        self.scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")

    def reconfigure(self, config: Config):
        """
        Apply new scheduling settings.

        The sync job is added, replaced or removed to match ``config``.

        Raises:
            ValueError: If the new schedule is malformed
        """
        scheduling = config.scheduling
        if scheduling.enabled:
            self.add_sync_job(scheduling.schedule)
        else:
            self.remove_sync_job()
        self.config = config
        logger.info("Scheduler reconfigured")

    def set_sync_callback(self, callback: Callable[[], object]):
        """
        Set callback function for scheduled runs.

        Args:
            callback: Function performing one sync run
        """
        self._sync_callback = callback
        logger.info("Sync callback registered")

    def add_sync_job(self, cron_expr: str):
        """
        Add (or replace) the scheduled sync job.

        Args:
            cron_expr: Cron expression

        Raises:
            ValueError: If the expression is malformed
        """
        trigger = build_cron_trigger(cron_expr)

        self.scheduler.add_job(
            func=self._execute_sync,
            trigger=trigger,
            id=SYNC_JOB_ID,
            name='Scheduled Sync',
            replace_existing=True
        )

        logger.info(f"Added sync job with schedule: {cron_expr}")

    def remove_sync_job(self):
        """Remove the scheduled sync job if present."""
        if self.scheduler.get_job(SYNC_JOB_ID) is None:
            return
        self.scheduler.remove_job(SYNC_JOB_ID)
        logger.info("Removed sync job")

    def run_now(self):
        """Execute the sync callback once, outside the schedule."""
        self._execute_sync()

    def _execute_sync(self):
        """Execute scheduled sync job."""
        logger.info("Executing scheduled sync")

        if not self._sync_callback:
            logger.warning("No sync callback registered")
            return

        try:
            self._sync_callback()
        except SyncInProgressError:
            logger.info("Sync already in progress, skipping scheduled run")
        except Exception as e:
            logger.error(f"Error in scheduled sync: {e}", exc_info=True)

    def get_jobs(self) -> list:
        """
        Get list of scheduled jobs.

        Returns:
            List of job information dictionaries
        """
        jobs = []

        for job in self.scheduler.get_jobs():
            next_run = getattr(job, 'next_run_time', None)

            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run': next_run.isoformat() if next_run else None,
                'trigger': str(job.trigger)
            })

        return jobs
