"""Rebalance Scheduler - APScheduler integration for periodic runs.

Re-invokes a rebalance job once per idempotency period:
- daily: cron at a fixed time on weekdays
- hourly: cron at a fixed minute every hour on weekdays

Jobs never overlap (``max_instances=1``) and missed runs coalesce into one.
Duplicate runs inside a period are still rejected by the idempotency gate.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import pytz
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ledgerrun.utils.exceptions import ConfigurationError
from ledgerrun.utils.logging import get_logger

logger = get_logger(__name__)

# US/Eastern timezone for market hours
EASTERN_TZ = pytz.timezone("US/Eastern")


class RebalanceScheduler:
    """APScheduler wrapper for rebalance jobs.

    Example:
        >>> scheduler = RebalanceScheduler({"timezone": "US/Eastern"})
        >>> scheduler.register_rebalance(
        ...     name="core",
        ...     func=lambda: workflow.run_with_idempotency(policy_doc),
        ...     granularity="daily",
        ...     hour=15,
        ...     minute=45,
        ... )
        >>> scheduler.start()
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize rebalance scheduler.

        Args:
            config: Scheduler settings
                - timezone: Timezone name (default: US/Eastern)
                - coalesce: Combine missed runs (default: True)
                - misfire_grace_time: Seconds a late run may still start (default: 60)
                - weekdays_only: Only run Monday-Friday (default: True)
        """
        config = config or {}
        self.config = config
        self.timezone = (
            pytz.timezone(config["timezone"]) if config.get("timezone") else EASTERN_TZ
        )
        self.weekdays_only = config.get("weekdays_only", True)

        self.scheduler = BackgroundScheduler(
            timezone=self.timezone,
            job_defaults={
                "coalesce": config.get("coalesce", True),
                "max_instances": 1,
                "misfire_grace_time": config.get("misfire_grace_time", 60),
            },
        )

        self.last_results: Dict[str, Any] = {}

        self.scheduler.add_listener(
            self._on_job_executed, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR
        )

        logger.info("RebalanceScheduler initialized (timezone: %s)", self.timezone)

    def build_trigger(self, granularity: str, hour: int = 15, minute: int = 45) -> CronTrigger:
        """Cron trigger aligned to the idempotency period.

        Raises:
            ConfigurationError: If granularity is unknown
        """
        day_of_week = "mon-fri" if self.weekdays_only else "*"
        if granularity == "daily":
            return CronTrigger(
                day_of_week=day_of_week, hour=hour, minute=minute, timezone=self.timezone
            )
        if granularity == "hourly":
            return CronTrigger(day_of_week=day_of_week, minute=minute, timezone=self.timezone)
        raise ConfigurationError(f"Unknown schedule granularity: {granularity}")

    def register_rebalance(
        self,
        name: str,
        func: Callable[[], Any],
        granularity: str = "daily",
        hour: int = 15,
        minute: int = 45,
    ):
        """Register a rebalance job.

        Args:
            name: Unique job identifier
            func: Zero-argument callable that performs one run
            granularity: "daily" or "hourly"
            hour: Hour of day for daily runs
            minute: Minute of the hour
        """
        if self.scheduler.get_job(name) is not None:
            logger.warning("Job '%s' already registered, replacing", name)
            self.scheduler.remove_job(name)

        trigger = self.build_trigger(granularity, hour=hour, minute=minute)
        job = self.scheduler.add_job(
            func=self._wrap(name, func),
            trigger=trigger,
            id=name,
            name=name,
            replace_existing=True,
        )

        logger.info(
            "Registered rebalance '%s' (%s, next run: %s)",
            name,
            granularity,
            getattr(job, "next_run_time", "N/A"),
        )
        return job

    def _wrap(self, name: str, func: Callable[[], Any]) -> Callable[[], Any]:
        def wrapped():
            logger.info("Executing rebalance '%s'", name)
            result = func()
            self.last_results[name] = result
            return result

        return wrapped

    def _on_job_executed(self, event):
        """Event listener for job execution/errors."""
        if event.exception:
            logger.error(
                "Job '%s' raised exception: %s",
                event.job_id,
                event.exception,
                exc_info=event.exception,
            )
        else:
            logger.info("Job '%s' completed successfully", event.job_id)

    def start(self):
        """Start the scheduler (non-blocking)."""
        if self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        logger.info("Scheduler started with %d job(s)", len(self.get_jobs()))

    def shutdown(self, wait: bool = True):
        """Stop the scheduler, waiting for a running job by default."""
        if not self.scheduler.running:
            logger.warning("Scheduler not running")
            return

        self.scheduler.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_jobs(self) -> List:
        return self.scheduler.get_jobs()

    def next_run_time(self, name: str) -> Optional[datetime]:
        job = self.scheduler.get_job(name)
        return getattr(job, "next_run_time", None) if job is not None else None
