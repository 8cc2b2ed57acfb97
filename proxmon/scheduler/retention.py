"""
Retention Module

Background expiry of metric records older than the retention window.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime, timedelta
from typing import Optional
import logging

from proxmon.metrics.record import utcnow
from proxmon.metrics.storage import MetricStore

logger = logging.getLogger(__name__)

JOB_ID = 'metric_retention'


class RetentionSweeper:
    """Periodically purges records older than `retention_days` from a store."""

    def __init__(self,
                 store: MetricStore,
                 retention_days: int = 90,
                 sweep_interval_minutes: float = 60,
                 scheduler: Optional[BackgroundScheduler] = None):
        if retention_days <= 0:
            raise ValueError("retention_days must be positive")
        self.store = store
        self.retention_days = retention_days
        self.sweep_interval_minutes = sweep_interval_minutes
        self._scheduler = scheduler or BackgroundScheduler(timezone='UTC')

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        return (now or utcnow()) - timedelta(days=self.retention_days)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Delete expired records now. Returns the number deleted."""
        cutoff = self.cutoff(now)
        removed = self.store.purge_older_than(cutoff)
        if removed:
            logger.info(f"Retention sweep removed {removed} metrics older than {cutoff.isoformat()}")
        return removed

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
        self._scheduler.add_job(
            self._scheduled_sweep,
            trigger=IntervalTrigger(minutes=self.sweep_interval_minutes),
            id=JOB_ID,
            name='Metric Retention Job',
            next_run_time=utcnow(),
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        logger.info(f"Retention sweeper started: keeping {self.retention_days} days, "
                    f"sweeping every {self.sweep_interval_minutes} minutes")

    def stop(self) -> None:
        if self._scheduler.get_job(JOB_ID) is not None:
            self._scheduler.remove_job(JOB_ID)

    def _scheduled_sweep(self) -> None:
        try:
            self.sweep()
        except Exception as e:
            logger.error(f"Retention sweep failed: {e}")
