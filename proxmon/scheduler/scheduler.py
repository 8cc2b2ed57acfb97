"""
Scheduler Module

This module provides the periodic collection timer. Each firing runs one
collection cycle; at most one cycle runs at any time.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from typing import Optional
import logging
import threading

from proxmon.errors import CollectionInProgressError
from proxmon.metrics.collector import CollectionResult, MetricsCollector

logger = logging.getLogger(__name__)

JOB_ID = 'metric_collection'


class CollectionScheduler:
    """
    Owns the collection timer and the single-cycle guard.

    start()/stop() arm and disarm an APScheduler interval job. Timer firings
    log and swallow failures; trigger_now() raises them to its caller.
    """

    def __init__(self,
                 collector: MetricsCollector,
                 interval_minutes: float = 5,
                 cycle_timeout: Optional[float] = None,
                 scheduler: Optional[BackgroundScheduler] = None):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self.collector = collector
        self.interval_minutes = interval_minutes
        self.cycle_timeout = cycle_timeout

        self._scheduler = scheduler or BackgroundScheduler(timezone='UTC')
        self._state_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._running = False
        self.last_result: Optional[CollectionResult] = None
        self.last_error: Optional[str] = None

    def start(self) -> None:
        """Start the collection timer. No-op if already started."""
        with self._state_lock:
            if self._running:
                return

            if not self._scheduler.running:
                self._scheduler.start()

            self._scheduler.add_job(
                self._scheduled_cycle,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                id=JOB_ID,
                name='Metric Collection Job',
                replace_existing=True,
                max_instances=1,
                coalesce=True
            )
            self._running = True
        logger.info(f"Collection scheduler started with interval of {self.interval_minutes} minutes")

    def stop(self) -> None:
        """Stop the collection timer. An in-flight cycle is left to finish."""
        with self._state_lock:
            if not self._running:
                return

            if self._scheduler.get_job(JOB_ID) is not None:
                self._scheduler.remove_job(JOB_ID)
            self._running = False
        logger.info("Collection scheduler stopped")

    def shutdown(self) -> None:
        """Stop the timer and the underlying scheduler thread."""
        self.stop()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def is_running(self) -> bool:
        """Check if the collection timer is armed."""
        return self._running

    def is_collecting(self) -> bool:
        """Check if a collection cycle is in flight."""
        return self._cycle_lock.locked()

    def trigger_now(self, timeout: Optional[float] = None) -> CollectionResult:
        """
        Run one collection cycle on the calling thread.

        Raises CollectionInProgressError if another cycle is in flight and
        propagates CollectionFailedError / CollectionTimeoutError.
        """
        return self._run_cycle(timeout if timeout is not None else self.cycle_timeout)

    def _run_cycle(self, timeout: Optional[float]) -> CollectionResult:
        if not self._cycle_lock.acquire(blocking=False):
            raise CollectionInProgressError("A collection cycle is already running")
        try:
            result = self.collector.collect_all(timeout=timeout)
            self.last_result = result
            self.last_error = None
            return result
        except Exception as e:
            self.last_error = str(e)
            result = getattr(e, 'result', None)
            if result is not None:
                self.last_result = result
            raise
        finally:
            self._cycle_lock.release()

    def _scheduled_cycle(self) -> None:
        """Timer entry point: never raises."""
        try:
            self._run_cycle(self.cycle_timeout)
        except CollectionInProgressError:
            logger.warning("Previous collection cycle still running, skipping this run")
        except Exception as e:
            logger.error(f"Error in metrics collection job: {e}")
