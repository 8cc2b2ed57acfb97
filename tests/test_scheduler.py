import threading
import time

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from proxmon.errors import CollectionFailedError, CollectionInProgressError
from proxmon.metrics.collector import CollectionResult
from proxmon.scheduler.scheduler import JOB_ID, CollectionScheduler


class BlockingCollector:
    """Collector whose cycle waits until released."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.runs = 0

    def collect_all(self, timeout=None):
        self.runs += 1
        self.started.set()
        self.release.wait(5)
        return CollectionResult(written=1)


class FailingCollector:

    def collect_all(self, timeout=None):
        raise CollectionFailedError("all clusters failed", result=CollectionResult(failed=2))


class CountingCollector:

    def __init__(self):
        self.timeouts = []

    def collect_all(self, timeout=None):
        self.timeouts.append(timeout)
        return CollectionResult(written=3)


@pytest.fixture
def background():
    scheduler = BackgroundScheduler(timezone='UTC')
    yield scheduler
    if scheduler.running:
        scheduler.shutdown(wait=False)


class TestStartStop:

    def test_start_twice_arms_one_timer(self, background):
        scheduler = CollectionScheduler(CountingCollector(), interval_minutes=5, scheduler=background)

        scheduler.start()
        scheduler.start()

        assert scheduler.is_running()
        assert [job.id for job in background.get_jobs()] == [JOB_ID]

    def test_stop_twice_is_harmless(self, background):
        scheduler = CollectionScheduler(CountingCollector(), scheduler=background)
        scheduler.start()

        scheduler.stop()
        scheduler.stop()

        assert not scheduler.is_running()
        assert background.get_job(JOB_ID) is None

    def test_stop_before_start(self, background):
        scheduler = CollectionScheduler(CountingCollector(), scheduler=background)
        scheduler.stop()
        assert not scheduler.is_running()

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            CollectionScheduler(CountingCollector(), interval_minutes=0)

    def test_shutdown_stops_background_thread(self, background):
        scheduler = CollectionScheduler(CountingCollector(), scheduler=background)
        scheduler.start()

        scheduler.shutdown()

        assert not background.running
        assert not scheduler.is_running()

    def test_timer_fires_cycles(self, background):
        collector = CountingCollector()
        scheduler = CollectionScheduler(collector, interval_minutes=0.01, scheduler=background)
        scheduler.start()

        deadline = time.monotonic() + 5
        while not collector.timeouts and time.monotonic() < deadline:
            time.sleep(0.05)
        scheduler.stop()

        assert collector.timeouts
        assert scheduler.last_result.written == 3


class TestSingleCycle:

    def test_trigger_while_collecting_is_rejected(self):
        collector = BlockingCollector()
        scheduler = CollectionScheduler(collector)
        worker = threading.Thread(target=scheduler.trigger_now)
        worker.start()
        try:
            assert collector.started.wait(5)
            assert scheduler.is_collecting()

            with pytest.raises(CollectionInProgressError):
                scheduler.trigger_now()
        finally:
            collector.release.set()
            worker.join(5)

        assert collector.runs == 1
        assert not scheduler.is_collecting()

    def test_timer_firing_while_collecting_is_skipped(self):
        collector = BlockingCollector()
        scheduler = CollectionScheduler(collector)
        worker = threading.Thread(target=scheduler.trigger_now)
        worker.start()
        try:
            assert collector.started.wait(5)
            scheduler._scheduled_cycle()
        finally:
            collector.release.set()
            worker.join(5)

        assert collector.runs == 1

    def test_trigger_now_returns_result(self):
        scheduler = CollectionScheduler(CountingCollector(), cycle_timeout=60)

        result = scheduler.trigger_now()

        assert result.written == 3
        assert scheduler.last_result is result
        assert scheduler.last_error is None

    def test_trigger_now_timeout_overrides_default(self):
        collector = CountingCollector()
        scheduler = CollectionScheduler(collector, cycle_timeout=60)

        scheduler.trigger_now(timeout=5)
        scheduler.trigger_now()

        assert collector.timeouts == [5, 60]

    def test_trigger_now_propagates_failure(self):
        scheduler = CollectionScheduler(FailingCollector())

        with pytest.raises(CollectionFailedError):
            scheduler.trigger_now()

        assert scheduler.last_error == "all clusters failed"
        assert scheduler.last_result.failed == 2
        assert not scheduler.is_collecting()

    def test_scheduled_cycle_swallows_failure(self):
        scheduler = CollectionScheduler(FailingCollector())

        scheduler._scheduled_cycle()

        assert scheduler.last_error == "all clusters failed"
