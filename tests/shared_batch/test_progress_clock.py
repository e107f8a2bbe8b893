import threading

import httpx
import pytest

from src.shared.batch import (
    ExecutionClock,
    FailureTracker,
    InMemoryStateStore,
    ProgressReporter,
    StateStoreNotifier,
    TimeoutWatchdog,
    retry_on_network_error,
)
from src.shared.batch.progress import percent_complete


class FakeTime:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_clock_measures_elapsed_time_against_limits():
    fake_time = FakeTime(50.0)
    clock = ExecutionClock(fake_time)

    assert clock.elapsed() == 0.0
    assert not clock.is_over_budget(1)

    clock.start()
    fake_time.now = 60.0

    assert clock.elapsed() == 10.0
    assert not clock.is_over_budget(10)
    assert clock.is_over_budget(9.5)
    assert not clock.is_over_budget(None)
    assert clock.remaining(15) == 5.0
    assert clock.remaining(5) == 0.0
    assert clock.remaining(None) is None


@pytest.mark.parametrize(
    "current, total, expected",
    [(0, 0, 0), (5, 0, 0), (1, 3, 33), (2, 3, 67), (10, 10, 100), (12, 10, 100)],
)
def test_percent_complete(current, total, expected):
    assert percent_complete(current, total) == expected


def test_report_reaches_notifiers_and_estimates_remaining_time():
    fake_time = FakeTime()
    events = []
    reporter = ProgressReporter(notifiers=[events.append], time_source=fake_time)
    fake_time.now = 10.0

    event = reporter.report(5, 10, "Batch 1/2", {"current_batch": 1})

    assert events == [event]
    assert event.percent == 50
    assert event.remaining == 5
    assert event.estimated_seconds_remaining == 10.0
    assert event.metadata == {"current_batch": 1}
    assert reporter.last_event is event


def test_report_with_zero_total_does_not_divide_by_zero():
    event = ProgressReporter(time_source=FakeTime()).report(0, 0, "nothing to do")

    assert event.percent == 0
    assert event.estimated_seconds_remaining == 0.0


def test_failing_notifier_does_not_stop_other_notifiers():
    received = []

    def broken(event):
        raise RuntimeError("sidebar closed")

    reporter = ProgressReporter(notifiers=[broken, received.append], time_source=FakeTime())

    reporter.report(1, 2, "half way")

    assert len(received) == 1


def test_report_writes_structured_log_record(caplog):
    reporter = ProgressReporter(time_source=FakeTime())

    with caplog.at_level("INFO", logger="src.shared.batch.progress"):
        reporter.report(3, 4, "Batch 1/1", {"phase": "processing"})

    record = caplog.records[-1]
    assert "3/4 (75%)" in record.getMessage()
    assert record.progress["metadata"] == {"phase": "processing"}


def test_state_store_notifier_keeps_latest_event():
    store = InMemoryStateStore()
    notifier = StateStoreNotifier(store)
    reporter = ProgressReporter(notifiers=[notifier], time_source=FakeTime())

    reporter.report(1, 4, "first")
    reporter.report(2, 4, "second")

    latest = notifier.latest()
    assert latest["message"] == "second"
    assert latest["percent"] == 50


def test_failure_tracker_records_and_saves(tmp_path):
    tracker = FailureTracker()
    tracker.record_failure(4, "7203", "price not found")
    tracker.record_failure(6, {"code": "9984"}, "timeout", tb="Traceback ...")

    assert tracker.count == 2
    assert tracker.failed_indices() == [4, 6]
    assert tracker.snapshot()[1]["item"] == "{'code': '9984'}"

    path = tmp_path / "failures.json"
    tracker.save(path)
    assert "price not found" in path.read_text()

    tracker.clear()
    assert tracker.count == 0


def test_retry_on_network_error_retries_then_succeeds():
    sleeps = []
    attempts = {"count": 0}

    def flaky():
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise httpx.ConnectError("connection refused")
        return "ok"

    assert retry_on_network_error(flaky, max_retries=3, initial_delay=1.0, max_delay=1.5, sleep=sleeps.append) == "ok"
    assert sleeps == [1.0, 1.5]


def test_retry_on_network_error_gives_up_and_skips_other_errors():
    sleeps = []

    def always_down():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        retry_on_network_error(always_down, max_retries=2, sleep=sleeps.append)
    assert len(sleeps) == 1

    def bad_input():
        raise ValueError("bad")

    with pytest.raises(ValueError):
        retry_on_network_error(bad_input, sleep=sleeps.append)
    assert len(sleeps) == 1


def test_watchdog_fires_after_timeout():
    fired = threading.Event()
    watchdog = TimeoutWatchdog(0.01, fired.set)

    watchdog.start()

    assert fired.wait(2)
    assert watchdog.fired


def test_watchdog_cancel_releases_timer():
    fired = threading.Event()
    watchdog = TimeoutWatchdog(30, fired.set)

    watchdog.start()
    assert watchdog.active
    watchdog.cancel()
    watchdog.cancel()

    assert not watchdog.active
    assert not watchdog.fired
