"""Unit tests for retry backoff and the resilient operation queue."""

import threading
import time

import pytest

from onlinenow.errors import MaxRetriesExceeded, OperationCancelled, OperationTimeout
from onlinenow.models import ReachabilityOutcome
from onlinenow.retry import (
    BACKGROUND,
    CRITICAL,
    DEFAULT,
    QUICK,
    ResilientOperationQueue,
    RetryConfig,
    RetryResult,
)


class FakeReachability:
    """Answers from a script of booleans, then a default."""

    def __init__(self, script=(), default=True):
        self.script = list(script)
        self.default = default
        self.checks = 0

    def check_reachability(self):
        self.checks += 1
        reachable = self.script.pop(0) if self.script else self.default
        return ReachabilityOutcome(reachable=reachable)


class FakeTime:
    """Sleep that advances a fake monotonic clock."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FlakyOperation:
    """Fails a fixed number of times, then returns a value."""

    def __init__(self, failures, value="done"):
        self.failures = failures
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"failure {self.calls}")
        return self.value


def make_queue(reachability=None, poll_interval_s=0.5):
    fake_time = FakeTime()
    queue = ResilientOperationQueue(
        reachability if reachability is not None else FakeReachability(),
        poll_interval_s=poll_interval_s,
        sleep=fake_time.sleep,
        clock=fake_time.clock,
    )
    return queue, fake_time


def halt_poller(queue):
    """Stop the background poller and wait for its thread to exit."""
    poller = queue._poller
    queue.stop_monitoring()
    if poller is not None:
        poller.join(timeout=5)
        assert not poller.is_alive()


class TestRetryConfig:
    def test_presets(self):
        assert (QUICK.max_retries, QUICK.base_delay, QUICK.max_delay, QUICK.timeout) == (2, 0.5, 5.0, 30.0)
        assert (CRITICAL.max_retries, CRITICAL.timeout) == (5, 300.0)
        assert BACKGROUND.timeout is None
        assert BACKGROUND.max_delay == 300.0
        assert DEFAULT == RetryConfig(3, 1.0, 30.0, True, None)

    def test_validation(self):
        with pytest.raises(ValueError):
            RetryConfig(max_retries=0)
        with pytest.raises(ValueError):
            RetryConfig(base_delay=-1)
        with pytest.raises(ValueError):
            RetryConfig(timeout=0)

    def test_unwrap(self):
        assert RetryResult(value=5, attempts=1).unwrap() == 5
        with pytest.raises(OperationTimeout):
            RetryResult(error=OperationTimeout()).unwrap()


class TestExecuteWithBackoff:
    """Test retry behavior while the internet is reachable."""

    def test_success_on_first_attempt(self):
        queue, fake_time = make_queue()

        result = queue.execute(lambda: 42, DEFAULT)

        assert result.succeeded
        assert result.value == 42
        assert result.attempts == 1
        assert fake_time.sleeps == []

    def test_exponential_backoff(self):
        queue, fake_time = make_queue()
        operation = FlakyOperation(failures=2)

        result = queue.execute(operation, DEFAULT)

        assert result.value == "done"
        assert result.attempts == 3
        assert fake_time.sleeps == [1.0, 2.0]

    def test_max_retries_exceeded(self):
        queue, fake_time = make_queue()
        operation = FlakyOperation(failures=10)

        result = queue.execute(operation, DEFAULT)

        assert operation.calls == 3
        assert isinstance(result.error, MaxRetriesExceeded)
        assert result.error.attempts == 3
        assert str(result.error.last_error) == "failure 3"
        assert fake_time.sleeps == [1.0, 2.0]

    def test_delay_capped_at_max(self):
        queue, fake_time = make_queue()
        config = RetryConfig(max_retries=5, base_delay=1.0, max_delay=3.0, wait_for_connectivity=False)

        queue.execute(FlakyOperation(failures=10), config)

        assert fake_time.sleeps == [1.0, 2.0, 3.0, 3.0]

    def test_overall_timeout_checked_between_attempts(self):
        queue, _ = make_queue()
        config = RetryConfig(max_retries=5, base_delay=10.0, max_delay=60.0, wait_for_connectivity=False, timeout=15.0)
        operation = FlakyOperation(failures=10)

        result = queue.execute(operation, config)

        assert isinstance(result.error, OperationTimeout)
        assert operation.calls == 2
        assert result.attempts == 2

    def test_backoff_sleep_stops_at_deadline(self):
        """A long backoff is shortened to the time left before the timeout."""
        queue, fake_time = make_queue()
        config = RetryConfig(max_retries=5, base_delay=10.0, max_delay=60.0, wait_for_connectivity=False, timeout=15.0)

        result = queue.execute(FlakyOperation(failures=10), config)

        assert fake_time.sleeps == [10.0, 5.0]
        assert fake_time.now == 15.0
        assert isinstance(result.error, OperationTimeout)

    def test_critical_backoff_does_not_overshoot_timeout(self):
        queue, fake_time = make_queue()
        config = RetryConfig(max_retries=5, base_delay=40.0, max_delay=60.0, wait_for_connectivity=False, timeout=50.0)

        queue.execute(FlakyOperation(failures=10), config)

        assert fake_time.now <= 50.0
        assert fake_time.sleeps == [40.0, 10.0]

    def test_waits_for_connectivity_between_attempts(self):
        # execute() check, then one offline poll before the retry
        reachability = FakeReachability(script=[True, False, True])
        queue, fake_time = make_queue(reachability, poll_interval_s=0.5)
        operation = FlakyOperation(failures=1)

        result = queue.execute(operation, DEFAULT)

        assert result.value == "done"
        assert fake_time.sleeps == [1.0, 0.5]

    def test_offline_without_waiting_runs_immediately(self):
        queue, _ = make_queue(FakeReachability(default=False))
        config = RetryConfig(max_retries=1, wait_for_connectivity=False)

        result = queue.execute(lambda: "ok", config)

        assert result.value == "ok"
        assert queue.queued_count == 0


class TestQueue:
    """Test offline queueing with manual polling."""

    def test_queued_operation_runs_when_reachable(self):
        reachability = FakeReachability(default=False)
        queue, _ = make_queue(reachability, poll_interval_s=60)
        operation = FlakyOperation(failures=0)

        queue.enqueue(operation, description="Upload report")
        halt_poller(queue)

        assert operation.calls == 0
        assert queue.queued_count == 1
        assert queue.poll_once() == 0

        reachability.default = True
        assert queue.poll_once() == 1
        assert operation.calls == 1
        assert queue.queued_count == 0

    def test_failed_queued_operation_is_removed(self):
        reachability = FakeReachability(default=False)
        queue, _ = make_queue(reachability, poll_interval_s=60)
        operation = FlakyOperation(failures=10)

        queue.enqueue(operation, RetryConfig(max_retries=1))
        halt_poller(queue)
        reachability.default = True

        assert queue.poll_once() == 1
        assert queue.queued_count == 0

    def test_runs_in_fifo_order(self):
        reachability = FakeReachability(default=False)
        queue, _ = make_queue(reachability, poll_interval_s=60)
        order = []

        queue.enqueue(lambda: order.append("first"))
        queue.enqueue(lambda: order.append("second"))
        halt_poller(queue)
        reachability.default = True
        queue.poll_once()

        assert order == ["first", "second"]

    def test_cancel(self):
        queue, _ = make_queue(FakeReachability(default=False), poll_interval_s=60)
        operation = FlakyOperation(failures=0)

        operation_id = queue.enqueue(operation)
        halt_poller(queue)

        assert queue.cancel(operation_id) is True
        assert queue.cancel(operation_id) is False
        assert queue.queued_count == 0

    def test_queue_change_notifications(self):
        queue, _ = make_queue(FakeReachability(default=False), poll_interval_s=60)
        counts = []
        queue.on_queue_changed(counts.append)

        first = queue.enqueue(lambda: None)
        queue.enqueue(lambda: None)
        halt_poller(queue)
        queue.cancel(first)
        queue.cancel_all()

        assert counts == [1, 2, 1, 0]

    def test_listener_errors_are_contained(self):
        queue, _ = make_queue(FakeReachability(default=False), poll_interval_s=60)

        def broken(count):
            raise RuntimeError("listener bug")

        queue.on_queue_changed(broken)
        operation_id = queue.enqueue(lambda: None)
        halt_poller(queue)

        assert operation_id
        assert queue.queued_count == 1

    def test_poller_starts_and_stops(self):
        queue, _ = make_queue(FakeReachability(default=False), poll_interval_s=60)

        queue.enqueue(lambda: None)
        assert queue.is_polling

        queue.cancel_all()
        assert not queue.is_polling


class TestBlockingExecute:
    """Test execute() while offline, with a real background poller."""

    def test_waits_for_connectivity_then_runs(self):
        reachability = FakeReachability(script=[False, False], default=True)
        queue = ResilientOperationQueue(reachability, poll_interval_s=0.01)

        result = queue.execute(lambda: "sent", QUICK)

        assert result.value == "sent"
        assert queue.queued_count == 0

    def test_times_out_while_queued(self):
        queue = ResilientOperationQueue(FakeReachability(default=False), poll_interval_s=60)

        result = queue.execute(lambda: "never", RetryConfig(timeout=0.05))

        assert isinstance(result.error, OperationTimeout)
        assert queue.queued_count == 0
        queue.stop_monitoring()

    def test_cancel_all_releases_waiter(self):
        queue = ResilientOperationQueue(FakeReachability(default=False), poll_interval_s=60)
        operation = FlakyOperation(failures=0)
        results = []

        worker = threading.Thread(target=lambda: results.append(queue.execute(operation, BACKGROUND)))
        worker.start()

        deadline = time.monotonic() + 5
        while queue.queued_count == 0 and time.monotonic() < deadline:
            time.sleep(0.005)
        queue.cancel_all()
        worker.join(timeout=5)

        assert not worker.is_alive()
        assert isinstance(results[0].error, OperationCancelled)
        assert operation.calls == 0
