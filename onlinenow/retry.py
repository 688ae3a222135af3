"""Retry with exponential backoff and offline queueing of operations.

Operations are plain callables. When the internet is unreachable they are
queued and a background poller runs them, oldest first, once reachability
returns. This module does not depend on Qt and may be used from any thread.
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

from onlinenow.errors import MaxRetriesExceeded, OperationCancelled, OperationTimeout, RetryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Retry behavior for one operation.

    Attributes:
        max_retries: Total attempts, including the first
        base_delay: Seconds to wait after the first failure; doubles each time
        max_delay: Upper bound for the delay between attempts
        wait_for_connectivity: Queue while offline and wait for reachability
                               between attempts
        timeout: Overall limit in seconds, or None for no limit
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    wait_for_connectivity: bool = True
    timeout: float | None = None

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")


QUICK = RetryConfig(max_retries=2, base_delay=0.5, max_delay=5.0, timeout=30.0)
CRITICAL = RetryConfig(max_retries=5, base_delay=1.0, max_delay=60.0, timeout=300.0)
BACKGROUND = RetryConfig(max_retries=10, base_delay=5.0, max_delay=300.0, timeout=None)
DEFAULT = RetryConfig()


@dataclass
class RetryResult:
    """Outcome of an executed operation: a value or a RetryError."""

    value: Any = None
    error: RetryError | None = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def unwrap(self):
        """Return the value, or raise the error."""
        if self.error is not None:
            raise self.error
        return self.value


@dataclass
class _QueuedOperation:
    operation: Callable[[], Any]
    config: RetryConfig
    description: str
    enqueued_at: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    done: threading.Event = field(default_factory=threading.Event)
    result: RetryResult | None = None


class ResilientOperationQueue:
    """Runs operations with retry, queueing them while offline.

    Thread-safe: the pending queue is guarded by a lock; queued operations
    run on a single daemon poller thread that exits when the queue drains.
    """

    def __init__(self, reachability, poll_interval_s: float = 2.0, sleep=time.sleep, clock=time.monotonic):
        """Initialize operation queue.

        Args:
            reachability: Object with check_reachability() -> ReachabilityOutcome
            poll_interval_s: Seconds between reachability polls while offline
            sleep: Sleep function used for backoff and connectivity waits
            clock: Monotonic clock in seconds used for timeouts
        """
        if poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be positive")

        self.reachability = reachability
        self.poll_interval_s = poll_interval_s
        self._sleep = sleep
        self._clock = clock

        self._lock = threading.Lock()
        self._pending: OrderedDict[str, _QueuedOperation] = OrderedDict()
        self._listeners: list[Callable[[int], None]] = []

        self._poller: threading.Thread | None = None
        self._stop_event: threading.Event | None = None
        # Bumped by cancel_all() to abort connectivity waits
        self._cancel_epoch = 0

    @property
    def queued_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def is_polling(self) -> bool:
        with self._lock:
            return self._poller is not None

    def on_queue_changed(self, callback: Callable[[int], None]):
        """Register callback(count), called whenever the queue size changes."""
        with self._lock:
            self._listeners.append(callback)

    # Execution

    def execute(self, operation: Callable[[], Any], config: RetryConfig = QUICK, description: str = "Operation") -> RetryResult:
        """Run operation with retry, blocking until it finishes.

        If the internet is unreachable and config.wait_for_connectivity is
        set, the operation is queued and this call blocks until the poller
        runs it, the config timeout elapses or the queue is cancelled.

        Returns:
            RetryResult with the operation's return value or a RetryError
        """
        if not self._is_reachable() and config.wait_for_connectivity:
            logger.info("Offline; queueing operation: %s", description)
            return self._queue_and_wait(operation, config, description)

        deadline = self._deadline(self._clock(), config)
        return self._execute_with_retry(operation, config, description, deadline)

    def enqueue(self, operation: Callable[[], Any], config: RetryConfig = QUICK, description: str = "Operation") -> str:
        """Queue operation to run when reachability returns (non-blocking).

        Returns:
            Operation ID usable with cancel()
        """
        entry = self._add(operation, config, description)
        logger.info("Operation queued: %s (id=%s)", description, entry.id)
        return entry.id

    def cancel(self, operation_id: str) -> bool:
        """Remove a queued operation. Returns False if it was not queued."""
        with self._lock:
            entry = self._pending.pop(operation_id, None)
            count = len(self._pending)
        if entry is None:
            return False

        self._finish(entry, RetryResult(error=OperationCancelled()))
        logger.info("Operation cancelled: %s", entry.description)
        self._notify(count)
        return True

    def cancel_all(self):
        """Drop every queued operation and stop polling."""
        with self._lock:
            entries = list(self._pending.values())
            self._pending.clear()
            self._cancel_epoch += 1

        for entry in entries:
            self._finish(entry, RetryResult(error=OperationCancelled()))
        if entries:
            logger.info("Cancelled %d queued operations", len(entries))

        self._notify(0)
        self.stop_monitoring()

    def stop_monitoring(self):
        """Stop the poller; queued operations stay queued."""
        with self._lock:
            stop_event = self._stop_event
            self._poller = None
            self._stop_event = None
        if stop_event is not None:
            stop_event.set()
            logger.debug("Retry poller stopped")

    def poll_once(self) -> int:
        """Run all queued operations if the internet is reachable.

        Each operation is removed from the queue before it runs, whether it
        then succeeds or fails.

        Returns:
            Number of operations run
        """
        if not self._is_reachable():
            return 0

        with self._lock:
            snapshot = list(self._pending)

        ran = 0
        for operation_id in snapshot:
            with self._lock:
                entry = self._pending.pop(operation_id, None)
                count = len(self._pending)
            if entry is None:
                continue  # cancelled meanwhile

            self._notify(count)
            deadline = self._deadline(entry.enqueued_at, entry.config)
            result = self._execute_with_retry(entry.operation, entry.config, entry.description, deadline)
            if not result.succeeded:
                logger.warning("Queued operation failed: %s (%s)", entry.description, result.error)
            self._finish(entry, result)
            ran += 1

        return ran

    # Internals

    def _is_reachable(self) -> bool:
        try:
            return self.reachability.check_reachability().reachable
        except Exception:
            logger.exception("Reachability check raised")
            return False

    def _deadline(self, start: float, config: RetryConfig) -> float | None:
        return start + config.timeout if config.timeout is not None else None

    def _clamp(self, seconds: float, deadline: float | None) -> float:
        """Shorten a pause so it never runs past the deadline."""
        if deadline is None:
            return seconds
        return max(0.0, min(seconds, deadline - self._clock()))

    def _execute_with_retry(self, operation, config: RetryConfig, description: str, deadline: float | None) -> RetryResult:
        epoch = self._cancel_epoch
        last_error = None
        delay = config.base_delay

        for attempt in range(1, config.max_retries + 1):
            if deadline is not None and self._clock() >= deadline:
                return RetryResult(error=OperationTimeout(), attempts=attempt - 1)

            try:
                value = operation()
                if attempt > 1:
                    logger.info("%s succeeded on attempt %d", description, attempt)
                return RetryResult(value=value, attempts=attempt)
            except Exception as e:
                last_error = e
                logger.info(
                    "%s failed (attempt %d/%d): %s", description, attempt, config.max_retries, e
                )

            if attempt == config.max_retries:
                break

            self._sleep(self._clamp(delay, deadline))
            delay = min(delay * 2, config.max_delay)

            if config.wait_for_connectivity:
                error = self._wait_until_reachable(deadline, epoch)
                if error is not None:
                    return RetryResult(error=error, attempts=attempt)

        return RetryResult(
            error=MaxRetriesExceeded(config.max_retries, last_error), attempts=config.max_retries
        )

    def _wait_until_reachable(self, deadline: float | None, epoch: int) -> RetryError | None:
        """Block until reachable; returns the error that ended the wait early."""
        while not self._is_reachable():
            if self._cancel_epoch != epoch:
                return OperationCancelled()
            if deadline is not None and self._clock() >= deadline:
                return OperationTimeout()
            logger.debug("Waiting for connectivity before retrying")
            self._sleep(self._clamp(self.poll_interval_s, deadline))
        return None

    def _queue_and_wait(self, operation, config: RetryConfig, description: str) -> RetryResult:
        entry = self._add(operation, config, description)

        if entry.done.wait(config.timeout):
            return entry.result

        with self._lock:
            removed = self._pending.pop(entry.id, None)
            count = len(self._pending)
        if removed is not None:
            logger.info("Queued operation timed out: %s", description)
            self._notify(count)
            return RetryResult(error=OperationTimeout())

        # The poller took it just as the timeout expired
        entry.done.wait()
        return entry.result

    def _add(self, operation, config: RetryConfig, description: str) -> _QueuedOperation:
        entry = _QueuedOperation(operation, config, description, enqueued_at=self._clock())
        with self._lock:
            self._pending[entry.id] = entry
            count = len(self._pending)
        self._notify(count)
        self._ensure_poller()
        return entry

    def _finish(self, entry: _QueuedOperation, result: RetryResult):
        entry.result = result
        entry.done.set()

    def _ensure_poller(self):
        with self._lock:
            if self._poller is not None or not self._pending:
                return
            stop_event = threading.Event()
            poller = threading.Thread(
                target=self._poll_loop, args=(stop_event,), name="onlinenow-retry-poller", daemon=True
            )
            self._poller = poller
            self._stop_event = stop_event
        poller.start()
        logger.debug("Retry poller started (interval=%.1fs)", self.poll_interval_s)

    def _poll_loop(self, stop_event: threading.Event):
        while not stop_event.is_set():
            self.poll_once()
            with self._lock:
                if not self._pending:
                    if self._stop_event is stop_event:
                        self._poller = None
                        self._stop_event = None
                    logger.debug("Retry queue drained; poller exiting")
                    return
            stop_event.wait(self.poll_interval_s)

    def _notify(self, count: int):
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(count)
            except Exception:
                logger.exception("Queue listener raised")
