"""Download throughput measurement with warmup exclusion."""

import logging
import socket
import threading
import time

import requests

from onlinenow.errors import ErrorKind, classify_request_error
from onlinenow.models import ThroughputResult
from onlinenow.reachability import NO_CACHE_HEADERS
from onlinenow.settings import ThroughputSettings

logger = logging.getLogger(__name__)

_ERROR_MESSAGES = {
    ErrorKind.TIMEOUT: "Speed test timed out - connection may be very slow",
    ErrorKind.NO_CONNECTIVITY: "No internet connection",
    ErrorKind.CONNECTION_LOST: "Connection lost during test",
    ErrorKind.INVALID_RESPONSE: "Invalid response from speed test server",
}


def speed_description(speed_mbps: float) -> str:
    """Label a download speed, e.g. 42.0 -> "Fast"."""
    if speed_mbps < 0:
        return "Unknown"
    if speed_mbps < 1:
        return "Very Slow"
    if speed_mbps < 5:
        return "Slow"
    if speed_mbps < 25:
        return "Moderate"
    if speed_mbps < 100:
        return "Fast"
    return "Very Fast"


def confidence_message(result: ThroughputResult) -> str:
    """Describe how much a throughput result can be trusted."""
    if result.speed_mbps is None:
        return "Unable to measure speed"
    if result.duration_seconds < 0.5:
        return "Quick test - actual speed may vary"
    if result.duration_seconds > 10:
        return "Slow connection detected"
    return "Reliable measurement"


class TransferMeter:
    """Tracks a streamed transfer and computes its rate excluding warmup.

    The warmup boundary is the first chunk arrival at which the cumulative
    byte count reaches ``warmup_bytes``. The rate is then

        (bytes after boundary * 8) / seconds after boundary / 1e6

    Falls back to the whole transfer window (first response byte to finish)
    when no boundary was observed, when fewer than ``min_window_s`` seconds
    follow it, or when no bytes follow it.
    """

    def __init__(self, warmup_bytes: int = 100_000, min_window_s: float = 0.1, clock=time.perf_counter):
        if warmup_bytes < 0:
            raise ValueError("warmup_bytes must not be negative")
        self.warmup_bytes = warmup_bytes
        self.min_window_s = min_window_s
        self._clock = clock

        self.total_bytes = 0
        self._started: float | None = None
        self._finished: float | None = None
        self._boundary_time: float | None = None
        self._boundary_bytes = 0

    def start(self):
        self._started = self._clock()

    def add(self, nbytes: int):
        """Record a received chunk of nbytes."""
        if self._started is None:
            self.start()
        self.total_bytes += nbytes
        if self._boundary_time is None and self.total_bytes >= self.warmup_bytes:
            self._boundary_time = self._clock()
            self._boundary_bytes = self.total_bytes

    def finish(self):
        self._finished = self._clock()

    @property
    def elapsed(self) -> float:
        """Seconds since start (to finish, once finished)."""
        if self._started is None:
            return 0.0
        end = self._finished if self._finished is not None else self._clock()
        return end - self._started

    @property
    def warmup_completed(self) -> bool:
        return self._boundary_time is not None

    def speed_mbps(self) -> float | None:
        """Measured rate in megabits per second, or None without data."""
        if self._started is None:
            return None
        end = self._finished if self._finished is not None else self._clock()

        if self._boundary_time is not None:
            window = end - self._boundary_time
            measured = self.total_bytes - self._boundary_bytes
            if window >= self.min_window_s and measured > 0:
                return measured * 8 / window / 1_000_000

        overall = end - self._started
        if overall <= 0 or self.total_bytes == 0:
            return None
        return self.total_bytes * 8 / overall / 1_000_000


class ThroughputProber:
    """Streams a download from a public speed test endpoint and meters it."""

    def __init__(
        self,
        settings: ThroughputSettings | None = None,
        session_factory=requests.Session,
        clock=time.perf_counter,
    ):
        """Initialize throughput prober.

        Args:
            settings: Payload sizes, warmup and limits (default: ThroughputSettings())
            session_factory: Callable returning a requests.Session-like object
            clock: Monotonic clock in seconds
        """
        self.settings = settings if settings is not None else ThroughputSettings()
        self._session_factory = session_factory
        self._clock = clock

    def measure_throughput(self, quick: bool = False) -> ThroughputResult:
        """Download the test payload and compute the rate.

        Timing starts when the response headers arrive, so connection setup
        is never counted. A watchdog aborts the transfer once max_duration_s
        has passed, even while a read is still blocked mid-chunk; whatever
        was metered until then is used.

        Args:
            quick: Use the small payload

        Returns:
            ThroughputResult; failures carry an ErrorKind and message
        """
        s = self.settings
        url = s.url_for(quick)
        meter = TransferMeter(s.warmup_bytes, s.min_window_s, clock=self._clock)
        headers = dict(NO_CACHE_HEADERS, **{"Accept-Encoding": "identity"})
        capped = threading.Event()

        logger.debug("Throughput test starting: url=%s", url)
        session = self._session_factory()
        try:
            response = session.get(url, headers=headers, stream=True, timeout=s.timeout_s)
            try:
                if not 200 <= response.status_code < 300:
                    logger.warning("Speed test server returned status %d", response.status_code)
                    return self._failure(ErrorKind.INVALID_RESPONSE)

                meter.start()
                watchdog = threading.Timer(s.max_duration_s, _abort_transfer, args=(response, capped))
                watchdog.daemon = True
                watchdog.start()
                try:
                    for chunk in response.iter_content(chunk_size=s.chunk_size):
                        if not chunk:
                            continue
                        meter.add(len(chunk))
                        if meter.elapsed >= s.max_duration_s:
                            capped.set()
                            break
                finally:
                    watchdog.cancel()
                meter.finish()
            finally:
                response.close()

        except Exception as e:
            if not capped.is_set():
                kind = classify_request_error(e, transfer_started=meter.total_bytes > 0)
                logger.info(
                    "Throughput test failed: %s after %d bytes (%s)",
                    kind.value,
                    meter.total_bytes,
                    e,
                )
                message = _ERROR_MESSAGES.get(kind, f"Speed test failed: {e}")
                return ThroughputResult(None, meter.total_bytes, meter.elapsed, kind, message)
            # The watchdog broke the read; keep what was metered
            logger.debug("Transfer aborted at cap: %s", e)
            meter.finish()
        finally:
            session.close()

        if capped.is_set():
            logger.debug("Throughput test capped at %.1fs", s.max_duration_s)

        speed = meter.speed_mbps()
        if speed is None:
            if capped.is_set():
                logger.info("Speed test reached %.1fs without a complete chunk", s.max_duration_s)
                return ThroughputResult(
                    None,
                    meter.total_bytes,
                    meter.elapsed,
                    ErrorKind.TIMEOUT,
                    _ERROR_MESSAGES[ErrorKind.TIMEOUT],
                )
            logger.warning("Speed test returned no data")
            return self._failure(ErrorKind.INVALID_RESPONSE)

        logger.info(
            "Throughput: %.2f Mbps (%d bytes in %.2fs, warmup %s)",
            speed,
            meter.total_bytes,
            meter.elapsed,
            "excluded" if meter.warmup_completed else "not reached",
        )
        return ThroughputResult(speed, meter.total_bytes, meter.elapsed)

    def _failure(self, kind: ErrorKind) -> ThroughputResult:
        return ThroughputResult(None, 0, 0.0, kind, _ERROR_MESSAGES.get(kind))


def _abort_transfer(response, capped: threading.Event):
    """Break a streaming read from another thread.

    Shutting the socket down wakes a blocked recv immediately; closing the
    response alone only takes effect on the next arrival of data.
    """
    capped.set()
    connection = getattr(getattr(response, "raw", None), "connection", None)
    sock = getattr(connection, "sock", None)
    if sock is not None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Socket shutdown at cap failed: %s", e)
            response.close()
    else:
        response.close()
