"""Network latency measurement by TCP handshake timing.

ICMP needs raw sockets (root) on most desktops, so round-trip time is
measured as the time to complete a TCP connect to a well-known HTTPS port.
Name resolution happens before the timer starts, bounded by the same
timeout, and the socket is closed as soon as it connects; no payload or TLS
is exchanged.
"""

import logging
import socket
import time
from concurrent import futures
from urllib.parse import urlsplit

import requests

from onlinenow.errors import ErrorKind, classify_request_error, classify_socket_error
from onlinenow.models import LatencyMethod, LatencySample
from onlinenow.settings import DEFAULT_LATENCY_ENDPOINTS, LatencyEndpoint

logger = logging.getLogger(__name__)

# getaddrinfo cannot be interrupted, so lookups run here; a stalled resolver
# holds a worker thread instead of the probe
_resolver_pool = futures.ThreadPoolExecutor(max_workers=4, thread_name_prefix="onlinenow-resolve")


def latency_description(rtt_ms: float | None) -> str:
    """Label a round-trip time, e.g. 35.0 -> "Very Good"."""
    if rtt_ms is None:
        return "Unknown"
    if rtt_ms < 20:
        return "Excellent"
    if rtt_ms < 50:
        return "Very Good"
    if rtt_ms < 100:
        return "Good"
    if rtt_ms < 200:
        return "Fair"
    if rtt_ms < 500:
        return "Poor"
    return "Very Poor"


class LatencyProber:
    """Measures TCP connect latency against a rotating set of endpoints."""

    def __init__(
        self,
        timeout_s: float = 3.0,
        endpoints=DEFAULT_LATENCY_ENDPOINTS,
        samples: int = 3,
        resolver=socket.getaddrinfo,
        connector=socket.create_connection,
        session_factory=requests.Session,
        clock=time.perf_counter,
    ):
        """Initialize latency prober.

        Args:
            timeout_s: Connect timeout per sample in seconds
            endpoints: Ordered endpoints used for rotation
            samples: Default sample count for measure_average_latency()
            resolver: getaddrinfo-compatible name resolver
            connector: create_connection-compatible connect function
            session_factory: Callable returning a requests.Session-like object
                             (HTTP response timing only)
            clock: Monotonic clock in seconds
        """
        if timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        if not endpoints:
            raise ValueError("at least one endpoint is required")
        if samples < 1:
            raise ValueError("samples must be at least 1")

        self.timeout_s = timeout_s
        self.endpoints = tuple(endpoints)
        self.samples = samples
        self._resolver = resolver
        self._connector = connector
        self._session_factory = session_factory
        self._clock = clock

    def measure_latency(self, endpoint: LatencyEndpoint) -> LatencySample:
        """Time a single TCP handshake to endpoint.

        Returns:
            LatencySample with rtt_ms set on success, or error set on failure
        """
        name = endpoint.display_name
        try:
            infos = self._resolve(endpoint)
            if not infos:
                return LatencySample(None, LatencyMethod.TCP, name, ErrorKind.NO_CONNECTIVITY)
            sockaddr = infos[0][4]
            address = (sockaddr[0], sockaddr[1])

            started = self._clock()
            sock = self._connector(address, timeout=self.timeout_s)
            elapsed_ms = (self._clock() - started) * 1000.0
            sock.close()

        except OSError as e:
            kind = classify_socket_error(e)
            logger.debug("TCP connect failed: endpoint=%s, error=%s (%s)", name, kind.value, e)
            return LatencySample(None, LatencyMethod.TCP, name, kind)

        logger.debug("TCP connect: endpoint=%s, rtt=%.1fms", name, elapsed_ms)
        return LatencySample(elapsed_ms, LatencyMethod.TCP, name)

    def _resolve(self, endpoint: LatencyEndpoint):
        future = _resolver_pool.submit(self._resolver, endpoint.host, endpoint.port, type=socket.SOCK_STREAM)
        try:
            return future.result(timeout=self.timeout_s)
        except futures.TimeoutError:
            future.cancel()
            raise socket.timeout(f"resolving {endpoint.host} timed out") from None

    def measure_average_latency(self, samples: int | None = None) -> LatencySample:
        """Average several handshake samples across the endpoint rotation.

        Sample i starts at endpoint i (mod len) and falls back through the
        remaining endpoints until one succeeds. Failed attempts are discarded.

        Args:
            samples: Number of samples (default: self.samples)

        Returns:
            Averaged sample, or a failed sample if no attempt succeeded
        """
        if samples is None:
            samples = self.samples
        if samples < 1:
            raise ValueError("samples must be at least 1")

        count = len(self.endpoints)
        rtts = []
        errors = []

        for i in range(samples):
            for offset in range(count):
                endpoint = self.endpoints[(i + offset) % count]
                sample = self.measure_latency(endpoint)
                if sample.succeeded:
                    rtts.append(sample.rtt_ms)
                    break
                errors.append(sample.error)

        if not rtts:
            error = errors[0] if errors else ErrorKind.NO_CONNECTIVITY
            logger.info("Latency measurement failed on all endpoints: %s", error.value)
            return LatencySample(None, LatencyMethod.TCP, "Multiple endpoints", error)

        average = sum(rtts) / len(rtts)
        logger.debug("Average latency: %.1fms over %d samples", average, len(rtts))
        return LatencySample(average, LatencyMethod.TCP, f"Average of {len(rtts)} samples")

    def measure_http_response_time(self, url: str) -> LatencySample:
        """Time a full HEAD request to url.

        Includes DNS, TCP, TLS and server time, so it is only reported as an
        HTTP sample and never used as network RTT.
        """
        host = urlsplit(url).hostname or url
        session = self._session_factory()
        try:
            started = self._clock()
            response = session.head(
                url,
                headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
                timeout=self.timeout_s,
                allow_redirects=False,
            )
            elapsed_ms = (self._clock() - started) * 1000.0
        except Exception as e:
            kind = classify_request_error(e)
            logger.debug("HTTP timing failed: url=%s, error=%s", url, e)
            return LatencySample(None, LatencyMethod.HTTP, host, kind)
        finally:
            session.close()

        if not 200 <= response.status_code < 400:
            return LatencySample(None, LatencyMethod.HTTP, host, ErrorKind.INVALID_RESPONSE)
        return LatencySample(elapsed_ms, LatencyMethod.HTTP, host)
