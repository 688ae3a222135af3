"""HTTP reachability probing with captive portal detection."""

import logging
import time
from urllib.parse import urljoin

import requests

from onlinenow.errors import ErrorKind, classify_request_error
from onlinenow.models import CaptivePortalOutcome, ReachabilityOutcome
from onlinenow.settings import ReachabilitySettings

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


class ReachabilityProber:
    """Verifies that the internet is actually reachable, not just an interface.

    Every attempt uses a fresh session with caching disabled and redirects
    not followed, so a cached or intercepted answer cannot count as success.
    Network failures are returned as outcomes; no method raises for them.
    """

    def __init__(
        self,
        settings: ReachabilitySettings | None = None,
        session_factory=requests.Session,
        sleep=time.sleep,
        clock=time.perf_counter,
    ):
        """Initialize reachability prober.

        Args:
            settings: Endpoints and timeouts (default: ReachabilitySettings())
            session_factory: Callable returning a requests.Session-like object
            sleep: Pause function used between attempts on one endpoint
            clock: Monotonic clock in seconds used for response timing
        """
        self.settings = settings if settings is not None else ReachabilitySettings()
        self._session_factory = session_factory
        self._sleep = sleep
        self._clock = clock

    @property
    def endpoints(self) -> list[tuple[str, int | None]]:
        """Ordered (url, expected_status) cascade; None means any 2xx-3xx."""
        s = self.settings
        return [
            (s.primary_url, s.primary_expected_status),
            (s.secondary_url, None),
            (s.tertiary_url, None),
        ]

    def check_reachability(self) -> ReachabilityOutcome:
        """Try each endpoint in order; the first success wins.

        Returns:
            Reachable outcome with the answering endpoint and its HTTP time,
            or an unreachable outcome carrying the last classified error
        """
        last_error = ErrorKind.NO_CONNECTIVITY

        for url, expected_status in self.endpoints:
            outcome = self._check_endpoint(url, expected_status)
            if outcome.reachable:
                logger.debug(
                    "Reachable via %s (%.0fms)", url, outcome.response_time_ms
                )
                return outcome
            last_error = outcome.error

        logger.debug("All reachability endpoints failed: %s", last_error.value)
        return ReachabilityOutcome(reachable=False, error=last_error)

    def detect_captive_portal(self) -> CaptivePortalOutcome:
        """Check whether HTTP traffic is being intercepted by a captive portal.

        Returns:
            Captive outcome with the portal URL when one is detected. Network
            errors and unexpected statuses are reported as not captive.
        """
        s = self.settings
        if not s.detect_captive_portals:
            return CaptivePortalOutcome.not_captive()

        session = self._session_factory()
        try:
            response = session.get(
                s.captive_url,
                headers=NO_CACHE_HEADERS,
                timeout=s.timeout_s,
                allow_redirects=False,
            )
        except Exception as e:
            kind = classify_request_error(e)
            logger.debug("Captive portal check failed: %s (%s)", kind.value, e)
            return CaptivePortalOutcome(is_captive=False, error=kind)
        finally:
            session.close()

        status = response.status_code
        if 300 <= status < 400:
            location = response.headers.get("Location")
            portal_url = urljoin(s.captive_url, location) if location else response.url
            logger.info("Captive portal detected (redirect to %s)", portal_url)
            return CaptivePortalOutcome(is_captive=True, portal_url=portal_url)

        if status == 200:
            if response.text.strip() == s.captive_expected_body:
                return CaptivePortalOutcome.not_captive()
            logger.info("Captive portal detected (unexpected content at %s)", response.url)
            return CaptivePortalOutcome(is_captive=True, portal_url=response.url)

        logger.debug("Captive portal check inconclusive: status=%d", status)
        return CaptivePortalOutcome.not_captive()

    def check_connectivity(self) -> tuple[ReachabilityOutcome, CaptivePortalOutcome]:
        """Captive portal check followed by the reachability cascade.

        A detected portal short-circuits: the cascade is skipped and the
        reachability outcome is unreachable with CAPTIVE_PORTAL_DETECTED.
        """
        captive = self.detect_captive_portal()
        if captive.is_captive:
            return (
                ReachabilityOutcome(reachable=False, error=ErrorKind.CAPTIVE_PORTAL_DETECTED),
                captive,
            )
        return self.check_reachability(), captive

    def _check_endpoint(self, url: str, expected_status: int | None) -> ReachabilityOutcome:
        s = self.settings
        # 204 endpoints need GET; the others only need headers
        method = "GET" if expected_status == 204 else "HEAD"
        error = ErrorKind.NO_CONNECTIVITY

        for attempt in range(s.attempts_per_endpoint):
            session = self._session_factory()
            started = self._clock()
            try:
                response = session.request(
                    method,
                    url,
                    headers=NO_CACHE_HEADERS,
                    timeout=s.timeout_s,
                    allow_redirects=False,
                )
                elapsed_ms = (self._clock() - started) * 1000.0

                if expected_status is not None:
                    ok = response.status_code == expected_status
                else:
                    ok = 200 <= response.status_code < 400

                if ok:
                    return ReachabilityOutcome(
                        reachable=True, response_time_ms=elapsed_ms, endpoint=url
                    )

                logger.debug("Unexpected status from %s: %d", url, response.status_code)
                error = ErrorKind.INVALID_RESPONSE
                break  # only network errors are retried

            except Exception as e:
                error = classify_request_error(e)
                logger.debug(
                    "Reachability attempt %d/%d failed: url=%s, error=%s",
                    attempt + 1,
                    s.attempts_per_endpoint,
                    url,
                    e,
                )
                if attempt < s.attempts_per_endpoint - 1:
                    self._sleep(s.retry_pause_s)
            finally:
                session.close()

        return ReachabilityOutcome(reachable=False, error=error)
