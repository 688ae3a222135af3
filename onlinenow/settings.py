"""Configuration for OnlineNow probes and scheduling.

All values have working defaults. ``Settings.from_env()`` applies overrides
from ``ONLINENOW_*`` environment variables, e.g.:

    $ ONLINENOW_REACHABILITY_INTERVAL_MS=30000 python -m onlinenow
    $ ONLINENOW_DETECT_CAPTIVE_PORTALS=false python -m onlinenow
"""

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

APPLE_CAPTIVE_SUCCESS_BODY = (
    "<HTML><HEAD><TITLE>Success</TITLE></HEAD><BODY>Success</BODY></HTML>"
)


@dataclass(frozen=True)
class LatencyEndpoint:
    """TCP endpoint used for handshake timing."""

    host: str
    port: int = 443
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.host


DEFAULT_LATENCY_ENDPOINTS = (
    LatencyEndpoint("1.1.1.1", 443, "Cloudflare DNS"),
    LatencyEndpoint("8.8.8.8", 443, "Google DNS"),
    LatencyEndpoint("www.google.com", 443, "Google"),
)


def _require_positive(name: str, value: float):
    if value <= 0:
        raise ValueError(f"{name} must be positive")


@dataclass(frozen=True)
class ReachabilitySettings:
    """Endpoints and timeouts for reachability and captive portal checks."""

    primary_url: str = "https://www.google.com/generate_204"
    primary_expected_status: int = 204
    secondary_url: str = "https://cloudflare.com/cdn-cgi/trace"
    tertiary_url: str = "https://www.apple.com/library/test/success.html"
    # Plain HTTP on purpose: portals usually only intercept unencrypted traffic
    captive_url: str = "http://captive.apple.com/hotspot-detect.html"
    captive_expected_body: str = APPLE_CAPTIVE_SUCCESS_BODY
    timeout_s: float = 5.0
    attempts_per_endpoint: int = 1
    retry_pause_s: float = 0.2
    detect_captive_portals: bool = True

    def __post_init__(self):
        _require_positive("timeout_s", self.timeout_s)
        if self.attempts_per_endpoint < 1:
            raise ValueError("attempts_per_endpoint must be at least 1")


@dataclass(frozen=True)
class LatencySettings:
    timeout_s: float = 3.0
    samples: int = 3
    endpoints: tuple = DEFAULT_LATENCY_ENDPOINTS

    def __post_init__(self):
        _require_positive("timeout_s", self.timeout_s)
        if self.samples < 1:
            raise ValueError("samples must be at least 1")
        if not self.endpoints:
            raise ValueError("at least one latency endpoint is required")


@dataclass(frozen=True)
class ThroughputSettings:
    """Download test parameters.

    ``warmup_bytes`` and ``min_window_s`` control warmup exclusion and are
    tunable; see throughput.TransferMeter for the formula.
    """

    url_template: str = "https://speed.cloudflare.com/__down?bytes={bytes}"
    quick_bytes: int = 5_000_000
    full_bytes: int = 10_000_000
    warmup_bytes: int = 100_000
    min_window_s: float = 0.1
    max_duration_s: float = 10.0
    timeout_s: float = 15.0
    chunk_size: int = 64 * 1024

    def __post_init__(self):
        _require_positive("quick_bytes", self.quick_bytes)
        _require_positive("full_bytes", self.full_bytes)
        _require_positive("max_duration_s", self.max_duration_s)
        _require_positive("timeout_s", self.timeout_s)
        _require_positive("chunk_size", self.chunk_size)
        if self.warmup_bytes < 0:
            raise ValueError("warmup_bytes must not be negative")

    def url_for(self, quick: bool) -> str:
        size = self.quick_bytes if quick else self.full_bytes
        return self.url_template.format(bytes=size)


@dataclass(frozen=True)
class ScheduleSettings:
    """Probe cadence for the orchestrator, in milliseconds."""

    reachability_interval_ms: int = 10_000
    throughput_interval_ms: int = 120_000
    interface_poll_ms: int = 2_000
    quick_throughput: bool = True  # periodic tests use the small payload

    def __post_init__(self):
        _require_positive("reachability_interval_ms", self.reachability_interval_ms)
        _require_positive("throughput_interval_ms", self.throughput_interval_ms)
        _require_positive("interface_poll_ms", self.interface_poll_ms)


@dataclass(frozen=True)
class HistorySettings:
    max_records: int = 100

    def __post_init__(self):
        if self.max_records < 1:
            raise ValueError("max_records must be at least 1")


@dataclass(frozen=True)
class Settings:
    """Top-level configuration bundle."""

    reachability: ReachabilitySettings = field(default_factory=ReachabilitySettings)
    latency: LatencySettings = field(default_factory=LatencySettings)
    throughput: ThroughputSettings = field(default_factory=ThroughputSettings)
    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)
    history: HistorySettings = field(default_factory=HistorySettings)
    retry_poll_interval_s: float = 2.0
    constrained_override: bool = False

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """Build settings from ONLINENOW_* environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Raises:
            ValueError: If a variable holds an unparsable or invalid value
        """
        env = os.environ if environ is None else environ

        reachability = ReachabilitySettings(
            timeout_s=_env_float(env, "ONLINENOW_REACHABILITY_TIMEOUT_S", 5.0),
            attempts_per_endpoint=_env_int(env, "ONLINENOW_REACHABILITY_ATTEMPTS", 1),
            detect_captive_portals=_env_bool(env, "ONLINENOW_DETECT_CAPTIVE_PORTALS", True),
        )
        latency = LatencySettings(
            timeout_s=_env_float(env, "ONLINENOW_LATENCY_TIMEOUT_S", 3.0),
            samples=_env_int(env, "ONLINENOW_LATENCY_SAMPLES", 3),
        )
        throughput = ThroughputSettings(
            warmup_bytes=_env_int(env, "ONLINENOW_WARMUP_BYTES", 100_000),
            max_duration_s=_env_float(env, "ONLINENOW_THROUGHPUT_MAX_DURATION_S", 10.0),
            timeout_s=_env_float(env, "ONLINENOW_THROUGHPUT_TIMEOUT_S", 15.0),
        )
        schedule = ScheduleSettings(
            reachability_interval_ms=_env_int(env, "ONLINENOW_REACHABILITY_INTERVAL_MS", 10_000),
            throughput_interval_ms=_env_int(env, "ONLINENOW_THROUGHPUT_INTERVAL_MS", 120_000),
            interface_poll_ms=_env_int(env, "ONLINENOW_INTERFACE_POLL_MS", 2_000),
            quick_throughput=_env_bool(env, "ONLINENOW_QUICK_THROUGHPUT", True),
        )
        history = HistorySettings(
            max_records=_env_int(env, "ONLINENOW_HISTORY_MAX_RECORDS", 100),
        )

        settings = cls(
            reachability=reachability,
            latency=latency,
            throughput=throughput,
            schedule=schedule,
            history=history,
            retry_poll_interval_s=_env_float(env, "ONLINENOW_RETRY_POLL_INTERVAL_S", 2.0),
            constrained_override=_env_bool(env, "ONLINENOW_CONSTRAINED", False),
        )
        logger.debug("Settings loaded: %s", settings)
        return settings


def _env_float(env, name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(env, name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(env, name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
