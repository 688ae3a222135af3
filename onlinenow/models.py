"""Data models for OnlineNow connectivity assessments."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from onlinenow.errors import ErrorKind


class InterfaceKind(Enum):
    """Type of the active network interface."""

    WIFI = "WiFi"
    CELLULAR = "Cellular"
    WIRED = "Ethernet"
    NONE = "None"
    UNKNOWN = "Unknown"

    @property
    def has_interface(self) -> bool:
        return self is not InterfaceKind.NONE


@dataclass(frozen=True)
class InterfaceState:
    """Snapshot of the OS-reported network path.

    ``is_tunneled`` is a best-effort heuristic based on interface naming and
    flags. It can miss unfamiliar tunnel stacks and can flag unusual physical
    adapters; it is not a security boundary.

    ``kind`` is also guessed from the interface name. The "en" prefix is
    read as wired, but on macOS laptops en0 is usually the Wi-Fi adapter, so
    such a path reports WIRED.
    """

    kind: InterfaceKind
    is_expensive: bool = False
    is_constrained: bool = False
    is_tunneled: bool = False
    interface_name: str | None = None

    def __post_init__(self):
        """A path without an interface carries no path attributes."""
        if self.kind is InterfaceKind.NONE:
            object.__setattr__(self, "is_expensive", False)
            object.__setattr__(self, "is_constrained", False)
            object.__setattr__(self, "is_tunneled", False)
            object.__setattr__(self, "interface_name", None)

    @property
    def is_connected(self) -> bool:
        return self.kind.has_interface

    @classmethod
    def disconnected(cls) -> "InterfaceState":
        return cls(kind=InterfaceKind.NONE)

    @property
    def summary(self) -> str:
        """Human-readable description, e.g. "WiFi + VPN (Low Data Mode)"."""
        if not self.is_connected:
            return "Not connected"
        text = self.kind.value
        if self.is_tunneled:
            text += " + VPN"
        if self.is_constrained:
            text += " (Low Data Mode)"
        return text


@dataclass
class ReachabilityOutcome:
    """Result of a single reachability assessment."""

    reachable: bool
    response_time_ms: float | None = None  # HTTP timing, not network RTT
    error: ErrorKind | None = None
    endpoint: str | None = None  # URL that answered, if any

    def __post_init__(self):
        """Ensure consistency between reachable and error fields."""
        if self.reachable:
            self.error = None
        elif self.error is None:
            self.error = ErrorKind.NO_CONNECTIVITY


@dataclass
class CaptivePortalOutcome:
    """Result of captive portal detection."""

    is_captive: bool
    portal_url: str | None = None
    error: ErrorKind | None = None

    def __post_init__(self):
        if not self.is_captive:
            self.portal_url = None

    @classmethod
    def not_captive(cls) -> "CaptivePortalOutcome":
        return cls(is_captive=False)


class LatencyMethod(Enum):
    """How a latency sample was measured."""

    TCP = "TCP"
    HTTP = "HTTP"

    @property
    def description(self) -> str:
        if self is LatencyMethod.TCP:
            return "TCP handshake timing"
        return "HTTP request timing"


@dataclass
class LatencySample:
    """A single latency measurement."""

    rtt_ms: float | None  # None indicates a failed sample
    method: LatencyMethod
    endpoint: str
    error: ErrorKind | None = None

    def __post_init__(self):
        """Ensure consistency between rtt_ms and error fields."""
        if self.error is not None:
            self.rtt_ms = None
        elif self.rtt_ms is None:
            self.error = ErrorKind.UNKNOWN

    @property
    def succeeded(self) -> bool:
        return self.rtt_ms is not None

    @property
    def formatted_latency(self) -> str:
        if self.rtt_ms is None:
            return "--"
        return f"{self.rtt_ms:.0f} ms"


@dataclass
class ThroughputResult:
    """Result of a download throughput measurement.

    ``speed_mbps`` is always computed from measured bytes over measured time,
    never from the requested payload size.
    """

    speed_mbps: float | None
    bytes_transferred: int
    duration_seconds: float
    error: ErrorKind | None = None
    message: str | None = None  # user-facing error text

    def __post_init__(self):
        if self.error is not None:
            self.speed_mbps = None
            if self.message is None:
                self.message = self.error.message

    @property
    def succeeded(self) -> bool:
        return self.speed_mbps is not None

    @property
    def formatted_speed(self) -> str:
        speed = self.speed_mbps
        if speed is None:
            return "--"
        if speed < 1:
            return f"{speed:.2f} Mbps"
        if speed < 10:
            return f"{speed:.1f} Mbps"
        return f"{speed:.0f} Mbps"

    @property
    def data_used(self) -> str:
        size = self.bytes_transferred
        if size < 1024:
            return f"{size} B"
        if size < 1024 * 1024:
            return f"{size / 1024:.1f} KB"
        return f"{size / 1024 / 1024:.2f} MB"


class QualityTier(Enum):
    """Coarse signal quality derived from latency and throughput."""

    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    UNKNOWN = "Unknown"


class AppState(Enum):
    """Top-level connectivity states."""

    IDLE = "idle"
    CHECKING = "checking"
    ONLINE = "online"
    OFFLINE = "offline"
    LIMITED_CONNECTIVITY = "limited"
    MEASURING_SPEED = "measuring_speed"
    ERROR = "error"


_DISPLAY_TEXT = {
    AppState.IDLE: "Ready",
    AppState.CHECKING: "Checking...",
    AppState.ONLINE: "Online",
    AppState.OFFLINE: "Offline",
    AppState.LIMITED_CONNECTIVITY: "Limited",
    AppState.MEASURING_SPEED: "Measuring Speed...",
}


@dataclass(frozen=True)
class ConnectivityState:
    """Application-visible connectivity state.

    ``reason`` is only meaningful for AppState.ERROR.
    """

    state: AppState
    reason: str | None = None

    def __post_init__(self):
        if self.state is not AppState.ERROR:
            object.__setattr__(self, "reason", None)
        elif not self.reason:
            object.__setattr__(self, "reason", "Unknown error")

    @classmethod
    def error(cls, reason: str) -> "ConnectivityState":
        return cls(AppState.ERROR, reason)

    @property
    def display_text(self) -> str:
        if self.state is AppState.ERROR:
            return self.reason
        return _DISPLAY_TEXT[self.state]

    @property
    def has_internet(self) -> bool:
        """True when the internet is known to be reachable."""
        return self.state in (AppState.ONLINE, AppState.MEASURING_SPEED)


@dataclass(frozen=True)
class AssessmentRecord:
    """Durable snapshot of one completed assessment cycle."""

    timestamp: datetime
    interface_kind: InterfaceKind
    reachable: bool
    speed_mbps: float | None = None
    rtt_ms: float | None = None
    is_tunneled: bool = False
    error: str | None = None

    @property
    def is_online(self) -> bool:
        return self.interface_kind.has_interface and self.reachable
