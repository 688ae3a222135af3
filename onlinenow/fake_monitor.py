"""Mock connectivity monitor for testing and offline development."""

import logging
import random
from datetime import datetime
from enum import Enum

from PySide6.QtCore import QObject, QTimer, Signal

from onlinenow.errors import ErrorKind
from onlinenow.history import HistorySink
from onlinenow.models import (
    AppState,
    AssessmentRecord,
    CaptivePortalOutcome,
    ConnectivityState,
    InterfaceKind,
    InterfaceState,
    LatencyMethod,
    LatencySample,
    QualityTier,
    ReachabilityOutcome,
    ThroughputResult,
)
from onlinenow.quality import score

logger = logging.getLogger(__name__)


class Scenario(Enum):
    """Preset network conditions."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CAPTIVE_PORTAL = "captive_portal"
    SLOW = "slow"
    UNSTABLE = "unstable"
    CELLULAR_EXPENSIVE = "cellular_expensive"
    VPN_ACTIVE = "vpn_active"
    LOW_DATA_MODE = "low_data_mode"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    Scenario.CONNECTED: "Connected (WiFi)",
    Scenario.DISCONNECTED: "Disconnected",
    Scenario.CAPTIVE_PORTAL: "Captive Portal (Hotel WiFi)",
    Scenario.SLOW: "Slow Connection",
    Scenario.UNSTABLE: "Unstable Connection",
    Scenario.CELLULAR_EXPENSIVE: "Cellular (Expensive)",
    Scenario.VPN_ACTIVE: "VPN Active",
    Scenario.LOW_DATA_MODE: "Low Data Mode",
}

_WIFI = InterfaceState(InterfaceKind.WIFI)

# (state, interface, rtt_ms, speed_mbps)
_SCENARIOS = {
    Scenario.CONNECTED: (AppState.ONLINE, _WIFI, 25.0, 100.0),
    Scenario.DISCONNECTED: (AppState.OFFLINE, InterfaceState.disconnected(), None, None),
    Scenario.CAPTIVE_PORTAL: (AppState.LIMITED_CONNECTIVITY, _WIFI, None, None),
    Scenario.SLOW: (AppState.ONLINE, _WIFI, 250.0, 2.0),
    Scenario.UNSTABLE: (AppState.ONLINE, _WIFI, 150.0, 10.0),
    Scenario.CELLULAR_EXPENSIVE: (
        AppState.ONLINE,
        InterfaceState(InterfaceKind.CELLULAR, is_expensive=True),
        80.0,
        25.0,
    ),
    Scenario.VPN_ACTIVE: (
        AppState.ONLINE,
        InterfaceState(InterfaceKind.WIFI, is_tunneled=True),
        45.0,
        50.0,
    ),
    Scenario.LOW_DATA_MODE: (
        AppState.ONLINE,
        InterfaceState(InterfaceKind.CELLULAR, is_expensive=True, is_constrained=True),
        60.0,
        5.0,
    ),
}

_PORTAL_URL = "http://portal.example.com/login"

# Degradation steps: (rtt_ms, speed_mbps)
_DEGRADATION_STEPS = (
    (20.0, 100.0),
    (50.0, 50.0),
    (100.0, 20.0),
    (200.0, 5.0),
    (500.0, 1.0),
)


class MockConnectivityMonitor(QObject):
    """Simulates connectivity states without touching the network.

    Exposes the same properties and signals as ConnectivityOrchestrator, so it
    can stand in for it in tests and demos (ONLINENOW_MONITOR=mock).
    """

    state_changed = Signal(object)
    interface_changed = Signal(object)
    reachability_changed = Signal(object)
    captive_portal_detected = Signal(object)
    latency_changed = Signal(object)
    throughput_changed = Signal(object)
    quality_changed = Signal(object)
    assessment_recorded = Signal(object)

    def __init__(
        self,
        scenario: Scenario = Scenario.CONNECTED,
        history: HistorySink | None = None,
        seed: int | None = None,
        parent=None,
    ):
        """Initialize with a preset scenario, optional history sink and random seed."""
        super().__init__(parent)
        self.history = history
        # Create isolated random instance for deterministic simulations
        self._random = random.Random(seed)

        self.is_monitoring = False
        self._scenario = scenario
        self._state = ConnectivityState(AppState.IDLE)
        self._interface = InterfaceState.disconnected()
        self._latency: LatencySample | None = None
        self._throughput: ThroughputResult | None = None
        self._quality = QualityTier.UNKNOWN
        self._load(scenario)

        self._drop_timer = QTimer(self)
        self._drop_timer.setSingleShot(True)
        self._drop_timer.timeout.connect(self._on_drop_finished)
        self._recovery: Scenario | None = None

        self.unstable_timer = QTimer(self)
        self.unstable_timer.timeout.connect(self._unstable_tick)
        self._drop_probability = 0.3

        self._degradation_timer = QTimer(self)
        self._degradation_timer.timeout.connect(self._degradation_step)
        self._degradation_index = 0

    @property
    def scenario(self) -> Scenario:
        return self._scenario

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def interface_state(self) -> InterfaceState:
        return self._interface

    @property
    def quality(self) -> QualityTier:
        return self._quality

    @property
    def latest_latency(self) -> LatencySample | None:
        return self._latency

    @property
    def latest_throughput(self) -> ThroughputResult | None:
        return self._throughput

    def start_monitoring(self):
        """Begin emitting; publishes the current scenario once."""
        if self.is_monitoring:
            return
        self.is_monitoring = True
        self._publish()
        logger.info("Mock monitor started: %s", self._scenario.description)

    def stop_monitoring(self):
        self.stop_simulation()
        self.is_monitoring = False

    def check_now(self, include_speed: bool = False) -> bool:
        """Report the current scenario as a completed assessment."""
        reachable = self._state.has_internet
        record = AssessmentRecord(
            timestamp=datetime.now(),
            interface_kind=self._interface.kind,
            reachable=reachable,
            speed_mbps=self._throughput.speed_mbps if self._throughput and reachable else None,
            rtt_ms=self._latency.rtt_ms if self._latency and reachable else None,
            is_tunneled=self._interface.is_tunneled,
            error=None if reachable else self._state.display_text,
        )

        if self.history is not None:
            try:
                self.history.record_check(
                    interface_kind=record.interface_kind,
                    reachable=record.reachable,
                    speed_mbps=record.speed_mbps,
                    rtt_ms=record.rtt_ms,
                    is_tunneled=record.is_tunneled,
                    error=record.error,
                )
            except Exception:
                logger.exception("History sink failed to record assessment")

        self.assessment_recorded.emit(record)
        return True

    # Simulation controls

    def apply(self, scenario: Scenario):
        """Switch to a preset scenario and emit the resulting changes."""
        self._scenario = scenario
        self._load(scenario)
        self._publish()
        logger.debug("Mock scenario applied: %s", scenario.description)

    def set_state(self, state: ConnectivityState):
        if state != self._state:
            self._state = state
            self.state_changed.emit(state)

    def simulate_connection_drop(self, drop_duration_ms: int = 3000, recovery: Scenario | None = None):
        """Disconnect now and recover after drop_duration_ms.

        Args:
            drop_duration_ms: How long the connection stays down
            recovery: Scenario to recover to (default: the scenario before the drop)
        """
        self._recovery = recovery if recovery is not None else self._scenario
        self.apply(Scenario.DISCONNECTED)
        self._drop_timer.start(drop_duration_ms)

    def simulate_unstable_connection(self, drop_probability: float = 0.3, check_interval_ms: int = 2000):
        """Randomly drop the connection for 500 ms at each check interval."""
        if not 0.0 <= drop_probability <= 1.0:
            raise ValueError("drop_probability must be between 0 and 1")
        self._drop_probability = drop_probability
        self.unstable_timer.start(check_interval_ms)

    def simulate_captive_portal(self):
        self.apply(Scenario.CAPTIVE_PORTAL)

    def resolve_captive_portal(self):
        """Simulate the user logging in to the portal."""
        self._scenario = Scenario.CONNECTED
        self._state = ConnectivityState(AppState.ONLINE)
        self._interface = _WIFI
        self._latency = LatencySample(30.0, LatencyMethod.TCP, "Mock")
        self._throughput = ThroughputResult(50.0, 5_000_000, 0.8)
        self._quality = self._score()
        self._publish()

    def simulate_degradation(self, duration_ms: int = 10000):
        """Step quality down over duration_ms, then disconnect."""
        self._degradation_index = 0
        self._degradation_timer.start(max(1, duration_ms // len(_DEGRADATION_STEPS)))
        self._degradation_step()

    def stop_simulation(self):
        """Cancel any running simulation timers."""
        self._drop_timer.stop()
        self.unstable_timer.stop()
        self._degradation_timer.stop()
        self._recovery = None

    # Internals

    def _load(self, scenario: Scenario):
        app_state, interface, rtt, speed = _SCENARIOS[scenario]
        self._state = ConnectivityState(app_state)
        self._interface = interface
        self._latency = LatencySample(rtt, LatencyMethod.TCP, "Mock") if rtt is not None else None
        self._throughput = ThroughputResult(speed, 5_000_000, 1.0) if speed is not None else None
        self._quality = self._score()

    def _publish(self):
        self.state_changed.emit(self._state)
        self.interface_changed.emit(self._interface)

        if self._interface.is_connected:
            if self._state.has_internet:
                outcome = ReachabilityOutcome(reachable=True, response_time_ms=self._latency_ms())
            else:
                outcome = ReachabilityOutcome(reachable=False, error=ErrorKind.CAPTIVE_PORTAL_DETECTED)
                self.captive_portal_detected.emit(
                    CaptivePortalOutcome(is_captive=True, portal_url=_PORTAL_URL)
                )
            self.reachability_changed.emit(outcome)

        if self._latency is not None:
            self.latency_changed.emit(self._latency)
        if self._throughput is not None:
            self.throughput_changed.emit(self._throughput)
        self.quality_changed.emit(self._quality)

    def _score(self) -> QualityTier:
        if not self._state.has_internet:
            return QualityTier.UNKNOWN
        return score(self._latency, self._throughput)

    def _latency_ms(self):
        return self._latency.rtt_ms if self._latency is not None else None

    def _on_drop_finished(self):
        if self._recovery is None:
            return
        recovery, self._recovery = self._recovery, None
        self.apply(recovery)

    def _unstable_tick(self):
        if self._random.random() < self._drop_probability:
            logger.debug("Mock unstable connection: dropping")
            self.simulate_connection_drop(500, recovery=Scenario.CONNECTED)

    def _degradation_step(self):
        if self._degradation_index >= len(_DEGRADATION_STEPS):
            self._degradation_timer.stop()
            self.apply(Scenario.DISCONNECTED)
            return

        rtt, speed = _DEGRADATION_STEPS[self._degradation_index]
        self._degradation_index += 1
        self._latency = LatencySample(rtt, LatencyMethod.TCP, "Mock")
        self._throughput = ThroughputResult(speed, 5_000_000, 1.0)
        self._quality = self._score()
        self.latency_changed.emit(self._latency)
        self.throughput_changed.emit(self._throughput)
        self.quality_changed.emit(self._quality)
