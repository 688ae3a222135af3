"""Connectivity state machine driving the probes."""

import functools
import logging
from datetime import datetime

from PySide6.QtCore import QObject, QThreadPool, QTimer, Signal

from onlinenow.history import HistorySink
from onlinenow.latency import LatencyProber
from onlinenow.models import (
    AppState,
    AssessmentRecord,
    ConnectivityState,
    InterfaceState,
    LatencySample,
    QualityTier,
    ReachabilityOutcome,
    ThroughputResult,
)
from onlinenow.path_observer import PathObserver
from onlinenow.quality import score
from onlinenow.reachability import ReachabilityProber
from onlinenow.settings import ScheduleSettings
from onlinenow.throughput import ThroughputProber
from onlinenow.workers import ProbeKind, ProbeWorker

logger = logging.getLogger(__name__)


class ConnectivityOrchestrator(QObject):
    """Fuses path, reachability, latency and throughput into one state.

    Key features:
    - Interface changes gate all probing (no probes while disconnected)
    - Timer-driven reachability and throughput cycles
    - Single-flight per probe kind (duplicate invocations are dropped)
    - Generation ID invalidates in-flight results on stop and on disconnect

    Thread-safe: probes run on a QThreadPool; all state is written on the
    thread owning the orchestrator, via queued signals from the workers.
    """

    # Signals
    state_changed = Signal(object)  # ConnectivityState
    interface_changed = Signal(object)  # InterfaceState
    reachability_changed = Signal(object)  # ReachabilityOutcome
    captive_portal_detected = Signal(object)  # CaptivePortalOutcome
    latency_changed = Signal(object)  # LatencySample
    throughput_changed = Signal(object)  # ThroughputResult
    quality_changed = Signal(object)  # QualityTier
    assessment_recorded = Signal(object)  # AssessmentRecord

    def __init__(
        self,
        path_observer: PathObserver,
        reachability: ReachabilityProber,
        latency: LatencyProber,
        throughput: ThroughputProber,
        history: HistorySink | None = None,
        settings: ScheduleSettings | None = None,
        thread_pool=None,
        parent=None,
    ):
        """Initialize connectivity orchestrator.

        Args:
            path_observer: Source of interface_changed events
            reachability: Prober providing check_connectivity()
            latency: Prober providing measure_average_latency()
            throughput: Prober providing measure_throughput(quick)
            history: Optional sink receiving one record per assessment
            settings: Probe cadence (default: ScheduleSettings())
            thread_pool: Pool with a start(runnable) method
                         (default: QThreadPool.globalInstance())
            parent: Qt parent object
        """
        super().__init__(parent)

        self.path_observer = path_observer
        self.reachability = reachability
        self.latency = latency
        self.throughput = throughput
        self.history = history
        self.settings = settings if settings is not None else ScheduleSettings()

        self._state = ConnectivityState(AppState.IDLE)
        self._interface: InterfaceState | None = None
        self._quality = QualityTier.UNKNOWN
        self._latest_reachability: ReachabilityOutcome | None = None
        self._latest_latency: LatencySample | None = None
        self._latest_throughput: ThroughputResult | None = None

        # Generation ID for invalidating stale results
        self._generation_id = 0
        self._in_flight = {}  # {ProbeKind: generation_id}

        # Follow-ups owed to the current reachability cycle
        self._speed_test_pending = False
        self._speed_test_quick = True
        self._manual_check_pending = False

        # Threading
        self.thread_pool = thread_pool if thread_pool is not None else QThreadPool.globalInstance()

        self.reachability_timer = QTimer(self)
        self.reachability_timer.setInterval(self.settings.reachability_interval_ms)
        self.reachability_timer.timeout.connect(self._on_reachability_tick)

        self.throughput_timer = QTimer(self)
        self.throughput_timer.setInterval(self.settings.throughput_interval_ms)
        self.throughput_timer.timeout.connect(self._on_throughput_tick)

        self.path_observer.interface_changed.connect(self._on_interface_changed)
        self.path_observer.error.connect(self._on_observer_error)

        # Monitoring state
        self.is_monitoring = False

    # Read-only state

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def interface_state(self) -> InterfaceState | None:
        return self._interface

    @property
    def quality(self) -> QualityTier:
        return self._quality

    @property
    def latest_reachability(self) -> ReachabilityOutcome | None:
        return self._latest_reachability

    @property
    def latest_latency(self) -> LatencySample | None:
        return self._latest_latency

    @property
    def latest_throughput(self) -> ThroughputResult | None:
        return self._latest_throughput

    # Lifecycle

    def start_monitoring(self):
        """Start observing the network path and probing on schedule."""
        if self.is_monitoring:
            return

        self.is_monitoring = True
        self._interface = None
        self._set_state(ConnectivityState(AppState.CHECKING))

        self.reachability_timer.start()
        self.throughput_timer.start()
        # Emits the current interface state synchronously
        self.path_observer.start()

        logger.info(
            "Monitoring started: reachability every %dms, throughput every %dms",
            self.settings.reachability_interval_ms,
            self.settings.throughput_interval_ms,
        )

    def stop_monitoring(self):
        """Stop all probing and invalidate in-flight results."""
        if not self.is_monitoring:
            return

        self.is_monitoring = False
        self.reachability_timer.stop()
        self.throughput_timer.stop()
        self.path_observer.stop()
        self._invalidate_in_flight()

        self._set_state(ConnectivityState(AppState.IDLE))
        self._set_quality(QualityTier.UNKNOWN)
        logger.info("Monitoring stopped (generation_id=%d)", self._generation_id)

    def check_now(self, include_speed: bool = False) -> bool:
        """Run a manual assessment immediately.

        Args:
            include_speed: Also run a full-size throughput test when reachable

        Returns:
            False if the check could not start (not monitoring)
        """
        if not self.is_monitoring:
            logger.warning("Manual check ignored: not monitoring")
            return False

        logger.info("Manual check requested (include_speed=%s)", include_speed)

        if not self._is_connected():
            self._record_assessment()
            return True

        self._manual_check_pending = True
        if include_speed:
            self._speed_test_pending = True
            self._speed_test_quick = False

        self._set_state(ConnectivityState(AppState.CHECKING))
        self._start_reachability()
        return True

    def get_stats(self):
        """Get orchestrator statistics.

        Returns:
            Dict with orchestrator state info
        """
        return {
            "state": self._state.state.value,
            "quality": self._quality.value,
            "in_flight": sorted(kind.value for kind in self._in_flight),
            "monitoring": self.is_monitoring,
            "generation_id": self._generation_id,
        }

    # Path events

    def _on_interface_changed(self, interface: InterfaceState):
        if not self.is_monitoring:
            return

        previous = self._interface
        self._interface = interface
        self.interface_changed.emit(interface)

        if not interface.is_connected:
            # Results from the old path must not land on the new state
            self._invalidate_in_flight()
            was_offline = self._state.state is AppState.OFFLINE
            self._set_state(ConnectivityState(AppState.OFFLINE))
            self._set_quality(QualityTier.UNKNOWN)
            if not was_offline:
                self._record_assessment()
            return

        if previous is None or not previous.is_connected:
            logger.info("Interface up (%s); checking reachability", interface.summary)
            self._set_state(ConnectivityState(AppState.CHECKING))
            self._speed_test_pending = True
            self._speed_test_quick = self.settings.quick_throughput
            self._start_reachability()
            return

        # Still connected but over a different path
        self._start_reachability()

    def _on_observer_error(self, message: str):
        if not self.is_monitoring:
            return
        self._set_state(ConnectivityState.error(message))
        self._set_quality(QualityTier.UNKNOWN)

    # Timers

    def _on_reachability_tick(self):
        if not self.is_monitoring or not self._is_connected():
            return
        self._start_reachability()

    def _on_throughput_tick(self):
        if not self.is_monitoring:
            return
        if self._state.state is not AppState.ONLINE:
            logger.debug("Throughput tick skipped: state=%s", self._state.state.value)
            return
        self._start_throughput(self.settings.quick_throughput)

    # Scheduling

    def _start_reachability(self):
        self._start_probe(ProbeKind.REACHABILITY, self.reachability.check_connectivity)

    def _start_latency(self):
        self._start_probe(ProbeKind.LATENCY, self.latency.measure_average_latency)

    def _start_throughput(self, quick: bool):
        if self._is_in_flight(ProbeKind.THROUGHPUT):
            logger.debug("Probe already in flight, skipping: kind=%s", ProbeKind.THROUGHPUT.value)
            return
        # Set before the worker starts; its result may arrive at any point after
        self._set_state(ConnectivityState(AppState.MEASURING_SPEED))
        probe = functools.partial(self.throughput.measure_throughput, quick=quick)
        self._start_probe(ProbeKind.THROUGHPUT, probe)

    def _is_in_flight(self, kind: ProbeKind) -> bool:
        return self._in_flight.get(kind) == self._generation_id

    def _start_probe(self, kind: ProbeKind, probe) -> bool:
        """Schedule a probe unless one of the same kind is in flight.

        Returns:
            True if a worker was started
        """
        if self._is_in_flight(kind):
            logger.debug("Probe already in flight, skipping: kind=%s", kind.value)
            return False

        # Capture current generation_id
        generation_id = self._generation_id
        self._in_flight[kind] = generation_id

        worker = ProbeWorker(probe, kind, generation_id)
        worker.signals.result_ready.connect(self._on_probe_result)
        worker.signals.error.connect(self._on_probe_error)
        worker.signals.finished.connect(self._on_probe_finished)

        # Execute in thread pool
        self.thread_pool.start(worker)
        return True

    def _invalidate_in_flight(self):
        self._generation_id += 1
        self._in_flight.clear()
        self._speed_test_pending = False
        self._manual_check_pending = False

    # Results

    def _is_current(self, kind: ProbeKind, generation_id: int) -> bool:
        if generation_id != self._generation_id:
            logger.debug(
                "Ignoring stale result: kind=%s, generation_id=%d (current=%d)",
                kind.value,
                generation_id,
                self._generation_id,
            )
            return False
        return self.is_monitoring and self._is_connected()

    def _on_probe_result(self, result, kind: ProbeKind, generation_id: int):
        if not self._is_current(kind, generation_id):
            return

        if kind is ProbeKind.REACHABILITY:
            self._apply_reachability(*result)
        elif kind is ProbeKind.LATENCY:
            self._apply_latency(result)
        elif kind is ProbeKind.THROUGHPUT:
            self._apply_throughput(result)

    def _on_probe_error(self, kind: ProbeKind, generation_id: int, error_msg: str):
        if not self._is_current(kind, generation_id):
            return

        logger.error("Probe error: kind=%s, error=%s", kind.value, error_msg)
        self._speed_test_pending = False
        self._manual_check_pending = False
        self._set_state(ConnectivityState.error(f"{kind.value.capitalize()} check failed: {error_msg}"))
        self._set_quality(QualityTier.UNKNOWN)

    def _on_probe_finished(self, kind: ProbeKind, generation_id: int):
        # A stale worker must not clear the flag of a newer one
        if self._in_flight.get(kind) == generation_id:
            del self._in_flight[kind]

    def _apply_reachability(self, outcome: ReachabilityOutcome, captive):
        self._latest_reachability = outcome
        self.reachability_changed.emit(outcome)
        if captive.is_captive:
            self.captive_portal_detected.emit(captive)

        if not outcome.reachable:
            entering_limited = self._state.state is not AppState.LIMITED_CONNECTIVITY
            self._set_state(ConnectivityState(AppState.LIMITED_CONNECTIVITY))
            self._set_quality(QualityTier.UNKNOWN)
            self._speed_test_pending = False
            if entering_limited or self._manual_check_pending:
                self._manual_check_pending = False
                self._record_assessment(outcome.error.message)
            return

        if self._state.state is not AppState.MEASURING_SPEED:
            self._set_state(ConnectivityState(AppState.ONLINE))
        self._start_latency()

        if self._speed_test_pending:
            self._speed_test_pending = False
            # The throughput result completes the manual check
            self._start_throughput(self._speed_test_quick)
        elif self._manual_check_pending:
            self._manual_check_pending = False
            self._record_assessment()

        self._update_quality()

    def _apply_latency(self, sample: LatencySample):
        self._latest_latency = sample
        self.latency_changed.emit(sample)
        self._update_quality()

    def _apply_throughput(self, result: ThroughputResult):
        self._latest_throughput = result
        self.throughput_changed.emit(result)

        if self._state.state is AppState.MEASURING_SPEED:
            self._set_state(ConnectivityState(AppState.ONLINE))

        self._manual_check_pending = False
        self._update_quality()
        self._record_assessment(None if result.succeeded else result.message)

    # State helpers

    def _is_connected(self) -> bool:
        return self._interface is not None and self._interface.is_connected

    def _set_state(self, new_state: ConnectivityState):
        if new_state == self._state:
            return
        old_state = self._state
        self._state = new_state
        logger.info("State changed: %s -> %s", old_state.display_text, new_state.display_text)
        self.state_changed.emit(new_state)

    def _update_quality(self):
        if not self._state.has_internet:
            self._set_quality(QualityTier.UNKNOWN)
            return
        self._set_quality(score(self._latest_latency, self._latest_throughput))

    def _set_quality(self, quality: QualityTier):
        if quality is self._quality:
            return
        self._quality = quality
        logger.info("Quality changed: %s", quality.value)
        self.quality_changed.emit(quality)

    def _record_assessment(self, error: str | None = None):
        """Snapshot the current assessment and hand it to the history sink."""
        interface = self._interface if self._interface is not None else InterfaceState.disconnected()
        reachable = (
            interface.is_connected
            and self._latest_reachability is not None
            and self._latest_reachability.reachable
            and self._state.state is not AppState.LIMITED_CONNECTIVITY
        )

        speed = rtt = None
        if reachable:
            if self._latest_throughput is not None:
                speed = self._latest_throughput.speed_mbps
            if self._latest_latency is not None:
                rtt = self._latest_latency.rtt_ms
        elif error is None and not interface.is_connected:
            error = "No network interface"

        record = AssessmentRecord(
            timestamp=datetime.now(),
            interface_kind=interface.kind,
            reachable=reachable,
            speed_mbps=speed,
            rtt_ms=rtt,
            is_tunneled=interface.is_tunneled,
            error=error,
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
