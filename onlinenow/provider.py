"""Observable connectivity state abstraction and real-stack factory."""

import functools
from typing import Protocol

from onlinenow.history import HistorySink
from onlinenow.latency import LatencyProber
from onlinenow.models import ConnectivityState, InterfaceState, LatencySample, QualityTier, ThroughputResult
from onlinenow.orchestrator import ConnectivityOrchestrator
from onlinenow.path_observer import PathObserver, read_interface_state
from onlinenow.reachability import ReachabilityProber
from onlinenow.retry import ResilientOperationQueue
from onlinenow.settings import Settings
from onlinenow.throughput import ThroughputProber


class ConnectivityProvider(Protocol):
    """Protocol for objects exposing observable connectivity state.

    Implementations are QObjects that also emit state_changed,
    interface_changed, latency_changed, throughput_changed and
    quality_changed signals.
    """

    is_monitoring: bool

    @property
    def state(self) -> ConnectivityState:
        ...

    @property
    def interface_state(self) -> InterfaceState | None:
        ...

    @property
    def quality(self) -> QualityTier:
        ...

    @property
    def latest_latency(self) -> LatencySample | None:
        ...

    @property
    def latest_throughput(self) -> ThroughputResult | None:
        ...

    def start_monitoring(self) -> None:
        """Begin observing and probing."""
        ...

    def stop_monitoring(self) -> None:
        """Stop observing; no state changes afterwards."""
        ...

    def check_now(self, include_speed: bool = False) -> bool:
        """Force an assessment; returns False if it could not start."""
        ...


def build_orchestrator(
    settings: Settings | None = None, history: HistorySink | None = None, parent=None
) -> ConnectivityOrchestrator:
    """Wire the real probes into an orchestrator.

    Args:
        settings: Configuration bundle (default: Settings())
        history: Optional history sink
        parent: Qt parent object
    """
    if settings is None:
        settings = Settings()

    source = functools.partial(read_interface_state, constrained=settings.constrained_override)
    observer = PathObserver(source=source, interval_ms=settings.schedule.interface_poll_ms)
    latency = LatencyProber(
        timeout_s=settings.latency.timeout_s,
        endpoints=settings.latency.endpoints,
        samples=settings.latency.samples,
    )

    orchestrator = ConnectivityOrchestrator(
        path_observer=observer,
        reachability=ReachabilityProber(settings.reachability),
        latency=latency,
        throughput=ThroughputProber(settings.throughput),
        history=history,
        settings=settings.schedule,
        parent=parent,
    )
    # The observer lives as long as the orchestrator
    observer.setParent(orchestrator)
    return orchestrator


def build_operation_queue(settings: Settings | None = None) -> ResilientOperationQueue:
    """Create a retry queue that waits on the configured reachability checks."""
    if settings is None:
        settings = Settings()
    return ResilientOperationQueue(
        ReachabilityProber(settings.reachability),
        poll_interval_s=settings.retry_poll_interval_s,
    )
