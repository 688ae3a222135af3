"""Tests for build_orchestrator wiring."""

import pytest
from PySide6.QtCore import QCoreApplication

from onlinenow.history import AssessmentHistory
from onlinenow.latency import LatencyProber
from onlinenow.orchestrator import ConnectivityOrchestrator
from onlinenow.provider import build_operation_queue, build_orchestrator
from onlinenow.reachability import ReachabilityProber
from onlinenow.retry import ResilientOperationQueue
from onlinenow.settings import LatencySettings, ReachabilitySettings, ScheduleSettings, Settings
from onlinenow.throughput import ThroughputProber


@pytest.fixture(scope="module")
def qapp():
    """Create QCoreApplication instance for tests."""
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    yield app


class TestBuildOrchestrator:
    """The factory wires real probes from settings without starting anything."""

    def test_defaults(self, qapp):
        orchestrator = build_orchestrator()

        assert isinstance(orchestrator, ConnectivityOrchestrator)
        assert isinstance(orchestrator.reachability, ReachabilityProber)
        assert isinstance(orchestrator.latency, LatencyProber)
        assert isinstance(orchestrator.throughput, ThroughputProber)
        assert not orchestrator.is_monitoring
        assert orchestrator.history is None

    def test_settings_applied(self, qapp):
        settings = Settings(
            reachability=ReachabilitySettings(timeout_s=2.0),
            latency=LatencySettings(samples=5, timeout_s=1.5),
            schedule=ScheduleSettings(reachability_interval_ms=30_000, interface_poll_ms=500),
        )
        history = AssessmentHistory()

        orchestrator = build_orchestrator(settings, history=history)

        assert orchestrator.history is history
        assert orchestrator.reachability.settings.timeout_s == 2.0
        assert orchestrator.latency.samples == 5
        assert orchestrator.latency.timeout_s == 1.5
        assert orchestrator.reachability_timer.interval() == 30_000
        assert orchestrator.path_observer.timer.interval() == 500

    def test_observer_owned_by_orchestrator(self, qapp):
        orchestrator = build_orchestrator()

        assert orchestrator.path_observer.parent() is orchestrator


class TestBuildOperationQueue:
    def test_defaults(self):
        queue = build_operation_queue()

        assert isinstance(queue, ResilientOperationQueue)
        assert isinstance(queue.reachability, ReachabilityProber)
        assert queue.poll_interval_s == 2.0
        assert queue.queued_count == 0
        assert not queue.is_polling

    def test_settings_applied(self):
        settings = Settings(
            reachability=ReachabilitySettings(timeout_s=4.0),
            retry_poll_interval_s=7.5,
        )

        queue = build_operation_queue(settings)

        assert queue.poll_interval_s == 7.5
        assert queue.reachability.settings.timeout_s == 4.0

    def test_poll_interval_from_environment(self):
        settings = Settings.from_env({"ONLINENOW_RETRY_POLL_INTERVAL_S": "0.5"})

        assert build_operation_queue(settings).poll_interval_s == 0.5
