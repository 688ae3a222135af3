"""Entry point for the OnlineNow connectivity monitor."""

import logging
import os
import signal
import sys

from PySide6.QtCore import QCoreApplication, QTimer

from onlinenow.fake_monitor import MockConnectivityMonitor, Scenario
from onlinenow.history import AssessmentHistory
from onlinenow.logging_config import configure_logging
from onlinenow.provider import build_orchestrator
from onlinenow.settings import Settings

# Configure logging early
configure_logging()
logger = logging.getLogger(__name__)


def _connect_logging(monitor):
    """Log every observable change of a connectivity provider."""
    monitor.state_changed.connect(lambda s: logger.info("Status: %s", s.display_text))
    monitor.interface_changed.connect(lambda i: logger.info("Interface: %s", i.summary))
    monitor.captive_portal_detected.connect(
        lambda c: logger.warning("Captive portal detected: %s", c.portal_url or "(unknown URL)")
    )
    monitor.latency_changed.connect(
        lambda sample: logger.info("Latency: %s (%s)", sample.formatted_latency, sample.endpoint)
    )
    monitor.throughput_changed.connect(
        lambda t: logger.info(
            "Download: %s", t.formatted_speed if t.succeeded else t.message
        )
    )
    monitor.quality_changed.connect(lambda q: logger.info("Quality: %s", q.value))


def _log_summary(history: AssessmentHistory):
    stats = history.statistics()
    if stats.total_checks == 0:
        logger.info("No assessments recorded")
        return
    average = (
        f"{stats.average_speed_mbps:.1f} Mbps" if stats.average_speed_mbps is not None else "n/a"
    )
    logger.info(
        "History: %d checks, %d online, %d offline, uptime %.0f%%, average speed %s, last check %s",
        stats.total_checks,
        stats.online_count,
        stats.offline_count,
        stats.uptime_percentage,
        average,
        history.describe_age(),
    )


def main():
    """Main entry point for the OnlineNow monitor."""
    app = QCoreApplication(sys.argv)

    try:
        settings = Settings.from_env()
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)

    history = AssessmentHistory(max_records=settings.history.max_records)

    # Check for environment variable override
    force_mock = os.environ.get("ONLINENOW_MONITOR", "").lower() == "mock"

    if force_mock:
        monitor = MockConnectivityMonitor(Scenario.CONNECTED, history=history)
        logger.info("Using MockConnectivityMonitor (ONLINENOW_MONITOR=mock)")
    else:
        monitor = build_orchestrator(settings, history=history)
        logger.info("Using live connectivity probes")

    _connect_logging(monitor)
    monitor.assessment_recorded.connect(
        lambda r: logger.debug("Assessment recorded: online=%s", r.is_online)
    )

    def shutdown(*_args):
        logger.info("Shutting down")
        monitor.stop_monitoring()
        _log_summary(history)
        app.quit()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    # Wake the event loop periodically so Python signal handlers can run
    wakeup = QTimer()
    wakeup.start(250)
    wakeup.timeout.connect(lambda: None)

    monitor.start_monitoring()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
