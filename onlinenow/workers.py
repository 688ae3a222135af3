"""Worker classes for background probe tasks."""

import logging
from enum import Enum
from typing import Callable

from PySide6.QtCore import QObject, QRunnable, Signal

logger = logging.getLogger(__name__)


class ProbeKind(Enum):
    """Probe families; at most one of each is in flight at a time."""

    REACHABILITY = "reachability"
    LATENCY = "latency"
    THROUGHPUT = "throughput"


class WorkerSignals(QObject):
    """Signals for communicating between worker threads and main thread."""

    result_ready = Signal(object, object, int)  # Emits (result, ProbeKind, generation_id)
    error = Signal(object, int, str)  # Emits (ProbeKind, generation_id, error message)
    finished = Signal(object, int)  # Emits (ProbeKind, generation_id) when worker completes


class ProbeWorker(QRunnable):
    """Worker that executes a blocking probe call in a background thread."""

    def __init__(self, probe: Callable[[], object], kind: ProbeKind, generation_id: int):
        super().__init__()
        self.probe = probe
        self.kind = kind
        self.generation_id = generation_id
        self.signals = WorkerSignals()

    def run(self):
        """Execute the probe in background thread."""
        try:
            logger.debug(
                "Worker starting: kind=%s, generation_id=%d", self.kind.value, self.generation_id
            )

            # Probes block on the network for up to their timeout
            result = self.probe()

            self.signals.result_ready.emit(result, self.kind, self.generation_id)

            logger.debug(
                "Worker completed: kind=%s, generation_id=%d", self.kind.value, self.generation_id
            )

        except Exception as e:
            # Probes report network failures as results; anything raised is a bug
            logger.exception(
                "Worker exception: kind=%s, generation_id=%d, error=%s",
                self.kind.value,
                self.generation_id,
                str(e),
            )
            self.signals.error.emit(self.kind, self.generation_id, str(e))

        finally:
            # Always signal completion
            self.signals.finished.emit(self.kind, self.generation_id)
