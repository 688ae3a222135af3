"""Bounded in-memory history of connectivity assessments."""

import csv
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from onlinenow.models import AssessmentRecord, InterfaceKind

logger = logging.getLogger(__name__)


class HistorySink(Protocol):
    """Receives one call per completed assessment."""

    def record_check(
        self,
        interface_kind: InterfaceKind,
        reachable: bool,
        speed_mbps: float | None = None,
        rtt_ms: float | None = None,
        is_tunneled: bool = False,
        error: str | None = None,
    ) -> None:
        ...


@dataclass
class HistoryStatistics:
    total_checks: int
    online_count: int
    offline_count: int
    average_speed_mbps: float | None

    @property
    def uptime_percentage(self) -> float:
        if self.total_checks == 0:
            return 0.0
        return self.online_count / self.total_checks * 100


def describe_interval(seconds: float) -> str:
    """Format an elapsed time, e.g. 125 -> "2 minutes ago"."""
    if seconds < 60:
        return "Just now"
    if seconds < 3600:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'' if minutes == 1 else 's'} ago"
    if seconds < 86400:
        hours = int(seconds // 3600)
        return f"{hours} hour{'' if hours == 1 else 's'} ago"
    days = int(seconds // 86400)
    return f"{days} day{'' if days == 1 else 's'} ago"


class AssessmentHistory:
    """Append-only record store that keeps the newest ``max_records`` entries.

    Timestamps never decrease: a record stamped earlier than its predecessor
    (wall clock stepped back) is stamped with the predecessor's time instead.
    """

    def __init__(self, max_records: int = 100, now=datetime.now):
        if max_records < 1:
            raise ValueError("max_records must be at least 1")
        self._records = deque()  # oldest first; pruned manually
        self._max_records = max_records
        self._now = now

    def __len__(self):
        return len(self._records)

    @property
    def max_records(self) -> int:
        return self._max_records

    @property
    def latest(self) -> AssessmentRecord | None:
        return self._records[-1] if self._records else None

    def record_check(
        self,
        interface_kind: InterfaceKind,
        reachable: bool,
        speed_mbps: float | None = None,
        rtt_ms: float | None = None,
        is_tunneled: bool = False,
        error: str | None = None,
    ) -> AssessmentRecord:
        """Create and store a record for a completed assessment."""
        timestamp = self._now()
        if self._records and timestamp < self._records[-1].timestamp:
            timestamp = self._records[-1].timestamp

        record = AssessmentRecord(
            timestamp=timestamp,
            interface_kind=interface_kind,
            reachable=reachable,
            speed_mbps=speed_mbps,
            rtt_ms=rtt_ms,
            is_tunneled=is_tunneled,
            error=error,
        )
        self.add(record)
        return record

    def add(self, record: AssessmentRecord):
        """Append an existing record, dropping the oldest when full."""
        if self._records and record.timestamp < self._records[-1].timestamp:
            raise ValueError("records must be added in timestamp order")
        while len(self._records) >= self._max_records:
            self._records.popleft()
        self._records.append(record)
        logger.debug(
            "History record added: online=%s (total: %d)", record.is_online, len(self._records)
        )

    def recent(self, limit: int = 20) -> list[AssessmentRecord]:
        """Newest records first."""
        if limit <= 0:
            return []
        return list(reversed(self._records))[:limit]

    def between(self, start: datetime, end: datetime) -> list[AssessmentRecord]:
        """Records with start <= timestamp <= end, newest first."""
        return [r for r in reversed(self._records) if start <= r.timestamp <= end]

    def all_records(self) -> list[AssessmentRecord]:
        """All records, oldest first."""
        return list(self._records)

    def clear(self):
        self._records.clear()
        logger.info("History cleared")

    def statistics(self) -> HistoryStatistics:
        total = len(self._records)
        online = sum(1 for r in self._records if r.is_online)
        speeds = [r.speed_mbps for r in self._records if r.speed_mbps is not None]
        average = sum(speeds) / len(speeds) if speeds else None
        return HistoryStatistics(
            total_checks=total,
            online_count=online,
            offline_count=total - online,
            average_speed_mbps=average,
        )

    def describe_age(self, now: datetime | None = None) -> str | None:
        """How long ago the latest record was made, or None if empty."""
        latest = self.latest
        if latest is None:
            return None
        current = now if now is not None else self._now()
        return describe_interval(max(0.0, (current - latest.timestamp).total_seconds()))

    def export_csv(self, path) -> int:
        """Write all records to a CSV file in chronological order.

        Returns:
            Number of records written

        Raises:
            OSError: If the file cannot be written
        """
        with open(path, "w", newline="", encoding="utf-8") as csvfile:
            writer = csv.writer(csvfile)
            writer.writerow(
                ["ts_iso", "interface", "reachable", "speed_mbps", "rtt_ms", "tunneled", "error"]
            )
            for record in self._records:
                # Empty cells for missing measurements
                speed = "" if record.speed_mbps is None else f"{record.speed_mbps:.2f}"
                rtt = "" if record.rtt_ms is None else f"{record.rtt_ms:.2f}"
                writer.writerow(
                    [
                        record.timestamp.isoformat(),
                        record.interface_kind.value,
                        record.reachable,
                        speed,
                        rtt,
                        record.is_tunneled,
                        record.error or "",
                    ]
                )

        logger.info("Exported %d history records to %s", len(self._records), path)
        return len(self._records)
