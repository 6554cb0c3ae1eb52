from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Sequence

from keepalive.models import CycleSummary


NEXT_RUN_PENDING = "Soon"


class StatusBoard:
    """Holds the latest :class:`CycleSummary`.

    Summaries are immutable; writers swap in a new object and readers take
    whatever reference is current, so a reader never sees a half-written
    summary.
    """

    def __init__(self, targets: Sequence[str], interval_seconds: float):
        self.targets = tuple(targets)
        self.interval_seconds = float(interval_seconds)
        self._summary = CycleSummary()

    def snapshot(self) -> CycleSummary:
        return self._summary

    def mark_started(self, started_at: datetime) -> None:
        self._summary = replace(self._summary, last_run=started_at)

    def publish(self, summary: CycleSummary) -> None:
        self._summary = summary

    def next_run(self, summary: CycleSummary | None = None) -> datetime | None:
        summary = summary or self._summary
        if summary.last_run is None:
            return None
        return summary.last_run + timedelta(seconds=self.interval_seconds)

    def status_payload(self) -> dict[str, Any]:
        summary = self._summary
        next_run = self.next_run(summary)
        return {
            "status": "alive",
            "lastRun": summary.last_run.isoformat() if summary.last_run else None,
            "lastStatus": summary.last_status,
            "nextRun": next_run.isoformat() if next_run else NEXT_RUN_PENDING,
            "targets": list(self.targets),
            "results": [r.to_dict() for r in summary.results],
        }
