"""Outcome and status types shared by the orchestrator, notifiers and the status endpoint."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


NOT_STARTED_STATUS = "Not started yet"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_success_status(status_code: int | None) -> bool:
    return status_code is not None and 200 <= status_code < 300


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class NotificationField:
    name: str
    value: str
    inline: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "value": self.value, "inline": self.inline}


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of one probe attempt against one target.

    Build instances with :meth:`from_status` or :meth:`from_error` so that
    ``success`` always agrees with ``status_code``.
    """

    success: bool
    status_code: int | None
    duration_ms: int | None
    timestamp: datetime
    error: str | None = None

    @classmethod
    def from_status(cls, status_code: int, duration_ms: int | None) -> "ProbeOutcome":
        ok = is_success_status(status_code)
        return cls(
            success=ok,
            status_code=status_code,
            duration_ms=duration_ms,
            timestamp=utcnow(),
            error=None if ok else f"HTTP {status_code}",
        )

    @classmethod
    def from_error(cls, error: str, *, status_code: int | None = None, duration_ms: int | None = None) -> "ProbeOutcome":
        return cls(
            success=False,
            status_code=status_code,
            duration_ms=duration_ms,
            timestamp=utcnow(),
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "statusCode": self.status_code,
            "durationMs": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class CycleResult:
    url: str
    http: ProbeOutcome | None = None
    browser: ProbeOutcome | None = None

    @property
    def outcomes(self) -> list[ProbeOutcome]:
        return [o for o in (self.http, self.browser) if o is not None]

    @property
    def failed(self) -> bool:
        return any(not o.success for o in self.outcomes)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"url": self.url}
        if self.http is not None:
            data["http"] = self.http.to_dict()
        if self.browser is not None:
            data["browser"] = self.browser.to_dict()
        return data


@dataclass(frozen=True)
class CycleSummary:
    last_run: datetime | None = None
    last_status: str = NOT_STARTED_STATUS
    results: tuple[CycleResult, ...] = field(default_factory=tuple)

    @property
    def failed_results(self) -> list[CycleResult]:
        return [r for r in self.results if r.failed]

    @property
    def all_ok(self) -> bool:
        return not self.failed_results

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastRun": self.last_run.isoformat() if self.last_run else None,
            "lastStatus": self.last_status,
            "results": [r.to_dict() for r in self.results],
        }
