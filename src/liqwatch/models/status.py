"""Scheduler status models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

MAX_ERROR_LOG = 10


@dataclass
class TaskStatus:
    """Live scheduler state. Callers only ever receive copies."""

    is_running: bool = False
    last_scan_time: Optional[datetime] = None
    total_scans: int = 0
    opportunities_found: int = 0
    errors: list[str] = field(default_factory=list)

    def snapshot(self) -> TaskStatus:
        return TaskStatus(
            is_running=self.is_running,
            last_scan_time=self.last_scan_time,
            total_scans=self.total_scans,
            opportunities_found=self.opportunities_found,
            errors=list(self.errors),
        )

    def record_error(self, message: str) -> None:
        """에러 추가 — 최근 MAX_ERROR_LOG 개만 유지."""
        self.errors.append(message)
        if len(self.errors) > MAX_ERROR_LOG:
            del self.errors[: len(self.errors) - MAX_ERROR_LOG]


@dataclass(frozen=True)
class SchedulerStats:
    """Aggregate scheduler statistics."""

    total_scans: int
    opportunities_found: int
    average_opportunities_per_scan: float
    uptime_seconds: float
    error_rate: float
