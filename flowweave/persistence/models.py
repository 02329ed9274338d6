"""Data models for persisted execution state."""

from __future__ import annotations

from typing import Iterable

from pydantic import BaseModel

from ..models import ExecutionStatus


class ExecutionStats(BaseModel):
    """Execution counts per status."""

    total: int = 0
    success: int = 0
    failed: int = 0
    running: int = 0
    pending: int = 0
    cancelled: int = 0

    @classmethod
    def from_statuses(cls, statuses: Iterable[str]) -> "ExecutionStats":
        counts = {status.value: 0 for status in ExecutionStatus}
        total = 0
        for status in statuses:
            total += 1
            counts[ExecutionStatus(status).value] += 1
        return cls(total=total, **counts)
