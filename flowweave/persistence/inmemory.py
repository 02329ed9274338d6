"""In-memory implementation of the execution repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional

from ..models import ExecutionRecord, ExecutionStatus
from .models import ExecutionStats
from .repository import ExecutionRepository

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryExecutionRepository(ExecutionRepository):
    """Store execution records in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._executions: Dict[str, ExecutionRecord] = {}

    # ------------------------------------------------------------------
    async def create_execution(self, record: ExecutionRecord) -> None:
        if record.execution_id in self._executions:
            raise ValueError(f"Execution {record.execution_id} already exists")
        self._executions[record.execution_id] = record

    async def complete_execution(self, record: ExecutionRecord) -> None:
        self._executions[record.execution_id] = record

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        return self._executions.get(execution_id)

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> list[ExecutionRecord]:
        records = [
            r.model_copy(update={"logs": []})
            for r in self._executions.values()
            if (workflow_id is None or r.workflow_id == workflow_id)
            and (status is None or r.status == status)
        ]
        return sorted(records, key=lambda r: r.started_at or _EPOCH, reverse=True)

    async def get_stats(self, workflow_id: Optional[str] = None) -> ExecutionStats:
        return ExecutionStats.from_statuses(
            r.status.value
            for r in self._executions.values()
            if workflow_id is None or r.workflow_id == workflow_id
        )
