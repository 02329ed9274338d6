"""Repository abstraction for execution record persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..models import ExecutionRecord, ExecutionStatus
from .models import ExecutionStats


class ExecutionRepository(Protocol):
    """Protocol for execution persistence backends."""

    async def create_execution(self, record: ExecutionRecord) -> None:
        """Persist a newly started execution."""

    async def complete_execution(self, record: ExecutionRecord) -> None:
        """Persist the finalized execution record."""

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        """Retrieve an execution, including its logs."""

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> list[ExecutionRecord]:
        """Return executions, newest first. Logs are not included."""

    async def get_stats(self, workflow_id: Optional[str] = None) -> ExecutionStats:
        """Count executions by status."""
