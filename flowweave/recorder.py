"""Append-only execution log."""

from __future__ import annotations

import copy
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .errors import RecorderFinalizedError
from .models import (
    ExecutionRecord,
    ExecutionStatus,
    LogEntry,
    NodeStatus,
    SkipReason,
)

logger = logging.getLogger(__name__)


class ExecutionRecorder:
    """Accumulates the ordered log of one execution.

    Entries are immutable once appended and timestamps never go backwards.
    Inputs and outputs are copied on the way in, so later changes by node
    handlers do not reach the log.
    :meth:`finalize` produces the :class:`ExecutionRecord`; nothing can be
    appended afterwards.
    """

    def __init__(
        self,
        execution_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        user_id: Optional[str] = None,
        input_data: Optional[Dict[str, Any]] = None,
        trigger_type: str = "manual",
    ) -> None:
        self.execution_id = execution_id or str(uuid.uuid4())
        self.workflow_id = workflow_id
        self.user_id = user_id
        self.input_data = copy.deepcopy(input_data)
        self.trigger_type = trigger_type
        self._entries: List[LogEntry] = []
        self._last_timestamp: Optional[datetime] = None
        self._started_at: Optional[datetime] = None
        self._started_clock: Optional[float] = None
        self._record: Optional[ExecutionRecord] = None

    @property
    def logs(self) -> tuple[LogEntry, ...]:
        return tuple(self._entries)

    @property
    def started(self) -> bool:
        return self._started_at is not None

    @property
    def finalized(self) -> bool:
        return self._record is not None

    # ------------------------------------------------------------------
    def _now(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now
        return now

    def _append(self, event: str, message: str, level: str = "info", **fields: Any) -> LogEntry:
        if self._record is not None:
            raise RecorderFinalizedError(
                f"Execution {self.execution_id} is finalized; cannot append {event!r}"
            )
        entry = LogEntry(
            sequence=len(self._entries) + 1,
            timestamp=self._now(),
            level=level,
            event=event,
            message=message,
            **fields,
        )
        self._entries.append(entry)
        return entry

    # ------------------------------------------------------------------
    def record_execution_start(self) -> LogEntry:
        entry = self._append("execution_started", "Workflow execution started")
        self._started_at = entry.timestamp
        self._started_clock = time.monotonic()
        return entry

    def record_node_start(self, node_id: str, attempt: int = 1) -> LogEntry:
        return self._append(
            "node_started",
            f"Node {node_id} started (attempt {attempt})",
            node_id=node_id,
            status=NodeStatus.RUNNING.value,
            attempt=attempt,
        )

    def record_node_end(
        self,
        node_id: str,
        status: Union[NodeStatus, str],
        output: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        duration: Optional[float] = None,
        attempt: Optional[int] = None,
    ) -> LogEntry:
        status = NodeStatus(status)
        if status == NodeStatus.SUCCEEDED:
            message, level = f"Node {node_id} succeeded", "info"
        else:
            message, level = f"Node {node_id} {status.value}: {error}", "error"
        return self._append(
            f"node_{status.value}",
            message,
            level=level,
            node_id=node_id,
            status=status.value,
            attempt=attempt,
            output=copy.deepcopy(output),
            error=error,
            duration=duration,
        )

    def record_node_retry(
        self, node_id: str, attempt: int, error: str, delay_ms: float
    ) -> LogEntry:
        return self._append(
            "node_retry",
            f"Node {node_id} attempt {attempt} failed, retrying in {delay_ms:g} ms: {error}",
            level="warning",
            node_id=node_id,
            attempt=attempt,
            error=error,
        )

    def record_node_skipped(
        self, node_id: str, reason: Union[SkipReason, str]
    ) -> LogEntry:
        reason = SkipReason(reason)
        return self._append(
            "node_skipped",
            f"Node {node_id} skipped ({reason.value})",
            node_id=node_id,
            status=NodeStatus.SKIPPED.value,
            error=reason.value if reason.is_failure else None,
        )

    def record_message(
        self, level: str, message: str, node_id: Optional[str] = None
    ) -> LogEntry:
        return self._append("message", message, level=level, node_id=node_id)

    # ------------------------------------------------------------------
    def snapshot(self, status: ExecutionStatus = ExecutionStatus.RUNNING) -> ExecutionRecord:
        """Current state as a record, without finalizing."""
        if self._record is not None:
            return self._record
        return self._build(status, output=None, error_message=None, node_states={})

    def finalize(
        self,
        status: ExecutionStatus,
        output: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        node_states: Optional[Dict[str, str]] = None,
    ) -> ExecutionRecord:
        if self._started_at is None:
            self.record_execution_start()
        level = "info" if status == ExecutionStatus.SUCCESS else "error"
        message = f"Workflow execution finished with status {status.value}"
        if error_message:
            message = f"{message}: {error_message}"
        self._append("execution_finished", message, level=level, status=status.value)

        self._record = self._build(
            status, copy.deepcopy(output), error_message, node_states or {}
        )
        logger.info(
            f"Execution {self.execution_id} finalized as {status.value} "
            f"({len(self._entries)} log entries)"
        )
        return self._record

    def _build(
        self,
        status: ExecutionStatus,
        output: Optional[Dict[str, Any]],
        error_message: Optional[str],
        node_states: Dict[str, str],
    ) -> ExecutionRecord:
        finished = status in (
            ExecutionStatus.SUCCESS,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )
        duration = None
        if finished and self._started_clock is not None:
            duration = round((time.monotonic() - self._started_clock) * 1000, 3)
        return ExecutionRecord(
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            user_id=self.user_id,
            status=status,
            trigger_type=self.trigger_type,
            input_data=self.input_data,
            output_data=output,
            error_message=error_message,
            logs=list(self._entries),
            node_states=dict(node_states),
            started_at=self._started_at,
            finished_at=self._last_timestamp if finished else None,
            duration=duration,
        )
