"""Core data contracts for the flowweave workflow engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from .config import ErrorMode
from .errors import InvalidStateTransition

logger = logging.getLogger(__name__)

DEFAULT_INPUT_PORT = "input"
DEFAULT_OUTPUT_PORT = "output"


class NodeStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.SUCCEEDED, NodeStatus.FAILED, NodeStatus.SKIPPED)


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SkipReason(str, Enum):
    """Why a node was skipped without being invoked."""

    BRANCH_NOT_TAKEN = "branch_not_taken"
    UPSTREAM_FAILED = "upstream_failed"
    HALTED = "halted"
    CANCELLED = "cancelled"

    @property
    def is_failure(self) -> bool:
        return self in (SkipReason.UPSTREAM_FAILED, SkipReason.HALTED)


# ----------------------------------------------------------------------
# Workflow definition
class NodeSettings(BaseModel):
    """Per-node execution policy. Durations are in milliseconds."""

    model_config = ConfigDict(populate_by_name=True)

    timeout: Optional[float] = Field(default=None, ge=0)
    retry_count: Optional[int] = Field(default=None, ge=0, alias="retryCount")
    retry_delay: Optional[float] = Field(default=None, ge=0, alias="retryDelay")
    on_error: Optional[ErrorMode] = Field(default=None, alias="onError")


class NodeDeclaration(BaseModel):
    """One node of a persisted workflow definition."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str
    name: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Dict[str, Any]] = None
    credential_id: Optional[str] = Field(default=None, alias="credentialId")
    settings: NodeSettings = Field(default_factory=NodeSettings)

    @model_validator(mode="before")
    @classmethod
    def _collect_settings(cls, data: Any) -> Any:
        """Fold the editor's ``executionConfig``/``errorHandling`` blocks into ``settings``."""
        if not isinstance(data, dict) or "settings" in data:
            return data
        execution_config = data.get("executionConfig") or {}
        error_handling = data.get("errorHandling") or {}
        if not execution_config and not error_handling:
            return data

        settings: Dict[str, Any] = {}
        for key in ("timeout", "retryCount", "retryDelay"):
            if execution_config.get(key) is not None:
                settings[key] = execution_config[key]
        if error_handling.get("onError") is not None:
            settings["onError"] = error_handling["onError"]
        if error_handling.get("maxRetries"):
            settings["retryCount"] = error_handling["maxRetries"]
        if error_handling.get("retryDelay") is not None:
            settings["retryDelay"] = error_handling["retryDelay"]
        return {**data, "settings": settings}

    @property
    def label(self) -> str:
        return self.name or self.id


class Connection(BaseModel):
    """Edge from an output port of one node to an input port of another."""

    model_config = ConfigDict(populate_by_name=True)

    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")
    target_handle: Optional[str] = Field(default=None, alias="targetHandle")

    @property
    def source_port(self) -> str:
        return self.source_handle or DEFAULT_OUTPUT_PORT

    @property
    def target_port(self) -> str:
        return self.target_handle or DEFAULT_INPUT_PORT


class WorkflowDefinition(BaseModel):
    """Immutable workflow definition loaded for a single execution."""

    model_config = ConfigDict(frozen=True)

    nodes: List[NodeDeclaration] = Field(default_factory=list)
    connections: List[Connection] = Field(
        default_factory=list,
        validation_alias=AliasChoices("connections", "edges"),
    )

    def to_json(self) -> str:
        """Serialize definition to JSON."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, data: str) -> "WorkflowDefinition":
        """Deserialize definition from JSON."""
        return cls.model_validate_json(data)


class StoredWorkflow(BaseModel):
    """Workflow as handed over by the workflow store."""

    id: str
    name: str = ""
    definition: WorkflowDefinition
    is_active: bool = True
    user_id: Optional[str] = None


# ----------------------------------------------------------------------
# Runtime state
@dataclass
class NodeRuntimeState:
    """Mutable per-node state owned by one scheduler run."""

    node_id: str
    status: NodeStatus = NodeStatus.PENDING
    input: Dict[str, Any] = field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    skip_reason: Optional[SkipReason] = None
    attempts: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def transition(self, status: NodeStatus) -> None:
        """Move to ``status``; terminal states are final."""
        if self.status.is_terminal:
            raise InvalidStateTransition(
                f"Node {self.node_id!r} is already {self.status.value}, cannot become {status.value}"
            )
        logger.debug(f"Node {self.node_id}: {self.status.value} -> {status.value}")
        self.status = status


# ----------------------------------------------------------------------
# Execution record
class LogEntry(BaseModel):
    """Single append-only entry of an execution log."""

    model_config = ConfigDict(frozen=True)

    sequence: int
    timestamp: datetime
    level: str = "info"
    event: str
    message: str
    node_id: Optional[str] = None
    status: Optional[str] = None
    attempt: Optional[int] = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration: Optional[float] = None


class ExecutionRecord(BaseModel):
    """Whole-run aggregate handed to the execution repository."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    workflow_id: Optional[str] = None
    user_id: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    trigger_type: str = "manual"
    input_data: Optional[Dict[str, Any]] = None
    output_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    logs: List[LogEntry] = Field(default_factory=list)
    node_states: Dict[str, str] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration: Optional[float] = None

    def node_logs(self, node_id: str) -> List[LogEntry]:
        """Return log entries for ``node_id`` in order."""
        return [entry for entry in self.logs if entry.node_id == node_id]

    def attempts_for(self, node_id: str) -> int:
        """Number of handler attempts recorded for ``node_id``."""
        return sum(1 for e in self.node_logs(node_id) if e.event == "node_started")

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ExecutionRecord":
        return cls.model_validate_json(data)
