"""Error taxonomy for flowweave workflow execution."""

from __future__ import annotations

from typing import Optional, Sequence


class FlowweaveError(Exception):
    """Base class for all flowweave errors."""


# ----------------------------------------------------------------------
# Graph construction
class GraphError(FlowweaveError):
    """Workflow definition cannot be turned into an execution graph."""


class DuplicateNodeError(GraphError):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Duplicate node id: {node_id!r}")


class DanglingEdgeError(GraphError):
    def __init__(self, node_id: str, source: str, target: str) -> None:
        self.node_id = node_id
        self.source = source
        self.target = target
        super().__init__(
            f"Connection {source!r} -> {target!r} references unknown node {node_id!r}"
        )


class CycleDetectedError(GraphError):
    def __init__(self, path: Sequence[str]) -> None:
        self.path = list(path)
        super().__init__(f"Cycle detected: {' -> '.join(self.path)}")


# ----------------------------------------------------------------------
# Node execution
class NodeError(FlowweaveError):
    """Failure of a single node.

    ``retryable`` tells the scheduler whether another attempt may succeed.
    """

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class MissingInputError(NodeError):
    def __init__(self, node_id: str, ports: Sequence[str]) -> None:
        self.node_id = node_id
        self.ports = list(ports)
        super().__init__(
            f"Node {node_id!r} is missing required input(s): {', '.join(self.ports)}",
            retryable=False,
        )


class NodeTimeoutError(NodeError):
    def __init__(self, node_id: str, timeout_ms: float) -> None:
        self.node_id = node_id
        self.timeout_ms = timeout_ms
        super().__init__(f"Node {node_id!r} timed out after {timeout_ms:g} ms")


class HandlerFailureError(NodeError):
    def __init__(self, detail: str, retryable: bool = True) -> None:
        self.detail = detail
        super().__init__(detail, retryable=retryable)


class UnknownNodeTypeError(NodeError):
    def __init__(self, node_type: str) -> None:
        self.node_type = node_type
        super().__init__(f"Unknown node type: {node_type!r}", retryable=False)


# ----------------------------------------------------------------------
# Credentials
class CredentialError(FlowweaveError):
    """Credential could not be made available to a node."""

    def __init__(self, message: str, credential_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.credential_id = credential_id


class CredentialNotFoundError(CredentialError):
    pass


class CredentialForbiddenError(CredentialError):
    pass


class CredentialDecryptError(CredentialError):
    pass


# ----------------------------------------------------------------------
# Engine and bookkeeping
class WorkflowNotFoundError(FlowweaveError):
    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id!r} not found")


class WorkflowInactiveError(FlowweaveError):
    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id!r} is not active and cannot be executed")


class RecorderFinalizedError(FlowweaveError):
    """Raised when appending to an execution log that was already finalized."""


class InvalidStateTransition(FlowweaveError):
    """Raised when a node runtime state would leave a terminal status."""


__all__ = [
    "FlowweaveError",
    "GraphError",
    "DuplicateNodeError",
    "DanglingEdgeError",
    "CycleDetectedError",
    "NodeError",
    "MissingInputError",
    "NodeTimeoutError",
    "HandlerFailureError",
    "UnknownNodeTypeError",
    "CredentialError",
    "CredentialNotFoundError",
    "CredentialForbiddenError",
    "CredentialDecryptError",
    "WorkflowNotFoundError",
    "WorkflowInactiveError",
    "RecorderFinalizedError",
    "InvalidStateTransition",
]
