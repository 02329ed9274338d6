"""Flowweave: DAG interpreter for node-graph workflows."""

from .config import EngineConfig, FlowweaveConfig, load_config
from .credentials import CredentialResolver, CredentialScope, InMemoryCredentialProvider
from .engine import InMemoryWorkflowLoader, RunResult, WorkflowEngine
from .graph import ExecutionGraph, GraphBuilder, build_graph
from .models import (
    ExecutionRecord,
    ExecutionStatus,
    NodeStatus,
    StoredWorkflow,
    WorkflowDefinition,
)
from .nodes import register_builtin_nodes
from .persistence import get_repository
from .recorder import ExecutionRecorder
from .registry import REGISTRY, NodeRegistry, NodeTypeDescriptor, PortDescriptor
from .scheduler import CancellationToken, Scheduler

__version__ = "0.1.0"
__all__ = [
    "CancellationToken",
    "CredentialResolver",
    "CredentialScope",
    "EngineConfig",
    "ExecutionGraph",
    "ExecutionRecord",
    "ExecutionRecorder",
    "ExecutionStatus",
    "FlowweaveConfig",
    "GraphBuilder",
    "InMemoryCredentialProvider",
    "InMemoryWorkflowLoader",
    "NodeRegistry",
    "NodeStatus",
    "NodeTypeDescriptor",
    "PortDescriptor",
    "REGISTRY",
    "RunResult",
    "Scheduler",
    "StoredWorkflow",
    "WorkflowDefinition",
    "WorkflowEngine",
    "build_graph",
    "get_repository",
    "load_config",
    "register_builtin_nodes",
]
