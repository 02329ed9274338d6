"""Workflow engine entry point used by the workflow service."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel

from .config import FlowweaveConfig, load_config
from .credentials import CredentialProvider, CredentialResolver
from .errors import GraphError, WorkflowInactiveError, WorkflowNotFoundError
from .graph import GraphBuilder
from .models import ExecutionRecord, ExecutionStatus, StoredWorkflow, WorkflowDefinition
from .persistence import ExecutionRepository, get_repository
from .recorder import ExecutionRecorder
from .registry import NodeRegistry
from .scheduler import CancellationToken, Scheduler

logger = logging.getLogger(__name__)


class WorkflowLoader(Protocol):
    """Source of stored workflow definitions."""

    async def load(self, workflow_id: str, user_id: Optional[str]) -> StoredWorkflow:
        """Return the workflow or raise :class:`WorkflowNotFoundError`."""


class InMemoryWorkflowLoader:
    """Keeps workflows in a dict; ownership is checked against ``user_id``."""

    def __init__(self) -> None:
        self._workflows: Dict[str, StoredWorkflow] = {}

    def add(self, workflow: StoredWorkflow) -> StoredWorkflow:
        self._workflows[workflow.id] = workflow
        return workflow

    def add_definition(
        self,
        workflow_id: str,
        definition: WorkflowDefinition | Dict[str, Any],
        user_id: Optional[str] = None,
        is_active: bool = True,
        name: str = "",
    ) -> StoredWorkflow:
        return self.add(
            StoredWorkflow(
                id=workflow_id,
                name=name,
                definition=definition,
                user_id=user_id,
                is_active=is_active,
            )
        )

    async def load(self, workflow_id: str, user_id: Optional[str]) -> StoredWorkflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None or (workflow.user_id is not None and workflow.user_id != user_id):
            raise WorkflowNotFoundError(workflow_id)
        return workflow


class RunResult(BaseModel):
    """What the caller of :meth:`WorkflowEngine.run` gets back."""

    execution_id: str
    status: ExecutionStatus
    output_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None


class WorkflowEngine:
    """Loads a workflow, runs it and persists the execution record.

    Without an explicit ``registry`` the process-wide ``REGISTRY`` is used,
    which holds the built-in node types once :mod:`flowweave.nodes` is
    imported (importing :mod:`flowweave` does this).
    """

    def __init__(
        self,
        loader: WorkflowLoader,
        repository: Optional[ExecutionRepository] = None,
        registry: Optional[NodeRegistry] = None,
        credential_provider: Optional[CredentialProvider] = None,
        config: Optional[FlowweaveConfig] = None,
    ) -> None:
        config = config or load_config()
        self._loader = loader
        self._repository = repository or get_repository(config=config)
        self._builder = GraphBuilder()
        self._scheduler = Scheduler(
            registry=registry,
            credential_resolver=CredentialResolver(credential_provider),
            config=config.engine,
        )
        self._active: Dict[str, CancellationToken] = {}

    @property
    def repository(self) -> ExecutionRepository:
        return self._repository

    async def run(
        self,
        workflow_id: str,
        user_id: Optional[str],
        input_data: Optional[Dict[str, Any]] = None,
        trigger_type: str = "manual",
    ) -> RunResult:
        """Execute a stored workflow.

        Raises:
            WorkflowNotFoundError: The loader does not know the workflow.
            WorkflowInactiveError: The workflow is disabled.
        """
        record = await self.execute(workflow_id, user_id, input_data, trigger_type)
        return RunResult(
            execution_id=record.execution_id,
            status=record.status,
            output_data=record.output_data,
            error_message=record.error_message,
        )

    async def execute(
        self,
        workflow_id: str,
        user_id: Optional[str],
        input_data: Optional[Dict[str, Any]] = None,
        trigger_type: str = "manual",
    ) -> ExecutionRecord:
        """Like :meth:`run` but returns the full execution record."""
        workflow = await self._loader.load(workflow_id, user_id)
        if not workflow.is_active:
            raise WorkflowInactiveError(workflow_id)

        recorder = ExecutionRecorder(
            workflow_id=workflow_id,
            user_id=user_id,
            input_data=input_data or {},
            trigger_type=trigger_type,
        )
        recorder.record_execution_start()
        await self._repository.create_execution(recorder.snapshot(ExecutionStatus.RUNNING))
        logger.info(
            f"Starting execution {recorder.execution_id} of workflow {workflow_id} for user {user_id}"
        )

        token = CancellationToken()
        self._active[recorder.execution_id] = token
        try:
            record = await self._run_definition(
                workflow.definition, recorder, token, input_data or {}, user_id
            )
        except asyncio.CancelledError:
            if not recorder.finalized:
                await self._repository.complete_execution(
                    recorder.finalize(
                        ExecutionStatus.CANCELLED, error_message="Execution cancelled"
                    )
                )
            raise
        finally:
            self._active.pop(recorder.execution_id, None)

        await self._repository.complete_execution(record)
        logger.info(
            f"Execution {record.execution_id} of workflow {workflow_id} finished: "
            f"{record.status.value}"
        )
        return record

    async def _run_definition(
        self,
        definition: WorkflowDefinition,
        recorder: ExecutionRecorder,
        token: CancellationToken,
        input_data: Dict[str, Any],
        user_id: Optional[str],
    ) -> ExecutionRecord:
        try:
            graph = self._builder.build(definition)
        except GraphError as exc:
            logger.error(f"Execution {recorder.execution_id}: invalid workflow definition: {exc}")
            recorder.record_message("error", f"Invalid workflow definition: {exc}")
            return recorder.finalize(ExecutionStatus.FAILED, error_message=str(exc))

        try:
            return await self._scheduler.run(
                graph,
                input_data,
                recorder=recorder,
                cancel_token=token,
                owner_id=user_id,
            )
        except Exception as exc:
            logger.exception(f"Execution {recorder.execution_id} aborted unexpectedly")
            if recorder.finalized:
                raise
            return recorder.finalize(
                ExecutionStatus.FAILED, error_message=f"{type(exc).__name__}: {exc}"
            )

    def cancel(self, execution_id: str) -> bool:
        """Request cancellation of a running execution.

        Returns ``False`` if the execution is not running in this engine.
        """
        token = self._active.get(execution_id)
        if token is None:
            return False
        logger.info(f"Cancelling execution {execution_id}")
        token.cancel()
        return True

    def running_executions(self) -> list[str]:
        return list(self._active)
