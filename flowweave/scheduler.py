"""DAG interpreter: dispatches workflow nodes in dependency order."""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Deque, Dict, List, Mapping, Optional, Tuple

from .config import EngineConfig, ErrorMode
from .credentials import CredentialResolver
from .errors import (
    CredentialError,
    HandlerFailureError,
    MissingInputError,
    NodeError,
    NodeTimeoutError,
)
from .graph import Edge, ExecutionGraph
from .models import (
    ExecutionRecord,
    ExecutionStatus,
    NodeDeclaration,
    NodeRuntimeState,
    NodeStatus,
    SkipReason,
)
from .recorder import ExecutionRecorder
from .registry import REGISTRY, NodeRegistry, RegisteredNode
from .utils.retry import compute_backoff, schedule_retry

logger = logging.getLogger(__name__)


class CancellationToken:
    """Signals a running execution to stop dispatching and abort in-flight nodes."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class _EdgeState(Enum):
    DELIVERED = "delivered"
    INACTIVE = "inactive"
    FAILED = "failed"


@dataclass(frozen=True)
class NodePolicy:
    """Effective timeout/retry/error policy of one node."""

    timeout_ms: Optional[float]
    retry_count: int
    retry_delay_ms: float
    on_error: ErrorMode


@dataclass
class _Outcome:
    output: Optional[Dict[str, Any]] = None
    error: Optional[NodeError] = None
    attempt: int = 0
    duration: Optional[float] = None


class Scheduler:
    """Runs execution graphs against a node registry.

    The scheduler itself is stateless between runs; each :meth:`run` gets its
    own runtime state arena.
    """

    def __init__(
        self,
        registry: Optional[NodeRegistry] = None,
        credential_resolver: Optional[CredentialResolver] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self._registry = registry or REGISTRY
        self._credentials = credential_resolver or CredentialResolver()
        self._config = config or EngineConfig()

    async def run(
        self,
        graph: ExecutionGraph,
        initial_input: Optional[Dict[str, Any]] = None,
        options: Optional[EngineConfig] = None,
        *,
        recorder: Optional[ExecutionRecorder] = None,
        cancel_token: Optional[CancellationToken] = None,
        owner_id: Optional[str] = None,
    ) -> ExecutionRecord:
        """Execute ``graph`` and return the finalized execution record."""
        run = _SchedulerRun(
            graph=graph,
            registry=self._registry,
            credentials=self._credentials,
            options=options or self._config,
            recorder=recorder or ExecutionRecorder(input_data=initial_input),
            cancel_token=cancel_token or CancellationToken(),
            owner_id=owner_id,
            initial_input=initial_input if initial_input is not None else {},
        )
        return await run.execute()

    def policy_for(self, node: NodeDeclaration, options: Optional[EngineConfig] = None) -> NodePolicy:
        return resolve_policy(node, options or self._config)


def resolve_policy(node: NodeDeclaration, options: EngineConfig) -> NodePolicy:
    """Combine node settings with engine defaults."""
    settings = node.settings
    on_error = settings.on_error or options.on_error
    if settings.retry_count is not None:
        retry_count = settings.retry_count
    elif on_error == "retry":
        retry_count = max(options.retry.retry_count, options.retry_mode_attempts)
    else:
        retry_count = options.retry.retry_count

    retry_delay = (
        settings.retry_delay
        if settings.retry_delay is not None
        else options.retry.retry_delay_ms
    )
    timeout = settings.timeout if settings.timeout is not None else options.default_timeout_ms
    return NodePolicy(
        timeout_ms=timeout or None,
        retry_count=retry_count,
        retry_delay_ms=retry_delay,
        on_error=on_error,
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _SchedulerRun:
    """State of a single execution; never shared between runs."""

    def __init__(
        self,
        graph: ExecutionGraph,
        registry: NodeRegistry,
        credentials: CredentialResolver,
        options: EngineConfig,
        recorder: ExecutionRecorder,
        cancel_token: CancellationToken,
        owner_id: Optional[str],
        initial_input: Dict[str, Any],
    ) -> None:
        self.graph = graph
        self.registry = registry
        self.credentials = credentials
        self.options = options
        self.recorder = recorder
        self.cancel_token = cancel_token
        self.owner_id = owner_id
        self.initial_input = initial_input
        self.execution_id = recorder.execution_id

        self.states: Dict[str, NodeRuntimeState] = {
            nid: NodeRuntimeState(node_id=nid) for nid in graph.nodes
        }
        self._remaining: Dict[str, int] = {
            nid: graph.dependency_count(nid) for nid in graph.nodes
        }
        self._edge_values: Dict[int, Tuple[_EdgeState, Any]] = {}
        self._policies: Dict[str, NodePolicy] = {}
        self._ready: Deque[str] = deque()
        self._settle_queue: Deque[str] = deque()
        self._running: Dict[asyncio.Task, str] = {}
        self._halted = False
        self._first_error: Optional[str] = None

    # ------------------------------------------------------------------
    async def execute(self) -> ExecutionRecord:
        if not self.recorder.started:
            self.recorder.record_execution_start()
        logger.info(
            f"Execution {self.execution_id} started: {len(self.graph)} nodes, "
            f"max_parallelism={self.options.max_parallelism}"
        )

        for nid in self.graph.sources:
            self._mark_ready(nid, {"input": copy.deepcopy(self.initial_input)})

        cancel_waiter = asyncio.ensure_future(self.cancel_token.wait())
        try:
            await self._loop(cancel_waiter)
        except asyncio.CancelledError:
            for task in self._running:
                task.cancel()
            await asyncio.gather(*self._running, return_exceptions=True)
            raise
        finally:
            cancel_waiter.cancel()

        if self.cancel_token.cancelled:
            await self._abort_running()
        self._skip_remaining()
        return self._finalize()

    async def _loop(self, cancel_waiter: asyncio.Future) -> None:
        while not self.cancel_token.cancelled:
            while (
                self._ready
                and not self._halted
                and len(self._running) < self.options.max_parallelism
            ):
                self._dispatch(self._ready.popleft())
                self._drain()

            if not self._running:
                return

            done, _ = await asyncio.wait(
                [*self._running, cancel_waiter], return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                if task is cancel_waiter:
                    continue
                nid = self._running.pop(task)
                self._complete(nid, task.result())
            self._drain()

    # ------------------------------------------------------------------
    # Dispatch
    def _mark_ready(self, nid: str, inputs: Dict[str, Any]) -> None:
        state = self.states[nid]
        state.input = inputs
        state.transition(NodeStatus.READY)
        self._ready.append(nid)

    def _dispatch(self, nid: str) -> None:
        node = self.graph.nodes[nid]
        state = self.states[nid]
        policy = resolve_policy(node, self.options)
        self._policies[nid] = policy

        try:
            entry = self.registry.resolve(node.type)
            missing = [
                port for port in entry.descriptor.required_inputs if port not in state.input
            ]
            if missing:
                raise MissingInputError(nid, missing)
        except NodeError as exc:
            self._fail(nid, exc, attempt=None, duration=None)
            return

        state.transition(NodeStatus.RUNNING)
        state.started_at = _now()
        logger.debug(f"Execution {self.execution_id}: dispatching node {nid} ({node.type})")
        task = asyncio.ensure_future(self._invoke(node, entry, dict(state.input), policy))
        self._running[task] = nid

    async def _invoke(
        self,
        node: NodeDeclaration,
        entry: RegisteredNode,
        inputs: Dict[str, Any],
        policy: NodePolicy,
    ) -> _Outcome:
        attempts = policy.retry_count + 1
        state = self.states[node.id]
        for attempt in range(1, attempts + 1):
            state.attempts = attempt
            self.recorder.record_node_start(node.id, attempt)
            started = time.monotonic()
            try:
                output = await self._attempt(node, entry, inputs, policy)
            except NodeError as exc:
                error = exc
            except CredentialError as exc:
                error = HandlerFailureError(f"Credential error: {exc}")
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = HandlerFailureError(f"{type(exc).__name__}: {exc}")
            else:
                duration = round((time.monotonic() - started) * 1000, 3)
                return _Outcome(output=output, attempt=attempt, duration=duration)

            duration = round((time.monotonic() - started) * 1000, 3)
            if not error.retryable or attempt == attempts:
                return _Outcome(error=error, attempt=attempt, duration=duration)

            delay = compute_backoff(
                attempt,
                policy.retry_delay_ms,
                backoff=self.options.retry.backoff,
                jitter_ms=self.options.retry.jitter_ms,
            )
            self.recorder.record_node_retry(node.id, attempt, str(error), delay)
            logger.warning(
                f"Execution {self.execution_id}: node {node.id} attempt {attempt}/{attempts} "
                f"failed: {error}; retrying in {delay:g} ms"
            )
            await schedule_retry(delay)

        raise AssertionError("unreachable")  # pragma: no cover

    async def _attempt(
        self,
        node: NodeDeclaration,
        entry: RegisteredNode,
        inputs: Dict[str, Any],
        policy: NodePolicy,
    ) -> Dict[str, Any]:
        handler = entry.handler
        async with self.credentials.scope(node.credential_id, self.owner_id) as creds:
            if _is_async(handler):
                call = handler(dict(inputs), dict(node.parameters), creds)
            else:
                call = asyncio.to_thread(handler, dict(inputs), dict(node.parameters), creds)
            if not policy.timeout_ms:
                result = await _handler_result(call)
            else:
                try:
                    result = await asyncio.wait_for(
                        _handler_result(call), policy.timeout_ms / 1000
                    )
                except asyncio.TimeoutError:
                    raise NodeTimeoutError(node.id, policy.timeout_ms)
        return _check_output(node.id, entry, result)

    # ------------------------------------------------------------------
    # Completion and propagation
    def _complete(self, nid: str, outcome: _Outcome) -> None:
        if outcome.error is not None:
            self._fail(nid, outcome.error, outcome.attempt, outcome.duration)
            return

        state = self.states[nid]
        state.output = outcome.output
        state.finished_at = _now()
        state.transition(NodeStatus.SUCCEEDED)
        self.recorder.record_node_end(
            nid,
            NodeStatus.SUCCEEDED,
            output=outcome.output,
            duration=outcome.duration,
            attempt=outcome.attempt,
        )
        logger.info(f"Execution {self.execution_id}: node {nid} succeeded")

        for edge in self.graph.outgoing[nid]:
            if edge.source_port in outcome.output:
                self._resolve_edge(
                    edge, _EdgeState.DELIVERED, copy.deepcopy(outcome.output[edge.source_port])
                )
            else:
                self._resolve_edge(edge, _EdgeState.INACTIVE)

    def _fail(
        self,
        nid: str,
        error: NodeError,
        attempt: Optional[int],
        duration: Optional[float],
    ) -> None:
        state = self.states[nid]
        state.error = str(error)
        state.finished_at = _now()
        state.transition(NodeStatus.FAILED)
        self.recorder.record_node_end(
            nid, NodeStatus.FAILED, error=str(error), duration=duration, attempt=attempt
        )
        logger.error(f"Execution {self.execution_id}: node {nid} failed: {error}")
        if self._first_error is None:
            self._first_error = f"{nid}: {error}"

        policy = self._policies.get(nid) or resolve_policy(self.graph.nodes[nid], self.options)
        if policy.on_error in ("stop", "retry") and not self._halted:
            self._halted = True
            logger.info(
                f"Execution {self.execution_id}: halting after failure of {nid} "
                f"(on_error={policy.on_error})"
            )

        for edge in self.graph.outgoing[nid]:
            self._resolve_edge(edge, _EdgeState.FAILED)

    def _skip(self, nid: str, reason: SkipReason, propagate: bool = True) -> None:
        state = self.states[nid]
        state.skip_reason = reason
        state.finished_at = _now()
        state.transition(NodeStatus.SKIPPED)
        self.recorder.record_node_skipped(nid, reason)
        logger.debug(f"Execution {self.execution_id}: node {nid} skipped ({reason.value})")
        if not propagate:
            return
        edge_state = _EdgeState.FAILED if reason.is_failure else _EdgeState.INACTIVE
        for edge in self.graph.outgoing[nid]:
            self._resolve_edge(edge, edge_state)

    def _resolve_edge(self, edge: Edge, edge_state: _EdgeState, value: Any = None) -> None:
        self._edge_values[edge.index] = (edge_state, value)
        self._remaining[edge.target] -= 1
        if self._remaining[edge.target] == 0:
            self._settle_queue.append(edge.target)

    def _drain(self) -> None:
        while self._settle_queue:
            self._settle(self._settle_queue.popleft())

    def _settle(self, nid: str) -> None:
        """All incoming edges of ``nid`` resolved: make it ready or skip it."""
        incoming = self.graph.incoming[nid]
        resolved = [self._edge_values[e.index] for e in incoming]
        if any(s is _EdgeState.FAILED for s, _ in resolved):
            self._skip(nid, SkipReason.UPSTREAM_FAILED)
            return
        if not any(s is _EdgeState.DELIVERED for s, _ in resolved):
            self._skip(nid, SkipReason.BRANCH_NOT_TAKEN)
            return
        self._mark_ready(nid, _compose_input(incoming, self._edge_values))

    # ------------------------------------------------------------------
    # Shutdown
    async def _abort_running(self) -> None:
        if not self._running:
            return
        logger.info(
            f"Execution {self.execution_id}: cancelling {len(self._running)} running node(s)"
        )
        for task in self._running:
            task.cancel()
        await asyncio.gather(*self._running, return_exceptions=True)
        for nid in self._running.values():
            self._skip(nid, SkipReason.CANCELLED, propagate=False)
        self._running.clear()

    def _skip_remaining(self) -> None:
        reason = SkipReason.CANCELLED if self.cancel_token.cancelled else SkipReason.HALTED
        for nid, state in self.states.items():
            if not state.status.is_terminal:
                self._skip(nid, reason, propagate=False)

    def _finalize(self) -> ExecutionRecord:
        states = self.states.values()
        if self.cancel_token.cancelled:
            status = ExecutionStatus.CANCELLED
        elif any(
            s.status == NodeStatus.FAILED
            or (s.skip_reason is not None and s.skip_reason.is_failure)
            for s in states
        ):
            status = ExecutionStatus.FAILED
        else:
            status = ExecutionStatus.SUCCESS

        error_message = self._first_error
        if status == ExecutionStatus.CANCELLED and error_message is None:
            error_message = "Execution cancelled"

        output = {
            nid: self.states[nid].output
            for nid in self.graph.sinks
            if self.states[nid].status == NodeStatus.SUCCEEDED
        }
        return self.recorder.finalize(
            status,
            output=output,
            error_message=error_message,
            node_states={nid: s.status.value for nid, s in self.states.items()},
        )


def _is_async(handler: Any) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


async def _handler_result(call: Awaitable[Any]) -> Any:
    """Await a handler call; its own timeouts are handler failures.

    Only a ``TimeoutError`` leaving ``asyncio.wait_for`` around this
    coroutine means the node deadline expired.
    """
    try:
        return await call
    except (asyncio.TimeoutError, TimeoutError) as exc:
        raise HandlerFailureError(f"{type(exc).__name__}: {exc}") from exc


def _compose_input(
    incoming: List[Edge], edge_values: Mapping[int, Tuple[_EdgeState, Any]]
) -> Dict[str, Any]:
    """Group delivered edge values by target port.

    A port fed by several edges receives a list in connection order.
    """
    grouped: Dict[str, List[Any]] = {}
    for edge in incoming:
        edge_state, value = edge_values[edge.index]
        if edge_state is _EdgeState.DELIVERED:
            grouped.setdefault(edge.target_port, []).append(value)
    fed_by = {}
    for edge in incoming:
        fed_by[edge.target_port] = fed_by.get(edge.target_port, 0) + 1
    return {
        port: values if fed_by[port] > 1 else values[0]
        for port, values in grouped.items()
    }


def _check_output(nid: str, entry: RegisteredNode, result: Any) -> Dict[str, Any]:
    if result is None:
        return {}
    if not isinstance(result, Mapping):
        raise HandlerFailureError(
            f"Node {nid!r} returned {type(result).__name__}, expected a mapping of output ports",
            retryable=False,
        )
    declared = entry.descriptor.output_names
    if declared:
        unknown = [port for port in result if port not in declared]
        if unknown:
            raise HandlerFailureError(
                f"Node {nid!r} emitted undeclared output port(s): {', '.join(map(str, unknown))}",
                retryable=False,
            )
    return dict(result)
