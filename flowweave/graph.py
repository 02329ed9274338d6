"""Build and validate execution graphs from workflow definitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Union

from .errors import CycleDetectedError, DanglingEdgeError, DuplicateNodeError
from .models import NodeDeclaration, WorkflowDefinition

logger = logging.getLogger(__name__)

_UNVISITED, _ON_STACK, _DONE = 0, 1, 2


@dataclass(frozen=True)
class Edge:
    """Resolved connection between two node ports."""

    index: int
    source: str
    target: str
    source_port: str
    target_port: str


@dataclass
class ExecutionGraph:
    """Adjacency view of a validated workflow definition."""

    nodes: Dict[str, NodeDeclaration]
    edges: List[Edge]
    incoming: Dict[str, List[Edge]] = field(default_factory=dict)
    outgoing: Dict[str, List[Edge]] = field(default_factory=dict)

    def dependency_count(self, node_id: str) -> int:
        return len(self.incoming[node_id])

    def dependents(self, node_id: str) -> List[str]:
        """Distinct downstream node ids in connection order."""
        return list(dict.fromkeys(e.target for e in self.outgoing[node_id]))

    @property
    def sources(self) -> List[str]:
        return [nid for nid in self.nodes if not self.incoming[nid]]

    @property
    def sinks(self) -> List[str]:
        return [nid for nid in self.nodes if not self.outgoing[nid]]

    def __len__(self) -> int:
        return len(self.nodes)


class GraphBuilder:
    """Turns a :class:`WorkflowDefinition` into an :class:`ExecutionGraph`.

    Validation happens up front and either succeeds completely or raises a
    :class:`~flowweave.errors.GraphError`; no partial graph is ever returned.
    """

    def build(
        self, definition: Union[WorkflowDefinition, Mapping[str, Any]]
    ) -> ExecutionGraph:
        if not isinstance(definition, WorkflowDefinition):
            definition = WorkflowDefinition.model_validate(definition)

        nodes: Dict[str, NodeDeclaration] = {}
        for node in definition.nodes:
            if node.id in nodes:
                raise DuplicateNodeError(node.id)
            nodes[node.id] = node

        incoming: Dict[str, List[Edge]] = {nid: [] for nid in nodes}
        outgoing: Dict[str, List[Edge]] = {nid: [] for nid in nodes}
        edges: List[Edge] = []
        for index, conn in enumerate(definition.connections):
            for endpoint in (conn.source, conn.target):
                if endpoint not in nodes:
                    raise DanglingEdgeError(endpoint, conn.source, conn.target)
            edge = Edge(
                index=index,
                source=conn.source,
                target=conn.target,
                source_port=conn.source_port,
                target_port=conn.target_port,
            )
            edges.append(edge)
            outgoing[edge.source].append(edge)
            incoming[edge.target].append(edge)

        graph = ExecutionGraph(
            nodes=nodes, edges=edges, incoming=incoming, outgoing=outgoing
        )
        _check_acyclic(graph)
        logger.debug(
            f"Built execution graph with {len(nodes)} nodes, {len(edges)} edges, "
            f"sources={graph.sources}, sinks={graph.sinks}"
        )
        return graph


def build_graph(
    definition: Union[WorkflowDefinition, Mapping[str, Any]]
) -> ExecutionGraph:
    """Shortcut for ``GraphBuilder().build(definition)``."""
    return GraphBuilder().build(definition)


def _check_acyclic(graph: ExecutionGraph) -> None:
    """Depth-first search with an explicit recursion stack.

    Raises :class:`CycleDetectedError` on the first back-edge; the reported
    path starts and ends at the same node.
    """
    state = {nid: _UNVISITED for nid in graph.nodes}

    for root in graph.nodes:
        if state[root] != _UNVISITED:
            continue
        state[root] = _ON_STACK
        path = [root]
        stack: List[Iterator[str]] = [iter(graph.dependents(root))]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                state[path.pop()] = _DONE
                stack.pop()
                continue
            if state[nxt] == _ON_STACK:
                cycle = path[path.index(nxt):] + [nxt]
                raise CycleDetectedError(cycle)
            if state[nxt] == _UNVISITED:
                state[nxt] = _ON_STACK
                path.append(nxt)
                stack.append(iter(graph.dependents(nxt)))
