"""Node type registry."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Union

from ..errors import UnknownNodeTypeError
from .models import NodeTypeDescriptor, PortDescriptor

if TYPE_CHECKING:
    from ..credentials import CredentialScope

NodeOutput = Dict[str, Any]
NodeHandler = Callable[
    [Dict[str, Any], Dict[str, Any], "CredentialScope"],
    Union[NodeOutput, Awaitable[NodeOutput]],
]


@dataclass(frozen=True)
class RegisteredNode:
    """Handler plus its port contract."""

    handler: NodeHandler
    descriptor: NodeTypeDescriptor


class NodeRegistry:
    """Maps node type identifiers to handlers.

    Registration normally happens once at startup; lookups may come from any
    number of concurrent runs.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, RegisteredNode] = {}
        self._lock = threading.Lock()

    def register(
        self,
        node_type: str,
        handler: NodeHandler,
        descriptor: Optional[NodeTypeDescriptor] = None,
        replace: bool = False,
    ) -> RegisteredNode:
        """Add ``handler`` for ``node_type``.

        Raises:
            ValueError: If ``node_type`` is already registered and ``replace``
                is not set.
        """
        descriptor = descriptor or NodeTypeDescriptor(name=node_type)
        entry = RegisteredNode(handler=handler, descriptor=descriptor)
        with self._lock:
            if node_type in self._nodes and not replace:
                raise ValueError(f"Node type {node_type!r} is already registered")
            self._nodes = {**self._nodes, node_type: entry}
        return entry

    def node(
        self, node_type: str, descriptor: Optional[NodeTypeDescriptor] = None
    ) -> Callable[[NodeHandler], NodeHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(handler: NodeHandler) -> NodeHandler:
            self.register(node_type, handler, descriptor)
            return handler

        return decorator

    def resolve(self, node_type: str) -> RegisteredNode:
        entry = self._nodes.get(node_type)
        if entry is None:
            raise UnknownNodeTypeError(node_type)
        return entry

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._nodes

    def types(self) -> list[str]:
        return sorted(self._nodes)


# Process-wide default registry.  Integration modules register their node
# types here at import or startup time.
REGISTRY = NodeRegistry()


def register_node(
    node_type: str,
    handler: NodeHandler,
    descriptor: Optional[NodeTypeDescriptor] = None,
) -> RegisteredNode:
    """Add ``handler`` to ``REGISTRY``."""
    return REGISTRY.register(node_type, handler, descriptor)


__all__ = [
    "NodeHandler",
    "NodeOutput",
    "NodeRegistry",
    "NodeTypeDescriptor",
    "PortDescriptor",
    "REGISTRY",
    "RegisteredNode",
    "register_node",
]
