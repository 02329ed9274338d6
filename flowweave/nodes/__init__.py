"""Built-in node types."""

from __future__ import annotations

from typing import Optional

import httpx

from ..registry import REGISTRY, NodeRegistry, NodeTypeDescriptor, PortDescriptor
from .basic import delay_node, echo_node, start_node, transform_node
from .condition import condition_node
from .http import HttpRequestNode

_OUTPUT = [PortDescriptor(name="output")]


def builtin_descriptors() -> dict[str, NodeTypeDescriptor]:
    return {
        "start": NodeTypeDescriptor(
            name="start", description="Workflow trigger", outputs=_OUTPUT
        ),
        "end": NodeTypeDescriptor(
            name="end", description="Workflow end marker", outputs=_OUTPUT
        ),
        "echo": NodeTypeDescriptor(
            name="echo",
            description="Pass the input through unchanged",
            inputs=[PortDescriptor(name="input", required=True)],
            outputs=_OUTPUT,
        ),
        "condition": NodeTypeDescriptor(
            name="condition",
            description="Route the input to 'true' or 'false'",
            inputs=[PortDescriptor(name="input", required=True)],
            outputs=[PortDescriptor(name="true"), PortDescriptor(name="false")],
        ),
        "transform": NodeTypeDescriptor(
            name="transform", description="Set and pick fields", outputs=_OUTPUT
        ),
        "delay": NodeTypeDescriptor(
            name="delay", description="Wait before passing the input on", outputs=_OUTPUT
        ),
        "http_request": NodeTypeDescriptor(
            name="http_request", description="Perform an HTTP request", outputs=_OUTPUT
        ),
    }


def register_builtin_nodes(
    registry: Optional[NodeRegistry] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> NodeRegistry:
    """Register the built-in node types on ``registry`` (default: ``REGISTRY``)."""
    registry = registry if registry is not None else REGISTRY
    handlers = {
        "start": start_node,
        "end": echo_node,
        "echo": echo_node,
        "condition": condition_node,
        "transform": transform_node,
        "delay": delay_node,
        "http_request": HttpRequestNode(transport=http_transport),
    }
    for node_type, descriptor in builtin_descriptors().items():
        registry.register(node_type, handlers[node_type], descriptor, replace=True)
    return registry


# Built-in types are always available on the default registry.
register_builtin_nodes()

__all__ = [
    "HttpRequestNode",
    "builtin_descriptors",
    "condition_node",
    "delay_node",
    "echo_node",
    "register_builtin_nodes",
    "start_node",
    "transform_node",
]
