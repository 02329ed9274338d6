"""Pass-through and data-shaping node types."""

from __future__ import annotations

import asyncio
from typing import Any, Dict

from ..credentials import CredentialScope
from ..errors import HandlerFailureError


async def start_node(
    inputs: Dict[str, Any], config: Dict[str, Any], credentials: CredentialScope
) -> Dict[str, Any]:
    """Trigger node: emits the execution input, merged over optional ``data`` defaults."""
    payload = inputs.get("input")
    defaults = config.get("data")
    if isinstance(defaults, dict) and isinstance(payload, dict):
        payload = {**defaults, **payload}
    elif payload is None and defaults is not None:
        payload = defaults
    return {"output": payload}


async def echo_node(
    inputs: Dict[str, Any], config: Dict[str, Any], credentials: CredentialScope
) -> Dict[str, Any]:
    return {"output": inputs.get("input")}


async def transform_node(
    inputs: Dict[str, Any], config: Dict[str, Any], credentials: CredentialScope
) -> Dict[str, Any]:
    """Apply ``set`` and ``pick`` to a mapping input."""
    value = inputs.get("input")
    if value is None:
        value = {}
    if not isinstance(value, dict):
        raise HandlerFailureError(
            f"transform expects a mapping input, got {type(value).__name__}",
            retryable=False,
        )
    result = {**value, **(config.get("set") or {})}
    pick = config.get("pick")
    if pick:
        result = {key: result[key] for key in pick if key in result}
    return {"output": result}


async def delay_node(
    inputs: Dict[str, Any], config: Dict[str, Any], credentials: CredentialScope
) -> Dict[str, Any]:
    try:
        ms = float(config.get("ms", 0))
    except (TypeError, ValueError):
        raise HandlerFailureError(f"Invalid delay: {config.get('ms')!r}", retryable=False)
    await asyncio.sleep(max(ms, 0) / 1000)
    return {"output": inputs.get("input")}
