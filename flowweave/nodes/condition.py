"""Conditional branch node: routes its input to the ``true`` or ``false`` port."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from ..credentials import CredentialScope
from ..errors import HandlerFailureError

logger = logging.getLogger(__name__)

_MISSING = object()


def _as_number(value: Any) -> float:
    return float(value)


def _compare(op: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        try:
            return op(_as_number(actual), _as_number(expected))
        except (TypeError, ValueError):
            return False

    return check


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple, set, dict)):
        return expected in actual
    return str(expected) in str(actual)


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": lambda actual, expected: actual == expected,
    "notEquals": lambda actual, expected: actual != expected,
    "greaterThan": _compare(lambda a, b: a > b),
    "lessThan": _compare(lambda a, b: a < b),
    "contains": _contains,
}


def lookup(value: Any, path: str) -> Any:
    """Follow a dotted ``path`` through mappings and sequences."""
    if not path:
        return value
    current = value
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def evaluate(value: Any, field: str, operator: str, expected: Any) -> bool:
    actual = lookup(value, field)
    if operator == "exists":
        return actual is not _MISSING
    check = OPERATORS.get(operator)
    if check is None:
        raise HandlerFailureError(f"Unsupported condition operator: {operator!r}", retryable=False)
    if actual is _MISSING:
        return False
    return check(actual, expected)


async def condition_node(
    inputs: Dict[str, Any], config: Dict[str, Any], credentials: CredentialScope
) -> Dict[str, Any]:
    value = inputs.get("input")
    result = evaluate(
        value,
        str(config.get("field") or ""),
        str(config.get("operator") or "equals"),
        config.get("value"),
    )
    logger.debug(f"condition {config.get('field')!r} {config.get('operator')} -> {result}")
    return {"true" if result else "false": value}
