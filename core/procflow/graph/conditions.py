"""Evaluation of condition nodes against a run context.

A condition is a ``(field, operator, value)`` triple. The field is looked up
in ``context["custom_fields"]`` first, then in the context itself. Evaluation
is a pure function of the triple and the context, so the same inputs always
select the same branch.
"""

import logging
from typing import Any

from procflow.graph.node import ConditionConfig, ConditionOperator

logger = logging.getLogger(__name__)


def resolve_field(context: dict[str, Any], field: str) -> Any:
    """Look a field up in custom_fields, then at the top level of the context."""
    custom = context.get("custom_fields")
    if isinstance(custom, dict) and field in custom:
        return custom[field]
    return context.get(field)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _is_empty(value: Any) -> bool:
    # Whitespace-only strings count as set
    return not value


def evaluate_condition(config: ConditionConfig, context: dict[str, Any]) -> bool:
    """
    Evaluate a condition config against a context.

    Args:
        config: The condition node configuration
        context: Run context (triggering entity fields plus custom_fields)

    Returns:
        True when the "true" branch should be taken
    """
    actual = resolve_field(context, config.field)
    expected = config.value
    op = config.operator

    if op == ConditionOperator.EQUALS:
        return actual == expected
    if op == ConditionOperator.NOT_EQUALS:
        return actual != expected
    if op == ConditionOperator.CONTAINS:
        if actual is None:
            return False
        if isinstance(actual, list | tuple | set):
            return expected in actual
        return str(expected if expected is not None else "") in str(actual)
    if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            logger.debug(
                f"Non-numeric comparison on '{config.field}': {actual!r} vs {expected!r}"
            )
            return False
        return left > right if op == ConditionOperator.GREATER_THAN else left < right
    if op == ConditionOperator.IS_EMPTY:
        return _is_empty(actual)
    if op == ConditionOperator.IS_NOT_EMPTY:
        return not _is_empty(actual)

    # Unreachable: operator is a closed enum validated at load time
    raise ValueError(f"Unsupported operator: {op}")


def branch_handle(result: bool) -> str:
    """Edge handle selected by a condition result."""
    return "true" if result else "false"
