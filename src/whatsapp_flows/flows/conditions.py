"""
Condition evaluation for conditional flow nodes.

Operators:
- `==`, `!=`: numeric comparison when both sides are numeric, otherwise
  trimmed, case-insensitive string comparison
- `>`, `<`: numeric only; non-numeric operands never satisfy
- `contains`: trimmed, case-insensitive substring

A missing value (None) never satisfies any condition.
"""

import logging
from typing import Any

from whatsapp_flows.flows.graph import Condition

logger = logging.getLogger(__name__)

OPERATORS = ("==", "!=", ">", "<", "contains")


def to_number(value: Any) -> float | None:
    """Coerce a value to float, or None when it is not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().replace(",", "."))
    except ValueError:
        return None


def _normalize(value: Any) -> str:
    return str(value).strip().lower()


def evaluate_condition(condition: Condition, value: Any) -> bool:
    """Evaluate one condition against the candidate value."""
    if value is None or condition.value is None:
        return False

    operator = condition.operator.strip()

    if operator == "contains":
        return _normalize(condition.value) in _normalize(value)

    left = to_number(value)
    right = to_number(condition.value)
    numeric = left is not None and right is not None

    if operator == "==":
        return left == right if numeric else _normalize(value) == _normalize(condition.value)
    if operator == "!=":
        return left != right if numeric else _normalize(value) != _normalize(condition.value)
    if operator == ">":
        return numeric and left > right
    if operator == "<":
        return numeric and left < right

    logger.warning(f"Unsupported condition operator: {condition.operator}", extra={"condition_id": condition.id})
    return False


def condition_value(
    condition: Condition,
    flow_data: dict[str, Any] | None,
    inbound_text: str | None,
) -> Any:
    """Value a condition is tested against: flowData[variable], else the inbound text."""
    flow_data = flow_data or {}
    if condition.variable and condition.variable in flow_data:
        return flow_data[condition.variable]
    return inbound_text


def first_satisfied(
    conditions: list[Condition],
    flow_data: dict[str, Any] | None,
    inbound_text: str | None,
) -> Condition | None:
    """Return the first condition (in declared order) that holds."""
    for condition in conditions:
        if evaluate_condition(condition, condition_value(condition, flow_data, inbound_text)):
            return condition
    return None
