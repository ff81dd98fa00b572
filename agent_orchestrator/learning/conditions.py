"""
Evaluation of pattern conditions against switch requests.
"""

from collections.abc import Mapping
from enum import Enum
from numbers import Real
from typing import Any, Iterable

from .models import ConditionOperator, PatternCondition

_MISSING = object()


def resolve_field(source: Any, path: str) -> Any:
    """
    Resolve a dotted path through attributes and mapping keys.

    Returns None when any segment is missing. Enum values resolve to their
    underlying value so conditions can compare against plain strings.
    """
    value = source
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(part, _MISSING)
        else:
            value = getattr(value, part, _MISSING)
        if value is _MISSING:
            return None

    if isinstance(value, Enum):
        return value.value
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def evaluate_condition(condition: PatternCondition, source: Any) -> bool:
    """Evaluate one condition. An unresolvable field never satisfies a condition."""
    value = resolve_field(source, condition.field)
    if value is None:
        return False

    operator = condition.operator
    expected = condition.value

    if operator == ConditionOperator.EQUALS:
        return value == expected
    if operator == ConditionOperator.NOT_EQUALS:
        return value != expected
    if operator == ConditionOperator.GREATER_THAN:
        return _is_number(value) and value > expected
    if operator == ConditionOperator.LESS_THAN:
        return _is_number(value) and value < expected
    if operator == ConditionOperator.CONTAINS:
        if isinstance(value, str):
            return expected in value
        if isinstance(value, (list, tuple, set, frozenset)):
            return expected in value
        return False
    if operator == ConditionOperator.IN_RANGE:
        low, high = expected
        return _is_number(value) and low <= value <= high
    return False


def match_score(conditions: Iterable[PatternCondition], source: Any) -> float:
    """Weighted share of conditions satisfied by ``source``, in [0, 1]."""
    total_weight = 0.0
    matched_weight = 0.0

    for condition in conditions:
        total_weight += condition.weight
        if evaluate_condition(condition, source):
            matched_weight += condition.weight

    if total_weight <= 0:
        return 0.0
    return matched_weight / total_weight
