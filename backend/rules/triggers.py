"""Trigger evaluation against a FactMap.

Evaluation is pure: it only reads the FactMap and never raises for
data-shape problems. Absent facts, non-numeric operands and facts from
unavailable entities all evaluate to "no match".
"""
from __future__ import annotations

import math
from typing import Any

from .models import ABSENT, AllNode, AnyNode, FactMap, NotNode, Operator, Predicate, TriggerNode


def as_number(value: Any) -> float | None:
    """Return ``value`` as a float, or None if it is not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def _is_real_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _values_equal(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    if _is_real_number(actual) and _is_real_number(expected):
        return float(actual) == float(expected)
    if isinstance(actual, list):
        actual = tuple(actual)
    if isinstance(expected, list):
        expected = tuple(expected)
    return actual == expected


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return isinstance(expected, str) and expected in actual
    if isinstance(actual, (list, tuple)):
        return any(_values_equal(item, expected) for item in actual)
    return False


def _compare(op: Operator, actual: Any, expected: Any) -> bool:
    left = as_number(actual)
    right = as_number(expected)
    if left is None or right is None:
        return False
    if op is Operator.GT:
        return left > right
    if op is Operator.GTE:
        return left >= right
    if op is Operator.LT:
        return left < right
    return left <= right


def evaluate_predicate(predicate: Predicate, facts: FactMap) -> bool:
    if facts.is_unavailable(predicate.path):
        return False

    actual = facts.resolve(predicate.path)
    op = predicate.op

    if op is Operator.EXISTS:
        return actual is not ABSENT
    if op is Operator.NOT_EXISTS:
        return actual is ABSENT
    if actual is ABSENT:
        return False

    if op is Operator.EQUALS:
        return _values_equal(actual, predicate.value)
    if op is Operator.NOT_EQUALS:
        return not _values_equal(actual, predicate.value)
    if op is Operator.CONTAINS:
        return _contains(actual, predicate.value)
    return _compare(op, actual, predicate.value)


def evaluate(node: TriggerNode, facts: FactMap) -> bool:
    """Evaluate a trigger tree. Empty ``all`` is true, empty ``any`` is false."""
    if isinstance(node, Predicate):
        return evaluate_predicate(node, facts)
    if isinstance(node, NotNode):
        return not evaluate(node.child, facts)
    if isinstance(node, AllNode):
        return all(evaluate(child, facts) for child in node.children)
    if isinstance(node, AnyNode):
        return any(evaluate(child, facts) for child in node.children)
    raise TypeError(f"Unknown trigger node: {type(node).__name__}")
