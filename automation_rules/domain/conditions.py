"""
Pure condition evaluation and config interpolation.

Contract:
    ``evaluate_condition(condition, data)`` is a total function: every
    operator/value combination that cannot be satisfied returns False.  It
    never raises, not for missing fields, type mismatches, unknown operators
    or invalid regular expressions.

    ``interpolate(template, context)`` substitutes ``{dot.path}`` tokens in
    string values only.  Unresolved tokens are left verbatim; non-string
    values are passed through untouched.

Architecture: automation_rules/domain.  ZERO I/O.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

from automation_rules.domain.types import ConditionOperator, RuleCondition


class _Missing:
    """Sentinel for a dot-path that does not resolve."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

_TOKEN_RE = re.compile(r"\{(\w+(?:\.\w+)*)\}")


# =============================================================================
# Path resolution
# =============================================================================


def resolve_path(data: Any, path: str) -> Any:
    """Resolve ``a.b.c`` against nested mappings (and lists by index).

    Returns ``MISSING`` as soon as any segment is absent.
    """
    current: Any = data
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


# =============================================================================
# Operators
# =============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality that keeps booleans distinct from 0/1."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    if left is MISSING:
        return False
    return type(left) is type(right) and left == right


def _compare(value: Any, expected: Any, op: ConditionOperator) -> bool:
    if not (_is_number(value) and _is_number(expected)):
        return False
    if op == ConditionOperator.GT:
        return value > expected
    if op == ConditionOperator.GTE:
        return value >= expected
    if op == ConditionOperator.LT:
        return value < expected
    return value <= expected


def _member(value: Any, expected: Any) -> bool | None:
    """None when ``expected`` is not a list (operator unsatisfiable)."""
    if not isinstance(expected, (list, tuple)):
        return None
    return any(_strict_equals(value, candidate) for candidate in expected)


def _regex(value: Any, pattern: Any) -> bool:
    if not (isinstance(value, str) and isinstance(pattern, str)):
        return False
    try:
        return re.search(pattern, value) is not None
    except re.error:
        return False


def evaluate_condition(condition: RuleCondition, data: Mapping[str, Any]) -> bool:
    """Evaluate one condition against event data. Never raises."""
    try:
        op = ConditionOperator(condition.operator)
    except ValueError:
        return False

    value = resolve_path(data, condition.field)
    expected = condition.value

    if op == ConditionOperator.EQ:
        return _strict_equals(value, expected)
    if op == ConditionOperator.NEQ:
        return not _strict_equals(value, expected)
    if op in (
        ConditionOperator.GT,
        ConditionOperator.GTE,
        ConditionOperator.LT,
        ConditionOperator.LTE,
    ):
        return _compare(value, expected, op)
    if op == ConditionOperator.CONTAINS:
        return isinstance(value, str) and isinstance(expected, str) and expected in value
    if op == ConditionOperator.NOT_CONTAINS:
        return (
            isinstance(value, str)
            and isinstance(expected, str)
            and expected not in value
        )
    if op == ConditionOperator.IN:
        return _member(value, expected) is True
    if op == ConditionOperator.NOT_IN:
        return _member(value, expected) is False
    if op == ConditionOperator.REGEX:
        return _regex(value, expected)
    return False


def evaluate_all(
    conditions: Iterable[RuleCondition], data: Mapping[str, Any],
) -> bool:
    """Conjunction of conditions; an empty list is unconditionally true."""
    return all(evaluate_condition(c, data) for c in conditions)


# =============================================================================
# Interpolation
# =============================================================================


def interpolate_string(template: str, context: Mapping[str, Any]) -> str:
    def _replace(match: re.Match[str]) -> str:
        resolved = resolve_path(context, match.group(1))
        if resolved is MISSING:
            return match.group(0)
        return str(resolved)

    return _TOKEN_RE.sub(_replace, template)


def interpolate(
    template: Mapping[str, Any], context: Mapping[str, Any],
) -> dict[str, Any]:
    """Resolve ``{path}`` tokens in the string values of a config map."""
    return {
        key: interpolate_string(value, context) if isinstance(value, str) else value
        for key, value in template.items()
    }
