"""
approval_engines.rules -- Pure routing-rule evaluation.

Responsibility:
    Decide whether a routing rule holds for a document context.  The
    evaluator is a total function over the closed ``RuleOperator`` set:
    every operator has an entry in the dispatch table and anything else
    is a non-match.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - Fail closed: a missing or None context field never matches, for
      every operator (``ne`` and ``not_in`` included).
    - Numbers compare numerically (int, float, Decimal; numeric strings
      too for the ordering operators).  Other values compare only with a
      value of the same type; incomparable pairs never match.
    - ``in``/``not_in`` need a sequence comparison value; anything else is
      a non-match for both.
    - All conditions of one rule are conjunctive.

Failure modes:
    - None.  Evaluation never raises on bad data; it returns False.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from approval_kernel.domain.workflow import RoutingRule, RuleCondition, RuleOperator

_MISSING = object()

_SEQUENCE_TYPES = (list, tuple, set, frozenset)


def resolve_field(context: Mapping[str, Any], field_path: str) -> Any:
    """Look up ``field_path`` in ``context``.

    An exact key wins; otherwise ``a.b`` walks nested mappings.  Returns
    None when any step is missing.
    """
    if field_path in context:
        return context[field_path]
    current: Any = context
    for part in field_path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part, _MISSING)
        if current is _MISSING or current is None:
            return None
    return current


def _as_number(value: Any, allow_strings: bool) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value)) if value == value and abs(value) != float("inf") else None
    if allow_strings and isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
        return number if number.is_finite() else None
    return None


def _ordering(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def apply(actual: Any, expected: Any) -> bool:
        left = _as_number(actual, allow_strings=True)
        right = _as_number(expected, allow_strings=True)
        if left is not None and right is not None:
            return compare(left, right)
        if type(actual) is not type(expected):
            return False
        try:
            return bool(compare(actual, expected))
        except TypeError:
            return False

    return apply


def _comparable(actual: Any, expected: Any) -> bool:
    left = _as_number(actual, allow_strings=False)
    right = _as_number(expected, allow_strings=False)
    if left is not None and right is not None:
        return True
    return type(actual) is type(expected)


def _equals(actual: Any, expected: Any) -> bool:
    left = _as_number(actual, allow_strings=False)
    right = _as_number(expected, allow_strings=False)
    if left is not None and right is not None:
        return left == right
    return type(actual) is type(expected) and actual == expected


def _eq(actual: Any, expected: Any) -> bool:
    return _equals(actual, expected)


def _ne(actual: Any, expected: Any) -> bool:
    return _comparable(actual, expected) and not _equals(actual, expected)


def _in(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, _SEQUENCE_TYPES):
        return False
    return any(_equals(actual, item) for item in expected)


def _not_in(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, _SEQUENCE_TYPES):
        return False
    return not any(_equals(actual, item) for item in expected)


_OPERATORS: dict[RuleOperator, Callable[[Any, Any], bool]] = {
    RuleOperator.GT: _ordering(lambda a, b: a > b),
    RuleOperator.GTE: _ordering(lambda a, b: a >= b),
    RuleOperator.LT: _ordering(lambda a, b: a < b),
    RuleOperator.LTE: _ordering(lambda a, b: a <= b),
    RuleOperator.EQ: _eq,
    RuleOperator.NE: _ne,
    RuleOperator.IN: _in,
    RuleOperator.NOT_IN: _not_in,
}


def _never(actual: Any, expected: Any) -> bool:
    return False


def evaluate_condition(condition: RuleCondition, context: Mapping[str, Any]) -> bool:
    """Evaluate one ``field <op> value`` condition."""
    actual = resolve_field(context, condition.field)
    if actual is None:
        return False
    operator = RuleOperator.parse(condition.operator)
    return _OPERATORS.get(operator, _never)(actual, condition.value)


def evaluate(rule: RoutingRule, context: Mapping[str, Any]) -> bool:
    """True iff every condition of ``rule`` holds for ``context``.

    A rule without conditions never matches.
    """
    if not rule.conditions:
        return False
    return all(evaluate_condition(condition, context) for condition in rule.conditions)


def evaluate_conditions(
    condition_map: Mapping[str, Any] | None,
    context: Mapping[str, Any],
) -> bool:
    """Evaluate a condition map (``{field: value}`` or ``{field: {op: value}}``).

    An empty or missing map always matches.
    """
    if not condition_map:
        return True
    rule = RoutingRule.from_condition_map(condition_map, target_levels=())
    return all(evaluate_condition(condition, context) for condition in rule.conditions)


class RuleEvaluator:
    """Object form of the evaluator for callers that inject collaborators."""

    def evaluate(self, rule: RoutingRule, context: Mapping[str, Any]) -> bool:
        return evaluate(rule, context)

    def evaluate_conditions(
        self,
        condition_map: Mapping[str, Any] | None,
        context: Mapping[str, Any],
    ) -> bool:
        return evaluate_conditions(condition_map, context)
