"""
Condition tree evaluation for Approvals Service.
"""

from typing import Any, Dict, Mapping

from shared.logging import get_logger
from .errors import FactNotFoundError, RuleEngineError, TypeMismatchError
from .loader import is_number, is_scalar
from .models import AllCondition, AnyCondition, ConditionNode, Operator, Predicate


def _same_kind(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool)
    if is_number(left):
        return is_number(right)
    return type(left) is type(right)


def _equal(fact_value: Any, value: Any) -> bool:
    return _same_kind(fact_value, value) and fact_value == value


def _check_scalars(operator: Operator, fact_value: Any, value: Any):
    if not is_scalar(fact_value) or not is_scalar(value):
        raise TypeMismatchError(operator.value, fact_value, value)


def _check_numbers(operator: Operator, fact_value: Any, value: Any):
    if not is_number(fact_value) or not is_number(value):
        raise TypeMismatchError(operator.value, fact_value, value)


def _check_membership(operator: Operator, fact_value: Any, value: Any):
    if not is_scalar(fact_value) or not isinstance(value, (tuple, list)):
        raise TypeMismatchError(operator.value, fact_value, value)


def _contains(values, fact_value: Any) -> bool:
    return any(_equal(fact_value, item) for item in values)


# operator -> (operand check, comparison)
OPERATORS: Dict[Operator, tuple] = {
    Operator.EQUAL: (_check_scalars, _equal),
    Operator.NOT_EQUAL: (_check_scalars, lambda a, b: not _equal(a, b)),
    Operator.LESS_THAN: (_check_numbers, lambda a, b: a < b),
    Operator.LESS_THAN_INCLUSIVE: (_check_numbers, lambda a, b: a <= b),
    Operator.GREATER_THAN: (_check_numbers, lambda a, b: a > b),
    Operator.GREATER_THAN_INCLUSIVE: (_check_numbers, lambda a, b: a >= b),
    Operator.IN: (_check_membership, lambda a, b: _contains(b, a)),
    Operator.NOT_IN: (_check_membership, lambda a, b: not _contains(b, a)),
}


class ConditionEvaluator:
    """Evaluates condition trees against a fact bag.

    Predicate failures (missing fact, incompatible operand types) make the
    predicate false; they never abort evaluation of the enclosing tree.
    """

    def __init__(self):
        self.logger = get_logger("approvals.conditions")

    def evaluate(self, node: ConditionNode, facts: Mapping[str, Any]) -> bool:
        """Evaluate a condition node."""
        if isinstance(node, AllCondition):
            return all(self.evaluate(child, facts) for child in node.children)

        if isinstance(node, AnyCondition):
            return any(self.evaluate(child, facts) for child in node.children)

        if isinstance(node, Predicate):
            try:
                return self.apply(node, facts)
            except RuleEngineError as e:
                self.logger.debug(
                    "Predicate not satisfied",
                    fact=node.fact,
                    operator=node.operator.value,
                    code=e.code,
                    error=e.message
                )
                return False

        raise TypeError(f"Unsupported condition node: {type(node).__name__}")

    def apply(self, predicate: Predicate, facts: Mapping[str, Any]) -> bool:
        """Apply a predicate, raising on lookup or type failures."""
        fact_value = facts.get(predicate.fact)
        if fact_value is None:
            raise FactNotFoundError(predicate.fact)

        check, compare = OPERATORS[predicate.operator]
        check(predicate.operator, fact_value, predicate.value)
        return bool(compare(fact_value, predicate.value))
