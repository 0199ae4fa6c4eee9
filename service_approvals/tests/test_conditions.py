"""
Unit tests for the condition evaluator.
"""

import pytest

from service_approvals.app.rules.conditions import ConditionEvaluator
from service_approvals.app.rules.errors import FactNotFoundError, TypeMismatchError
from service_approvals.app.rules.models import AllCondition, AnyCondition, Operator, Predicate


def pred(fact, operator, value):
    return Predicate(fact=fact, operator=Operator(operator), value=value)


class TestConditionEvaluator:
    """Test cases for ConditionEvaluator."""

    @pytest.fixture
    def evaluator(self):
        """Create ConditionEvaluator instance."""
        return ConditionEvaluator()

    @pytest.fixture
    def facts(self):
        """Sample fact bag."""
        return {"amount": 250, "type": "expense", "urgent": True, "user_role": "employee"}

    def test_empty_all_matches(self, evaluator, facts):
        assert evaluator.evaluate(AllCondition(()), facts) is True

    def test_empty_any_never_matches(self, evaluator, facts):
        assert evaluator.evaluate(AnyCondition(()), facts) is False

    def test_all_requires_every_child(self, evaluator, facts):
        node = AllCondition((
            pred("amount", "greaterThan", 100),
            pred("type", "equal", "expense"),
        ))
        assert evaluator.evaluate(node, facts) is True

        node = AllCondition((
            pred("amount", "greaterThan", 100),
            pred("type", "equal", "loan"),
        ))
        assert evaluator.evaluate(node, facts) is False

    def test_any_requires_one_child(self, evaluator, facts):
        node = AnyCondition((
            pred("type", "equal", "loan"),
            pred("amount", "lessThan", 300),
        ))
        assert evaluator.evaluate(node, facts) is True

    def test_nested_trees(self, evaluator, facts):
        node = AllCondition((
            AnyCondition((
                pred("type", "equal", "loan"),
                pred("type", "equal", "expense"),
            )),
            AllCondition((
                pred("amount", "greaterThanInclusive", 250),
                pred("amount", "lessThanInclusive", 250),
            )),
        ))
        assert evaluator.evaluate(node, facts) is True

    @pytest.mark.parametrize("operator,value,expected", [
        ("equal", 250, True),
        ("equal", 250.0, True),
        ("notEqual", 250, False),
        ("lessThan", 250, False),
        ("lessThanInclusive", 250, True),
        ("greaterThan", 249.5, True),
        ("greaterThanInclusive", 251, False),
        ("in", (100, 250), True),
        ("notIn", (100, 250), False),
    ])
    def test_operators_on_numbers(self, evaluator, facts, operator, value, expected):
        assert evaluator.evaluate(pred("amount", operator, value), facts) is expected

    def test_in_operator_with_unlisted_value(self, evaluator):
        node = pred("type", "in", ("expense", "loan"))
        assert evaluator.evaluate(node, {"type": "travel"}) is False
        assert evaluator.evaluate(pred("type", "notIn", ("expense", "loan")), {"type": "travel"}) is True

    def test_missing_fact_fails_closed(self, evaluator):
        node = AllCondition((pred("amount", "lessThan", 100),))
        assert evaluator.evaluate(node, {"type": "expense"}) is False

    def test_none_fact_is_missing(self, evaluator):
        with pytest.raises(FactNotFoundError):
            evaluator.apply(pred("user_role", "equal", "admin"), {"user_role": None})

    def test_missing_fact_does_not_abort_any(self, evaluator):
        node = AnyCondition((
            pred("score", "greaterThan", 10),
            pred("type", "equal", "expense"),
        ))
        assert evaluator.evaluate(node, {"type": "expense"}) is True

    def test_numeric_operator_on_string_fact_fails_closed(self, evaluator):
        node = pred("amount", "greaterThan", 10)
        assert evaluator.evaluate(node, {"amount": "5000"}) is False

        with pytest.raises(TypeMismatchError):
            evaluator.apply(node, {"amount": "5000"})

    def test_booleans_are_not_numbers(self, evaluator):
        with pytest.raises(TypeMismatchError):
            evaluator.apply(pred("urgent", "greaterThan", 0), {"urgent": True})

    def test_equality_does_not_coerce_kinds(self, evaluator):
        assert evaluator.evaluate(pred("urgent", "equal", 1), {"urgent": True}) is False
        assert evaluator.evaluate(pred("urgent", "equal", True), {"urgent": True}) is True
        assert evaluator.evaluate(pred("amount", "equal", "100"), {"amount": 100}) is False
        assert evaluator.evaluate(pred("amount", "notEqual", "100"), {"amount": 100}) is True

    def test_membership_requires_list_value(self, evaluator):
        with pytest.raises(TypeMismatchError):
            evaluator.apply(pred("type", "in", "expense"), {"type": "expense"})

    def test_membership_rejects_non_scalar_fact(self, evaluator):
        node = pred("tags", "in", ("a", "b"))
        assert evaluator.evaluate(node, {"tags": ["a"]}) is False

    def test_all_short_circuits_on_first_false(self, evaluator):
        # the second child would raise TypeError if it were evaluated
        node = AllCondition((pred("type", "equal", "loan"), object()))
        assert evaluator.evaluate(node, {"type": "expense"}) is False

    def test_any_short_circuits_on_first_true(self, evaluator):
        node = AnyCondition((pred("type", "equal", "expense"), object()))
        assert evaluator.evaluate(node, {"type": "expense"}) is True

    def test_unknown_node_type_raises(self, evaluator):
        with pytest.raises(TypeError):
            evaluator.evaluate({"all": []}, {})

    def test_facts_are_not_mutated(self, evaluator, facts):
        snapshot = dict(facts)
        evaluator.evaluate(AllCondition((pred("missing", "equal", 1),)), facts)
        assert facts == snapshot
