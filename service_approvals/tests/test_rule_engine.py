"""
Unit tests for Approvals Rule Engine.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from prometheus_client import CollectorRegistry

from shared.metrics import MetricsCollector
from service_approvals.app.persistence.memory import StaticRuleStore
from service_approvals.app.rules.defaults import DEFAULT_RULE_DATA, default_rules
from service_approvals.app.rules.engine import (
    DecisionResolver, RuleEngine, RuleSelector,
    APPROVED_MESSAGE, ERROR_MESSAGE, PENDING_MESSAGE, REJECTED_MESSAGE,
)
from service_approvals.app.rules.errors import InvalidRuleError, RuleStoreError
from service_approvals.app.rules.loader import parse_rule
from service_approvals.app.rules.models import (
    AllCondition, Decision, DecisionStatus, Event, ReasonCode, Rule, RulesSource,
)


def make_rule(name, priority, conditions=None, event_type="auto-approve", message=None):
    params = {"message": message} if message else {}
    return parse_rule({
        "name": name,
        "priority": priority,
        "conditions": conditions if conditions is not None else {"all": []},
        "event": {"type": event_type, "params": params},
    })


class TestRuleSelector:
    """Test cases for RuleSelector."""

    @pytest.fixture
    def selector(self):
        return RuleSelector()

    def test_empty_rule_set_has_no_match(self, selector):
        assert selector.select([], {"amount": 1}) is None

    def test_higher_priority_evaluates_first(self, selector):
        low = make_rule("low", 1)
        high = make_rule("high", 9)

        assert selector.select([low, high], {}) is high

    def test_equal_priority_keeps_supplied_order(self, selector):
        first = make_rule("first", 5)
        second = make_rule("second", 5)

        assert selector.select([first, second], {}) is first
        assert selector.select([second, first], {}) is second

    def test_order_is_stable_and_descending(self, selector):
        rules = [make_rule("a", 1), make_rule("b", 3), make_rule("c", 1), make_rule("d", 3)]

        assert [r.name for r in selector.order(rules)] == ["b", "d", "a", "c"]

    def test_stops_at_first_match(self, selector):
        evaluator = MagicMock()
        evaluator.evaluate.side_effect = [False, True, True]
        selector = RuleSelector(evaluator)
        rules = [make_rule("a", 3), make_rule("b", 2), make_rule("c", 1)]

        assert selector.select(rules, {}).name == "b"
        assert evaluator.evaluate.call_count == 2

    def test_non_matching_rules_are_skipped(self, selector):
        loan_only = make_rule("loan only", 10, {"all": [{"fact": "type", "operator": "equal", "value": "loan"}]})
        fallback = make_rule("fallback", 1)

        assert selector.select([loan_only, fallback], {"type": "expense"}) is fallback


class TestDecisionResolver:
    """Test cases for DecisionResolver."""

    @pytest.fixture
    def resolver(self):
        return DecisionResolver()

    def test_no_match_is_pending(self, resolver):
        assert resolver.resolve(None) == Decision(DecisionStatus.PENDING, PENDING_MESSAGE)

    def test_auto_approve_uses_event_message(self, resolver):
        decision = resolver.resolve(make_rule("r", 1, message="Looks fine"))
        assert decision == Decision(DecisionStatus.APPROVED, "Looks fine")

    def test_auto_approve_default_message(self, resolver):
        decision = resolver.resolve(make_rule("r", 1))
        assert decision == Decision(DecisionStatus.APPROVED, APPROVED_MESSAGE)

    def test_auto_reject(self, resolver):
        assert resolver.resolve(make_rule("r", 1, event_type="auto-reject", message="No")).status == DecisionStatus.REJECTED
        assert resolver.resolve(make_rule("r", 1, event_type="auto-reject")).message == REJECTED_MESSAGE

    def test_unknown_event_fails_closed(self, resolver):
        rule = make_rule("r", 1, event_type="escalate", message="Escalated")
        decision, reason = resolver.resolve_with_reason(rule)

        assert decision == Decision(DecisionStatus.PENDING, PENDING_MESSAGE)
        assert reason == ReasonCode.UNKNOWN_EVENT


class TestDefaultRules:
    """Test cases for the built-in rule set."""

    def test_two_default_rules(self):
        rules = default_rules()

        assert len(rules) == 2
        assert all(rule.event.type == "auto-approve" for rule in rules)
        assert len(DEFAULT_RULE_DATA) == 2

    def test_default_rules_are_fresh_objects(self):
        assert default_rules()[0] is not default_rules()[0]


class TestRuleEngine:
    """Test cases for RuleEngine."""

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("approvals", CollectorRegistry())

    @pytest.fixture
    def reject_large(self):
        return make_rule(
            "Reject large amounts", 5,
            {"all": [{"fact": "amount", "operator": "greaterThan", "value": 1000}]},
            event_type="auto-reject",
            message="Rejected: amount too large",
        )

    @pytest.fixture
    def approve_all(self):
        return make_rule("Approve everything", 1, message="Approved: catch-all")

    @pytest.mark.asyncio
    async def test_small_expense_approved_by_defaults(self):
        engine = RuleEngine(StaticRuleStore([]))

        decision = await engine.evaluate_request({"amount": 50, "type": "expense"})

        assert decision.status == DecisionStatus.APPROVED
        assert decision.message == "Auto-approved: small expense"

    @pytest.mark.asyncio
    async def test_small_loan_approved_by_defaults(self):
        engine = RuleEngine(StaticRuleStore([]))

        decision = await engine.evaluate_request({"amount": 499, "type": "loan"})

        assert decision == Decision(DecisionStatus.APPROVED, "Auto-approved: small loan")

    @pytest.mark.asyncio
    async def test_large_loan_pending_on_defaults(self):
        engine = RuleEngine(StaticRuleStore([]))

        result = await engine.evaluate({"amount": 5000, "type": "loan"})

        assert result.decision == Decision(DecisionStatus.PENDING, PENDING_MESSAGE)
        assert result.reason_code == ReasonCode.NO_MATCH
        assert result.rules_source == RulesSource.DEFAULTS
        assert result.fallback_reason == "store_empty"

    @pytest.mark.asyncio
    async def test_higher_priority_wins_when_both_match(self, reject_large, approve_all):
        engine = RuleEngine(StaticRuleStore([approve_all, reject_large]))

        result = await engine.evaluate({"amount": 2000})

        assert result.decision == Decision(DecisionStatus.REJECTED, "Rejected: amount too large")
        assert result.matched_rule is reject_large
        assert result.rules_source == RulesSource.STORE

    @pytest.mark.asyncio
    async def test_lower_priority_fires_when_higher_does_not_match(self, reject_large, approve_all):
        engine = RuleEngine(StaticRuleStore([reject_large, approve_all]))

        decision = await engine.evaluate_request({"amount": 20})

        assert decision == Decision(DecisionStatus.APPROVED, "Approved: catch-all")

    @pytest.mark.asyncio
    async def test_in_operator_falls_through(self, approve_all):
        typed = make_rule(
            "Known types", 10,
            {"all": [{"fact": "type", "operator": "in", "value": ["expense", "loan"]}]},
            event_type="auto-reject",
        )
        engine = RuleEngine(StaticRuleStore([typed, approve_all]))

        assert (await engine.evaluate_request({"type": "travel"})).status == DecisionStatus.APPROVED

        engine = RuleEngine(StaticRuleStore([typed]))
        assert (await engine.evaluate_request({"type": "travel"})).status == DecisionStatus.PENDING

    @pytest.mark.asyncio
    async def test_missing_fact_is_not_an_error(self, reject_large):
        engine = RuleEngine(StaticRuleStore([reject_large]))

        result = await engine.evaluate({"type": "loan"})

        assert result.reason_code == ReasonCode.NO_MATCH
        assert result.decision.message == PENDING_MESSAGE

    @pytest.mark.asyncio
    async def test_empty_store_matches_defaults(self):
        facts_list = [
            {"amount": 50, "type": "expense"},
            {"amount": 150, "type": "expense"},
            {"amount": 450, "type": "loan"},
            {"amount": 5000, "type": "loan"},
            {"type": "expense"},
        ]
        empty_engine = RuleEngine(StaticRuleStore([]))
        default_engine = RuleEngine(StaticRuleStore(default_rules()))

        for facts in facts_list:
            assert await empty_engine.evaluate_request(facts) == await default_engine.evaluate_request(facts)

    @pytest.mark.asyncio
    async def test_no_store_uses_defaults(self):
        result = await RuleEngine().evaluate({"amount": 50, "type": "expense"})

        assert result.rules_source == RulesSource.DEFAULTS
        assert result.fallback_reason == "store_not_configured"
        assert result.decision.status == DecisionStatus.APPROVED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,reason", [
        (RuleStoreError("connection refused"), "store_unavailable"),
        (ConnectionError("reset"), "store_unavailable"),
        (InvalidRuleError("unknown operator 'between'", "conditions.all[0]"), "invalid_rule"),
    ])
    async def test_store_failure_falls_back_to_defaults(self, metrics, error, reason):
        store = MagicMock()
        store.fetch_rules = AsyncMock(side_effect=error)
        engine = RuleEngine(store, metrics=metrics)

        result = await engine.evaluate({"amount": 50, "type": "expense"})

        assert result.decision == Decision(DecisionStatus.APPROVED, "Auto-approved: small expense")
        assert result.rules_source == RulesSource.DEFAULTS
        assert result.fallback_reason == reason
        assert metrics.registry.get_sample_value(
            "default_rules_fallback_total", {"reason": reason}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_store_timeout_falls_back_to_defaults(self):
        async def slow_fetch():
            await asyncio.sleep(1)
            return []

        store = MagicMock()
        store.fetch_rules = slow_fetch
        engine = RuleEngine(store, fetch_timeout_seconds=0.01)

        result = await engine.evaluate({"amount": 10, "type": "loan"})

        assert result.fallback_reason == "store_timeout"
        assert result.decision.status == DecisionStatus.APPROVED

    @pytest.mark.asyncio
    async def test_too_deep_stored_rule_is_reported_as_invalid(self):
        conditions = {"fact": "amount", "operator": "greaterThan", "value": 1000}
        for _ in range(1200):
            conditions = {"all": [conditions]}
        row = {"name": "deep", "priority": 1, "conditions": conditions, "event": {"type": "auto-reject"}}

        async def fetch_rows():
            return [parse_rule(row)]

        store = MagicMock()
        store.fetch_rules = fetch_rows
        engine = RuleEngine(store)

        result = await engine.evaluate({"amount": 2000})

        assert result.rules_source == RulesSource.DEFAULTS
        assert result.fallback_reason == "invalid_rule"
        assert result.decision.status == DecisionStatus.PENDING

    @pytest.mark.asyncio
    async def test_fetches_rules_once_per_evaluation(self, approve_all):
        store = MagicMock()
        store.fetch_rules = AsyncMock(return_value=[approve_all])
        engine = RuleEngine(store)

        await engine.evaluate_request({})
        await engine.evaluate_request({})

        assert store.fetch_rules.await_count == 2

    @pytest.mark.asyncio
    async def test_internal_error_resolves_to_pending(self, approve_all):
        selector = MagicMock()
        selector.select.side_effect = RuntimeError("boom")
        engine = RuleEngine(StaticRuleStore([approve_all]), selector=selector)

        result = await engine.evaluate({"amount": 1})

        assert result.decision == Decision(DecisionStatus.PENDING, ERROR_MESSAGE)
        assert result.reason_code == ReasonCode.EVALUATION_ERROR

    @pytest.mark.asyncio
    async def test_invalid_fact_bag_resolves_to_pending(self):
        conditional = make_rule("c", 1, {"all": [{"fact": "amount", "operator": "lessThan", "value": 1}]})
        engine = RuleEngine(StaticRuleStore([conditional]))

        decision = await engine.evaluate_request(None)

        assert decision == Decision(DecisionStatus.PENDING, ERROR_MESSAGE)

    @pytest.mark.asyncio
    async def test_unknown_event_is_pending(self):
        engine = RuleEngine(StaticRuleStore([make_rule("notify", 1, event_type="notify-admin")]))

        result = await engine.evaluate({})

        assert result.decision.status == DecisionStatus.PENDING
        assert result.reason_code == ReasonCode.UNKNOWN_EVENT

    @pytest.mark.asyncio
    async def test_records_decision_metrics(self, metrics, approve_all):
        engine = RuleEngine(StaticRuleStore([approve_all]), metrics=metrics)

        await engine.evaluate({})

        assert metrics.registry.get_sample_value(
            "approval_decisions_total", {"status": "approved", "reason_code": "rule_matched"}
        ) == 1.0
        assert metrics.registry.get_sample_value(
            "approval_evaluation_duration_seconds_count", {"rules_source": "store"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_concurrent_evaluations_are_independent(self, reject_large, approve_all):
        engine = RuleEngine(StaticRuleStore([reject_large, approve_all]))

        decisions = await asyncio.gather(*[
            engine.evaluate_request({"amount": amount}) for amount in (10, 5000, 20, 3000)
        ])

        assert [d.status for d in decisions] == [
            DecisionStatus.APPROVED, DecisionStatus.REJECTED,
            DecisionStatus.APPROVED, DecisionStatus.REJECTED,
        ]

    @pytest.mark.asyncio
    async def test_rule_built_directly_from_models(self):
        rule = Rule(name="direct", priority=0, conditions=AllCondition(), event=Event("auto-reject"))
        engine = RuleEngine(StaticRuleStore([rule]))

        assert (await engine.evaluate_request({})).status == DecisionStatus.REJECTED
