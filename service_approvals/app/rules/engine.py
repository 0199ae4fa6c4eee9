"""
Rule evaluation engine for Approvals Service.
"""

import asyncio
import time
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Tuple

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .conditions import ConditionEvaluator
from .defaults import default_rules
from .errors import InvalidRuleError
from .models import (
    Decision, DecisionStatus, EvaluationResult, EventType, ReasonCode, Rule, RulesSource,
)

PENDING_MESSAGE = "Requires admin review"
ERROR_MESSAGE = "Error processing rules, requires admin review"
APPROVED_MESSAGE = "Auto-approved by rule engine"
REJECTED_MESSAGE = "Auto-rejected by rule engine"


class RuleStore(Protocol):
    """Source of rules consulted once per evaluation."""

    async def fetch_rules(self) -> List[Rule]:
        ...


class RuleSelector:
    """Picks the highest-priority rule whose conditions hold."""

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None):
        self.evaluator = evaluator or ConditionEvaluator()

    def order(self, rules: Iterable[Rule]) -> List[Rule]:
        # sorted() is stable, so equal priorities keep the supplied order
        return sorted(rules, key=lambda r: r.priority, reverse=True)

    def select(self, rules: Iterable[Rule], facts: Mapping[str, Any]) -> Optional[Rule]:
        """Return the first matching rule in priority order, if any."""
        for rule in self.order(rules):
            if self.evaluator.evaluate(rule.conditions, facts):
                return rule
        return None


class DecisionResolver:
    """Maps a matched rule's event to a decision."""

    def __init__(self):
        self.logger = get_logger("approvals.resolver")

    def resolve(self, matched: Optional[Rule]) -> Decision:
        return self.resolve_with_reason(matched)[0]

    def resolve_with_reason(self, matched: Optional[Rule]) -> Tuple[Decision, ReasonCode]:
        if matched is None:
            return Decision(DecisionStatus.PENDING, PENDING_MESSAGE), ReasonCode.NO_MATCH

        event = matched.event
        if event.type == EventType.AUTO_APPROVE.value:
            return (
                Decision(DecisionStatus.APPROVED, event.message or APPROVED_MESSAGE),
                ReasonCode.RULE_MATCHED,
            )
        if event.type == EventType.AUTO_REJECT.value:
            return (
                Decision(DecisionStatus.REJECTED, event.message or REJECTED_MESSAGE),
                ReasonCode.RULE_MATCHED,
            )

        self.logger.warning("Unknown event type, leaving request pending", rule=matched.name, event_type=event.type)
        return Decision(DecisionStatus.PENDING, PENDING_MESSAGE), ReasonCode.UNKNOWN_EVENT


class RuleEngine:
    """Evaluates approval requests against the current rule set.

    Rules are fetched from the store on every call. A failing, slow or empty
    store is replaced by the built-in default rules, and any fault during
    evaluation resolves to a pending decision. The engine keeps no state
    between calls.
    """

    def __init__(
        self,
        store: Optional[RuleStore] = None,
        fetch_timeout_seconds: float = 5.0,
        metrics: Optional[MetricsCollector] = None,
        selector: Optional[RuleSelector] = None,
        resolver: Optional[DecisionResolver] = None,
    ):
        self.store = store
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self.metrics = metrics
        self.selector = selector or RuleSelector()
        self.resolver = resolver or DecisionResolver()
        self.logger = get_logger("approvals.rule_engine")

    async def load_rules(self) -> Tuple[List[Rule], RulesSource, Optional[str]]:
        """Fetch rules from the store, falling back to the defaults."""
        if self.store is None:
            return self._fallback("store_not_configured")

        try:
            rules = await asyncio.wait_for(self.store.fetch_rules(), timeout=self.fetch_timeout_seconds)
        except asyncio.TimeoutError:
            self.logger.warning("Rule store timed out", timeout_seconds=self.fetch_timeout_seconds)
            return self._fallback("store_timeout")
        except InvalidRuleError as e:
            self.logger.warning("Rule store returned an invalid rule", error=e.message, details=e.details)
            return self._fallback("invalid_rule")
        except Exception as e:
            self.logger.warning("Rule store unavailable", error=str(e))
            return self._fallback("store_unavailable")

        if not rules:
            return self._fallback("store_empty")

        return list(rules), RulesSource.STORE, None

    def _fallback(self, reason: str) -> Tuple[List[Rule], RulesSource, Optional[str]]:
        self.logger.warning("Using default rules", reason=reason)
        if self.metrics:
            self.metrics.increment_counter("default_rules_fallback_total", reason=reason)
        return default_rules(), RulesSource.DEFAULTS, reason

    async def evaluate(self, facts: Mapping[str, Any]) -> EvaluationResult:
        """Evaluate facts and report how the decision was reached."""
        start_time = time.time()
        source = RulesSource.STORE
        fallback_reason = None

        try:
            rules, source, fallback_reason = await self.load_rules()
            matched = self.selector.select(rules, facts)
            decision, reason_code = self.resolver.resolve_with_reason(matched)

            result = EvaluationResult(
                decision=decision,
                reason_code=reason_code,
                rules_source=source,
                matched_rule=matched,
                fallback_reason=fallback_reason,
            )

        except Exception as e:
            self.logger.error("Error processing rules", error=str(e), exc_info=True)
            result = EvaluationResult(
                decision=Decision(DecisionStatus.PENDING, ERROR_MESSAGE),
                reason_code=ReasonCode.EVALUATION_ERROR,
                rules_source=source,
                fallback_reason=fallback_reason,
            )

        result.evaluation_time_ms = (time.time() - start_time) * 1000

        self.logger.info(
            "Rule evaluation result",
            status=result.decision.status.value,
            reason_code=result.reason_code.value,
            rule=result.matched_rule.name if result.matched_rule else None,
            rules_source=result.rules_source.value,
        )
        if self.metrics:
            self.metrics.increment_counter(
                "approval_decisions_total",
                status=result.decision.status.value,
                reason_code=result.reason_code.value,
            )
            self.metrics.observe_histogram(
                "approval_evaluation_duration_seconds",
                result.evaluation_time_ms / 1000,
                rules_source=result.rules_source.value,
            )

        return result

    async def evaluate_request(self, facts: Mapping[str, Any]) -> Decision:
        """Decide a single request. Never raises."""
        result = await self.evaluate(facts)
        return result.decision
