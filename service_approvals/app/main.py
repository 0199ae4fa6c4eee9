"""
Approvals service.
"""

from typing import Dict, List, Optional
from uuid import UUID

from shared.base_service import BaseService
from shared.errors import NotFoundError

from .rules.engine import RuleEngine, RuleStore
from .rules.errors import InvalidRuleError
from .rules.loader import condition_to_dict, event_to_dict, parse_rule
from .rules.models import (
    DecisionResponse, EvaluateRequest, EvaluationResult, FactBag, RequestSubmission,
    Rule, RuleListResponse, RuleResponse, RuleUpdateRequest, RulesSource,
)
from .persistence.postgres import PostgreSQLRuleStore
from .cache.redis_cache import CachingRuleStore, RedisRuleCache


def _to_response(result: EvaluationResult) -> DecisionResponse:
    return DecisionResponse(
        status=result.decision.status,
        message=result.decision.message,
        reason_code=result.reason_code,
        rules_source=result.rules_source,
        matched_rule=result.matched_rule.name if result.matched_rule else None,
        evaluation_time_ms=result.evaluation_time_ms
    )


def _rule_response(rule: Rule) -> RuleResponse:
    return RuleResponse(
        rule_id=rule.rule_id,
        name=rule.name,
        priority=rule.priority,
        conditions=condition_to_dict(rule.conditions),
        event=event_to_dict(rule.event)
    )


class ApprovalsService(BaseService):
    """Approvals service implementation."""

    def __init__(self, store: Optional[RuleStore] = None, cache: Optional[RedisRuleCache] = None):
        super().__init__("approvals", 8020)

        self.store = store if store is not None else PostgreSQLRuleStore(self.config.postgres_dsn)
        if cache is None and self.config.rule_cache_ttl_seconds > 0:
            cache = RedisRuleCache(self.config.redis_url, self.config.rule_cache_ttl_seconds)
        self.cache = cache
        self.rule_source = CachingRuleStore(self.store, cache) if cache else self.store

        self.rule_engine = RuleEngine(
            store=self.rule_source,
            fetch_timeout_seconds=self.config.rule_fetch_timeout_seconds,
            metrics=self.metrics
        )

        self._setup_approvals_routes()

    def _setup_approvals_routes(self):
        """Set up approvals-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "approvals",
                "message": "Approvals Platform - Approvals Service",
                "version": "1.0.0",
                "capabilities": ["rule_engine", "persistence"] + (["caching"] if self.cache else [])
            }

        @self.app.post("/approvals/evaluate", response_model=DecisionResponse)
        async def evaluate(request: EvaluateRequest):
            """Evaluate a raw fact bag against the current rules."""
            facts: FactBag = {
                name: value for name, value in request.facts.items() if value is not None
            }
            result = await self.rule_engine.evaluate(facts)
            return _to_response(result)

        @self.app.post("/approvals/requests", response_model=DecisionResponse)
        async def submit_request(request: RequestSubmission):
            """Decide a submitted expense or loan request."""
            facts: FactBag = {
                "amount": request.amount,
                "type": request.type.value,
            }
            if request.user_role:
                facts["user_role"] = request.user_role

            result = await self.rule_engine.evaluate(facts)

            self.logger.info(
                "Request decided",
                type=request.type.value,
                amount=request.amount,
                status=result.decision.status.value
            )
            return _to_response(result)

        @self.app.get("/approvals/rules", response_model=RuleListResponse)
        async def get_rules():
            """List the rules the engine would evaluate right now."""
            rules, source, _ = await self.rule_engine.load_rules()
            ordered = self.rule_engine.selector.order(rules)

            return RuleListResponse(
                rules=[_rule_response(rule) for rule in ordered],
                total=len(ordered),
                using_defaults=(source == RulesSource.DEFAULTS)
            )

        @self.app.put("/approvals/rules", response_model=RuleListResponse)
        async def replace_rules(request: List[RuleUpdateRequest]):
            """Replace the whole rule set.

            Entries with a blank name are dropped. Every other entry must load
            as a valid rule, otherwise nothing is saved.
            """
            rules = []
            for index, entry in enumerate(request):
                if not entry.name.strip():
                    continue
                try:
                    rules.append(parse_rule(entry.model_dump()))
                except InvalidRuleError as e:
                    e.details["index"] = index
                    raise

            saved = await self.store.replace_rules(rules)
            await self._invalidate_cached_rules()

            self.logger.info("Rule set replaced", submitted=len(request), saved=len(saved))
            ordered = self.rule_engine.selector.order(saved)
            return RuleListResponse(
                rules=[_rule_response(rule) for rule in ordered],
                total=len(ordered)
            )

        @self.app.get("/approvals/rules/{rule_id}", response_model=RuleResponse)
        async def get_rule(rule_id: UUID):
            """Get one stored rule."""
            rule = await self.store.load_rule(str(rule_id))
            if rule is None:
                raise NotFoundError("Rule not found", {"rule_id": str(rule_id)})
            return _rule_response(rule)

        @self.app.put("/approvals/rules/{rule_id}", response_model=RuleResponse)
        async def update_rule(rule_id: UUID, request: RuleUpdateRequest):
            """Replace a stored rule. The rule is validated before it is saved."""
            rule = parse_rule(request.model_dump(), rule_id=str(rule_id))

            updated = await self.store.update_rule(rule)
            if updated is None:
                raise NotFoundError("Rule not found", {"rule_id": str(rule_id)})

            await self._invalidate_cached_rules()

            self.logger.info("Rule edited", rule_id=str(rule_id), name=updated.name)
            return _rule_response(updated)

    async def _invalidate_cached_rules(self):
        if self.cache:
            await self.cache.invalidate_rules()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check approvals service dependencies."""
        dependencies = {}

        try:
            dependencies["postgres"] = "ok" if await self.store.health_check() else "error"
        except Exception:
            dependencies["postgres"] = "error"

        if self.cache:
            try:
                dependencies["redis"] = "ok" if await self.cache.health_check() else "error"
            except Exception:
                dependencies["redis"] = "error"

        return dependencies

    async def start(self):
        """Start approvals service components."""
        # Evaluation keeps working on the default rules while the store is down
        if hasattr(self.store, "start"):
            try:
                await self.store.start()
            except Exception as e:
                self.logger.warning("Rule store unavailable at startup", error=str(e))

        if self.cache:
            try:
                await self.cache.start()
            except Exception as e:
                self.logger.warning("Rule cache unavailable, serving rules uncached", error=str(e))
                self.cache = None
                self.rule_source = self.store
                self.rule_engine.store = self.store

        self.logger.info("Approvals service started")

    async def stop(self):
        """Stop approvals service components."""
        if hasattr(self.store, "stop"):
            await self.store.stop()
        if self.cache:
            await self.cache.stop()

        self.logger.info("Approvals service stopped")


def create_app():
    """Create approvals service application."""
    service = ApprovalsService()
    return service.app


if __name__ == "__main__":
    service = ApprovalsService()
    service.run()
