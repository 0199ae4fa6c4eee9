"""
In-memory rule store for local runs and tests.
"""

import uuid
from dataclasses import replace
from typing import Iterable, List, Optional

from shared.logging import get_logger
from ..rules.models import Rule


class StaticRuleStore:
    """Rule store holding a fixed list of rules in insertion order."""

    def __init__(self, rules: Iterable[Rule] = ()):
        self.rules: List[Rule] = list(rules)
        self.logger = get_logger("approvals.persistence.memory")

    async def fetch_rules(self) -> List[Rule]:
        return list(self.rules)

    async def load_rule(self, rule_id: str) -> Optional[Rule]:
        for rule in self.rules:
            if rule.rule_id == rule_id:
                return rule
        return None

    async def update_rule(self, rule: Rule) -> Optional[Rule]:
        for index, existing in enumerate(self.rules):
            if existing.rule_id == rule.rule_id:
                self.rules[index] = rule
                self.logger.info("Rule updated", rule_id=rule.rule_id, name=rule.name)
                return self.rules[index]
        return None

    async def replace_rules(self, rules: Iterable[Rule]) -> List[Rule]:
        """Swap in a new rule set. Each rule gets a fresh id."""
        self.rules = [replace(rule, rule_id=str(uuid.uuid4())) for rule in rules]
        self.logger.info("Rule set replaced", count=len(self.rules))
        return list(self.rules)

    async def health_check(self) -> bool:
        return True
