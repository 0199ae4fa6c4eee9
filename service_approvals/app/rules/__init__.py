"""
Rules engine package.

Decides approval requests from prioritized, data-driven rules. Each rule
pairs a boolean condition tree (all / any / predicate) with an event; the
highest-priority rule whose tree holds for the request's facts fires, and
its event is resolved into an approved, rejected or pending decision.

Modules of interest:
- models: Condition nodes, Rule, Event, Decision and API models.
- loader: Parsing and serialization of the stored rule JSON shape.
- conditions: Condition tree evaluation and the operator table.
- defaults: Built-in rules used when the store has none.
- engine: Rule selection, decision resolution and the entry point.
"""

from .engine import RuleEngine, RuleSelector, DecisionResolver, RuleStore
from .models import Decision, DecisionStatus, Rule

__all__ = [
    "RuleEngine",
    "RuleSelector",
    "DecisionResolver",
    "RuleStore",
    "Decision",
    "DecisionStatus",
    "Rule",
]
