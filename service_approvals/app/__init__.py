"""
Approvals Service package.

This package decides expense and loan requests from data-driven rules.
It provides:

- app.main: API surface for evaluations, rule listing and rule edits.
- app.rules: Rule model, loader, condition evaluation and the engine.
- app.persistence: Rule store adapters (PostgreSQL, in-memory).
- app.cache: Optional Redis cache for the rule set.

Guidelines:
- The engine is stateless; rules are fetched on every evaluation.
- Every request ends in a decision; faults degrade to "pending".
"""
