"""
Rule store adapters for Approvals Service.

- postgres: asyncpg-backed store over the ``rules`` table.
- memory: fixed in-memory store for local runs and tests.
"""
