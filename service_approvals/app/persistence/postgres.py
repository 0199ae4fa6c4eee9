"""
PostgreSQL rule store for Approvals Service.
"""

import json
from typing import Any, Dict, List, Optional

import asyncpg

from shared.logging import get_logger
from shared.errors import ExternalServiceError
from ..rules.errors import RuleStoreError
from ..rules.loader import condition_to_dict, event_to_dict, parse_rule
from ..rules.models import Rule


class PostgreSQLRuleStore:
    """PostgreSQL-backed rule store."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("approvals.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30,
                init=self._init_connection
            )

            await self._create_tables()

            self.logger.info("PostgreSQL rule store started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL rule store", error=str(e))
            raise ExternalServiceError("postgres", str(e))

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL rule store stopped")

    async def _init_connection(self, conn):
        await conn.set_type_codec(
            "jsonb",
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog"
        )

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS rules (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    name TEXT NOT NULL,
                    priority INTEGER NOT NULL DEFAULT 0,
                    conditions JSONB NOT NULL,
                    event JSONB NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_rules_priority ON rules(priority DESC);
            """)

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise RuleStoreError("Rule store is not started")
        return self.pool

    async def fetch_rules(self) -> List[Rule]:
        """Load every rule, highest priority first, oldest first within a priority."""
        async with self._require_pool().acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM rules ORDER BY priority DESC, created_at ASC, id ASC
            """)

        return [self._row_to_rule(row) for row in rows]

    async def load_rule(self, rule_id: str) -> Optional[Rule]:
        """Load a rule by id."""
        async with self._require_pool().acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM rules WHERE id = $1
            """, rule_id)

        return self._row_to_rule(row) if row else None

    async def update_rule(self, rule: Rule) -> Optional[Rule]:
        """Overwrite a stored rule. Returns None when the id is unknown."""
        if rule.rule_id is None:
            raise RuleStoreError("Cannot update a rule without an id")

        async with self._require_pool().acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE rules
                SET name = $2, priority = $3, conditions = $4, event = $5, updated_at = NOW()
                WHERE id = $1
                RETURNING *
            """,
                rule.rule_id, rule.name, rule.priority,
                condition_to_dict(rule.conditions), event_to_dict(rule.event)
            )

        if not row:
            self.logger.warning("Rule not found for update", rule_id=rule.rule_id)
            return None

        self.logger.info("Rule updated", rule_id=rule.rule_id, name=rule.name)
        return self._row_to_rule(row)

    async def replace_rules(self, rules: List[Rule]) -> List[Rule]:
        """Replace the whole rule set in one transaction.

        Rules are inserted in the given order and that order becomes their
        created_at order, so equal-priority rules keep it when fetched.
        """
        saved = []
        async with self._require_pool().acquire() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM rules")
                for position, rule in enumerate(rules):
                    row = await conn.fetchrow("""
                        INSERT INTO rules (name, priority, conditions, event, created_at, updated_at)
                        VALUES ($1, $2, $3, $4,
                                NOW() + $5::int * INTERVAL '1 microsecond',
                                NOW() + $5::int * INTERVAL '1 microsecond')
                        RETURNING *
                    """,
                        rule.name, rule.priority,
                        condition_to_dict(rule.conditions), event_to_dict(rule.event),
                        position
                    )
                    saved.append(self._row_to_rule(row))

        self.logger.info("Rule set replaced", count=len(saved))
        return saved

    def _row_to_rule(self, row) -> Rule:
        """Convert database row to Rule object."""
        data: Dict[str, Any] = {
            "name": row["name"],
            "priority": row["priority"],
            "conditions": row["conditions"],
            "event": row["event"],
        }
        return parse_rule(data, rule_id=str(row["id"]))

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self._require_pool().acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False
