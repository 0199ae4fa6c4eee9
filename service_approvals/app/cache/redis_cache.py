"""
Redis caching layer for Approvals Service.

The cache sits above the rule engine: it is injected as a RuleStore wrapper
and is invalidated whenever rules are edited or replaced, so the engine itself stays
free of shared state.
"""

import json
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from shared.logging import get_logger
from shared.errors import ExternalServiceError
from ..rules.engine import RuleStore
from ..rules.errors import InvalidRuleError
from ..rules.loader import parse_rule, rule_to_dict
from ..rules.models import Rule


class RedisRuleCache:
    """Redis cache for the serialized rule set."""

    RULES_KEY = "approvals:rules"

    def __init__(self, redis_url: str, ttl_seconds: int = 60):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("approvals.cache.redis")
        self.redis: Optional[redis.Redis] = None

    async def start(self):
        """Start the Redis cache."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            await self.redis.ping()

            self.logger.info("Redis cache started")

        except Exception as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise ExternalServiceError("redis", str(e))

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Redis cache stopped")

    async def get_rules(self) -> Optional[List[Dict[str, Any]]]:
        """Get the cached rule set in its stored JSON shape."""
        try:
            cached_data = await self.redis.get(self.RULES_KEY)
            if not cached_data:
                return None

            self.logger.debug("Cache hit for rules")
            return json.loads(cached_data)

        except Exception as e:
            self.logger.error("Error getting cached rules", error=str(e))
            return None

    async def set_rules(self, rules: List[Dict[str, Any]]) -> bool:
        """Cache the rule set."""
        try:
            await self.redis.setex(self.RULES_KEY, self.ttl_seconds, json.dumps(rules))
            self.logger.debug("Cached rules", count=len(rules), ttl=self.ttl_seconds)
            return True

        except Exception as e:
            self.logger.error("Error caching rules", error=str(e))
            return False

    async def invalidate_rules(self) -> bool:
        """Drop the cached rule set."""
        try:
            deleted = await self.redis.delete(self.RULES_KEY)
            self.logger.info("Invalidated rule cache", deleted=deleted)
            return True

        except Exception as e:
            self.logger.error("Error invalidating rule cache", error=str(e))
            return False

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False


class CachingRuleStore:
    """RuleStore that serves rules from Redis before asking the backing store."""

    def __init__(self, store: RuleStore, cache: RedisRuleCache):
        self.store = store
        self.cache = cache
        self.logger = get_logger("approvals.cache.rules")

    async def fetch_rules(self) -> List[Rule]:
        cached = await self.cache.get_rules()
        if cached:
            try:
                return [parse_rule(data) for data in cached]
            except InvalidRuleError as e:
                self.logger.warning("Discarding unreadable cached rules", error=e.message)
                await self.cache.invalidate_rules()

        rules = await self.store.fetch_rules()
        if rules:
            await self.cache.set_rules([rule_to_dict(rule) for rule in rules])
        return rules
