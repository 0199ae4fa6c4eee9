"""
Rule engine errors for Approvals Service.
"""

from typing import Any, Dict, Optional

from shared.errors import AccessLayerException


class RuleEngineError(AccessLayerException):
    """Base class for rule engine failures."""


class InvalidRuleError(RuleEngineError):
    """Rule data could not be loaded into the rule model."""

    def __init__(self, message: str, path: str = "", details: Optional[Dict[str, Any]] = None):
        self.path = path
        full_message = f"Invalid rule: {path}: {message}" if path else f"Invalid rule: {message}"
        details = dict(details or {})
        if path:
            details.setdefault("path", path)
        super().__init__("INVALID_RULE", full_message, details)


class FactNotFoundError(RuleEngineError):
    """A predicate referenced a fact missing from the fact bag."""

    def __init__(self, fact: str):
        self.fact = fact
        super().__init__("FACT_NOT_FOUND", f"Fact '{fact}' not found", {"fact": fact})


class TypeMismatchError(RuleEngineError):
    """An operator was applied to operands of incompatible types."""

    def __init__(self, operator: str, fact_value: Any, value: Any):
        super().__init__(
            "TYPE_MISMATCH",
            f"Operator '{operator}' cannot compare {type(fact_value).__name__} with {type(value).__name__}",
            {"operator": operator}
        )


class RuleStoreError(RuleEngineError):
    """The rule store could not supply rules."""

    status_code = 502

    def __init__(self, message: str = "Rule store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("RULE_STORE_ERROR", message, details)
