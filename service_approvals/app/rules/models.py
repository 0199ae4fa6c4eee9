"""
Rule data models for Approvals Service.
"""

from typing import Dict, Any, Optional, List, Tuple, Union
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field


Scalar = Union[str, int, float, bool]
FactBag = Dict[str, Scalar]


class Operator(str, Enum):
    """Predicate operators, named as in the stored rule JSON."""
    EQUAL = "equal"
    NOT_EQUAL = "notEqual"
    LESS_THAN = "lessThan"
    LESS_THAN_INCLUSIVE = "lessThanInclusive"
    GREATER_THAN = "greaterThan"
    GREATER_THAN_INCLUSIVE = "greaterThanInclusive"
    IN = "in"
    NOT_IN = "notIn"


ORDERING_OPERATORS = frozenset({
    Operator.LESS_THAN,
    Operator.LESS_THAN_INCLUSIVE,
    Operator.GREATER_THAN,
    Operator.GREATER_THAN_INCLUSIVE,
})
SET_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})


class EventType(str, Enum):
    """Event kinds the decision resolver acts on."""
    AUTO_APPROVE = "auto-approve"
    AUTO_REJECT = "auto-reject"


class DecisionStatus(str, Enum):
    """Final request status."""
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"


class ReasonCode(str, Enum):
    """Why the engine produced a decision."""
    RULE_MATCHED = "rule_matched"
    NO_MATCH = "no_match"
    UNKNOWN_EVENT = "unknown_event"
    EVALUATION_ERROR = "evaluation_error"


class RulesSource(str, Enum):
    """Where the evaluated rule set came from."""
    STORE = "store"
    DEFAULTS = "defaults"


@dataclass(frozen=True)
class Predicate:
    """Compare one fact against a literal value."""
    fact: str
    operator: Operator
    value: Union[Scalar, Tuple[Scalar, ...]]


@dataclass(frozen=True)
class AllCondition:
    """True when every child is true. Empty is true."""
    children: Tuple["ConditionNode", ...] = ()


@dataclass(frozen=True)
class AnyCondition:
    """True when at least one child is true. Empty is false."""
    children: Tuple["ConditionNode", ...] = ()


ConditionNode = Union[AllCondition, AnyCondition, Predicate]


@dataclass(frozen=True)
class Event:
    """Outcome attached to a rule."""
    type: str
    params: Dict[str, Any] = field(default_factory=dict, hash=False)

    @property
    def message(self) -> Optional[str]:
        message = self.params.get("message")
        return str(message) if message else None


@dataclass(frozen=True)
class Rule:
    """Prioritized approval rule."""
    name: str
    priority: int
    conditions: ConditionNode
    event: Event
    rule_id: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Decision:
    """Status and message returned for one evaluated request."""
    status: DecisionStatus
    message: str


@dataclass
class EvaluationResult:
    """Result of rule evaluation."""
    decision: Decision
    reason_code: ReasonCode
    rules_source: RulesSource = RulesSource.STORE
    matched_rule: Optional[Rule] = None
    fallback_reason: Optional[str] = None
    evaluation_time_ms: float = 0.0


class RequestType(str, Enum):
    """Request kinds accepted by the submission form."""
    EXPENSE = "expense"
    LOAN = "loan"


class EvaluateRequest(BaseModel):
    """Request model for a raw fact evaluation."""
    facts: Dict[str, Optional[Scalar]] = Field(default_factory=dict, description="Fact bag")


class RequestSubmission(BaseModel):
    """Request model for an approval request submission."""
    type: RequestType = Field(..., description="Request type")
    amount: float = Field(..., gt=0, description="Requested amount")
    reason: str = Field(..., min_length=1, max_length=1000, description="Justification")
    user_role: Optional[str] = Field(None, description="Role of the submitting user")


class DecisionResponse(BaseModel):
    """Response model for an evaluation."""
    status: DecisionStatus
    message: str
    reason_code: ReasonCode
    rules_source: RulesSource
    matched_rule: Optional[str] = Field(None, description="Name of the rule that fired")
    evaluation_time_ms: float = 0.0


class RuleUpdateRequest(BaseModel):
    """Request model for one rule in an edit or a rule set replacement."""
    name: str = Field(..., description="Rule name")
    priority: int = Field(..., ge=0, description="Rule priority")
    conditions: Dict[str, Any] = Field(..., description="Condition tree")
    event: Dict[str, Any] = Field(..., description="Rule event")


class RuleResponse(BaseModel):
    """Response model for rule operations."""
    rule_id: Optional[str] = None
    name: str
    priority: int
    conditions: Dict[str, Any]
    event: Dict[str, Any]


class RuleListResponse(BaseModel):
    """Response model for rule list."""
    rules: List[RuleResponse]
    total: int
    using_defaults: bool = False
