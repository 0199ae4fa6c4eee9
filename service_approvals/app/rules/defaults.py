"""
Built-in rule set used when the rule store has nothing to offer.
"""

from typing import List

from .loader import parse_rule
from .models import Rule

SMALL_EXPENSE_LIMIT = 100
SMALL_LOAN_LIMIT = 500

DEFAULT_RULE_DATA = [
    {
        "name": "Auto-approve small expenses",
        "priority": 10,
        "conditions": {
            "all": [
                {"fact": "amount", "operator": "lessThan", "value": SMALL_EXPENSE_LIMIT},
                {"fact": "type", "operator": "equal", "value": "expense"},
            ]
        },
        "event": {
            "type": "auto-approve",
            "params": {"message": "Auto-approved: small expense"},
        },
    },
    {
        "name": "Auto-approve small loans",
        "priority": 10,
        "conditions": {
            "all": [
                {"fact": "amount", "operator": "lessThan", "value": SMALL_LOAN_LIMIT},
                {"fact": "type", "operator": "equal", "value": "loan"},
            ]
        },
        "event": {
            "type": "auto-approve",
            "params": {"message": "Auto-approved: small loan"},
        },
    },
]


def default_rules() -> List[Rule]:
    """Return the built-in rules as parsed Rule objects."""
    return [parse_rule(data) for data in DEFAULT_RULE_DATA]
