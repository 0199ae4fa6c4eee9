"""
Conversion between stored rule JSON and the rule model.

Stored rules use the shape produced by the admin rule editor::

    {
        "name": "Auto-approve small expenses",
        "priority": 10,
        "conditions": {"all": [{"fact": "amount", "operator": "lessThan", "value": 100}]},
        "event": {"type": "auto-approve", "params": {"message": "..."}}
    }

Malformed data is rejected here with an InvalidRuleError naming the
offending path, so evaluation only ever sees well-formed trees.
"""

from typing import Any, Dict, Mapping, Optional

from .errors import InvalidRuleError
from .models import (
    AllCondition, AnyCondition, ConditionNode, Event, Operator, Predicate, Rule,
    ORDERING_OPERATORS, SET_OPERATORS,
)


def is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_condition(data: Any, path: str = "conditions") -> ConditionNode:
    """Parse a condition node."""
    if not isinstance(data, Mapping):
        raise InvalidRuleError("condition must be an object", path)

    if "all" in data or "any" in data:
        if "all" in data and "any" in data:
            raise InvalidRuleError("condition cannot declare both 'all' and 'any'", path)
        key = "all" if "all" in data else "any"
        children = data[key]
        if not isinstance(children, list):
            raise InvalidRuleError(f"'{key}' must be a list", path)
        nodes = tuple(
            parse_condition(child, f"{path}.{key}[{index}]")
            for index, child in enumerate(children)
        )
        return AllCondition(nodes) if key == "all" else AnyCondition(nodes)

    if "fact" in data:
        return _parse_predicate(data, path)

    raise InvalidRuleError("condition must contain 'all', 'any' or 'fact'", path)


def _parse_predicate(data: Mapping[str, Any], path: str) -> Predicate:
    fact = data.get("fact")
    if not isinstance(fact, str) or not fact:
        raise InvalidRuleError("'fact' must be a non-empty string", path)

    raw_operator = data.get("operator")
    try:
        operator = Operator(raw_operator)
    except ValueError:
        raise InvalidRuleError(f"unknown operator {raw_operator!r}", path)

    if "value" not in data:
        raise InvalidRuleError("predicate is missing 'value'", path)
    value = data["value"]

    if operator in SET_OPERATORS:
        if not isinstance(value, list) or not all(is_scalar(item) for item in value):
            raise InvalidRuleError(f"'{operator.value}' needs a list of scalar values", path)
        value = tuple(value)
    elif operator in ORDERING_OPERATORS:
        if not is_number(value):
            raise InvalidRuleError(f"'{operator.value}' needs a numeric value", path)
    elif not is_scalar(value):
        raise InvalidRuleError(f"'{operator.value}' needs a scalar value", path)

    return Predicate(fact=fact, operator=operator, value=value)


def parse_event(data: Any, path: str = "event") -> Event:
    """Parse a rule event."""
    if not isinstance(data, Mapping):
        raise InvalidRuleError("event must be an object", path)

    event_type = data.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise InvalidRuleError("'type' must be a non-empty string", path)

    params = data.get("params") or {}
    if not isinstance(params, Mapping):
        raise InvalidRuleError("'params' must be an object", path)

    return Event(type=event_type, params=dict(params))


def parse_rule(data: Any, rule_id: Optional[str] = None) -> Rule:
    """Parse a full rule record."""
    if not isinstance(data, Mapping):
        raise InvalidRuleError("rule must be an object")

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise InvalidRuleError("'name' must be a non-empty string", "name")

    if "priority" not in data:
        raise InvalidRuleError("rule is missing 'priority'", "priority")
    priority = data["priority"]
    if not isinstance(priority, int) or isinstance(priority, bool):
        raise InvalidRuleError("'priority' must be an integer", "priority")

    if "conditions" not in data:
        raise InvalidRuleError("rule is missing 'conditions'", "conditions")
    if "event" not in data:
        raise InvalidRuleError("rule is missing 'event'", "event")

    try:
        conditions = parse_condition(data["conditions"])
    except RecursionError:
        raise InvalidRuleError("condition tree too deep", "conditions")

    identifier = rule_id if rule_id is not None else data.get("id")

    return Rule(
        name=name,
        priority=priority,
        conditions=conditions,
        event=parse_event(data["event"]),
        rule_id=str(identifier) if identifier is not None else None,
        description=data.get("description"),
    )


def condition_to_dict(node: ConditionNode) -> Dict[str, Any]:
    """Serialize a condition node to its stored JSON shape."""
    if isinstance(node, AllCondition):
        return {"all": [condition_to_dict(child) for child in node.children]}
    if isinstance(node, AnyCondition):
        return {"any": [condition_to_dict(child) for child in node.children]}

    value = list(node.value) if isinstance(node.value, tuple) else node.value
    return {"fact": node.fact, "operator": node.operator.value, "value": value}


def event_to_dict(event: Event) -> Dict[str, Any]:
    data: Dict[str, Any] = {"type": event.type}
    if event.params:
        data["params"] = dict(event.params)
    return data


def rule_to_dict(rule: Rule) -> Dict[str, Any]:
    """Serialize a rule to its stored JSON shape."""
    data = {
        "name": rule.name,
        "priority": rule.priority,
        "conditions": condition_to_dict(rule.conditions),
        "event": event_to_dict(rule.event),
    }
    if rule.rule_id is not None:
        data["id"] = rule.rule_id
    return data
