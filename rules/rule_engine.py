import json
import logging
import operator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Union


logger = logging.getLogger(__name__)


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class ActionType(str, Enum):
    CONFIRM_CLICK = "confirm_click"
    REJECT_CLICK = "reject_click"
    SEND_NOTIFICATION = "send_notification"


class TriggerEvent(str, Enum):
    CLICK_RECORDED = "click_recorded"
    MANUAL = "manual"


ActionHandler = Callable[[dict, dict], dict]

# Paths available in the evaluation context built for a recorded click
CONTEXT_FIELDS = frozenset({
    "click.id", "click.app_id", "click.utm_source", "click.utm_medium",
    "click.utm_campaign", "click.is_my_referral",
    "app.id", "app.name", "app.category", "app.bonus_amount",
    "actor.is_authenticated",
})


def _member(needle: Any, haystack: Any) -> bool:
    return bool(haystack) and needle in haystack


# (field value, rule value) -> bool
COMPARATORS: dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQUALS: operator.eq,
    ConditionOperator.NOT_EQUALS: operator.ne,
    ConditionOperator.GREATER_THAN: operator.gt,
    ConditionOperator.LESS_THAN: operator.lt,
    ConditionOperator.GREATER_THAN_OR_EQUAL: operator.ge,
    ConditionOperator.LESS_THAN_OR_EQUAL: operator.le,
    ConditionOperator.CONTAINS: lambda actual, expected: _member(expected, actual),
    ConditionOperator.NOT_CONTAINS: lambda actual, expected: not _member(expected, actual),
    ConditionOperator.IN: _member,
    ConditionOperator.NOT_IN: lambda actual, expected: not _member(actual, expected),
    ConditionOperator.IS_TRUE: lambda actual, _: bool(actual),
    ConditionOperator.IS_FALSE: lambda actual, _: not actual,
}


def lookup(context: dict, path: str) -> Any:
    """Resolve a dotted path such as ``app.bonus_amount``; missing parts give None."""
    node: Any = context
    for key in path.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def parse_conditions(data: dict) -> Union["Condition", "ConditionGroup"]:
    if "conditions" in data and "operator" in data:
        return ConditionGroup(
            operator=LogicalOperator(data["operator"]),
            conditions=[parse_conditions(child) for child in data["conditions"]],
        )
    return Condition(field=data["field"], operator=ConditionOperator(data["operator"]), value=data.get("value"))


@dataclass
class Condition:
    field: str
    operator: ConditionOperator
    value: Any = None

    def evaluate(self, context: dict) -> bool:
        try:
            return COMPARATORS[self.operator](lookup(context, self.field), self.value)
        except TypeError:
            # ordering comparison against a missing field
            return False

    def field_paths(self) -> set[str]:
        return {self.field}

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict) -> "Condition":
        return cls(field=data["field"], operator=ConditionOperator(data["operator"]), value=data.get("value"))


@dataclass
class ConditionGroup:
    operator: LogicalOperator
    conditions: list[Union[Condition, "ConditionGroup"]]

    def evaluate(self, context: dict) -> bool:
        combine = all if self.operator == LogicalOperator.AND else any
        # An empty group matches everything
        return not self.conditions or combine(c.evaluate(context) for c in self.conditions)

    def field_paths(self) -> set[str]:
        return set().union(*(c.field_paths() for c in self.conditions))

    def to_dict(self) -> dict:
        return {"operator": self.operator.value, "conditions": [c.to_dict() for c in self.conditions]}

    @classmethod
    def from_dict(cls, data: dict) -> "ConditionGroup":
        group = parse_conditions(data)
        if not isinstance(group, cls):
            raise ValueError("condition group needs 'operator' and 'conditions'")
        return group


@dataclass
class Action:
    type: ActionType
    params: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type.value, "params": self.params}

    @classmethod
    def from_dict(cls, data: dict) -> "Action":
        return cls(type=ActionType(data["type"]), params=dict(data.get("params") or {}))


@dataclass
class Rule:
    id: str
    name: str
    trigger: TriggerEvent
    conditions: Union[Condition, ConditionGroup]
    actions: list[Action]
    description: str = ""
    version: int = 1
    is_active: bool = True
    priority: int = 0
    metadata: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    def evaluate(self, context: dict) -> bool:
        return self.is_active and self.conditions.evaluate(context)

    def unknown_fields(self) -> list[str]:
        return sorted(self.conditions.field_paths() - CONTEXT_FIELDS)

    def to_dict(self) -> dict:
        data = {
            key: getattr(self, key)
            for key in ("id", "name", "description", "version", "is_active", "priority", "metadata")
        }
        data["trigger"] = self.trigger.value
        data["conditions"] = self.conditions.to_dict()
        data["actions"] = [a.to_dict() for a in self.actions]
        return data

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: dict) -> "Rule":
        optional = {
            key: data[key]
            for key in ("description", "version", "is_active", "priority", "metadata")
            if key in data
        }
        return cls(
            id=data["id"],
            name=data["name"],
            trigger=TriggerEvent(data["trigger"]),
            conditions=parse_conditions(data["conditions"]),
            actions=[Action.from_dict(a) for a in data["actions"]],
            **optional,
        )


class RuleEngine:
    """Holds rules in memory and runs the matching ones for a trigger.

    Handlers receive ``(params, context)`` where context carries the
    evaluation data plus ``rule.id`` of the rule being executed.
    """

    def __init__(self):
        self.rules: dict[str, Rule] = {}
        self.action_handlers: dict[ActionType, ActionHandler] = {
            ActionType.CONFIRM_CLICK: self._handle_review_decision,
            ActionType.REJECT_CLICK: self._handle_review_decision,
            ActionType.SEND_NOTIFICATION: self._handle_send_notification,
        }

    def register_handler(self, action_type: ActionType, handler: ActionHandler) -> None:
        self.action_handlers[action_type] = handler

    def add_rule(self, rule: Rule) -> None:
        unknown = rule.unknown_fields()
        if unknown:
            raise ValueError(f"Rule {rule.id} uses unknown fields: {', '.join(unknown)}")
        self.rules[rule.id] = rule

    def remove_rule(self, rule_id: str) -> bool:
        return self.rules.pop(rule_id, None) is not None

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        return self.rules.get(rule_id)

    def list_rules(self, trigger: Optional[TriggerEvent] = None) -> list[Rule]:
        selected = [r for r in self.rules.values() if trigger is None or r.trigger == trigger]
        return sorted(selected, key=lambda r: r.priority, reverse=True)

    def evaluate(self, trigger: TriggerEvent, context: dict) -> list[Rule]:
        return [rule for rule in self.list_rules(trigger) if rule.evaluate(context)]

    def execute(self, trigger: TriggerEvent, context: dict) -> list[dict]:
        return [
            {
                "rule_id": rule.id,
                "rule_name": rule.name,
                "actions_executed": [
                    self._run_action(rule, action, context)
                    for action in rule.actions
                    if action.type in self.action_handlers
                ],
            }
            for rule in self.evaluate(trigger, context)
        ]

    def _run_action(self, rule: Rule, action: Action, context: dict) -> dict:
        outcome = {"type": action.type.value}
        try:
            outcome["result"] = self.action_handlers[action.type](action.params, {**context, "rule": {"id": rule.id}})
            outcome["success"] = True
        except Exception as e:
            logger.error(f"Rule {rule.id} action {action.type.value} failed: {e}")
            outcome["success"] = False
            outcome["error"] = str(e)
        return outcome

    def _handle_review_decision(self, params: dict, context: dict) -> dict:
        # No review backend attached; AutoReviewer replaces this handler
        return {"action": "review", "click_id": lookup(context, "click.id"), "status": "skipped"}

    def _handle_send_notification(self, params: dict, context: dict) -> dict:
        channel = params.get("channel", "email")
        template = params.get("template", "click_reviewed")
        logger.info(f"Notification for click {lookup(context, 'click.id')} via {channel}: {template}")
        return {"action": "send_notification", "channel": channel, "status": "sent"}


def create_sample_rules() -> list[Rule]:
    """Two starter rules: drop anonymous clicks from a blocked source, auto-confirm small bonuses."""
    is_anonymous = Condition(field="actor.is_authenticated", operator=ConditionOperator.IS_FALSE)
    is_member = Condition(field="actor.is_authenticated", operator=ConditionOperator.IS_TRUE)
    return [
        Rule(
            id="rule-reject-untracked-anonymous",
            name="Reject Untracked Anonymous Clicks",
            trigger=TriggerEvent.CLICK_RECORDED,
            conditions=ConditionGroup(LogicalOperator.AND, [
                is_anonymous,
                Condition(field="click.utm_source", operator=ConditionOperator.EQUALS, value="blocked"),
            ]),
            actions=[Action(ActionType.REJECT_CLICK, {"reason": "blocked source"})],
            priority=10,
        ),
        Rule(
            id="rule-confirm-small-bonus",
            name="Confirm Small Bonus Apps",
            trigger=TriggerEvent.CLICK_RECORDED,
            conditions=ConditionGroup(LogicalOperator.AND, [
                is_member,
                Condition(field="app.bonus_amount", operator=ConditionOperator.LESS_THAN_OR_EQUAL, value=50),
            ]),
            actions=[
                Action(ActionType.CONFIRM_CLICK),
                Action(ActionType.SEND_NOTIFICATION, {"channel": "email", "template": "reward_confirmed"}),
            ],
            priority=5,
        ),
    ]
