"""
Rules Engine Package

Provides rule representation and evaluation for automated click review,
plus LLM integration for converting natural language to rule JSON.
"""

from .rule_engine import (
    RuleEngine,
    Rule,
    Condition,
    ConditionGroup,
    Action,
    ConditionOperator,
    ActionType,
    TriggerEvent,
)

__all__ = [
    "RuleEngine",
    "Rule",
    "Condition",
    "ConditionGroup",
    "Action",
    "ConditionOperator",
    "ActionType",
    "TriggerEvent",
]
