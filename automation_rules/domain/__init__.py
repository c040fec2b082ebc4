"""
automation_rules.domain -- Pure types and functions for the rule engine.

ZERO I/O.  All types are frozen dataclasses.
"""

from automation_rules.domain.conditions import (
    MISSING,
    evaluate_all,
    evaluate_condition,
    interpolate,
    resolve_path,
)
from automation_rules.domain.rules import RuleCatalog, parse_rule, rule_to_dict
from automation_rules.domain.types import (
    ActionResult,
    ActionResultStatus,
    ActionType,
    AutomationAction,
    AutomationEvent,
    AutomationEventDraft,
    AutomationExecution,
    AutomationRule,
    ConditionOperator,
    EventType,
    ExecutionStatus,
    RuleCondition,
    RuleSettings,
    RuleTrigger,
    ScheduledAction,
    ScheduledActionStatus,
)

__all__ = [
    "MISSING",
    "ActionResult",
    "ActionResultStatus",
    "ActionType",
    "AutomationAction",
    "AutomationEvent",
    "AutomationEventDraft",
    "AutomationExecution",
    "AutomationRule",
    "ConditionOperator",
    "EventType",
    "ExecutionStatus",
    "RuleCatalog",
    "RuleCondition",
    "RuleSettings",
    "RuleTrigger",
    "ScheduledAction",
    "ScheduledActionStatus",
    "evaluate_all",
    "evaluate_condition",
    "interpolate",
    "parse_rule",
    "resolve_path",
    "rule_to_dict",
]
