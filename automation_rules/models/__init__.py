"""
automation_rules.models -- ORM models for rule-engine persistence.

Architecture: automation_rules/models. Imports from automation_kernel.db.base
and automation_rules.domain only.
"""

from automation_rules.models.automation import (
    AutomationEventModel,
    AutomationExecutionModel,
    AutomationRuleModel,
    AutomationTaskModel,
    RuleStateModel,
    ScheduledActionModel,
    event_from_payload,
    event_to_payload,
)

__all__ = [
    "AutomationEventModel",
    "AutomationExecutionModel",
    "AutomationRuleModel",
    "AutomationTaskModel",
    "RuleStateModel",
    "ScheduledActionModel",
    "event_from_payload",
    "event_to_payload",
]
