"""
automation_rules.services -- Stateful rule-engine services.

All services take an SQLAlchemy Session and an injected Clock; they flush
but never commit.
"""

from automation_rules.services.action_executor import ActionExecutor, DispatchOutcome
from automation_rules.services.delayed_actions import DelayedActionRunner
from automation_rules.services.engine import AutomationEngine
from automation_rules.services.matcher import RuleMatcher
from automation_rules.services.recorder import ExecutionRecorder
from automation_rules.services.rule_store import RuleStore

__all__ = [
    "ActionExecutor",
    "AutomationEngine",
    "DelayedActionRunner",
    "DispatchOutcome",
    "ExecutionRecorder",
    "RuleMatcher",
    "RuleStore",
]
