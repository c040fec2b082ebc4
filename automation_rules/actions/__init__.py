"""
automation_rules.actions -- Handler protocol, registry and the built-in handlers.
"""

from automation_rules.actions.base import (
    ActionContext,
    ActionHandler,
    ActionRegistry,
)
from automation_rules.actions.collaborators import (
    BulkLauncher,
    ChatOpsMessage,
    ChatOpsResult,
    ChatOpsSender,
    NotificationRequest,
    NotificationSender,
    WorkflowGateway,
    WorkflowRequest,
)
from automation_rules.actions.handlers import default_action_registry

__all__ = [
    "ActionContext",
    "ActionHandler",
    "ActionRegistry",
    "BulkLauncher",
    "ChatOpsMessage",
    "ChatOpsResult",
    "ChatOpsSender",
    "NotificationRequest",
    "NotificationSender",
    "WorkflowGateway",
    "WorkflowRequest",
    "default_action_registry",
]
