"""
External collaborator interfaces used by the action handlers.

Notification delivery, chat-ops delivery, the workflow gateway (approvals,
playbooks, assignments, status changes) and the bulk launcher live outside
the engine.  Each is a Protocol; the ``Logging*`` classes are the in-process
defaults that only write a structured log line, used until a deployment
wires real transports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from automation_kernel.logging_config import get_logger

from automation_rules.domain.types import ActionType

logger = get_logger("rules.collaborators")


# =============================================================================
# Messages
# =============================================================================


@dataclass(frozen=True)
class NotificationRequest:
    tenant_id: str
    company_id: str
    type: str
    priority: str
    title: str
    message: str
    channels: tuple[str, ...] = ("in_app",)
    action_url: str | None = None
    recipients: tuple[str, ...] = ()


@dataclass(frozen=True)
class ChatOpsMessage:
    tenant_id: str
    company_id: str
    channel: str  # "slack" | "teams" | "both"
    category: str
    priority: str
    title: str
    message: str
    action_url: str | None = None


@dataclass(frozen=True)
class ChatOpsResult:
    success: bool
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkflowRequest:
    """Command handed to the workflow gateway."""

    kind: ActionType
    tenant_id: str
    company_id: str
    rule_id: str
    event_id: str
    payload: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class NotificationSender(Protocol):
    """Fire-and-forget notification delivery."""

    def send_notification(self, request: NotificationRequest) -> Any: ...


@runtime_checkable
class ChatOpsSender(Protocol):
    def send(self, message: ChatOpsMessage) -> ChatOpsResult: ...


@runtime_checkable
class WorkflowGateway(Protocol):
    """Approval / playbook / assignment / status service."""

    def submit(self, request: WorkflowRequest) -> dict[str, Any]: ...


@runtime_checkable
class BulkLauncher(Protocol):
    """Creates (and, when not gated, runs) a bulk operation for a rule."""

    def launch(
        self,
        tenant_id: str,
        company_id: str,
        params: dict[str, Any],
        actor: str,
    ) -> dict[str, Any]: ...


# =============================================================================
# Logging defaults
# =============================================================================


class LoggingNotificationSender:
    def send_notification(self, request: NotificationRequest) -> dict[str, Any]:
        logger.info(
            "notification_dispatched",
            extra={
                "notification_type": request.type,
                "priority": request.priority,
                "channels": list(request.channels),
                "recipients": list(request.recipients),
                "title": request.title,
            },
        )
        return {"sent": True, "channels": list(request.channels)}


class LoggingChatOpsSender:
    def send(self, message: ChatOpsMessage) -> ChatOpsResult:
        logger.info(
            "chatops_dispatched",
            extra={
                "channel": message.channel,
                "category": message.category,
                "priority": message.priority,
            },
        )
        return ChatOpsResult(success=True)


class LoggingWorkflowGateway:
    def submit(self, request: WorkflowRequest) -> dict[str, Any]:
        logger.info(
            "workflow_request_submitted",
            extra={
                "kind": request.kind.value,
                "rule_id": request.rule_id,
                "payload": request.payload,
            },
        )
        return {"accepted": True, "kind": request.kind.value}
