"""
Concrete action handlers, one per ActionType.

Each handler turns an interpolated config map into a call on an external
collaborator (or a row in this database) and returns a JSON-able result.
Failures propagate as exceptions; the ActionExecutor decides whether they
abort the pipeline.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import httpx

from automation_kernel.exceptions import (
    ChatOpsDeliveryError,
    InvalidActionConfigError,
    WebhookDeliveryError,
)
from automation_kernel.logging_config import get_logger

from automation_rules.actions.base import ActionContext, ActionRegistry, require
from automation_rules.actions.collaborators import (
    BulkLauncher,
    ChatOpsMessage,
    ChatOpsSender,
    LoggingChatOpsSender,
    LoggingNotificationSender,
    LoggingWorkflowGateway,
    NotificationRequest,
    NotificationSender,
    WorkflowGateway,
    WorkflowRequest,
)
from automation_rules.domain.conditions import MISSING, resolve_path
from automation_rules.domain.types import ActionType, AutomationAction
from automation_rules.models.automation import AutomationTaskModel

logger = get_logger("rules.actions")


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


# =============================================================================
# Tasks
# =============================================================================


class CreateTaskHandler:
    """Persists an ``automation_tasks`` row due ``dueDays`` from now."""

    @property
    def action_type(self) -> ActionType:
        return ActionType.CREATE_TASK

    def execute(self, config: dict[str, Any], context: ActionContext) -> dict[str, Any]:
        title = require(config, "title", self.action_type)
        due_days = config.get("dueDays") or context.settings.default_task_due_days
        try:
            due_days = float(due_days)
        except (TypeError, ValueError):
            raise InvalidActionConfigError(
                self.action_type.value, "dueDays", f"not a number: {due_days!r}",
            ) from None

        now = context.clock.now_utc()
        task = AutomationTaskModel(
            tenant_id=context.tenant_id,
            company_id=context.company_id,
            title=str(title),
            description=config.get("description"),
            assignee_type=str(config.get("assigneeType") or "role"),
            assignee=config.get("assignee"),
            priority=str(config.get("priority") or "medium"),
            status="PENDING",
            due_date=now + timedelta(days=due_days),
            source_rule_id=context.rule.rule_id,
            source_event_id=context.event.event_id,
            created_by="automation",
            created_at=now,
        )
        context.session.add(task)
        context.session.flush()
        return task.to_dict()


# =============================================================================
# Notifications
# =============================================================================


class SendNotificationHandler:
    def __init__(self, sender: NotificationSender):
        self._sender = sender

    @property
    def action_type(self) -> ActionType:
        return ActionType.SEND_NOTIFICATION

    def execute(self, config: dict[str, Any], context: ActionContext) -> Any:
        request = NotificationRequest(
            tenant_id=context.tenant_id,
            company_id=context.company_id,
            type=str(config.get("type") or context.event.event_type.value),
            priority=str(config.get("priority") or "normal"),
            title=str(config.get("title") or context.event.event_type.value),
            message=str(config.get("message") or ""),
            channels=tuple(_as_list(config.get("channels")) or ["in_app"]),
            action_url=config.get("actionUrl"),
            recipients=tuple(str(r) for r in _as_list(config.get("recipients"))),
        )
        return self._sender.send_notification(request)


class SendEmailHandler:
    """Email through the notification collaborator.

    Each entry of ``recipients`` that names a path in the event data (for
    example ``escalatedTo``) is replaced by the value found there; other
    entries are passed through as role or address literals.
    """

    def __init__(self, sender: NotificationSender):
        self._sender = sender

    @property
    def action_type(self) -> ActionType:
        return ActionType.SEND_EMAIL

    def execute(self, config: dict[str, Any], context: ActionContext) -> Any:
        recipients: list[str] = []
        for entry in _as_list(require(config, "recipients", self.action_type)):
            resolved = resolve_path(context.event.data, str(entry))
            if resolved is MISSING or resolved is None:
                recipients.append(str(entry))
            else:
                recipients.extend(str(r) for r in _as_list(resolved))

        request = NotificationRequest(
            tenant_id=context.tenant_id,
            company_id=context.company_id,
            type=str(config.get("template") or "email"),
            priority=str(config.get("priority") or "normal"),
            title=str(config.get("subject") or context.event.event_type.value),
            message=str(config.get("message") or config.get("template") or ""),
            channels=("email",),
            action_url=config.get("actionUrl"),
            recipients=tuple(recipients),
        )
        return self._sender.send_notification(request)


class ChatOpsHandler:
    """SEND_SLACK / SEND_TEAMS.  Any reported error fails the action."""

    def __init__(self, action_type: ActionType, channel: str, sender: ChatOpsSender):
        self._action_type = action_type
        self._channel = channel
        self._sender = sender

    @property
    def action_type(self) -> ActionType:
        return self._action_type

    def execute(self, config: dict[str, Any], context: ActionContext) -> dict[str, Any]:
        message = ChatOpsMessage(
            tenant_id=context.tenant_id,
            company_id=context.company_id,
            channel=self._channel,
            category=str(config.get("channel") or "general"),
            priority=str(config.get("priority") or "normal"),
            title=str(config.get("title") or context.event.event_type.value),
            message=str(require(config, "message", self.action_type)),
            action_url=config.get("actionUrl"),
        )
        result = self._sender.send(message)
        if not result.success or result.errors:
            raise ChatOpsDeliveryError(self._channel, list(result.errors))
        return {"success": True, "channel": self._channel, "category": message.category}


# =============================================================================
# Webhook
# =============================================================================


class WebhookHandler:
    """Generic HTTP call.

    Returns ``{"status", "ok"}``.  A non-2xx response is a result, not a
    failure; only transport errors raise WebhookDeliveryError.
    """

    def __init__(self, client: httpx.Client | None = None, timeout: float = 10.0):
        self._client = client
        self._timeout = timeout

    @property
    def action_type(self) -> ActionType:
        return ActionType.WEBHOOK

    def execute(self, config: dict[str, Any], context: ActionContext) -> dict[str, Any]:
        url = str(require(config, "url", self.action_type))
        method = str(config.get("method") or "POST").upper()
        headers = {"Content-Type": "application/json"}
        headers.update({str(k): str(v) for k, v in (config.get("headers") or {}).items()})

        body = config.get("body")
        kwargs: dict[str, Any] = {"headers": headers}
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        elif body:
            kwargs["content"] = str(body)

        try:
            if self._client is not None:
                response = self._client.request(method, url, **kwargs)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise WebhookDeliveryError(url, str(exc)) from exc

        logger.info(
            "webhook_called",
            extra={"url": url, "method": method, "status": response.status_code},
        )
        return {"status": response.status_code, "ok": response.is_success}


# =============================================================================
# Workflow gateway
# =============================================================================

_GATEWAY_REQUIRED: dict[ActionType, tuple[str, ...]] = {
    ActionType.ESCALATE: ("escalateTo",),
    ActionType.ASSIGN_USER: ("assignee",),
    ActionType.UPDATE_STATUS: ("status",),
    ActionType.CREATE_APPROVAL_REQUEST: (),
    ActionType.START_PLAYBOOK: (),
}


class WorkflowGatewayHandler:
    """ESCALATE, ASSIGN_USER, UPDATE_STATUS, CREATE_APPROVAL_REQUEST, START_PLAYBOOK.

    The config is forwarded as the request payload together with the
    event's ``entityId`` when present.  A START_PLAYBOOK config carrying a
    ``bulkAction`` block launches a bulk operation instead.
    """

    def __init__(
        self,
        action_type: ActionType,
        gateway: WorkflowGateway,
        bulk_launcher: BulkLauncher | None = None,
    ):
        if action_type not in _GATEWAY_REQUIRED:
            raise ValueError(f"{action_type.value} is not a workflow gateway action")
        self._action_type = action_type
        self._gateway = gateway
        self._bulk_launcher = bulk_launcher

    @property
    def action_type(self) -> ActionType:
        return self._action_type

    def execute(self, config: dict[str, Any], context: ActionContext) -> dict[str, Any]:
        if self._action_type == ActionType.START_PLAYBOOK and config.get("bulkAction"):
            return self._launch_bulk(config["bulkAction"], context)

        for key in _GATEWAY_REQUIRED[self._action_type]:
            require(config, key, self._action_type)

        payload = dict(config)
        entity_id = context.event.data.get("entityId")
        if entity_id is not None:
            payload.setdefault("entityId", entity_id)

        return self._gateway.submit(
            WorkflowRequest(
                kind=self._action_type,
                tenant_id=context.tenant_id,
                company_id=context.company_id,
                rule_id=context.rule.rule_id,
                event_id=str(context.event.event_id),
                payload=payload,
            )
        )

    def _launch_bulk(self, params: Any, context: ActionContext) -> dict[str, Any]:
        if self._bulk_launcher is None:
            raise InvalidActionConfigError(
                self._action_type.value, "bulkAction", "no bulk launcher configured",
            )
        if not isinstance(params, dict):
            raise InvalidActionConfigError(
                self._action_type.value, "bulkAction", "must be a mapping",
            )
        return self._bulk_launcher.launch(
            context.tenant_id,
            context.company_id,
            params,
            actor=f"rule:{context.rule.rule_id}",
        )


# =============================================================================
# Reminders
# =============================================================================


class ScheduleReminderHandler:
    """Persists a durable timer that later delivers a notification.

    ``remindAt`` (ISO-8601, with offset) wins over ``remindInMinutes``
    (default 60).
    """

    @property
    def action_type(self) -> ActionType:
        return ActionType.SCHEDULE_REMINDER

    def execute(self, config: dict[str, Any], context: ActionContext) -> dict[str, Any]:
        now = context.clock.now_utc()
        remind_at = config.get("remindAt")
        if remind_at:
            try:
                when = datetime.fromisoformat(str(remind_at))
            except ValueError:
                raise InvalidActionConfigError(
                    self.action_type.value, "remindAt", f"not ISO-8601: {remind_at!r}",
                ) from None
            if when.tzinfo is None:
                raise InvalidActionConfigError(
                    self.action_type.value, "remindAt", "timezone offset required",
                )
        else:
            try:
                minutes = int(config.get("remindInMinutes") or 60)
            except (TypeError, ValueError):
                raise InvalidActionConfigError(
                    self.action_type.value, "remindInMinutes", "not an integer",
                ) from None
            when = now + timedelta(minutes=minutes)

        reminder = AutomationAction(
            action_id=f"{context.action_id or 'reminder'}:notify",
            action_type=ActionType.SEND_NOTIFICATION,
            order=0,
            config={
                key: config[key]
                for key in ("title", "message", "channels", "priority", "actionUrl", "recipients")
                if key in config
            },
        )
        scheduled = context.recorder.schedule_action(
            execution_id=context.execution_id,
            rule_id=context.rule.rule_id,
            action=reminder,
            event=context.event,
            scheduled_for=when,
        )
        return {"scheduled": True, "scheduled_id": str(scheduled.scheduled_id),
                "scheduled_for": when.isoformat()}


# =============================================================================
# Registry factory
# =============================================================================


def default_action_registry(
    notifier: NotificationSender | None = None,
    chatops: ChatOpsSender | None = None,
    gateway: WorkflowGateway | None = None,
    http_client: httpx.Client | None = None,
    bulk_launcher: BulkLauncher | None = None,
    webhook_timeout: float = 10.0,
) -> ActionRegistry:
    """Registry with a handler for every ActionType.

    Collaborators left as None fall back to the logging defaults.
    """
    notifier = notifier or LoggingNotificationSender()
    chatops = chatops or LoggingChatOpsSender()
    gateway = gateway or LoggingWorkflowGateway()

    registry = ActionRegistry()
    registry.register(CreateTaskHandler())
    registry.register(SendNotificationHandler(notifier))
    registry.register(SendEmailHandler(notifier))
    registry.register(ChatOpsHandler(ActionType.SEND_SLACK, "slack", chatops))
    registry.register(ChatOpsHandler(ActionType.SEND_TEAMS, "teams", chatops))
    registry.register(WebhookHandler(http_client, timeout=webhook_timeout))
    registry.register(ScheduleReminderHandler())
    for action_type in _GATEWAY_REQUIRED:
        registry.register(
            WorkflowGatewayHandler(
                action_type,
                gateway,
                bulk_launcher if action_type == ActionType.START_PLAYBOOK else None,
            )
        )
    return registry
