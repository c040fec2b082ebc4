"""
ORM models for rule-engine persistence.

Contract:
    Event log, tenant rule overrides, per-rule bookkeeping, executions,
    durable timers (scheduled actions) and automation-created tasks.  Each
    model that has a domain counterpart provides ``to_dto()`` /
    ``from_dto()``.

Architecture: automation_rules/models. Imports from automation_kernel.db.base
    and automation_rules.domain only.

Invariants enforced:
    - Every row carries ``tenant_id`` (TenantScopedBase).
    - One override per (tenant_id, rule_id) and one bookkeeping row per
      (tenant_id, rule_id) -- UNIQUE constraints.
    - TTL-bearing tables carry ``expires_at``; purge jobs delete past rows.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from automation_kernel.db.base import TenantScopedBase, UUIDString
from automation_kernel.utils.serialization import to_jsonable

from automation_rules.domain.rules import action_to_dict, parse_action, parse_rule, rule_to_dict
from automation_rules.domain.types import (
    ActionResult,
    ActionResultStatus,
    AutomationEvent,
    AutomationExecution,
    AutomationRule,
    EventType,
    ExecutionStatus,
    ScheduledAction,
    ScheduledActionStatus,
)


def event_to_payload(event: AutomationEvent) -> dict[str, Any]:
    return {
        "event_id": str(event.event_id),
        "tenant_id": event.tenant_id,
        "company_id": event.company_id,
        "event_type": event.event_type.value,
        "source": event.source,
        "timestamp": event.timestamp.isoformat(),
        "data": to_jsonable(event.data),
        "correlation_id": event.correlation_id,
    }


def event_from_payload(payload: dict[str, Any]) -> AutomationEvent:
    return AutomationEvent(
        event_id=UUID(payload["event_id"]),
        tenant_id=payload["tenant_id"],
        company_id=payload["company_id"],
        event_type=EventType(payload["event_type"]),
        source=payload["source"],
        timestamp=datetime.fromisoformat(payload["timestamp"]),
        data=payload.get("data") or {},
        correlation_id=payload.get("correlation_id"),
    )


class AutomationEventModel(TenantScopedBase):
    """Audit log of emitted events (TTL: event_ttl_days)."""

    __tablename__ = "automation_events"

    __table_args__ = (
        Index("ix_automation_events_tenant_ts", "tenant_id", "timestamp"),
        Index("ix_automation_events_type_ts", "event_type", "timestamp"),
        Index("ix_automation_events_expires", "expires_at"),
    )

    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(60), nullable=False)
    source: Mapped[str] = mapped_column(String(200), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> AutomationEvent:
        return AutomationEvent(
            event_id=self.id,
            tenant_id=self.tenant_id,
            company_id=self.company_id,
            event_type=EventType(self.event_type),
            source=self.source,
            timestamp=self.timestamp,
            data=self.data or {},
            correlation_id=self.correlation_id,
        )

    @classmethod
    def from_dto(
        cls, dto: AutomationEvent, expires_at: datetime | None = None,
    ) -> AutomationEventModel:
        return cls(
            id=dto.event_id,
            tenant_id=dto.tenant_id,
            company_id=dto.company_id,
            event_type=dto.event_type.value,
            source=dto.source,
            timestamp=dto.timestamp,
            data=to_jsonable(dto.data),
            correlation_id=dto.correlation_id,
            expires_at=expires_at,
            created_by=dto.source,
            created_at=dto.timestamp,
        )


class AutomationRuleModel(TenantScopedBase):
    """Tenant-defined rule (overrides a built-in rule with the same id)."""

    __tablename__ = "automation_rules"

    __table_args__ = (
        UniqueConstraint("tenant_id", "rule_id", name="uq_automation_rules_tenant_rule"),
        Index("ix_automation_rules_tenant_event", "tenant_id", "event_type"),
    )

    rule_id: Mapped[str] = mapped_column(String(200), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    event_type: Mapped[str] = mapped_column(String(60), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    definition: Mapped[dict] = mapped_column(JSON, nullable=False)

    def to_dto(self) -> AutomationRule:
        rule = parse_rule(self.definition, tenant_id=self.tenant_id)
        return AutomationRule(
            rule_id=rule.rule_id,
            tenant_id=self.tenant_id,
            company_id=self.company_id,
            name=self.name,
            description=rule.description,
            enabled=self.enabled,
            trigger=rule.trigger,
            actions=rule.actions,
            settings=rule.settings,
            created_by=self.created_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def apply_dto(self, dto: AutomationRule, actor: str) -> None:
        self.company_id = dto.company_id
        self.name = dto.name
        self.event_type = dto.trigger.event.value
        self.enabled = dto.enabled
        self.definition = rule_to_dict(dto)
        self.updated_by = actor

    @classmethod
    def from_dto(cls, dto: AutomationRule, actor: str) -> AutomationRuleModel:
        model = cls(
            tenant_id=dto.tenant_id,
            rule_id=dto.rule_id,
            created_by=actor,
        )
        model.apply_dto(dto, actor)
        model.updated_by = None
        return model


class RuleStateModel(TenantScopedBase):
    """Per-(tenant, rule) execution bookkeeping.

    Updated with ``execution_count = execution_count + 1`` so concurrent
    writers never lose increments.  Exists for built-in rules too.
    """

    __tablename__ = "automation_rule_state"

    __table_args__ = (
        UniqueConstraint("tenant_id", "rule_id", name="uq_automation_rule_state_tenant_rule"),
    )

    rule_id: Mapped[str] = mapped_column(String(200), nullable=False)
    last_executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    execution_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class AutomationExecutionModel(TenantScopedBase):
    """Outcome of one (rule, event) execution (TTL: execution_ttl_days)."""

    __tablename__ = "automation_executions"

    __table_args__ = (
        Index("ix_automation_exec_rule_started", "tenant_id", "rule_id", "started_at"),
        Index("ix_automation_exec_event", "event_id", "rule_id"),
        Index(
            "ix_automation_exec_company_status",
            "tenant_id", "company_id", "status", "started_at",
        ),
        Index("ix_automation_exec_expires", "expires_at"),
    )

    rule_id: Mapped[str] = mapped_column(String(200), nullable=False)
    event_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    action_results: Mapped[list | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> AutomationExecution:
        return AutomationExecution(
            execution_id=self.id,
            rule_id=self.rule_id,
            event_id=self.event_id,
            tenant_id=self.tenant_id,
            company_id=self.company_id,
            status=ExecutionStatus(self.status),
            started_at=self.started_at,
            completed_at=self.completed_at,
            action_results=tuple(
                ActionResult(
                    action_id=r["action_id"],
                    status=ActionResultStatus(r["status"]),
                    executed_at=datetime.fromisoformat(r["executed_at"]),
                    result=r.get("result"),
                    error=r.get("error"),
                    attempts=r.get("attempts", 0),
                )
                for r in self.action_results or ()
            ),
            error=self.error,
        )

    def apply_dto(self, dto: AutomationExecution) -> None:
        self.status = dto.status.value
        self.completed_at = dto.completed_at
        self.action_results = [to_jsonable(r) for r in dto.action_results]
        self.error = dto.error

    @classmethod
    def from_dto(
        cls, dto: AutomationExecution, expires_at: datetime | None = None,
    ) -> AutomationExecutionModel:
        model = cls(
            id=dto.execution_id,
            tenant_id=dto.tenant_id,
            rule_id=dto.rule_id,
            event_id=dto.event_id,
            company_id=dto.company_id,
            started_at=dto.started_at,
            expires_at=expires_at,
            created_by="automation",
            created_at=dto.started_at,
        )
        model.apply_dto(dto)
        return model


class ScheduledActionModel(TenantScopedBase):
    """Durable timer for a delayed action or reminder."""

    __tablename__ = "automation_scheduled_actions"

    __table_args__ = (
        Index("ix_automation_sched_status_due", "status", "scheduled_for"),
        Index("ix_automation_sched_execution", "execution_id"),
    )

    execution_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rule_id: Mapped[str] = mapped_column(String(200), nullable=False)
    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[dict] = mapped_column(JSON, nullable=False)
    event: Mapped[dict] = mapped_column(JSON, nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> ScheduledAction:
        return ScheduledAction(
            scheduled_id=self.id,
            execution_id=self.execution_id,
            rule_id=self.rule_id,
            tenant_id=self.tenant_id,
            company_id=self.company_id,
            action=parse_action(self.action, self.rule_id),
            event=event_from_payload(self.event),
            scheduled_for=self.scheduled_for,
            status=ScheduledActionStatus(self.status),
            error=self.error,
            completed_at=self.completed_at,
        )

    @classmethod
    def from_dto(
        cls, dto: ScheduledAction, created_at: datetime, expires_at: datetime | None = None,
    ) -> ScheduledActionModel:
        return cls(
            id=dto.scheduled_id,
            tenant_id=dto.tenant_id,
            execution_id=dto.execution_id,
            rule_id=dto.rule_id,
            company_id=dto.company_id,
            action=action_to_dict(dto.action),
            event=event_to_payload(dto.event),
            scheduled_for=dto.scheduled_for,
            status=dto.status.value,
            error=dto.error,
            completed_at=dto.completed_at,
            expires_at=expires_at,
            created_by="automation",
            created_at=created_at,
        )


class AutomationTaskModel(TenantScopedBase):
    """Task created by a CREATE_TASK action."""

    __tablename__ = "automation_tasks"

    __table_args__ = (
        Index(
            "ix_automation_tasks_company_status_due",
            "tenant_id", "company_id", "status", "due_date",
        ),
    )

    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    assignee_type: Mapped[str] = mapped_column(String(20), nullable=False)
    assignee: Mapped[str | None] = mapped_column(String(200), nullable=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    due_date: Mapped[datetime] = mapped_column(nullable=False)
    source_rule_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    source_event_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": str(self.id),
            "tenant_id": self.tenant_id,
            "company_id": self.company_id,
            "title": self.title,
            "description": self.description,
            "assignee_type": self.assignee_type,
            "assignee": self.assignee,
            "priority": self.priority,
            "status": self.status,
            "due_date": self.due_date.isoformat(),
        }
