"""
ExecutionRecorder -- audit trail for events, executions and durable timers.

Contract:
    Persists emitted events, execution records and scheduled-action timers,
    and answers the history queries the engine needs for its gates
    (runOnce, hourly rate limit).  Flushes but never commits.

Architecture: automation_rules/services.  Imports from automation_rules.models
    and automation_kernel.

Invariants enforced:
    - An execution is immutable once ``completed_at`` is set:
      ``complete_execution`` refuses to overwrite a finished record.
    - TTL: events expire ``event_ttl_days`` after emission, executions
      ``execution_ttl_days`` after start, timers
      ``scheduled_action_grace_hours`` after their due time.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from automation_kernel.domain.clock import Clock
from automation_kernel.logging_config import get_logger
from automation_kernel.settings import AutomationSettings

from automation_rules.domain.types import (
    AutomationAction,
    AutomationEvent,
    AutomationExecution,
    AutomationRule,
    ExecutionStatus,
    ScheduledAction,
    ScheduledActionStatus,
)
from automation_rules.models.automation import (
    AutomationEventModel,
    AutomationExecutionModel,
    ScheduledActionModel,
)

logger = get_logger("rules.recorder")


class ExecutionRecorder:
    """Persistence for the rule engine's audit trail and timers."""

    def __init__(
        self,
        session: Session,
        clock: Clock,
        settings: AutomationSettings | None = None,
    ):
        self._session = session
        self._clock = clock
        self._settings = settings or AutomationSettings()

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def save_event(self, event: AutomationEvent) -> None:
        expires_at = event.timestamp + timedelta(days=self._settings.event_ttl_days)
        self._session.add(AutomationEventModel.from_dto(event, expires_at=expires_at))
        self._session.flush()

    def get_event(self, event_id: UUID) -> AutomationEvent | None:
        model = self._session.get(AutomationEventModel, event_id)
        return model.to_dto() if model else None

    # -------------------------------------------------------------------------
    # Executions
    # -------------------------------------------------------------------------

    def start_execution(
        self, rule: AutomationRule, event: AutomationEvent,
    ) -> AutomationExecution:
        """Create a RUNNING execution for (rule, event)."""
        now = self._clock.now_utc()
        execution = AutomationExecution(
            execution_id=uuid4(),
            rule_id=rule.rule_id,
            event_id=event.event_id,
            tenant_id=event.tenant_id,
            company_id=event.company_id,
            status=ExecutionStatus.RUNNING,
            started_at=now,
        )
        expires_at = now + timedelta(days=self._settings.execution_ttl_days)
        self._session.add(AutomationExecutionModel.from_dto(execution, expires_at=expires_at))
        self._session.flush()
        return execution

    def complete_execution(self, execution: AutomationExecution) -> None:
        """Persist the final state of an execution.

        Raises:
            ValueError: If the stored record is already complete or missing.
        """
        model = self._session.get(AutomationExecutionModel, execution.execution_id)
        if model is None:
            raise ValueError(f"Execution {execution.execution_id} was never started")
        if model.completed_at is not None:
            raise ValueError(f"Execution {execution.execution_id} is already complete")
        model.apply_dto(execution)
        self._session.flush()

    def get_execution(self, execution_id: UUID) -> AutomationExecution | None:
        model = self._session.get(AutomationExecutionModel, execution_id)
        return model.to_dto() if model else None

    def has_execution(self, tenant_id: str, rule_id: str, event_id: UUID) -> bool:
        stmt = (
            select(AutomationExecutionModel.id)
            .where(
                AutomationExecutionModel.tenant_id == tenant_id,
                AutomationExecutionModel.rule_id == rule_id,
                AutomationExecutionModel.event_id == event_id,
            )
            .limit(1)
        )
        return self._session.execute(stmt).first() is not None

    def count_recent_executions(
        self, tenant_id: str, rule_id: str, since: datetime,
    ) -> int:
        stmt = select(func.count(AutomationExecutionModel.id)).where(
            AutomationExecutionModel.tenant_id == tenant_id,
            AutomationExecutionModel.rule_id == rule_id,
            AutomationExecutionModel.started_at >= since,
        )
        return int(self._session.execute(stmt).scalar_one())

    def list_executions(
        self,
        tenant_id: str,
        company_id: str | None = None,
        rule_id: str | None = None,
        status: ExecutionStatus | None = None,
        limit: int | None = None,
    ) -> list[AutomationExecution]:
        """Executions for a tenant, newest first."""
        stmt = select(AutomationExecutionModel).where(
            AutomationExecutionModel.tenant_id == tenant_id,
        )
        if company_id is not None:
            stmt = stmt.where(AutomationExecutionModel.company_id == company_id)
        if rule_id is not None:
            stmt = stmt.where(AutomationExecutionModel.rule_id == rule_id)
        if status is not None:
            stmt = stmt.where(AutomationExecutionModel.status == status.value)
        stmt = stmt.order_by(AutomationExecutionModel.started_at.desc()).limit(
            limit or self._settings.list_limit
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]

    # -------------------------------------------------------------------------
    # Durable timers
    # -------------------------------------------------------------------------

    def schedule_action(
        self,
        *,
        execution_id: UUID | None,
        rule_id: str,
        action: AutomationAction,
        event: AutomationEvent,
        scheduled_for: datetime,
    ) -> ScheduledAction:
        """Persist a "run ``action`` at ``scheduled_for``" record."""
        scheduled = ScheduledAction(
            scheduled_id=uuid4(),
            execution_id=execution_id,
            rule_id=rule_id,
            tenant_id=event.tenant_id,
            company_id=event.company_id,
            action=action,
            event=event,
            scheduled_for=scheduled_for,
        )
        expires_at = scheduled_for + timedelta(
            hours=self._settings.scheduled_action_grace_hours
        )
        self._session.add(
            ScheduledActionModel.from_dto(
                scheduled, created_at=self._clock.now_utc(), expires_at=expires_at,
            )
        )
        self._session.flush()

        logger.info(
            "action_scheduled",
            extra={
                "rule_id": rule_id,
                "action_id": action.action_id,
                "scheduled_for": scheduled_for.isoformat(),
            },
        )
        return scheduled

    def due_scheduled_actions(
        self, now: datetime, limit: int | None = None,
    ) -> list[ScheduledAction]:
        """Pending timers due at ``now``, oldest first, locked for this tick."""
        stmt = (
            select(ScheduledActionModel)
            .where(
                ScheduledActionModel.status == ScheduledActionStatus.PENDING.value,
                ScheduledActionModel.scheduled_for <= now,
            )
            .order_by(ScheduledActionModel.scheduled_for)
            .limit(limit or self._settings.scheduler_batch_limit)
            .with_for_update(skip_locked=True)
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]

    def mark_scheduled_action(
        self,
        scheduled_id: UUID,
        status: ScheduledActionStatus,
        error: str | None = None,
    ) -> None:
        model = self._session.get(ScheduledActionModel, scheduled_id)
        if model is None:
            raise ValueError(f"Scheduled action {scheduled_id} not found")
        model.status = status.value
        model.error = error
        model.completed_at = self._clock.now_utc()
        model.updated_by = "automation"
        self._session.flush()

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------

    def purge_expired(self, now: datetime | None = None) -> dict[str, int]:
        """Delete rows whose ``expires_at`` has passed. Returns counts per table."""
        now = now or self._clock.now_utc()
        counts: dict[str, int] = {}
        for model in (AutomationEventModel, AutomationExecutionModel, ScheduledActionModel):
            result = self._session.execute(
                delete(model).where(model.expires_at.is_not(None), model.expires_at < now)
            )
            counts[model.__tablename__] = result.rowcount or 0
        self._session.flush()

        logger.info("automation_records_purged", extra={"counts": counts})
        return counts
