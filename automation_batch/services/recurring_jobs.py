"""
RecurringJobService -- schedule definitions that materialize bulk operations.

Contract:
    ``create_recurring_job`` validates the schedule up front and computes
    the first ``next_run_at``.  ``execute_recurring_job`` resolves the
    targets, creates a pre-approved bulk operation keyed by the firing slot,
    runs it, then advances the job.

Architecture: automation_batch/services.  Imports from automation_batch.domain,
    automation_batch.models and the BulkOperationService.

Invariants enforced:
    - Schedule configuration errors surface at creation, never at run time.
    - ``next_run_at`` is strictly after the clock time it was computed at.
    - One bulk operation per (job, slot): the operation idempotency key is
      ``recurring_run_key(job_id, next_run_at)``.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, Sequence, runtime_checkable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from automation_kernel.domain.clock import Clock
from automation_kernel.exceptions import InvalidScheduleError, RecurringJobNotFoundError
from automation_kernel.logging_config import LogContext, get_logger
from automation_kernel.settings import AutomationSettings
from automation_kernel.utils.idempotency import recurring_run_key

from automation_batch.domain.schedule import calculate_next_run, validate_schedule
from automation_batch.domain.types import (
    BulkActionType,
    BulkOperation,
    BulkOperationStatus,
    RecurringJob,
    RecurringRunResult,
    RecurringRunStatus,
    RecurringSchedule,
    SelectionCriteria,
    SelectionType,
    TargetType,
)
from automation_batch.models.batch import RecurringJobModel
from automation_batch.services.bulk_operations import BulkOperationService
from automation_rules.actions.collaborators import NotificationRequest, NotificationSender

logger = get_logger("batch.recurring")


@runtime_checkable
class TargetQuery(Protocol):
    """Resolves a deferred selection query into concrete target ids."""

    def resolve(
        self,
        tenant_id: str,
        company_id: str,
        target_type: TargetType,
        query: dict[str, Any],
    ) -> Sequence[str]: ...


def run_status_for(operation: BulkOperation) -> RecurringRunStatus:
    """failed: operation FAILED or nothing succeeded; partial: some failures."""
    results = operation.results
    if operation.status == BulkOperationStatus.FAILED:
        return RecurringRunStatus.FAILED
    if results.failed > 0 and results.successful == 0:
        return RecurringRunStatus.FAILED
    if results.failed > 0 or operation.status == BulkOperationStatus.CANCELLED:
        return RecurringRunStatus.PARTIAL
    return RecurringRunStatus.SUCCESS


class RecurringJobService:
    """Recurring job definitions and their execution.

    Non-goals:
        - Does NOT call ``session.commit()`` -- the scheduler tick does.
        - Does NOT poll -- AutomationScheduler calls ``due_jobs`` and
          ``execute_recurring_job``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        bulk_service: BulkOperationService,
        notifier: NotificationSender | None = None,
        target_query: TargetQuery | None = None,
        settings: AutomationSettings | None = None,
    ):
        self._session = session
        self._clock = clock
        self._bulk = bulk_service
        self._notifier = notifier
        self._target_query = target_query
        self._settings = settings or AutomationSettings()

    # -------------------------------------------------------------------------
    # Definitions
    # -------------------------------------------------------------------------

    def create_recurring_job(
        self,
        *,
        tenant_id: str,
        company_id: str,
        name: str,
        action_type: BulkActionType | str,
        selection_criteria: SelectionCriteria,
        schedule: RecurringSchedule,
        action: dict[str, Any] | None = None,
        description: str = "",
        target_type: TargetType | str = TargetType.DOCUMENT,
        notify_on_complete: bool = False,
        notify_on_failure: bool = True,
        notify_recipients: Sequence[str] = (),
        created_by: str = "system",
    ) -> RecurringJob:
        """Create an enabled job.

        Raises:
            InvalidScheduleError: Missing or invalid schedule fields, or a
                query selection with no TargetQuery configured.
        """
        validate_schedule(schedule)
        if selection_criteria.selection_type == SelectionType.QUERY and self._target_query is None:
            raise InvalidScheduleError(
                "selection_criteria", "query selection requires a target query resolver",
            )

        now = self._clock.now_utc()
        job = RecurringJob(
            job_id=uuid4(),
            tenant_id=tenant_id,
            company_id=company_id,
            name=name,
            description=description,
            action_type=BulkActionType(action_type),
            action=dict(action or {}),
            target_type=TargetType(target_type),
            selection_criteria=selection_criteria,
            schedule=schedule,
            next_run_at=calculate_next_run(schedule, now),
            notify_on_complete=notify_on_complete,
            notify_on_failure=notify_on_failure,
            notify_recipients=tuple(notify_recipients),
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self._session.add(RecurringJobModel.from_dto(job))
        self._session.flush()

        logger.info(
            "recurring_job_created",
            extra={
                "job_id": str(job.job_id),
                "schedule_type": schedule.schedule_type.value,
                "next_run_at": job.next_run_at.isoformat(),
            },
        )
        return job

    def get_recurring_job(self, job_id: UUID, tenant_id: str | None = None) -> RecurringJob:
        """
        Raises:
            RecurringJobNotFoundError: Unknown job (or other tenant).
        """
        return self._model(job_id, tenant_id).to_dto()

    def list_recurring_jobs(
        self,
        tenant_id: str,
        company_id: str | None = None,
        enabled: bool | None = None,
    ) -> list[RecurringJob]:
        stmt = select(RecurringJobModel).where(RecurringJobModel.tenant_id == tenant_id)
        if company_id is not None:
            stmt = stmt.where(RecurringJobModel.company_id == company_id)
        if enabled is not None:
            stmt = stmt.where(RecurringJobModel.enabled == enabled)
        stmt = stmt.order_by(RecurringJobModel.next_run_at)
        return [m.to_dto() for m in self._session.scalars(stmt)]

    def set_enabled(
        self, job_id: UUID, enabled: bool, actor: str, tenant_id: str | None = None,
    ) -> RecurringJob:
        """Enable or disable a job; enabling recomputes ``next_run_at``."""
        model = self._model(job_id, tenant_id)
        now = self._clock.now_utc()
        model.enabled = enabled
        if enabled:
            model.next_run_at = calculate_next_run(model.to_dto().schedule, now)
        model.updated_at = now
        model.updated_by = actor
        self._session.flush()

        logger.info(
            "recurring_job_enabled" if enabled else "recurring_job_disabled",
            extra={"job_id": str(job_id)},
        )
        return model.to_dto()

    def due_jobs(self, now: datetime | None = None, limit: int | None = None) -> list[RecurringJob]:
        """Enabled jobs whose ``next_run_at`` has arrived, oldest first."""
        now = now or self._clock.now_utc()
        stmt = (
            select(RecurringJobModel)
            .where(
                RecurringJobModel.enabled.is_(True),
                RecurringJobModel.next_run_at <= now,
            )
            .order_by(RecurringJobModel.next_run_at)
            .limit(limit or self._settings.scheduler_batch_limit)
            .with_for_update(skip_locked=True)
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def execute_recurring_job(self, job_id: UUID) -> RecurringRunResult:
        """Run one firing of the job and advance it.

        Target-resolution failures end the run ``failed`` without raising,
        so a broken query does not refire on every tick.
        """
        job = self.get_recurring_job(job_id)
        slot = job.next_run_at

        with LogContext.bind(tenant_id=job.tenant_id, company_id=job.company_id):
            operation: BulkOperation | None = None
            error: str | None = None
            try:
                targets = self._resolve_targets(job)
            except Exception as exc:
                logger.exception("recurring_job_target_resolution_failed", extra={"job_id": str(job_id)})
                status = RecurringRunStatus.FAILED
                error = str(exc)
            else:
                operation = self._bulk.create_operation(
                    tenant_id=job.tenant_id,
                    company_id=job.company_id,
                    operation_type=job.action_type,
                    name=f"{job.name} (automatic)",
                    description=job.description or None,
                    target_type=job.target_type,
                    target_ids=targets,
                    action=job.action,
                    created_by=job.created_by,
                    created_by_name="Scheduled job",
                    idempotency_key=recurring_run_key(job.job_id, slot),
                    recurring_job_id=job.job_id,
                    pre_approved=True,
                )
                if operation.status == BulkOperationStatus.PENDING:
                    operation = self._bulk.execute_operation(operation.operation_id)
                status = run_status_for(operation)
                error = operation.error

            updated = self._advance(job, status, operation)

            logger.info(
                "recurring_job_executed",
                extra={
                    "job_id": str(job_id),
                    "run_status": status.value,
                    "operation_id": str(operation.operation_id) if operation else None,
                    "next_run_at": updated.next_run_at.isoformat(),
                },
            )
            self._notify(updated, status, operation, error)

        return RecurringRunResult(job=updated, status=status, operation=operation, error=error)

    def _resolve_targets(self, job: RecurringJob) -> tuple[str, ...]:
        criteria = job.selection_criteria
        if criteria.selection_type == SelectionType.FIXED:
            return criteria.fixed_ids
        if self._target_query is None:
            raise InvalidScheduleError(
                "selection_criteria", "query selection requires a target query resolver",
            )
        return tuple(
            self._target_query.resolve(
                job.tenant_id, job.company_id, job.target_type, dict(criteria.query),
            )
        )

    def _advance(
        self,
        job: RecurringJob,
        status: RecurringRunStatus,
        operation: BulkOperation | None,
    ) -> RecurringJob:
        now = self._clock.now_utc()
        model = self._model(job.job_id)
        model.last_run_at = now
        model.last_run_status = status.value
        model.last_operation_id = operation.operation_id if operation else None
        model.next_run_at = calculate_next_run(job.schedule, now)
        model.updated_at = now
        model.updated_by = "scheduler"
        self._session.flush()
        return model.to_dto()

    def _notify(
        self,
        job: RecurringJob,
        status: RecurringRunStatus,
        operation: BulkOperation | None,
        error: str | None,
    ) -> None:
        if self._notifier is None:
            return
        succeeded = status == RecurringRunStatus.SUCCESS
        if succeeded and not job.notify_on_complete:
            return
        if not succeeded and not job.notify_on_failure:
            return

        if operation is not None:
            r = operation.results
            message = (
                f"{r.successful} succeeded, {r.failed} failed of "
                f"{operation.target_count} items."
            )
        else:
            message = f"The job did not run: {error}"

        request = NotificationRequest(
            tenant_id=job.tenant_id,
            company_id=job.company_id,
            type="recurring_job_complete" if succeeded else "recurring_job_failed",
            priority="normal" if succeeded else "high",
            title=f'Scheduled job "{job.name}" {status.value}',
            message=message,
            channels=("in_app",),
            action_url=(
                f"/admin/bulk-operations/{operation.operation_id}" if operation else None
            ),
            recipients=job.notify_recipients,
        )
        try:
            self._notifier.send_notification(request)
        except Exception:
            logger.exception("recurring_job_notification_failed", extra={"job_id": str(job.job_id)})

    def _model(self, job_id: UUID, tenant_id: str | None = None) -> RecurringJobModel:
        model = self._session.get(RecurringJobModel, job_id)
        if model is None or (tenant_id is not None and model.tenant_id != tenant_id):
            raise RecurringJobNotFoundError(str(job_id))
        return model
