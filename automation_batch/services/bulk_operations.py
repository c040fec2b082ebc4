"""
BulkOperationService -- approval-gated, best-effort bulk execution.

Contract:
    Orchestrates the bulk operation lifecycle: create (approval policy and
    idempotency), approve, cancel, execute (fixed-size batches, per-target
    error capture, live progress), query and TTL purge.

Architecture: automation_batch/services.  Imports from automation_batch.domain,
    automation_batch.models, automation_batch.handlers and the notification
    collaborator protocol of automation_rules.

Invariants enforced:
    - A single target's failure is recorded in ``results.errors`` and never
      aborts the batch.
    - ``progress`` never decreases: every progress write is a conditional
      UPDATE that only raises the stored value.
    - Counters are incremented atomically (``failed = failed + 1``).
    - At completion ``successful + failed + skipped == target_count``; a
      FAILED or CANCELLED run counts its untouched targets as skipped.
    - With a ``progress_checkpoint`` every progress write is followed by a
      checkpoint, so other connections watch progress advance live.
    - PENDING -> RUNNING is a conditional UPDATE; two runners cannot both
      start the same operation.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

import concurrent.futures
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator
from uuid import UUID, uuid4

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from automation_kernel.domain.clock import Clock
from automation_kernel.exceptions import (
    ApprovalRequiredError,
    BulkOperationError,
    BulkOperationNotFoundError,
    BulkOperationStateError,
    InvalidActionConfigError,
)
from automation_kernel.logging_config import LogContext, get_logger
from automation_kernel.settings import AutomationSettings

from automation_batch.domain.approval import should_require_approval
from automation_batch.domain.types import (
    BulkActionType,
    BulkOperation,
    BulkOperationStatus,
    TargetError,
    TargetType,
)
from automation_batch.handlers.base import HandlerRegistry, TargetActionHandler
from automation_batch.models.batch import BulkOperationModel
from automation_rules.actions.collaborators import NotificationRequest, NotificationSender
from automation_rules.domain.types import AutomationEventDraft, EventType

logger = get_logger("batch.bulk_operations")

EventSink = Callable[[AutomationEventDraft], Any]


def calculate_progress(processed: int, target_count: int) -> int:
    """``round(processed / target_count * 100)``, rounding halves up.

    An operation with no targets is complete by definition.
    """
    if target_count <= 0:
        return 100
    return (processed * 200 + target_count) // (2 * target_count)


def _dedupe(target_ids: Any) -> tuple[str, ...]:
    return tuple(dict.fromkeys(str(t) for t in target_ids))


class BulkOperationService:
    """Bulk operation orchestrator.

    Contract:
        - ``create_operation()`` returns a PENDING_APPROVAL or PENDING op.
        - ``execute_operation()`` runs a PENDING op to a terminal status.
        - ``approve_operation()`` / ``cancel_operation()`` drive the gate.
        - ``progress_checkpoint`` (optional) is called after the RUNNING
          transition, after every processed target and after the terminal
          status is written.  The session owner supplies it, typically
          ``commit_checkpoint`` bound to its session, to publish progress.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT own a clock loop -- the scheduler drives due operations.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        handlers: HandlerRegistry,
        settings: AutomationSettings | None = None,
        notifier: NotificationSender | None = None,
        event_sink: EventSink | None = None,
        progress_checkpoint: Callable[[], None] | None = None,
    ):
        self._session = session
        self._clock = clock
        self._handlers = handlers
        self._settings = settings or AutomationSettings()
        self._notifier = notifier
        self._event_sink = event_sink
        self._progress_checkpoint = progress_checkpoint

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_operation(
        self,
        *,
        tenant_id: str,
        company_id: str,
        operation_type: BulkActionType | str,
        name: str,
        target_ids: Any,
        target_type: TargetType | str = TargetType.DOCUMENT,
        action: dict[str, Any] | None = None,
        description: str | None = None,
        created_by: str = "system",
        created_by_name: str | None = None,
        requires_approval: bool = False,
        scheduled_for: datetime | None = None,
        idempotency_key: str | None = None,
        recurring_job_id: UUID | None = None,
        pre_approved: bool = False,
    ) -> BulkOperation:
        """Create a bulk operation.

        Approval is required when the risk policy says so or the caller asks
        for it.  ``pre_approved`` (recurring jobs) bypasses the gate.  A
        repeated ``idempotency_key`` returns the operation already stored.
        """
        operation_type = BulkActionType(operation_type)
        targets = _dedupe(target_ids)

        if idempotency_key is not None:
            existing = self._find_by_key(idempotency_key)
            if existing is not None:
                logger.info(
                    "bulk_operation_idempotent_hit",
                    extra={
                        "idempotency_key": idempotency_key,
                        "operation_id": str(existing.operation_id),
                    },
                )
                return existing

        if pre_approved:
            gated = False
        else:
            gated = requires_approval or should_require_approval(
                operation_type, len(targets), self._settings,
            )

        now = self._clock.now_utc()
        dto = BulkOperation(
            operation_id=uuid4(),
            tenant_id=tenant_id,
            company_id=company_id,
            operation_type=operation_type,
            name=name,
            description=description,
            target_type=TargetType(target_type),
            target_ids=targets,
            action=dict(action or {}),
            status=(
                BulkOperationStatus.PENDING_APPROVAL if gated else BulkOperationStatus.PENDING
            ),
            requires_approval=gated,
            created_by=created_by,
            created_by_name=created_by_name,
            created_at=now,
            scheduled_for=scheduled_for,
            idempotency_key=idempotency_key,
            recurring_job_id=recurring_job_id,
        )

        expires_at = now + timedelta(days=self._settings.bulk_operation_ttl_days)
        savepoint = self._session.begin_nested()
        try:
            self._session.add(BulkOperationModel.from_dto(dto, expires_at=expires_at))
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            # Lost an insert race on the idempotency key
            existing = self._find_by_key(idempotency_key) if idempotency_key else None
            if existing is None:
                raise
            return existing

        logger.info(
            "bulk_operation_created",
            extra={
                "operation_id": str(dto.operation_id),
                "operation_type": operation_type.value,
                "target_count": dto.target_count,
                "requires_approval": gated,
                "status": dto.status.value,
            },
        )
        return dto

    # -------------------------------------------------------------------------
    # Approval gate
    # -------------------------------------------------------------------------

    def approve_operation(
        self,
        operation_id: UUID,
        approved_by: str,
        approval_id: str | None = None,
    ) -> BulkOperation:
        """PENDING_APPROVAL -> PENDING.

        Raises:
            BulkOperationNotFoundError: Unknown operation.
            BulkOperationStateError: Operation is not awaiting approval.
        """
        now = self._clock.now_utc()
        result = self._session.execute(
            update(BulkOperationModel)
            .where(
                BulkOperationModel.id == operation_id,
                BulkOperationModel.status == BulkOperationStatus.PENDING_APPROVAL.value,
            )
            .values(
                status=BulkOperationStatus.PENDING.value,
                approved_by=approved_by,
                approved_at=now,
                approval_id=approval_id or str(uuid4()),
                updated_by=approved_by,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self.get_operation(operation_id)
            raise BulkOperationStateError(str(operation_id), current.status.value, "approve")

        logger.info(
            "bulk_operation_approved",
            extra={"operation_id": str(operation_id), "approved_by": approved_by},
        )
        return self._reload(operation_id)

    def cancel_operation(
        self,
        operation_id: UUID,
        cancelled_by: str,
        reason: str | None = None,
    ) -> BulkOperation:
        """Cancel a waiting operation, or request cancellation of a running one.

        PENDING_APPROVAL / PENDING become CANCELLED immediately.  A RUNNING
        operation finishes its current batch, then counts the remaining
        targets as skipped and ends CANCELLED.

        Raises:
            BulkOperationNotFoundError: Unknown operation.
            BulkOperationStateError: Operation already finished.
        """
        now = self._clock.now_utc()
        waiting = (
            BulkOperationStatus.PENDING_APPROVAL.value,
            BulkOperationStatus.PENDING.value,
        )
        result = self._session.execute(
            update(BulkOperationModel)
            .where(
                BulkOperationModel.id == operation_id,
                BulkOperationModel.status.in_(waiting),
            )
            .values(
                status=BulkOperationStatus.CANCELLED.value,
                cancel_requested=True,
                completed_at=now,
                error=reason,
                updated_by=cancelled_by,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info(
                "bulk_operation_cancelled",
                extra={"operation_id": str(operation_id), "cancelled_by": cancelled_by},
            )
            return self._reload(operation_id)

        result = self._session.execute(
            update(BulkOperationModel)
            .where(
                BulkOperationModel.id == operation_id,
                BulkOperationModel.status == BulkOperationStatus.RUNNING.value,
            )
            .values(cancel_requested=True, error=reason, updated_by=cancelled_by)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info(
                "bulk_operation_cancel_requested",
                extra={"operation_id": str(operation_id), "cancelled_by": cancelled_by},
            )
            return self._reload(operation_id)

        current = self.get_operation(operation_id)
        raise BulkOperationStateError(str(operation_id), current.status.value, "cancel")

    # -------------------------------------------------------------------------
    # Execute
    # -------------------------------------------------------------------------

    def execute_operation(self, operation_id: UUID) -> BulkOperation:
        """Run a PENDING operation to COMPLETED, CANCELLED or FAILED.

        Per-target failures are captured, never raised.  An unexpected error
        outside per-target handling (including a missing handler) ends the
        operation FAILED.  A completion notification and a
        BULK_OPERATION_COMPLETED event follow every run.

        Raises:
            BulkOperationNotFoundError: Unknown operation.
            ApprovalRequiredError: Operation still awaits approval.
            BulkOperationStateError: Operation is not PENDING.
        """
        operation = self.get_operation(operation_id)
        if operation.status == BulkOperationStatus.PENDING_APPROVAL:
            raise ApprovalRequiredError(str(operation_id))

        started_at = self._clock.now_utc()
        result = self._session.execute(
            update(BulkOperationModel)
            .where(
                BulkOperationModel.id == operation_id,
                BulkOperationModel.status == BulkOperationStatus.PENDING.value,
            )
            .values(status=BulkOperationStatus.RUNNING.value, started_at=started_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self._reload(operation_id)
            raise BulkOperationStateError(str(operation_id), current.status.value, "execute")
        self._checkpoint()

        operation = replace(
            operation, status=BulkOperationStatus.RUNNING, started_at=started_at,
        )
        with LogContext.bind(
            tenant_id=operation.tenant_id,
            company_id=operation.company_id,
            operation_id=operation.operation_id,
        ):
            logger.info(
                "bulk_operation_started",
                extra={
                    "operation_type": operation.operation_type.value,
                    "target_count": operation.target_count,
                },
            )
            final = self._run(operation)
            self._notify_completion(final)
            self._emit_completion(final)
        return final

    def _run(self, operation: BulkOperation) -> BulkOperation:
        targets = operation.target_ids
        count = len(targets)
        batch_size = max(1, self._settings.bulk_batch_size)
        successful = failed = 0
        errors: list[TargetError] = []
        cancelled = False

        try:
            handler = self._handlers.get(operation.operation_type)

            for start in range(0, count, batch_size):
                if start > 0 and self._cancel_requested(operation.operation_id):
                    cancelled = True
                    break
                batch = targets[start:start + batch_size]
                for target_id, error in self._run_batch(handler, batch, operation):
                    if error is None:
                        successful += 1
                    else:
                        failed += 1
                        errors.append(TargetError(target_id=target_id, error=error))
                    self._record_target(
                        operation.operation_id,
                        error is None,
                        errors,
                        calculate_progress(successful + failed, count),
                    )

        except Exception as exc:
            logger.exception(
                "bulk_operation_failed",
                extra={"processed": successful + failed, "target_count": count},
            )
            return self._finish(
                operation.operation_id,
                BulkOperationStatus.FAILED,
                skipped=count - successful - failed,
                progress=calculate_progress(successful + failed, count),
                error=str(exc),
            )

        if cancelled:
            skipped = count - successful - failed
            logger.info(
                "bulk_operation_cancelled",
                extra={"processed": successful + failed, "skipped": skipped},
            )
            return self._finish(
                operation.operation_id,
                BulkOperationStatus.CANCELLED,
                skipped=skipped,
                progress=100,
            )

        logger.info(
            "bulk_operation_completed",
            extra={"successful": successful, "failed": failed, "target_count": count},
        )
        return self._finish(
            operation.operation_id,
            BulkOperationStatus.COMPLETED,
            skipped=0,
            progress=100,
        )

    def _run_batch(
        self,
        handler: TargetActionHandler,
        batch: tuple[str, ...],
        operation: BulkOperation,
    ) -> Iterator[tuple[str, str | None]]:
        """Yield (target_id, error-or-None) for every target of one batch.

        With ``bulk_max_workers > 1`` targets of the batch run on a bounded
        thread pool; results are yielded on the calling thread so all
        persistence stays on the caller's Session.
        """
        workers = min(self._settings.bulk_max_workers, len(batch))
        if workers <= 1:
            for target_id in batch:
                yield target_id, self._run_target(handler, target_id, operation)
            return

        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self._run_target, handler, target_id, operation): target_id
                for target_id in batch
            }
            for future in concurrent.futures.as_completed(futures):
                yield futures[future], future.result()

    @staticmethod
    def _run_target(
        handler: TargetActionHandler, target_id: str, operation: BulkOperation,
    ) -> str | None:
        try:
            handler.execute(target_id, dict(operation.action), operation)
        except Exception as exc:
            return str(exc) or exc.__class__.__name__
        return None

    def _record_target(
        self,
        operation_id: UUID,
        succeeded: bool,
        errors: list[TargetError],
        progress: int,
    ) -> None:
        """Persist one processed target: atomic counter bump, monotonic progress."""
        values: dict[str, Any] = {
            "progress": case(
                (BulkOperationModel.progress < progress, progress),
                else_=BulkOperationModel.progress,
            ),
        }
        if succeeded:
            values["successful"] = BulkOperationModel.successful + 1
        else:
            values["failed"] = BulkOperationModel.failed + 1
            values["errors"] = [
                {"target_id": e.target_id, "error": e.error} for e in errors
            ]
        self._session.execute(
            update(BulkOperationModel)
            .where(BulkOperationModel.id == operation_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self._checkpoint()

    def _checkpoint(self) -> None:
        if self._progress_checkpoint is not None:
            self._progress_checkpoint()

    def _cancel_requested(self, operation_id: UUID) -> bool:
        return bool(
            self._session.execute(
                select(BulkOperationModel.cancel_requested)
                .where(BulkOperationModel.id == operation_id)
            ).scalar_one()
        )

    def _finish(
        self,
        operation_id: UUID,
        status: BulkOperationStatus,
        skipped: int,
        progress: int,
        error: str | None = None,
    ) -> BulkOperation:
        values: dict[str, Any] = {
            "status": status.value,
            "skipped": skipped,
            "completed_at": self._clock.now_utc(),
            "progress": case(
                (BulkOperationModel.progress < progress, progress),
                else_=BulkOperationModel.progress,
            ),
        }
        if error is not None:
            values["error"] = error
        self._session.execute(
            update(BulkOperationModel)
            .where(BulkOperationModel.id == operation_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self._checkpoint()
        return self._reload(operation_id)

    # -------------------------------------------------------------------------
    # Completion side effects
    # -------------------------------------------------------------------------

    def _notify_completion(self, operation: BulkOperation) -> None:
        if self._notifier is None:
            return
        results = operation.results
        request = NotificationRequest(
            tenant_id=operation.tenant_id,
            company_id=operation.company_id,
            type="batch_complete",
            priority=(
                "high"
                if results.failed > 0 or operation.status == BulkOperationStatus.FAILED
                else "normal"
            ),
            title=f'Bulk operation "{operation.name}" {operation.status.value.lower()}',
            message=(
                f"{results.successful} succeeded, {results.failed} failed, "
                f"{results.skipped} skipped of {operation.target_count} items."
            ),
            channels=("in_app",),
            action_url=f"/admin/bulk-operations/{operation.operation_id}",
        )
        try:
            self._notifier.send_notification(request)
        except Exception:
            logger.exception("bulk_completion_notification_failed")

    def _emit_completion(self, operation: BulkOperation) -> None:
        if self._event_sink is None:
            return
        draft = AutomationEventDraft(
            tenant_id=operation.tenant_id,
            company_id=operation.company_id,
            event_type=EventType.BULK_OPERATION_COMPLETED,
            source="bulk_operations",
            data={
                "operationId": str(operation.operation_id),
                "operationType": operation.operation_type.value,
                "name": operation.name,
                "status": operation.status.value,
                "targetCount": operation.target_count,
                "successful": operation.results.successful,
                "failed": operation.results.failed,
                "skipped": operation.results.skipped,
                "recurringJobId": (
                    str(operation.recurring_job_id) if operation.recurring_job_id else None
                ),
            },
        )
        try:
            self._event_sink(draft)
        except Exception:
            logger.exception("bulk_completion_event_failed")

    # -------------------------------------------------------------------------
    # Scheduled operations
    # -------------------------------------------------------------------------

    def run_due_operations(
        self, now: datetime | None = None, limit: int | None = None,
    ) -> list[BulkOperation]:
        """Execute PENDING operations whose ``scheduled_for`` has arrived."""
        now = now or self._clock.now_utc()
        limit = limit or self._settings.scheduler_batch_limit
        due_ids = self._session.execute(
            select(BulkOperationModel.id)
            .where(
                BulkOperationModel.status == BulkOperationStatus.PENDING.value,
                BulkOperationModel.scheduled_for.is_not(None),
                BulkOperationModel.scheduled_for <= now,
            )
            .order_by(BulkOperationModel.scheduled_for)
            .limit(limit)
            .with_for_update(skip_locked=True)
        ).scalars().all()

        finished: list[BulkOperation] = []
        for operation_id in due_ids:
            try:
                finished.append(self.execute_operation(operation_id))
            except BulkOperationError as exc:
                # Another runner got there first
                logger.warning(
                    "scheduled_bulk_operation_skipped",
                    extra={"operation_id": str(operation_id), "reason": exc.code},
                )
        return finished

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_operation(
        self, operation_id: UUID, tenant_id: str | None = None,
    ) -> BulkOperation:
        """Fetch one operation; a tenant mismatch reads as not found.

        Raises:
            BulkOperationNotFoundError: Unknown operation (or other tenant).
        """
        model = self._session.get(BulkOperationModel, operation_id)
        if model is None or (tenant_id is not None and model.tenant_id != tenant_id):
            raise BulkOperationNotFoundError(str(operation_id))
        return model.to_dto()

    def list_operations(
        self,
        tenant_id: str,
        company_id: str | None = None,
        status: BulkOperationStatus | str | None = None,
        limit: int | None = None,
    ) -> list[BulkOperation]:
        """Operations of one tenant, newest first."""
        stmt = select(BulkOperationModel).where(BulkOperationModel.tenant_id == tenant_id)
        if company_id is not None:
            stmt = stmt.where(BulkOperationModel.company_id == company_id)
        if status is not None:
            stmt = stmt.where(BulkOperationModel.status == BulkOperationStatus(status).value)
        stmt = stmt.order_by(BulkOperationModel.created_at.desc()).limit(
            limit or self._settings.list_limit
        )
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete operations whose ``expires_at`` has passed."""
        now = now or self._clock.now_utc()
        result = self._session.execute(
            delete(BulkOperationModel).where(
                BulkOperationModel.expires_at.is_not(None),
                BulkOperationModel.expires_at < now,
            )
        )
        self._session.flush()
        count = result.rowcount or 0
        logger.info("bulk_operations_purged", extra={"count": count})
        return count

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _find_by_key(self, idempotency_key: str) -> BulkOperation | None:
        model = self._session.execute(
            select(BulkOperationModel)
            .where(BulkOperationModel.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        return model.to_dto() if model else None

    def _reload(self, operation_id: UUID) -> BulkOperation:
        """Re-read after a Core UPDATE so the identity map is not stale."""
        model = self._session.get(BulkOperationModel, operation_id)
        if model is None:
            raise BulkOperationNotFoundError(str(operation_id))
        self._session.refresh(model)
        return model.to_dto()


class BulkOperationLauncher:
    """Launches a bulk operation on behalf of a rule action (START_PLAYBOOK).

    ``params`` mirrors ``create_operation`` in camelCase (``type``,
    ``targetIds``, ``targetType``, ``action``, ``name``, ``requiresApproval``).
    An operation that is not gated runs immediately.
    """

    def __init__(self, service: BulkOperationService):
        self._service = service

    def launch(
        self,
        tenant_id: str,
        company_id: str,
        params: dict[str, Any],
        actor: str,
    ) -> dict[str, Any]:
        if not params.get("type"):
            raise InvalidActionConfigError("START_PLAYBOOK", "bulkAction.type", "required")
        operation = self._service.create_operation(
            tenant_id=tenant_id,
            company_id=company_id,
            operation_type=params["type"],
            name=params.get("name") or f"{params['type']} ({actor})",
            description=params.get("description"),
            target_type=params.get("targetType", TargetType.DOCUMENT),
            target_ids=params.get("targetIds") or (),
            action=params.get("action") or {},
            created_by=actor,
            requires_approval=bool(params.get("requiresApproval", False)),
        )
        if operation.status == BulkOperationStatus.PENDING:
            operation = self._service.execute_operation(operation.operation_id)
        return {
            "operationId": str(operation.operation_id),
            "status": operation.status.value,
            "requiresApproval": operation.requires_approval,
            "successful": operation.results.successful,
            "failed": operation.results.failed,
        }
