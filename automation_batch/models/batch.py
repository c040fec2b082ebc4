"""
ORM models for bulk-work persistence.

Contract:
    BulkOperationModel, RecurringJobModel, TemplateModel and
    StandardCommentModel persist bulk operations (with live progress
    counters), recurring job definitions, tenant templates and tenant
    standard comments.  Each has ``to_dto()`` / ``from_dto()`` methods.

Architecture: automation_batch/models. Imports from automation_kernel.db.base
    and automation_batch.domain only.

Invariants enforced:
    - ``idempotency_key`` is UNIQUE on BulkOperationModel (NULLs allowed), so
      one recurring-job slot materializes at most one operation.
    - Counters and progress are mutated with conditional UPDATEs by the
      service, never read-modify-write of the whole row.
    - One tenant template per (tenant_id, template_id) and one tenant
      comment per (tenant_id, comment_id).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from automation_kernel.db.base import TenantScopedBase, UUIDString
from automation_kernel.utils.serialization import to_jsonable

if TYPE_CHECKING:
    from automation_batch.domain.types import (
        BulkOperation,
        RecurringJob,
        StandardComment,
        Template,
    )


class BulkOperationModel(TenantScopedBase):
    """Persistent bulk operation (TTL: bulk_operation_ttl_days)."""

    __tablename__ = "bulk_operations"

    __table_args__ = (
        Index(
            "ix_bulk_operations_company_status",
            "tenant_id", "company_id", "status", "created_at",
        ),
        Index("ix_bulk_operations_status_scheduled", "status", "scheduled_for"),
        Index("ix_bulk_operations_expires", "expires_at"),
    )

    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_type: Mapped[str] = mapped_column(String(30), nullable=False)
    target_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    action: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors: Mapped[list | None] = mapped_column(JSON, nullable=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approval_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(
        String(200), nullable=True, unique=True,
    )
    recurring_job_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> BulkOperation:
        from automation_batch.domain.types import (
            BulkActionType,
            BulkOperation,
            BulkOperationStatus,
            BulkResults,
            TargetError,
            TargetType,
        )

        return BulkOperation(
            operation_id=self.id,
            tenant_id=self.tenant_id,
            company_id=self.company_id,
            operation_type=BulkActionType(self.operation_type),
            name=self.name,
            description=self.description,
            target_type=TargetType(self.target_type),
            target_ids=tuple(self.target_ids or ()),
            action=self.action or {},
            status=BulkOperationStatus(self.status),
            progress=self.progress,
            results=BulkResults(
                successful=self.successful,
                failed=self.failed,
                skipped=self.skipped,
                errors=tuple(
                    TargetError(target_id=e["target_id"], error=e["error"])
                    for e in self.errors or ()
                ),
            ),
            requires_approval=self.requires_approval,
            approval_id=self.approval_id,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            created_by=self.created_by,
            created_by_name=self.created_by_name,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            scheduled_for=self.scheduled_for,
            cancel_requested=self.cancel_requested,
            idempotency_key=self.idempotency_key,
            recurring_job_id=self.recurring_job_id,
            error=self.error,
        )

    @classmethod
    def from_dto(
        cls, dto: BulkOperation, expires_at: datetime | None = None,
    ) -> BulkOperationModel:
        return cls(
            id=dto.operation_id,
            tenant_id=dto.tenant_id,
            company_id=dto.company_id,
            operation_type=dto.operation_type.value,
            name=dto.name,
            description=dto.description,
            target_type=dto.target_type.value,
            target_ids=list(dto.target_ids),
            action=to_jsonable(dto.action) or None,
            status=dto.status.value,
            progress=dto.progress,
            successful=dto.results.successful,
            failed=dto.results.failed,
            skipped=dto.results.skipped,
            errors=[to_jsonable(e) for e in dto.results.errors],
            requires_approval=dto.requires_approval,
            approval_id=dto.approval_id,
            approved_by=dto.approved_by,
            approved_at=dto.approved_at,
            created_by=dto.created_by,
            created_by_name=dto.created_by_name,
            created_at=dto.created_at,
            scheduled_for=dto.scheduled_for,
            idempotency_key=dto.idempotency_key,
            recurring_job_id=dto.recurring_job_id,
            expires_at=expires_at,
        )


class RecurringJobModel(TenantScopedBase):
    """Recurring job definition; ``next_run_at`` drives the scheduler."""

    __tablename__ = "recurring_jobs"

    __table_args__ = (
        Index("ix_recurring_jobs_due", "enabled", "next_run_at"),
        Index("ix_recurring_jobs_company", "tenant_id", "company_id", "enabled"),
    )

    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    target_type: Mapped[str] = mapped_column(String(30), nullable=False)
    selection_criteria: Mapped[dict] = mapped_column(JSON, nullable=False)
    schedule: Mapped[dict] = mapped_column(JSON, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    next_run_at: Mapped[datetime] = mapped_column(nullable=False)
    last_run_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_run_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_operation_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    notify_on_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notify_on_failure: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_recipients: Mapped[list | None] = mapped_column(JSON, nullable=True)

    def to_dto(self) -> RecurringJob:
        from automation_batch.domain.schedule import schedule_from_dict
        from automation_batch.domain.types import (
            BulkActionType,
            RecurringJob,
            RecurringRunStatus,
            SelectionCriteria,
            SelectionType,
            TargetType,
        )

        criteria = self.selection_criteria or {}
        return RecurringJob(
            job_id=self.id,
            tenant_id=self.tenant_id,
            company_id=self.company_id,
            name=self.name,
            description=self.description or "",
            action_type=BulkActionType(self.action_type),
            action=self.action or {},
            target_type=TargetType(self.target_type),
            selection_criteria=SelectionCriteria(
                selection_type=SelectionType(criteria["type"]),
                fixed_ids=tuple(criteria.get("fixedIds") or ()),
                query=criteria.get("query") or {},
            ),
            schedule=schedule_from_dict(self.schedule),
            enabled=self.enabled,
            next_run_at=self.next_run_at,
            last_run_at=self.last_run_at,
            last_run_status=(
                RecurringRunStatus(self.last_run_status)
                if self.last_run_status
                else None
            ),
            last_operation_id=self.last_operation_id,
            notify_on_complete=self.notify_on_complete,
            notify_on_failure=self.notify_on_failure,
            notify_recipients=tuple(self.notify_recipients or ()),
            created_by=self.created_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_dto(cls, dto: RecurringJob) -> RecurringJobModel:
        from automation_batch.domain.schedule import schedule_to_dict

        return cls(
            id=dto.job_id,
            tenant_id=dto.tenant_id,
            company_id=dto.company_id,
            name=dto.name,
            description=dto.description or None,
            action_type=dto.action_type.value,
            action=to_jsonable(dto.action) or None,
            target_type=dto.target_type.value,
            selection_criteria={
                "type": dto.selection_criteria.selection_type.value,
                "fixedIds": list(dto.selection_criteria.fixed_ids),
                "query": to_jsonable(dto.selection_criteria.query),
            },
            schedule=schedule_to_dict(dto.schedule),
            enabled=dto.enabled,
            next_run_at=dto.next_run_at,
            last_run_at=dto.last_run_at,
            last_run_status=dto.last_run_status.value if dto.last_run_status else None,
            last_operation_id=dto.last_operation_id,
            notify_on_complete=dto.notify_on_complete,
            notify_on_failure=dto.notify_on_failure,
            notify_recipients=list(dto.notify_recipients),
            created_by=dto.created_by,
            created_at=dto.created_at,
            updated_at=dto.updated_at or dto.created_at,
        )


class TemplateModel(TenantScopedBase):
    """Tenant template (overrides a built-in template with the same id)."""

    __tablename__ = "bulk_templates"

    __table_args__ = (
        UniqueConstraint("tenant_id", "template_id", name="uq_bulk_templates_tenant_template"),
        Index("ix_bulk_templates_category", "tenant_id", "category"),
    )

    template_id: Mapped[str] = mapped_column(String(200), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    variables: Mapped[list | None] = mapped_column(JSON, nullable=True)
    tags: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> Template:
        from automation_batch.domain.templates import parse_variable
        from automation_batch.domain.types import Template, TemplateCategory

        return Template(
            template_id=self.template_id,
            tenant_id=self.tenant_id,
            company_id=self.company_id,
            category=TemplateCategory(self.category),
            name=self.name,
            description=self.description or "",
            content=self.content or {},
            variables=tuple(parse_variable(v) for v in self.variables or ()),
            tags=tuple(self.tags or ()),
            is_default=False,
            is_public=self.is_public,
            usage_count=self.usage_count,
            last_used_at=self.last_used_at,
            created_by=self.created_by,
        )

    def apply_dto(self, dto: Template, actor: str) -> None:
        from automation_batch.domain.templates import variable_to_dict

        self.company_id = dto.company_id
        self.category = dto.category.value
        self.name = dto.name
        self.description = dto.description or None
        self.content = to_jsonable(dto.content)
        self.variables = [variable_to_dict(v) for v in dto.variables]
        self.tags = list(dto.tags)
        self.is_public = dto.is_public
        self.updated_by = actor

    @classmethod
    def from_dto(cls, dto: Template, actor: str) -> TemplateModel:
        model = cls(
            tenant_id=dto.tenant_id,
            template_id=dto.template_id,
            usage_count=0,
            created_by=actor,
        )
        model.apply_dto(dto, actor)
        model.updated_by = None
        return model


class StandardCommentModel(TenantScopedBase):
    """Tenant standard comment (overrides a built-in comment with the same id)."""

    __tablename__ = "bulk_standard_comments"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "comment_id", name="uq_bulk_standard_comments_tenant_comment",
        ),
        Index("ix_bulk_standard_comments_category", "tenant_id", "category"),
    )

    comment_id: Mapped[str] = mapped_column(String(200), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    shortcut: Mapped[str | None] = mapped_column(String(50), nullable=True)
    show_for: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> StandardComment:
        from automation_batch.domain.comments import parse_visibility
        from automation_batch.domain.types import StandardComment

        return StandardComment(
            comment_id=self.comment_id,
            tenant_id=self.tenant_id,
            company_id=self.company_id,
            category=self.category,
            text=self.text,
            shortcut=self.shortcut,
            show_for=parse_visibility(self.show_for),
            is_default=False,
            usage_count=self.usage_count,
            last_used_at=self.last_used_at,
            created_by=self.created_by,
        )

    def apply_dto(self, dto: StandardComment, actor: str) -> None:
        from automation_batch.domain.comments import visibility_to_dict

        self.company_id = dto.company_id
        self.category = dto.category
        self.text = dto.text
        self.shortcut = dto.shortcut
        self.show_for = visibility_to_dict(dto.show_for) or None
        self.updated_by = actor

    @classmethod
    def from_dto(cls, dto: StandardComment, actor: str) -> StandardCommentModel:
        model = cls(
            tenant_id=dto.tenant_id,
            comment_id=dto.comment_id,
            usage_count=0,
            created_by=actor,
        )
        model.apply_dto(dto, actor)
        model.updated_by = None
        return model
