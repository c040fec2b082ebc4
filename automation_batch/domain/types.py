"""
automation_batch.domain.types -- Pure frozen dataclasses for bulk work.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - BulkOperation.target_ids is duplicate-free (deduplicated at creation).
    - BulkResults: successful + failed + skipped == processed targets.
    - BulkOperation.progress is 0-100 and never decreases.
    - RecurringJob.next_run_at is strictly after the time it was computed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class BulkActionType(str, Enum):
    APPROVE_DOCUMENTS = "APPROVE_DOCUMENTS"
    REJECT_DOCUMENTS = "REJECT_DOCUMENTS"
    CLASSIFY_DOCUMENTS = "CLASSIFY_DOCUMENTS"
    SYNC_TO_LEDGER = "SYNC_TO_LEDGER"  # External accounting ledger
    UPDATE_ACCOUNTS = "UPDATE_ACCOUNTS"
    UPDATE_COST_CENTER = "UPDATE_COST_CENTER"
    ADD_TAG = "ADD_TAG"
    REMOVE_TAG = "REMOVE_TAG"
    ASSIGN_USER = "ASSIGN_USER"
    CHANGE_STATUS = "CHANGE_STATUS"
    DELETE_DOCUMENTS = "DELETE_DOCUMENTS"
    ARCHIVE_DOCUMENTS = "ARCHIVE_DOCUMENTS"
    EXPORT_DOCUMENTS = "EXPORT_DOCUMENTS"
    APPLY_TEMPLATE = "APPLY_TEMPLATE"


class TargetType(str, Enum):
    DOCUMENT = "document"
    TRANSACTION = "transaction"
    SUPPLIER = "supplier"
    CUSTOMER = "customer"
    USER = "user"
    TASK = "task"


class BulkOperationStatus(str, Enum):
    """Bulk operation lifecycle.

    PENDING_APPROVAL -> PENDING -> RUNNING -> COMPLETED | FAILED | CANCELLED
    PENDING_APPROVAL / PENDING -> CANCELLED
    """

    PENDING_APPROVAL = "PENDING_APPROVAL"
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"  # Ran to the end; per-target failures in results
    FAILED = "FAILED"  # Unexpected error outside per-target handling
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({
    BulkOperationStatus.COMPLETED,
    BulkOperationStatus.FAILED,
    BulkOperationStatus.CANCELLED,
})


class ScheduleType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class SelectionType(str, Enum):
    FIXED = "fixed"  # Explicit id list
    QUERY = "query"  # Resolved by the target-query collaborator at run time


class RecurringRunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class TemplateCategory(str, Enum):
    INVOICE_CLASSIFICATION = "INVOICE_CLASSIFICATION"
    EXPENSE_REPORT = "EXPENSE_REPORT"
    JOURNAL_ENTRY = "JOURNAL_ENTRY"
    RECONCILIATION = "RECONCILIATION"
    REPORT = "REPORT"
    EMAIL = "EMAIL"
    COMMENT = "COMMENT"
    CHECKLIST = "CHECKLIST"


# =============================================================================
# Bulk operations
# =============================================================================


@dataclass(frozen=True)
class TargetError:
    target_id: str
    error: str


@dataclass(frozen=True)
class BulkResults:
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    errors: tuple[TargetError, ...] = ()

    @property
    def processed(self) -> int:
        return self.successful + self.failed + self.skipped


@dataclass(frozen=True)
class BulkOperation:
    """Immutable snapshot of a bulk operation."""

    operation_id: UUID
    tenant_id: str
    company_id: str
    operation_type: BulkActionType
    name: str
    target_type: TargetType
    target_ids: tuple[str, ...]
    status: BulkOperationStatus
    action: dict[str, Any] = field(default_factory=dict)
    progress: int = 0
    results: BulkResults = field(default_factory=BulkResults)
    requires_approval: bool = False
    description: str | None = None
    approval_id: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    created_by: str = "system"
    created_by_name: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    scheduled_for: datetime | None = None
    cancel_requested: bool = False
    idempotency_key: str | None = None
    recurring_job_id: UUID | None = None
    error: str | None = None

    @property
    def target_count(self) -> int:
        return len(self.target_ids)


# =============================================================================
# Recurring jobs
# =============================================================================


@dataclass(frozen=True)
class RecurringSchedule:
    """Calendar cadence.

    ``time`` is ``HH:MM``; ``day_of_week`` 0=Sunday..6=Saturday;
    ``day_of_month`` 1-31 (clamped to the month length); ``month_of_year``
    1-12.  Calendar arithmetic happens in ``timezone``.
    """

    schedule_type: ScheduleType
    time: str
    day_of_week: int | None = None
    day_of_month: int | None = None
    month_of_year: int | None = None
    timezone: str = "UTC"


@dataclass(frozen=True)
class SelectionCriteria:
    selection_type: SelectionType
    fixed_ids: tuple[str, ...] = ()
    query: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RecurringJob:
    job_id: UUID
    tenant_id: str
    company_id: str
    name: str
    action_type: BulkActionType
    selection_criteria: SelectionCriteria
    schedule: RecurringSchedule
    next_run_at: datetime
    action: dict[str, Any] = field(default_factory=dict)
    description: str = ""
    target_type: TargetType = TargetType.DOCUMENT
    enabled: bool = True
    last_run_at: datetime | None = None
    last_run_status: RecurringRunStatus | None = None
    last_operation_id: UUID | None = None
    notify_on_complete: bool = False
    notify_on_failure: bool = True
    notify_recipients: tuple[str, ...] = ()
    created_by: str = "system"
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class RecurringRunResult:
    """Outcome of one ``execute_recurring_job`` call."""

    job: RecurringJob
    status: RecurringRunStatus
    operation: BulkOperation | None = None
    error: str | None = None


# =============================================================================
# Templates
# =============================================================================


@dataclass(frozen=True)
class TemplateVariable:
    name: str
    label: str
    var_type: str = "text"
    required: bool = False
    default_value: Any = None
    options: tuple[dict[str, Any], ...] = ()
    validation: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Template:
    template_id: str
    tenant_id: str
    category: TemplateCategory
    name: str
    description: str = ""
    content: dict[str, Any] = field(default_factory=dict)
    variables: tuple[TemplateVariable, ...] = ()
    tags: tuple[str, ...] = ()
    company_id: str | None = None
    is_default: bool = False
    is_public: bool = True
    usage_count: int = 0
    last_used_at: datetime | None = None
    created_by: str = "system"


# =============================================================================
# Standard comments
# =============================================================================


@dataclass(frozen=True)
class CommentVisibility:
    """Where a standard comment is offered.  An empty tuple means any."""

    document_types: tuple[str, ...] = ()
    statuses: tuple[str, ...] = ()
    actions: tuple[str, ...] = ()

    def allows_action(self, action: str) -> bool:
        return not self.actions or action in self.actions


@dataclass(frozen=True)
class StandardComment:
    """Reusable review comment, picked by ``shortcut`` (e.g. ``/ok``)."""

    comment_id: str
    tenant_id: str
    category: str
    text: str
    shortcut: str | None = None
    company_id: str | None = None
    show_for: CommentVisibility = field(default_factory=CommentVisibility)
    is_default: bool = False
    usage_count: int = 0
    last_used_at: datetime | None = None
    created_by: str = "system"
