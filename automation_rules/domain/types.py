"""
automation_rules.domain.types -- Pure frozen dataclasses for the rule engine.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - Events are immutable facts: AutomationEvent is frozen.
    - Actions within a rule have unique ``order`` values; ``sorted_actions()``
      always yields them in ascending order (gaps allowed).
    - AutomationExecution is built incrementally by the ActionExecutor via
      ``dataclasses.replace`` and is final once ``completed_at`` is set.
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


class EventType(str, Enum):
    """Closed set of domain events producers may emit."""

    # Documents
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    DOCUMENT_CLASSIFIED = "DOCUMENT_CLASSIFIED"
    DOCUMENT_APPROVED = "DOCUMENT_APPROVED"
    DOCUMENT_REJECTED = "DOCUMENT_REJECTED"
    DOCUMENT_SYNCED = "DOCUMENT_SYNCED"
    # Approvals
    APPROVAL_REQUESTED = "APPROVAL_REQUESTED"
    APPROVAL_GRANTED = "APPROVAL_GRANTED"
    APPROVAL_REJECTED = "APPROVAL_REJECTED"
    APPROVAL_ESCALATED = "APPROVAL_ESCALATED"
    # Deadlines
    DEADLINE_APPROACHING = "DEADLINE_APPROACHING"
    DEADLINE_REACHED = "DEADLINE_REACHED"
    DEADLINE_PASSED = "DEADLINE_PASSED"
    # Playbooks
    PLAYBOOK_STARTED = "PLAYBOOK_STARTED"
    PLAYBOOK_STEP_COMPLETED = "PLAYBOOK_STEP_COMPLETED"
    PLAYBOOK_COMPLETED = "PLAYBOOK_COMPLETED"
    PLAYBOOK_BLOCKED = "PLAYBOOK_BLOCKED"
    # NAV
    NAV_CALCULATED = "NAV_CALCULATED"
    NAV_PUBLISHED = "NAV_PUBLISHED"
    NAV_CORRECTION = "NAV_CORRECTION"
    # System
    SYNC_FAILED = "SYNC_FAILED"
    ANOMALY_DETECTED = "ANOMALY_DETECTED"
    THRESHOLD_EXCEEDED = "THRESHOLD_EXCEEDED"
    BULK_OPERATION_COMPLETED = "BULK_OPERATION_COMPLETED"
    # Periods
    PERIOD_CLOSING_DUE = "PERIOD_CLOSING_DUE"
    PERIOD_CLOSED = "PERIOD_CLOSED"
    QUARTER_END = "QUARTER_END"
    YEAR_END = "YEAR_END"


class ActionType(str, Enum):
    """Closed set of side-effecting steps a rule can run."""

    CREATE_TASK = "CREATE_TASK"
    SEND_NOTIFICATION = "SEND_NOTIFICATION"
    SEND_EMAIL = "SEND_EMAIL"
    SEND_SLACK = "SEND_SLACK"
    SEND_TEAMS = "SEND_TEAMS"
    START_PLAYBOOK = "START_PLAYBOOK"
    ASSIGN_USER = "ASSIGN_USER"
    ESCALATE = "ESCALATE"
    CREATE_APPROVAL_REQUEST = "CREATE_APPROVAL_REQUEST"
    UPDATE_STATUS = "UPDATE_STATUS"
    WEBHOOK = "WEBHOOK"
    SCHEDULE_REMINDER = "SCHEDULE_REMINDER"


class ConditionOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    REGEX = "regex"


class ExecutionStatus(str, Enum):
    """Lifecycle of one (rule, event) execution."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"  # Every action succeeded or was skipped
    FAILED = "FAILED"  # Pipeline aborted by a continue_on_error=False action
    PARTIAL = "PARTIAL"  # Ran to the end with at least one failed action


class ActionResultStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class ScheduledActionStatus(str, Enum):
    """Lifecycle of a durable timer record."""

    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


# =============================================================================
# Rule configuration
# =============================================================================


@dataclass(frozen=True)
class RuleCondition:
    """Predicate over a dot-path into event data."""

    field: str
    operator: ConditionOperator | str
    value: Any = None


@dataclass(frozen=True)
class AutomationAction:
    """One step of a rule's action pipeline.

    ``config`` string values may carry ``{path}`` placeholders that are
    resolved against the event data at dispatch time.
    """

    action_id: str
    action_type: ActionType
    order: int
    config: dict[str, Any] = field(default_factory=dict)
    condition: RuleCondition | None = None
    delay_minutes: int | None = None
    continue_on_error: bool = False


@dataclass(frozen=True)
class RuleTrigger:
    event: EventType
    conditions: tuple[RuleCondition, ...] = ()


@dataclass(frozen=True)
class RuleSettings:
    run_once: bool = False
    cooldown_minutes: int | None = None
    max_executions_per_hour: int | None = None
    retry_on_failure: bool = False
    max_retries: int = 0


@dataclass(frozen=True)
class AutomationRule:
    """Immutable snapshot of an automation rule.

    ``company_id`` None means the rule applies to every company of the
    tenant.  ``last_executed_at`` / ``execution_count`` are bookkeeping read
    from the rule-state table, not part of the rule definition.
    """

    rule_id: str
    tenant_id: str
    name: str
    trigger: RuleTrigger
    actions: tuple[AutomationAction, ...] = ()
    settings: RuleSettings = field(default_factory=RuleSettings)
    company_id: str | None = None
    description: str = ""
    enabled: bool = True
    created_by: str = "system"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_executed_at: datetime | None = None
    execution_count: int = 0
    is_default: bool = False

    def sorted_actions(self) -> tuple[AutomationAction, ...]:
        return tuple(sorted(self.actions, key=lambda a: a.order))


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class AutomationEventDraft:
    """What a producer hands to ``AutomationEngine.emit()``."""

    tenant_id: str
    company_id: str
    event_type: EventType
    source: str
    data: dict[str, Any] = field(default_factory=dict)
    correlation_id: str | None = None


@dataclass(frozen=True)
class AutomationEvent:
    """Immutable fact, stamped with id and timestamp at emit time."""

    event_id: UUID
    tenant_id: str
    company_id: str
    event_type: EventType
    source: str
    timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)
    correlation_id: str | None = None


# =============================================================================
# Executions
# =============================================================================


@dataclass(frozen=True)
class ActionResult:
    action_id: str
    status: ActionResultStatus
    executed_at: datetime
    result: Any = None
    error: str | None = None
    attempts: int = 0


@dataclass(frozen=True)
class AutomationExecution:
    """Outcome of running one rule against one event."""

    execution_id: UUID
    rule_id: str
    event_id: UUID
    tenant_id: str
    company_id: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime | None = None
    action_results: tuple[ActionResult, ...] = ()
    error: str | None = None

    @property
    def failed_actions(self) -> tuple[ActionResult, ...]:
        return tuple(
            r for r in self.action_results
            if r.status == ActionResultStatus.FAILED
        )


@dataclass(frozen=True)
class ScheduledAction:
    """Durable "wake me at T" record for a delayed action or reminder."""

    scheduled_id: UUID
    execution_id: UUID | None
    rule_id: str
    tenant_id: str
    company_id: str
    action: AutomationAction
    event: AutomationEvent
    scheduled_for: datetime
    status: ScheduledActionStatus = ScheduledActionStatus.PENDING
    error: str | None = None
    completed_at: datetime | None = None
