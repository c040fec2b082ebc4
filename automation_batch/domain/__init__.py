"""
automation_batch.domain -- Pure types and functions for bulk work.

ZERO I/O.  All types are frozen dataclasses.
"""

from automation_batch.domain.approval import should_require_approval
from automation_batch.domain.comments import CommentCatalog, comment_matches
from automation_batch.domain.schedule import (
    calculate_next_run,
    schedule_from_dict,
    schedule_to_dict,
    validate_schedule,
)
from automation_batch.domain.templates import TemplateCatalog, merge_template_variables
from automation_batch.domain.types import (
    TERMINAL_STATUSES,
    BulkActionType,
    BulkOperation,
    BulkOperationStatus,
    BulkResults,
    CommentVisibility,
    RecurringJob,
    RecurringRunResult,
    RecurringRunStatus,
    RecurringSchedule,
    ScheduleType,
    SelectionCriteria,
    SelectionType,
    StandardComment,
    TargetError,
    TargetType,
    Template,
    TemplateCategory,
    TemplateVariable,
)

__all__ = [
    "TERMINAL_STATUSES",
    "BulkActionType",
    "BulkOperation",
    "BulkOperationStatus",
    "BulkResults",
    "CommentCatalog",
    "CommentVisibility",
    "RecurringJob",
    "RecurringRunResult",
    "RecurringRunStatus",
    "RecurringSchedule",
    "ScheduleType",
    "SelectionCriteria",
    "SelectionType",
    "StandardComment",
    "TargetError",
    "TargetType",
    "Template",
    "TemplateCategory",
    "TemplateVariable",
    "TemplateCatalog",
    "calculate_next_run",
    "comment_matches",
    "merge_template_variables",
    "schedule_from_dict",
    "schedule_to_dict",
    "should_require_approval",
    "validate_schedule",
]
