"""
automation_batch.services -- Stateful bulk-work services.

All services take an SQLAlchemy Session and an injected Clock; only the
scheduler tick commits.
"""

from automation_batch.services.bulk_operations import (
    BulkOperationLauncher,
    BulkOperationService,
    calculate_progress,
)
from automation_batch.services.comments import StandardCommentService
from automation_batch.services.recurring_jobs import RecurringJobService, TargetQuery
from automation_batch.services.scheduler import AutomationScheduler, TickResult
from automation_batch.services.templates import TemplateService

__all__ = [
    "AutomationScheduler",
    "BulkOperationLauncher",
    "BulkOperationService",
    "RecurringJobService",
    "StandardCommentService",
    "TargetQuery",
    "TemplateService",
    "TickResult",
    "calculate_progress",
]
