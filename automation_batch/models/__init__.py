"""
automation_batch.models -- ORM models for bulk-work persistence.

Architecture: automation_batch/models. Imports from automation_kernel.db.base
and automation_batch.domain only.
"""

from automation_batch.models.batch import (
    BulkOperationModel,
    RecurringJobModel,
    StandardCommentModel,
    TemplateModel,
)

__all__ = [
    "BulkOperationModel",
    "RecurringJobModel",
    "StandardCommentModel",
    "TemplateModel",
]
