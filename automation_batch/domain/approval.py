"""Approval policy for bulk operations (pure)."""

from __future__ import annotations

from automation_kernel.settings import AutomationSettings

from automation_batch.domain.types import BulkActionType

_REVIEW_TYPES = frozenset({
    BulkActionType.APPROVE_DOCUMENTS,
    BulkActionType.REJECT_DOCUMENTS,
})


def should_require_approval(
    operation_type: BulkActionType | str,
    target_count: int,
    settings: AutomationSettings | None = None,
) -> bool:
    """Risk policy.

    - High-risk types (deletion, ledger sync, account remapping) always.
    - More than ``approval_large_batch_threshold`` (50) targets.
    - Bulk approve/reject over ``approval_review_threshold`` (10) targets.
    """
    settings = settings or AutomationSettings()
    operation_type = BulkActionType(operation_type)

    if operation_type.value in settings.high_risk_bulk_types:
        return True
    if target_count > settings.approval_large_batch_threshold:
        return True
    if operation_type in _REVIEW_TYPES and target_count > settings.approval_review_threshold:
        return True
    return False
