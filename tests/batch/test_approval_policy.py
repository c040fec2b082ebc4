"""
Tests for automation_batch.domain.approval.should_require_approval.
"""

import pytest

from automation_kernel.settings import AutomationSettings
from automation_batch.domain.approval import should_require_approval
from automation_batch.domain.types import BulkActionType


class TestApprovalPolicy:
    @pytest.mark.parametrize("operation_type", [
        BulkActionType.DELETE_DOCUMENTS,
        BulkActionType.SYNC_TO_LEDGER,
        BulkActionType.UPDATE_ACCOUNTS,
    ])
    def test_high_risk_types_always_gated(self, operation_type):
        assert should_require_approval(operation_type, 1) is True

    @pytest.mark.parametrize("count,expected", [(5, False), (10, False), (11, True)])
    def test_bulk_approve_review_threshold(self, count, expected):
        assert should_require_approval(BulkActionType.APPROVE_DOCUMENTS, count) is expected

    def test_bulk_reject_shares_review_threshold(self):
        assert should_require_approval(BulkActionType.REJECT_DOCUMENTS, 11) is True

    @pytest.mark.parametrize("count,expected", [(50, False), (51, True)])
    def test_large_batch_threshold(self, count, expected):
        assert should_require_approval(BulkActionType.ADD_TAG, count) is expected

    def test_low_risk_small_batch_not_gated(self):
        assert should_require_approval(BulkActionType.CLASSIFY_DOCUMENTS, 30) is False

    def test_accepts_string_type(self):
        assert should_require_approval("DELETE_DOCUMENTS", 1) is True

    def test_thresholds_come_from_settings(self):
        settings = AutomationSettings(
            approval_large_batch_threshold=5,
            high_risk_bulk_types=(),
        )
        assert should_require_approval(BulkActionType.ADD_TAG, 6, settings) is True
        assert should_require_approval(BulkActionType.DELETE_DOCUMENTS, 1, settings) is False

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            should_require_approval("SHRED_DOCUMENTS", 1)
