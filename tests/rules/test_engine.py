"""
Tests for automation_rules.services.engine.AutomationEngine.

End-to-end over in-memory SQLite with the packaged default rules:
emit -> match -> gates (cooldown, hourly rate limit, run once) -> action
pipeline -> bookkeeping.  Collaborators are recording fakes.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from automation_kernel.exceptions import RuleBookkeepingError
from automation_kernel.logging_config import LogContext
from automation_kernel.settings import AutomationSettings
from automation_rules.actions.handlers import default_action_registry
from automation_rules.defaults import load_default_catalog
from automation_rules.domain.rules import RuleCatalog
from automation_rules.domain.types import (
    ActionResultStatus,
    AutomationEvent,
    AutomationEventDraft,
    EventType,
    ExecutionStatus,
)
from automation_rules.models.automation import AutomationEventModel, AutomationTaskModel
from automation_rules.services.engine import AutomationEngine

from tests.conftest import COMPANY, TENANT, RecordingChatOps, messages


def _make_engine(session, clock, notifier, chatops, gateway, catalog=None):
    registry = default_action_registry(notifier=notifier, chatops=chatops, gateway=gateway)
    return AutomationEngine(
        session,
        clock,
        registry,
        catalog=catalog if catalog is not None else load_default_catalog(),
        settings=AutomationSettings(),
        sleep=lambda seconds: None,
    )


@pytest.fixture
def engine_service(session, clock, notifier, chatops, gateway):
    return _make_engine(session, clock, notifier, chatops, gateway)


def _draft(event_type, data=None, company_id=COMPANY, correlation_id=None):
    return AutomationEventDraft(
        tenant_id=TENANT,
        company_id=company_id,
        event_type=event_type,
        source="test",
        data=data or {},
        correlation_id=correlation_id,
    )


def _upload(doc_type="RECEIPT"):
    return _draft(
        EventType.DOCUMENT_UPLOADED,
        {"docType": doc_type, "supplier": "Acme", "amount": 1200},
    )


# =============================================================================
# Matching and pipeline
# =============================================================================


class TestEmit:
    def test_matching_upload_runs_default_rule(self, engine_service, session, notifier):
        executions = engine_service.emit(_upload("RECEIPT"))

        assert len(executions) == 1
        execution = executions[0]
        assert execution.rule_id == "rule-document-uploaded"
        assert execution.status == ExecutionStatus.COMPLETED
        assert [r.status for r in execution.action_results] == [
            ActionResultStatus.SUCCESS,
            ActionResultStatus.SUCCESS,
        ]
        assert session.scalar(select(func.count(AutomationTaskModel.id))) == 1
        assert notifier.sent[0].message == (
            "A new invoice from Acme for 1200 has been uploaded."
        )

    def test_non_matching_upload_produces_nothing(self, engine_service, session, notifier):
        executions = engine_service.emit(_upload("OTHER"))

        assert executions == ()
        assert notifier.sent == []
        assert session.scalar(select(func.count(AutomationTaskModel.id))) == 0

    def test_event_is_recorded_even_without_match(self, engine_service, session):
        engine_service.emit(_upload("OTHER"))

        stored = session.scalars(select(AutomationEventModel)).all()
        assert len(stored) == 1
        assert stored[0].to_dto().event_type == EventType.DOCUMENT_UPLOADED

    def test_event_type_without_rules(self, engine_service):
        assert engine_service.emit(_draft(EventType.QUARTER_END)) == ()

    def test_disabled_rule_never_matches(self, engine_service):
        engine_service.store.set_enabled(TENANT, "rule-document-uploaded", False, "admin")
        assert engine_service.emit(_upload("INVOICE")) == ()

    def test_execution_is_persisted(self, engine_service):
        execution = engine_service.emit(_upload("INVOICE"))[0]

        stored = engine_service.recorder.get_execution(execution.execution_id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.completed_at is not None
        assert len(stored.action_results) == 2

    def test_aborting_action_fails_execution(self, session, clock, notifier, gateway):
        failing_chatops = RecordingChatOps(success=False, errors=("channel archived",))
        engine = _make_engine(session, clock, notifier, failing_chatops, gateway)

        executions = engine.emit(
            _draft(EventType.SYNC_FAILED, {"service": "ledger", "error": "timeout"})
        )

        execution = executions[0]
        assert execution.status == ExecutionStatus.FAILED
        assert len(execution.action_results) == 1
        assert "channel archived" in execution.error
        assert session.scalar(select(func.count(AutomationTaskModel.id))) == 0

    def test_slack_message_is_interpolated(self, engine_service, chatops):
        engine_service.emit(
            _draft(EventType.SYNC_FAILED, {"service": "ledger", "error": "timeout"})
        )
        assert chatops.sent[0].message == "Synchronization with ledger failed: timeout"
        assert chatops.sent[0].channel == "slack"
        assert chatops.sent[0].category == "alerts"

    def test_per_action_condition_skips(self, engine_service, chatops):
        execution = engine_service.emit(
            _draft(EventType.DEADLINE_APPROACHING, {"title": "VAT return", "daysUntil": 7})
        )[0]

        statuses = {r.action_id: r.status for r in execution.action_results}
        assert statuses == {
            "action-1": ActionResultStatus.SUCCESS,
            "action-2": ActionResultStatus.SKIPPED,
        }
        assert chatops.sent == []
        assert execution.status == ExecutionStatus.COMPLETED


# =============================================================================
# Gates
# =============================================================================


class TestGates:
    def test_run_once_per_event(self, engine_service, clock):
        event = AutomationEvent(
            event_id=uuid4(),
            tenant_id=TENANT,
            company_id=COMPANY,
            event_type=EventType.DOCUMENT_UPLOADED,
            source="test",
            timestamp=clock.now_utc(),
            data={"docType": "INVOICE"},
        )
        assert len(engine_service.process_event(event)) == 1
        assert engine_service.process_event(event) == ()

    def test_run_once_does_not_block_new_events(self, engine_service):
        assert len(engine_service.emit(_upload("INVOICE"))) == 1
        assert len(engine_service.emit(_upload("INVOICE"))) == 1

    def test_cooldown_suppresses_then_allows(self, engine_service, clock, captured_logs):
        sync_failed = _draft(EventType.SYNC_FAILED, {"service": "ledger", "error": "x"})

        assert len(engine_service.emit(sync_failed)) == 1
        clock.advance_minutes(10)
        assert engine_service.emit(sync_failed) == ()
        clock.advance_minutes(21)
        assert len(engine_service.emit(sync_failed)) == 1

        assert "rule_suppressed_cooldown" in messages(captured_logs())

    def test_hourly_rate_limit(self, session, clock, notifier, chatops, gateway):
        catalog = RuleCatalog.from_dicts([{
            "id": "rule-limited",
            "trigger": {"event": "ANOMALY_DETECTED"},
            "actions": [{"id": "a1", "type": "SEND_NOTIFICATION", "order": 1,
                         "config": {"title": "Anomaly"}}],
            "settings": {"max_executions_per_hour": 2},
        }])
        engine = _make_engine(session, clock, notifier, chatops, gateway, catalog=catalog)
        anomaly = _draft(EventType.ANOMALY_DETECTED)

        results = []
        for _ in range(3):
            results.append(len(engine.emit(anomaly)))
            clock.advance_minutes(1)
        assert results == [1, 1, 0]

        clock.advance_minutes(60)
        assert len(engine.emit(anomaly)) == 1

    def test_gated_rule_has_no_side_effects(self, engine_service, clock, chatops):
        sync_failed = _draft(EventType.SYNC_FAILED, {"service": "ledger", "error": "x"})
        engine_service.emit(sync_failed)
        sent_before = len(chatops.sent)

        engine_service.emit(sync_failed)
        assert len(chatops.sent) == sent_before


# =============================================================================
# Bookkeeping and logging
# =============================================================================


class TestBookkeeping:
    def test_execution_updates_rule_state(self, engine_service, clock):
        engine_service.emit(_upload("INVOICE"))

        rule = engine_service.store.get_rule(TENANT, "rule-document-uploaded")
        assert rule.execution_count == 1
        assert rule.last_executed_at == clock.now_utc()

    def test_bookkeeping_failure_is_swallowed(self, engine_service, monkeypatch, captured_logs):
        def _boom(tenant_id, rule_id, executed_at):
            raise RuleBookkeepingError(tenant_id, rule_id, "db unavailable")

        monkeypatch.setattr(engine_service.store, "record_execution", _boom)

        executions = engine_service.emit(_upload("INVOICE"))

        assert len(executions) == 1
        assert executions[0].status == ExecutionStatus.COMPLETED
        record = next(r for r in captured_logs() if r["message"] == "rule_bookkeeping_failed")
        assert record["exc_code"] == "RULE_BOOKKEEPING_FAILED"


class TestLogging:
    def test_context_fields_bound_during_processing(self, engine_service, captured_logs):
        engine_service.emit(_draft(
            EventType.DOCUMENT_UPLOADED, {"docType": "INVOICE"}, correlation_id="req-42",
        ))

        matched = next(r for r in captured_logs() if r["message"] == "rules_matched")
        assert matched["tenant_id"] == TENANT
        assert matched["company_id"] == COMPANY
        assert matched["correlation_id"] == "req-42"
        assert matched["rule_ids"] == ["rule-document-uploaded"]

    def test_context_cleared_after_emit(self, engine_service):
        engine_service.emit(_upload("INVOICE"))
        assert LogContext.get_all() == {}

    def test_execution_completed_logged(self, engine_service, captured_logs):
        engine_service.emit(_upload("INVOICE"))

        done = next(r for r in captured_logs() if r["message"] == "rule_execution_completed")
        assert done["status"] == "COMPLETED"
        assert done["action_count"] == 2
        assert done["rule_id"] == "rule-document-uploaded"
