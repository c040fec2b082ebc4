"""
Tests for automation_rules.services.action_executor.ActionExecutor.

Uses scripted handlers registered in a private ActionRegistry to exercise
ordering, abort vs continue, per-action conditions, delays, retry with
backoff and SAVEPOINT isolation of failed attempts.
"""

from datetime import timedelta
from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from automation_kernel.settings import AutomationSettings
from automation_rules.actions.base import ActionContext, ActionRegistry
from automation_rules.domain.types import (
    ActionResultStatus,
    ActionType,
    AutomationAction,
    AutomationEvent,
    AutomationRule,
    EventType,
    ExecutionStatus,
    RuleCondition,
    RuleSettings,
    RuleTrigger,
    ScheduledActionStatus,
)
from automation_rules.models.automation import AutomationTaskModel, ScheduledActionModel
from automation_rules.services.action_executor import ActionExecutor
from automation_rules.services.recorder import ExecutionRecorder

from tests.conftest import COMPANY, TENANT


# =============================================================================
# Scripted handlers
# =============================================================================


class ScriptedHandler:
    """Fails the first ``fail_times`` calls, then succeeds."""

    def __init__(self, action_type: ActionType, fail_times: int = 0, write_row: bool = False):
        self._action_type = action_type
        self.fail_times = fail_times
        self.write_row = write_row
        self.calls: list[dict[str, Any]] = []

    @property
    def action_type(self) -> ActionType:
        return self._action_type

    def execute(self, config: dict[str, Any], context: ActionContext) -> dict[str, Any]:
        self.calls.append(config)
        if self.write_row:
            context.session.add(AutomationTaskModel(
                tenant_id=context.tenant_id,
                company_id=context.company_id,
                title="partial write",
                assignee_type="role",
                priority="low",
                status="PENDING",
                due_date=context.clock.now_utc(),
                created_by="test",
                created_at=context.clock.now_utc(),
                updated_at=context.clock.now_utc(),
            ))
            context.session.flush()
        if len(self.calls) <= self.fail_times:
            raise RuntimeError(f"attempt {len(self.calls)} failed")
        return {"ok": True, "config": config}


def _action(action_id, action_type, order, **kwargs):
    return AutomationAction(action_id=action_id, action_type=action_type, order=order, **kwargs)


def _rule(actions, settings=None):
    return AutomationRule(
        rule_id="rule-x",
        tenant_id=TENANT,
        name="Rule X",
        trigger=RuleTrigger(event=EventType.DOCUMENT_UPLOADED),
        actions=tuple(actions),
        settings=settings or RuleSettings(),
    )


@pytest.fixture
def event(clock):
    return AutomationEvent(
        event_id=uuid4(),
        tenant_id=TENANT,
        company_id=COMPANY,
        event_type=EventType.DOCUMENT_UPLOADED,
        source="test",
        timestamp=clock.now_utc(),
        data={"docType": "INVOICE", "amount": 900, "supplier": "Acme"},
    )


@pytest.fixture
def sleeps():
    return []


def _executor(session, clock, handlers, sleeps, backoff=0.0):
    registry = ActionRegistry()
    for handler in handlers:
        registry.register(handler)
    settings = AutomationSettings(retry_backoff_seconds=backoff)
    recorder = ExecutionRecorder(session, clock, settings)
    return ActionExecutor(session, clock, registry, recorder, settings, sleep=sleeps.append)


# =============================================================================
# Pipeline semantics
# =============================================================================


class TestPipeline:
    def test_actions_run_in_order(self, session, clock, event, sleeps):
        task = ScriptedHandler(ActionType.CREATE_TASK)
        notify = ScriptedHandler(ActionType.SEND_NOTIFICATION)
        executor = _executor(session, clock, [task, notify], sleeps)
        rule = _rule([
            _action("second", ActionType.SEND_NOTIFICATION, 20),
            _action("first", ActionType.CREATE_TASK, 5),
        ])

        execution = executor.execute(rule, event)

        assert [r.action_id for r in execution.action_results] == ["first", "second"]
        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.error is None

    def test_abort_stops_pipeline(self, session, clock, event, sleeps):
        handlers = [
            ScriptedHandler(ActionType.CREATE_TASK),
            ScriptedHandler(ActionType.SEND_EMAIL, fail_times=99),
            ScriptedHandler(ActionType.SEND_NOTIFICATION),
        ]
        executor = _executor(session, clock, handlers, sleeps)
        rule = _rule([
            _action("a1", ActionType.CREATE_TASK, 1),
            _action("a2", ActionType.SEND_EMAIL, 2, continue_on_error=False),
            _action("a3", ActionType.SEND_NOTIFICATION, 3),
        ])

        execution = executor.execute(rule, event)

        assert execution.status == ExecutionStatus.FAILED
        assert [r.status for r in execution.action_results] == [
            ActionResultStatus.SUCCESS,
            ActionResultStatus.FAILED,
        ]
        assert execution.error == "attempt 1 failed"
        assert handlers[2].calls == []

    def test_continue_on_error_yields_partial(self, session, clock, event, sleeps):
        handlers = [
            ScriptedHandler(ActionType.CREATE_TASK),
            ScriptedHandler(ActionType.SEND_EMAIL, fail_times=99),
            ScriptedHandler(ActionType.SEND_NOTIFICATION),
        ]
        executor = _executor(session, clock, handlers, sleeps)
        rule = _rule([
            _action("a1", ActionType.CREATE_TASK, 1),
            _action("a2", ActionType.SEND_EMAIL, 2, continue_on_error=True),
            _action("a3", ActionType.SEND_NOTIFICATION, 3),
        ])

        execution = executor.execute(rule, event)

        assert execution.status == ExecutionStatus.PARTIAL
        assert [r.status for r in execution.action_results] == [
            ActionResultStatus.SUCCESS,
            ActionResultStatus.FAILED,
            ActionResultStatus.SUCCESS,
        ]
        assert execution.error is None
        assert [r.action_id for r in execution.failed_actions] == ["a2"]

    def test_false_action_condition_skips(self, session, clock, event, sleeps):
        handler = ScriptedHandler(ActionType.SEND_SLACK)
        executor = _executor(session, clock, [handler], sleeps)
        rule = _rule([
            _action(
                "a1", ActionType.SEND_SLACK, 1,
                condition=RuleCondition(field="amount", operator="gt", value=10_000),
            ),
        ])

        execution = executor.execute(rule, event)

        assert execution.action_results[0].status == ActionResultStatus.SKIPPED
        assert execution.status == ExecutionStatus.COMPLETED
        assert handler.calls == []

    def test_config_is_interpolated(self, session, clock, event, sleeps):
        handler = ScriptedHandler(ActionType.SEND_NOTIFICATION)
        executor = _executor(session, clock, [handler], sleeps)
        rule = _rule([
            _action("a1", ActionType.SEND_NOTIFICATION, 1,
                    config={"title": "{docType} from {supplier}", "unknown": "{nope}"}),
        ])

        executor.execute(rule, event)

        assert handler.calls[0] == {"title": "INVOICE from Acme", "unknown": "{nope}"}

    def test_unregistered_action_fails_without_retry(self, session, clock, event, sleeps):
        executor = _executor(session, clock, [], sleeps)
        rule = _rule(
            [_action("a1", ActionType.WEBHOOK, 1)],
            settings=RuleSettings(retry_on_failure=True, max_retries=3),
        )

        execution = executor.execute(rule, event)

        result = execution.action_results[0]
        assert result.status == ActionResultStatus.FAILED
        assert result.attempts == 0
        assert "No handler registered" in result.error

    def test_execution_persisted_complete(self, session, clock, event, sleeps):
        executor = _executor(session, clock, [ScriptedHandler(ActionType.CREATE_TASK)], sleeps)
        execution = executor.execute(_rule([_action("a1", ActionType.CREATE_TASK, 1)]), event)

        recorder = ExecutionRecorder(session, clock)
        stored = recorder.get_execution(execution.execution_id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.action_results[0].result == {"ok": True, "config": {}}

    def test_completed_execution_cannot_be_overwritten(self, session, clock, event, sleeps):
        executor = _executor(session, clock, [ScriptedHandler(ActionType.CREATE_TASK)], sleeps)
        execution = executor.execute(_rule([_action("a1", ActionType.CREATE_TASK, 1)]), event)

        with pytest.raises(ValueError, match="already complete"):
            ExecutionRecorder(session, clock).complete_execution(execution)


# =============================================================================
# Delays
# =============================================================================


class TestDelayedActions:
    def test_delay_schedules_instead_of_running(self, session, clock, event, sleeps):
        handler = ScriptedHandler(ActionType.SEND_EMAIL)
        executor = _executor(session, clock, [handler], sleeps)
        rule = _rule([_action("a1", ActionType.SEND_EMAIL, 1, delay_minutes=45)])

        execution = executor.execute(rule, event)

        result = execution.action_results[0]
        assert result.status == ActionResultStatus.SUCCESS
        assert result.result["scheduled"] is True
        assert handler.calls == []

        timer = session.scalars(select(ScheduledActionModel)).one()
        assert timer.status == ScheduledActionStatus.PENDING.value
        assert timer.scheduled_for == clock.now_utc() + timedelta(minutes=45)
        assert timer.expires_at == timer.scheduled_for + timedelta(hours=24)

    def test_zero_delay_runs_inline(self, session, clock, event, sleeps):
        handler = ScriptedHandler(ActionType.SEND_EMAIL)
        executor = _executor(session, clock, [handler], sleeps)

        executor.execute(_rule([_action("a1", ActionType.SEND_EMAIL, 1, delay_minutes=0)]), event)

        assert len(handler.calls) == 1


# =============================================================================
# Retry
# =============================================================================


class TestRetry:
    def test_no_retry_by_default(self, session, clock, event, sleeps):
        handler = ScriptedHandler(ActionType.CREATE_TASK, fail_times=1)
        executor = _executor(session, clock, [handler], sleeps)

        execution = executor.execute(_rule([_action("a1", ActionType.CREATE_TASK, 1)]), event)

        assert execution.action_results[0].status == ActionResultStatus.FAILED
        assert execution.action_results[0].attempts == 1
        assert len(handler.calls) == 1

    def test_retry_until_success(self, session, clock, event, sleeps):
        handler = ScriptedHandler(ActionType.CREATE_TASK, fail_times=2)
        executor = _executor(session, clock, [handler], sleeps)
        rule = _rule(
            [_action("a1", ActionType.CREATE_TASK, 1)],
            settings=RuleSettings(retry_on_failure=True, max_retries=3),
        )

        execution = executor.execute(rule, event)

        result = execution.action_results[0]
        assert result.status == ActionResultStatus.SUCCESS
        assert result.attempts == 3
        assert sleeps == []

    def test_retry_exhausted(self, session, clock, event, sleeps):
        handler = ScriptedHandler(ActionType.CREATE_TASK, fail_times=99)
        executor = _executor(session, clock, [handler], sleeps)
        rule = _rule(
            [_action("a1", ActionType.CREATE_TASK, 1)],
            settings=RuleSettings(retry_on_failure=True, max_retries=2),
        )

        execution = executor.execute(rule, event)

        assert execution.action_results[0].attempts == 3
        assert execution.action_results[0].error == "attempt 3 failed"
        assert execution.status == ExecutionStatus.FAILED

    def test_exponential_backoff(self, session, clock, event, sleeps):
        handler = ScriptedHandler(ActionType.CREATE_TASK, fail_times=99)
        executor = _executor(session, clock, [handler], sleeps, backoff=0.5)
        rule = _rule(
            [_action("a1", ActionType.CREATE_TASK, 1)],
            settings=RuleSettings(retry_on_failure=True, max_retries=2),
        )

        executor.execute(rule, event)

        assert sleeps == [0.5, 1.0]

    def test_failed_attempt_rolls_back_its_writes(self, session, clock, event, sleeps):
        handler = ScriptedHandler(ActionType.CREATE_TASK, fail_times=1, write_row=True)
        executor = _executor(session, clock, [handler], sleeps)
        rule = _rule(
            [_action("a1", ActionType.CREATE_TASK, 1)],
            settings=RuleSettings(retry_on_failure=True, max_retries=1),
        )

        executor.execute(rule, event)

        assert session.scalar(select(func.count(AutomationTaskModel.id))) == 1
