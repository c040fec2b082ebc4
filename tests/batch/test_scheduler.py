"""
Tests for automation_batch.services.scheduler.AutomationScheduler.

Validates tick(): recurring job firing with a commit per job, scheduled
bulk operations, delayed actions, purge, the per-phase commit / rollback
boundary and live bulk progress; plus the start/stop lifecycle.

Every tick opens its own session from the shared in-memory SQLite engine,
so setup data is committed first.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from automation_batch.domain.types import (
    BulkActionType,
    BulkOperationStatus,
    RecurringRunStatus,
    RecurringSchedule,
    ScheduleType,
    SelectionCriteria,
    SelectionType,
)
from automation_batch.handlers.base import FunctionTargetHandler, HandlerRegistry
from automation_batch.models.batch import BulkOperationModel
from automation_batch.orchestrator import AutomationPlatform
from automation_batch.services.scheduler import AutomationScheduler, TickResult
from automation_rules.domain.rules import RuleCatalog
from automation_rules.domain.types import AutomationEventDraft, EventType

from tests.conftest import COMPANY, TENANT, messages

WEDNESDAY_0800 = datetime(2026, 3, 4, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def handlers():
    registry = HandlerRegistry()
    registry.register(FunctionTargetHandler(BulkActionType.ADD_TAG, lambda t, a, o: None))
    return registry


@pytest.fixture
def rule_catalog():
    return RuleCatalog.from_dicts([{
        "id": "rule-follow-up",
        "trigger": {"event": "APPROVAL_REQUESTED"},
        "actions": [{"id": "a1", "type": "SEND_NOTIFICATION", "order": 1, "delay_minutes": 30,
                     "config": {"title": "Follow up"}}],
    }])


@pytest.fixture
def wiring(clock, settings, handlers, notifier, rule_catalog):
    return dict(
        clock=clock,
        settings=settings,
        handlers=handlers,
        notifier=notifier,
        rule_catalog=rule_catalog,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def setup(session_factory, wiring):
    """Platform over a session the test commits before ticking."""
    session = session_factory()
    yield AutomationPlatform.from_session(session, **wiring)
    session.close()


@pytest.fixture
def scheduler(setup, session_factory):
    return setup.create_scheduler(session_factory, tick_interval_seconds=1)


def _create_job(platform, name="Weekly tag", target_ids=("d1", "d2")):
    return platform.recurring_jobs.create_recurring_job(
        tenant_id=TENANT,
        company_id=COMPANY,
        name=name,
        action_type=BulkActionType.ADD_TAG,
        selection_criteria=SelectionCriteria(
            selection_type=SelectionType.FIXED, fixed_ids=tuple(target_ids),
        ),
        schedule=RecurringSchedule(
            schedule_type=ScheduleType.WEEKLY, time="08:00", day_of_week=3,
        ),
    )


def _reader(session_factory, wiring):
    return AutomationPlatform.from_session(session_factory(), **wiring)


# =============================================================================
# tick()
# =============================================================================


class TestTick:
    def test_nothing_due(self, scheduler):
        result = scheduler.tick()
        assert result.jobs_fired == 0
        assert result.operations_run == 0
        assert result.delayed_actions == 0

    def test_fires_due_job_and_commits(self, setup, scheduler, clock, session_factory, wiring):
        job = _create_job(setup)
        setup.session.commit()

        clock.set_time(WEDNESDAY_0800)
        result = scheduler.tick()

        assert result.jobs_fired == 1
        reader = _reader(session_factory, wiring)
        stored = reader.recurring_jobs.get_recurring_job(job.job_id)
        assert stored.last_run_status == RecurringRunStatus.SUCCESS
        assert stored.next_run_at == WEDNESDAY_0800 + timedelta(days=7)
        operation = reader.bulk_operations.get_operation(stored.last_operation_id)
        assert operation.status == BulkOperationStatus.COMPLETED
        reader.session.close()

    def test_job_not_due_is_left_alone(self, setup, scheduler, clock):
        _create_job(setup)
        setup.session.commit()

        clock.set_time(WEDNESDAY_0800 - timedelta(minutes=1))
        assert scheduler.tick().jobs_fired == 0

    def test_second_tick_same_slot_does_not_refire(self, setup, scheduler, clock):
        _create_job(setup)
        setup.session.commit()

        clock.set_time(WEDNESDAY_0800)
        assert scheduler.tick().jobs_fired == 1
        assert scheduler.tick().jobs_fired == 0

    def test_runs_scheduled_bulk_operation(self, setup, scheduler, clock):
        setup.bulk_operations.create_operation(
            tenant_id=TENANT,
            company_id=COMPANY,
            operation_type=BulkActionType.ADD_TAG,
            name="Tonight",
            target_ids=["d1"],
            scheduled_for=clock.now_utc() + timedelta(hours=2),
        )
        setup.session.commit()

        assert scheduler.tick().operations_run == 0
        clock.advance_minutes(120)
        assert scheduler.tick().operations_run == 1

    def test_revives_delayed_actions(self, setup, scheduler, clock, notifier):
        setup.emit(AutomationEventDraft(
            tenant_id=TENANT,
            company_id=COMPANY,
            event_type=EventType.APPROVAL_REQUESTED,
            source="approvals",
        ))
        setup.session.commit()
        assert notifier.sent == []

        clock.advance_minutes(30)
        result = scheduler.tick()

        assert result.delayed_actions == 1
        assert [n.title for n in notifier.sent] == ["Follow up"]

    def test_purge_counts_reported(self, scheduler):
        purged = scheduler.tick().purged
        assert set(purged) == {
            "automation_events",
            "automation_executions",
            "automation_scheduled_actions",
            "bulk_operations",
        }

    def test_tick_logged(self, scheduler, captured_logs):
        scheduler.tick()
        assert "scheduler_tick_completed" in messages(captured_logs())


class TestTickFailures:
    def test_failing_job_rolled_back_alone(
        self, setup, clock, session_factory, wiring, captured_logs,
    ):
        good = _create_job(setup, name="good")
        bad = _create_job(setup, name="bad")
        setup.session.commit()

        def platform_factory(session):
            platform = AutomationPlatform.from_session(session, **wiring)
            original = platform.recurring_jobs.execute_recurring_job

            def flaky(job_id):
                if job_id == bad.job_id:
                    raise RuntimeError("selection store unavailable")
                return original(job_id)

            platform.recurring_jobs.execute_recurring_job = flaky
            return platform

        scheduler = AutomationScheduler(session_factory, platform_factory, clock=clock)
        clock.set_time(WEDNESDAY_0800)
        result = scheduler.tick()

        assert result.jobs_fired == 1
        assert result.jobs_failed == 1
        reader = _reader(session_factory, wiring)
        assert reader.recurring_jobs.get_recurring_job(good.job_id).last_run_at is not None
        assert reader.recurring_jobs.get_recurring_job(bad.job_id).last_run_at is None
        reader.session.close()

        failed = next(r for r in captured_logs() if r["message"] == "recurring_job_fire_failed")
        assert failed["job_name"] == "bad"

    def test_later_phase_failure_keeps_fired_job(
        self, setup, clock, session_factory, wiring, captured_logs,
    ):
        job = _create_job(setup)
        setup.session.commit()
        failures = {"left": 1}

        def platform_factory(session):
            platform = AutomationPlatform.from_session(session, **wiring)
            original = platform.delayed_actions.run_due

            def flaky():
                if failures["left"]:
                    failures["left"] -= 1
                    raise RuntimeError("timer table locked")
                return original()

            platform.delayed_actions.run_due = flaky
            return platform

        scheduler = AutomationScheduler(session_factory, platform_factory, clock=clock)
        clock.set_time(WEDNESDAY_0800)

        first = scheduler.tick()
        assert first.jobs_fired == 1
        assert first.failed_phases == ("delayed_actions",)
        assert "bulk_operations" in first.purged

        second = scheduler.tick()
        assert second.jobs_fired == 0
        assert second.failed_phases == ()

        reader = _reader(session_factory, wiring)
        stored = reader.recurring_jobs.get_recurring_job(job.job_id)
        assert stored.next_run_at == WEDNESDAY_0800 + timedelta(days=7)
        assert len(reader.bulk_operations.list_operations(TENANT)) == 1
        reader.session.close()

        failed = next(r for r in captured_logs() if r["message"] == "scheduler_phase_failed")
        assert failed["phase"] == "delayed_actions"

    def test_operations_phase_failure_does_not_block_purge(
        self, setup, clock, session_factory, wiring,
    ):
        def platform_factory(session):
            platform = AutomationPlatform.from_session(session, **wiring)

            def broken(now=None, limit=None):
                raise RuntimeError("operations table unavailable")

            platform.bulk_operations.run_due_operations = broken
            return platform

        scheduler = AutomationScheduler(session_factory, platform_factory, clock=clock)
        result = scheduler.tick()

        assert result.failed_phases == ("bulk_operations",)
        assert result.operations_run == 0
        assert "bulk_operations" in result.purged

    def test_tick_failure_rolls_back(self, clock, captured_logs):
        session = FakeSession()

        def broken_factory(s):
            raise RuntimeError("wiring failed")

        scheduler = AutomationScheduler(lambda: session, broken_factory, clock=clock)
        result = scheduler.tick()

        assert result == TickResult()
        assert session.calls == ["rollback", "close"]
        assert "scheduler_tick_failed" in messages(captured_logs())


class TestLiveProgress:
    def test_tick_publishes_bulk_progress(
        self, file_session_factory, clock, settings, notifier, rule_catalog,
    ):
        seen = []

        def tag(target_id, action, operation):
            watcher = file_session_factory()
            seen.append(watcher.scalar(
                select(BulkOperationModel.successful)
                .where(BulkOperationModel.id == operation.operation_id)
            ))
            watcher.close()

        registry = HandlerRegistry()
        registry.register(FunctionTargetHandler(BulkActionType.ADD_TAG, tag))
        session = file_session_factory()
        platform = AutomationPlatform.from_session(
            session,
            clock=clock,
            settings=settings,
            handlers=registry,
            notifier=notifier,
            rule_catalog=rule_catalog,
            sleep=lambda seconds: None,
        )
        _create_job(platform, target_ids=("d1", "d2", "d3"))
        session.commit()
        session.close()

        clock.set_time(WEDNESDAY_0800)
        result = platform.create_scheduler(file_session_factory).tick()

        assert result.jobs_fired == 1
        assert seen == [0, 1, 2]


# =============================================================================
# start() / stop() lifecycle
# =============================================================================


class FakeSession:
    def __init__(self):
        self.calls = []

    def commit(self):
        self.calls.append("commit")

    def rollback(self):
        self.calls.append("rollback")

    def close(self):
        self.calls.append("close")


@pytest.fixture
def idle_scheduler(clock):
    def idle_factory(session):
        raise RuntimeError("no platform in lifecycle tests")

    return AutomationScheduler(FakeSession, idle_factory, clock=clock, tick_interval_seconds=60)


class TestLifecycle:
    def test_start_creates_background_thread(self, idle_scheduler):
        idle_scheduler.start()
        assert idle_scheduler.is_running is True
        idle_scheduler.stop(timeout=2.0)

    def test_stop_terminates_thread(self, idle_scheduler):
        idle_scheduler.start()
        idle_scheduler.stop(timeout=2.0)
        assert idle_scheduler.is_running is False

    def test_double_start_is_noop(self, idle_scheduler):
        idle_scheduler.start()
        thread1 = idle_scheduler._thread

        idle_scheduler.start()
        assert idle_scheduler._thread is thread1

        idle_scheduler.stop(timeout=2.0)

    def test_stop_without_start_is_safe(self, idle_scheduler):
        idle_scheduler.stop(timeout=1.0)
        assert idle_scheduler.is_running is False

    def test_interval_defaults_from_settings(self, setup, session_factory):
        scheduler = setup.create_scheduler(session_factory)
        assert scheduler._tick_interval == 60
