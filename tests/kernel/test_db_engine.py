"""
Tests for automation_kernel.db: engine helpers, session_scope and the
custom column types.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, inspect, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from automation_kernel.db.base import UTCDateTime, UUIDString
from automation_kernel.db.engine import (
    DEFAULT_DATABASE_URL,
    commit_checkpoint,
    create_engine_for_url,
    create_tables,
    database_url_from_env,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from automation_rules.models.automation import RuleStateModel

NOW = datetime(2026, 3, 4, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def memory_engine():
    engine = init_engine_from_url(DEFAULT_DATABASE_URL)
    create_tables()
    yield engine
    reset_engine()


def _state(rule_id: str) -> RuleStateModel:
    return RuleStateModel(
        tenant_id="acme",
        rule_id=rule_id,
        execution_count=0,
        created_at=NOW,
        updated_at=NOW,
        created_by="test",
    )


class TestDatabaseUrl:
    def test_automation_url_wins(self):
        env = {"AUTOMATION_DATABASE_URL": "postgresql://a/b", "DATABASE_URL": "postgresql://c/d"}
        assert database_url_from_env(env) == "postgresql://a/b"

    def test_generic_fallback(self):
        assert database_url_from_env({"DATABASE_URL": "postgresql://c/d"}) == "postgresql://c/d"

    def test_default_in_memory(self):
        assert database_url_from_env({}) == DEFAULT_DATABASE_URL


class TestModuleEngine:
    def test_uninitialized_raises(self):
        reset_engine()
        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session()
        with pytest.raises(RuntimeError):
            get_session_factory()

    def test_create_tables_covers_every_package(self, memory_engine):
        tables = set(inspect(memory_engine).get_table_names())
        assert {
            "automation_events",
            "automation_rules",
            "automation_rule_state",
            "automation_executions",
            "automation_scheduled_actions",
            "automation_tasks",
            "bulk_operations",
            "recurring_jobs",
            "bulk_templates",
            "bulk_standard_comments",
        } <= tables

    def test_drop_tables(self, memory_engine):
        drop_tables()
        assert inspect(memory_engine).get_table_names() == []

    def test_session_factory_bound(self, memory_engine):
        session = get_session_factory()()
        assert session.get_bind() is memory_engine
        session.close()


class TestSessionScope:
    def test_commits_on_success(self, memory_engine):
        with session_scope() as session:
            session.add(_state("rule-1"))

        with session_scope() as session:
            count = session.scalar(select(func.count()).select_from(RuleStateModel))
        assert count == 1

    def test_rolls_back_on_error(self, memory_engine):
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                session.add(_state("rule-2"))
                session.flush()
                raise RuntimeError("abort")

        with session_scope() as session:
            count = session.scalar(select(func.count()).select_from(RuleStateModel))
        assert count == 0


class TestSqlitePooling:
    def test_memory_database_shares_one_connection(self):
        engine = create_engine_for_url("sqlite://")
        assert isinstance(engine.pool, StaticPool)
        engine.dispose()

    def test_file_database_connection_per_session(self, file_engine):
        assert not isinstance(file_engine.pool, StaticPool)

        writer = sessionmaker(bind=file_engine)()
        writer.add(_state("rule-3"))
        writer.flush()
        reader = sessionmaker(bind=file_engine)()
        assert reader.scalar(select(func.count()).select_from(RuleStateModel)) == 0
        reader.close()

        writer.commit()
        writer.close()
        reader = sessionmaker(bind=file_engine)()
        assert reader.scalar(select(func.count()).select_from(RuleStateModel)) == 1
        reader.close()


class TestCommitCheckpoint:
    def test_commits_outside_savepoint(self, file_session_factory):
        session = file_session_factory()
        session.add(_state("rule-4"))
        commit_checkpoint(session)
        session.close()

        reader = file_session_factory()
        assert reader.scalar(select(func.count()).select_from(RuleStateModel)) == 1
        reader.close()

    def test_deferred_inside_savepoint(self, file_session_factory):
        session = file_session_factory()
        with session.begin_nested():
            session.add(_state("rule-5"))
            commit_checkpoint(session)
            assert session.in_nested_transaction()
        session.rollback()
        session.close()

        reader = file_session_factory()
        assert reader.scalar(select(func.count()).select_from(RuleStateModel)) == 0
        reader.close()


class TestColumnTypes:
    def test_naive_datetime_rejected(self):
        with pytest.raises(ValueError):
            UTCDateTime().process_bind_param(datetime(2026, 3, 4, 8, 0), None)

    def test_aware_datetime_normalized_to_utc(self):
        oslo = timezone(timedelta(hours=1))
        bound = UTCDateTime().process_bind_param(datetime(2026, 3, 4, 9, 0, tzinfo=oslo), None)
        assert bound == NOW
        assert bound.tzinfo == timezone.utc

    def test_naive_result_assumed_utc(self):
        assert UTCDateTime().process_result_value(datetime(2026, 3, 4, 8, 0), None) == NOW

    def test_uuid_round_trip(self):
        uid = uuid4()
        column = UUIDString()
        assert column.process_result_value(column.process_bind_param(uid, None), None) == uid
        assert column.process_bind_param(None, None) is None
