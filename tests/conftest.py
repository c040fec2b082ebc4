"""
Pytest fixtures for the automation platform test suite.

Provides:
- In-memory SQLite engine and sessions (shared StaticPool connection, real
  SAVEPOINT support) with every platform table created
- File-backed SQLite engine with one connection per session, for tests that
  watch committed state from a second connection
- DeterministicClock pinned to a Monday morning in UTC
- Recording fakes for the notification, chat-ops and workflow collaborators
- Structured log capture

No external services are needed; the Postgres-only paths (SKIP LOCKED) compile
to plain SELECTs on SQLite.
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from typing import Any

import pytest
from sqlalchemy.orm import Session, sessionmaker

from automation_kernel.db.engine import create_engine_for_url, create_tables
from automation_kernel.domain.clock import DeterministicClock
from automation_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from automation_kernel.settings import AutomationSettings
from automation_rules.actions.collaborators import (
    ChatOpsMessage,
    ChatOpsResult,
    NotificationRequest,
    WorkflowRequest,
)

# Monday 2 March 2026, 10:00 UTC
FIXED_NOW = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)

TENANT = "tenant-1"
COMPANY = "company-1"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture automation logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine_service):
            engine_service.emit(draft)
            logs = captured_logs()
            assert any(r["message"] == "event_emitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("automation")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def messages(records: list[dict]) -> list[str]:
    return [r["message"] for r in records]


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine_for_url("sqlite://")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Session:
    s = session_factory()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture
def file_engine(tmp_path):
    """SQLite file database: every session gets its own connection, so a
    session only sees what the others have committed."""
    eng = create_engine_for_url(f"sqlite+pysqlite:///{tmp_path / 'automation.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return sessionmaker(bind=file_engine, expire_on_commit=False)


@pytest.fixture
def clock():
    return DeterministicClock(fixed_time=FIXED_NOW)


@pytest.fixture
def settings():
    return AutomationSettings(bulk_batch_size=2)


# =============================================================================
# Collaborator fakes
# =============================================================================


class RecordingNotifier:
    """Notification sender that keeps every request."""

    def __init__(self, fail: bool = False):
        self.sent: list[NotificationRequest] = []
        self.fail = fail

    def send_notification(self, request: NotificationRequest) -> dict[str, Any]:
        if self.fail:
            raise RuntimeError("notification service unavailable")
        self.sent.append(request)
        return {"sent": True, "id": f"notif-{len(self.sent)}"}

    def of_type(self, kind: str) -> list[NotificationRequest]:
        return [r for r in self.sent if r.type == kind]


class RecordingChatOps:
    def __init__(self, success: bool = True, errors: tuple[str, ...] = ()):
        self.sent: list[ChatOpsMessage] = []
        self.success = success
        self.errors = errors

    def send(self, message: ChatOpsMessage) -> ChatOpsResult:
        self.sent.append(message)
        return ChatOpsResult(success=self.success, errors=self.errors)


class RecordingGateway:
    def __init__(self):
        self.requests: list[WorkflowRequest] = []

    def submit(self, request: WorkflowRequest) -> dict[str, Any]:
        self.requests.append(request)
        return {"accepted": True, "kind": request.kind.value, "seq": len(self.requests)}


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def chatops():
    return RecordingChatOps()


@pytest.fixture
def gateway():
    return RecordingGateway()
