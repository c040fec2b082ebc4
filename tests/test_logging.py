"""Tests for the structured logging system (automation_kernel/logging_config.py)."""

import json
import logging
from enum import Enum
from io import StringIO
from uuid import uuid4

import pytest

from automation_kernel.exceptions import BulkOperationStateError
from automation_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


class _Colour(str, Enum):
    RED = "RED"


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "automation.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("bulk_batch_completed", extra={"batch_index": 2, "batch_size": 25})

        record = _parse_log(stream)
        assert record["batch_index"] == 2
        assert record["batch_size"] == 25

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        LogContext.set(tenant_id="acme", rule_id="rule-1")
        logger.info("rule_matched")

        record = _parse_log(stream)
        assert record["tenant_id"] == "acme"
        assert record["rule_id"] == "rule-1"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_automation_error_code_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise BulkOperationStateError("op-1", "COMPLETED", "cancel")
        except BulkOperationStateError:
            logger.error("bulk_cancel_rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "BULK_OPERATION_INVALID_STATE"
        assert record["exc_type"] == "BulkOperationStateError"
        assert record["exc_operation_id"] == "op-1"
        assert record["exc_current_status"] == "COMPLETED"
        assert record["exc_requested"] == "cancel"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("bare_message")

        record = _parse_log(stream)
        assert "tenant_id" not in record
        assert "correlation_id" not in record

    def test_uuid_and_enum_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        uid = uuid4()
        logger.info("with_uuid", extra={"operation_uuid": uid, "colour": _Colour.RED})

        record = _parse_log(stream)
        assert record["operation_uuid"] == str(uid)
        assert record["colour"] == "RED"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # Default level is INFO
        assert len(logs) == 2
        for record in logs:
            assert "ts" in record
            assert "level" in record
            assert "logger" in record
            assert "message" in record


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(tenant_id="acme", event_id="evt-1")
        assert LogContext.get_all() == {"tenant_id": "acme", "event_id": "evt-1"}

    def test_values_stringified(self):
        uid = uuid4()
        LogContext.set(operation_id=uid)
        assert LogContext.get_all()["operation_id"] == str(uid)

    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            LogContext.set(account_id="x")

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(rule_id="outer")
        with LogContext.bind(rule_id="inner"):
            assert LogContext.get_all()["rule_id"] == "inner"
        assert LogContext.get_all()["rule_id"] == "outer"

    def test_bind_restores_none(self):
        assert "execution_id" not in LogContext.get_all()
        with LogContext.bind(execution_id="temp"):
            assert LogContext.get_all()["execution_id"] == "temp"
        assert "execution_id" not in LogContext.get_all()

    def test_additive_set(self):
        LogContext.set(tenant_id="a")
        LogContext.set(company_id="b")
        ctx = LogContext.get_all()
        assert ctx["tenant_id"] == "a"
        assert ctx["company_id"] == "b"

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            tenant_id="t",
            company_id="co",
            event_id="e",
            rule_id="r",
            execution_id="x",
            operation_id="o",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 7
        assert ctx["operation_id"] == "o"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        root = logging.getLogger("automation")
        assert len(root.handlers) == 1

    def test_get_logger_returns_child(self):
        logger = get_logger("rules.engine")
        assert logger.name == "automation.rules.engine"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        child = get_logger("batch.scheduler")
        child.debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "automation.batch.scheduler"
