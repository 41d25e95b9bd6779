"""Tests for the structured logging system (approval_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from approval_kernel.exceptions import NotAuthorizedError
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
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
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "approval_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "approval_recorded", extra={"approval_level": 2, "status": "pending"},
        )

        record = _parse_log(stream)
        assert record["approval_level"] == 2
        assert record["status"] == "pending"

    def test_context_fields_take_precedence_over_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(actor_id="u.buyer"):
            get_logger("test").warning("guarded", extra={"actor_id": "u.spoofed"})

        record = _parse_log(stream)
        assert record["level"] == "WARNING"
        assert record["actor_id"] == "u.buyer"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="req-1", instance_id="inst-9")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "req-1"
        assert record["instance_id"] == "inst-9"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "document_id" not in record

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_code_and_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise NotAuthorizedError("u.outsider", "inst-1", 2)
        except NotAuthorizedError:
            get_logger("test").error("approval_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "NOT_AUTHORIZED"
        assert record["exc_type"] == "NotAuthorizedError"
        assert record["exc_actor_id"] == "u.outsider"
        assert record["exc_instance_id"] == "inst-1"
        assert record["exc_level"] == 2

    def test_uuid_decimal_and_set_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "typed",
            extra={"definition_id": uid, "amount": Decimal("10.50"), "roles": {"b", "a"}},
        )

        record = _parse_log(stream)
        assert record["definition_id"] == str(uid)
        assert record["amount"] == "10.50"
        assert record["roles"] == ["a", "b"]

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
            assert {"ts", "level", "logger", "message"} <= set(record)


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", actor_id="u.a")
        assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "u.a"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_value(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner", document_id="PO-1"):
            assert LogContext.get_all() == {"actor_id": "inner", "document_id": "PO-1"}
        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(instance_id="inst-1"):
                raise RuntimeError("fail")
        assert "instance_id" not in LogContext.get_all()

    def test_bind_skips_none_and_stringifies(self):
        uid = uuid4()
        with LogContext.bind(instance_id=uid, actor_id=None):
            ctx = LogContext.get_all()
        assert ctx == {"instance_id": str(uid)}

    def test_unknown_field_is_rejected(self):
        with pytest.raises(TypeError):
            LogContext.set(event_id="e-1")
        with pytest.raises(TypeError):
            LogContext.bind(producer="p")

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            actor_id="a",
            instance_id="i",
            document_id="d",
            trace_id="t",
        )
        assert len(LogContext.get_all()) == 5


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        reset_logging()
        h1, stream = _make_handler()
        configure_logging(handler=h1)
        h2, ignored = _make_handler()
        configure_logging(handler=h2)  # no-op

        handlers = logging.getLogger("approval_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers
        get_logger("test").info("once")
        assert _parse_log(stream)["message"] == "once"
        assert ignored.getvalue() == ""

    def test_get_logger_returns_child(self):
        assert get_logger("services.workflow_engine").name == (
            "approval_kernel.services.workflow_engine"
        )

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "approval_kernel.deep.nested.module"
