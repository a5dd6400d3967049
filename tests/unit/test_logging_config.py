import logging
import json

import pytest

from querypanel.common.logger import (
    JsonFormatter,
    SessionContextFilter,
    configure_logging,
    get_logger,
    session_context,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def _filtered(record):
    SessionContextFilter().filter(record)
    return record


class TestStructuredLogging:

    def test_json_logging_enabled(self, restore_root_logger):
        # Act
        configure_logging(level="DEBUG", json_format=True)

        # Assert
        root = restore_root_logger
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        handler = root.handlers[0]
        assert isinstance(handler.formatter, JsonFormatter)

        record = logging.LogRecord("querypanel.ask", logging.INFO, "path", 1, "test msg", {}, None)
        with session_context("session-123"):
            handler.filter(record)
            data = json.loads(handler.formatter.format(record))

        assert data["message"] == "test msg"
        assert data["session_id"] == "session-123"
        assert data["level"] == "INFO"
        assert data["logger"] == "querypanel.ask"

    def test_text_format_includes_session_id(self, restore_root_logger):
        configure_logging(json_format=False)

        record = logging.LogRecord("test_text", logging.WARNING, "path", 1, "hello", {}, None)
        handler = restore_root_logger.handlers[0]
        with session_context("session-1"):
            handler.filter(record)
            output = handler.formatter.format(record)

        assert "[session-1]" in output
        assert "hello" in output

    def test_transport_loggers_are_quieted(self, restore_root_logger):
        configure_logging(level="DEBUG")

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING


def test_session_context_is_scoped():
    def current():
        return _filtered(logging.LogRecord("x", logging.INFO, "path", 1, "m", {}, None)).session_id

    assert current() is None
    with session_context("outer"):
        with session_context("inner"):
            assert current() == "inner"
        assert current() == "outer"
    assert current() is None


def test_json_formatter_omits_missing_session():
    record = _filtered(logging.LogRecord("x", logging.ERROR, "path", 1, "failed %s", ("q1",), None))

    data = json.loads(JsonFormatter().format(record))

    assert data["message"] == "failed q1"
    assert "session_id" not in data


def test_get_logger_is_namespaced():
    assert get_logger("ask").name == "querypanel.ask"
