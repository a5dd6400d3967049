"""Logging setup: plain or JSON lines tagged with the active session id.

``ask`` and ``sync_schema`` open a session per call and send its id to the
query service as ``x-session-id``; records logged inside the call carry the
same id so both sides can be joined.
"""
import contextvars
import json
import logging
from contextlib import contextmanager
from typing import Optional

LOGGER_NAMESPACE = "querypanel"

_session_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("session_id", default=None)


class SessionContextFilter(logging.Filter):
    """Copies the active session id onto the record."""
    def filter(self, record):
        record.session_id = _session_id_ctx.get()
        return True


@contextmanager
def session_context(session_id: str):
    token = _session_id_ctx.set(session_id)
    try:
        yield
    finally:
        _session_id_ctx.reset(token)


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        session_id = getattr(record, "session_id", None)
        if session_id:
            log_record["session_id"] = session_id
        return json.dumps(log_record, default=str)


def configure_logging(level: str = "INFO", json_format: bool = False):
    """Replaces the root handlers with a single stream handler.

    Only the CLI calls this; as a library the package leaves logging setup to
    the host application.

    Args:
        level (str): The logging level (default: INFO).
        json_format (bool): Whether to use JSON formatting (default: False).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.addFilter(SessionContextFilter())
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(session_id)s] %(name)s: %(message)s"))
    root_logger.addHandler(handler)

    # Request lines from the HTTP transport duplicate the client's own logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Returns ``querypanel.<name>``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
