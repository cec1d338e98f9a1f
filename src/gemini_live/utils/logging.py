"""Structured logging utilities.

Provides root logger setup with a plain or JSON format, and a session context
that tags every record emitted inside it with the active session id.
"""

import contextvars
import json
import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
PLAIN_DATEFMT = "%H:%M:%S"

# Attributes present on every LogRecord; anything else came in via `extra`
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

_session_context: contextvars.ContextVar[dict[str, str] | None] = contextvars.ContextVar(
    "session_context", default=None
)


@contextmanager
def session_context(session_id: str, **extra: Any) -> Generator[dict[str, str], None, None]:
    """Tag log records emitted within this context with a session id.

    Works across asyncio task boundaries via contextvars: tasks created inside
    the context inherit it.

    Args:
        session_id: Session identifier
        **extra: Additional fields to attach to each record

    Yields:
        The context dictionary
    """
    ctx = {"session_id": session_id, **{k: str(v) for k, v in extra.items()}}
    token = _session_context.set(ctx)
    try:
        yield ctx
    finally:
        _session_context.reset(token)


def get_session_context() -> dict[str, str] | None:
    """Get the current session context, or None outside one."""
    return _session_context.get()


class SessionContextFilter(logging.Filter):
    """Copy the current session context onto each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_session_context()
        if ctx:
            for key, value in ctx.items():
                if not hasattr(record, key):
                    setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects, including extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Setup root logging.

    Args:
        level: Logging level name
        json_format: Whether to emit JSON lines instead of the plain format
    """
    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=PLAIN_DATEFMT))
    handler.addFilter(SessionContextFilter())

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=[handler],
        force=True,
    )
