"""Context management for structured logging.

Fields set with ``set_log_context()`` are copied onto every log record
emitted from the same async task, so the relay can tag every line of a
tick with its batch and a consumer every line of a delivery with its
event id, without passing ``extra`` through each call.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task.

    Example:
        ```python
        set_log_context(event_id=envelope.id, consumer="notifications")
        logger.info("Sending push")  # includes event_id and consumer
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Drop every field from the current logging context."""
    _log_context.set({})


class ContextInjectingFilter(logging.Filter):
    """Copy the current logging context onto each LogRecord.

    Attributes already present on the record (from ``extra``) win.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


__all__ = [
    "ContextInjectingFilter",
    "clear_log_context",
    "get_log_context",
    "set_log_context",
]
