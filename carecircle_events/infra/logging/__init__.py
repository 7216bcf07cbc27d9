"""Structured logging: JSONL formatting, queue-based handlers, per-task context."""

from __future__ import annotations

from carecircle_events.infra.logging.config import configure_logging, setup_logging, shutdown
from carecircle_events.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    set_log_context,
)
from carecircle_events.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "clear_log_context",
    "configure_logging",
    "get_log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
