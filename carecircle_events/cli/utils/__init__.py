"""CLI utilities for running async operations and formatting output."""

from carecircle_events.cli.utils.async_runner import coro
from carecircle_events.cli.utils.formatters import (
    error,
    header,
    info,
    print_json,
    print_table,
    success,
    warning,
)

__all__ = [
    "coro",
    "error",
    "header",
    "info",
    "print_json",
    "print_table",
    "success",
    "warning",
]
