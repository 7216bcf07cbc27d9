"""Unit tests for structured logging: JSON formatting and task context."""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import QueueHandler

import pytest

from carecircle_events.infra.logging import (
    ContextInjectingFilter,
    JSONFormatter,
    clear_log_context,
    configure_logging,
    get_log_context,
    set_log_context,
    shutdown,
)


def _record(msg: str = "Outbox batch processed", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="carecircle_events.infra.events.outbox.processor",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _reset_context():
    clear_log_context()
    yield
    clear_log_context()


# ============================================================================
# JSONFormatter
# ============================================================================


class TestJSONFormatter:
    """Test suite for JSONFormatter."""

    def test_core_fields_and_extras(self):
        """Test level, logger, message, UTC timestamp and extra fields."""
        formatter = JSONFormatter(static={"service": "carecircle-events"})

        data = json.loads(formatter.format(_record(published=12)))

        assert data["level"] == "INFO"
        assert data["logger"] == "carecircle_events.infra.events.outbox.processor"
        assert data["message"] == "Outbox batch processed"
        assert data["timestamp"].endswith("Z")
        assert data["service"] == "carecircle-events"
        assert data["published"] == 12
        assert "pathname" not in data

    def test_exception_stays_on_one_line(self):
        """Test that tracebacks are escaped into a single line."""
        formatter = JSONFormatter()
        try:
            raise RuntimeError("broker down")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()

        output = formatter.format(record)

        assert "\n" not in output
        assert "RuntimeError: broker down" in json.loads(output)["exception"]

    def test_non_serializable_values_use_str(self):
        """Test that arbitrary objects do not break formatting."""
        data = json.loads(JSONFormatter().format(_record(claimed_ids={1})))

        assert data["claimed_ids"] == "{1}"


# ============================================================================
# Context
# ============================================================================


class TestLogContext:
    """Test suite for the per-task logging context."""

    def test_set_and_clear(self):
        """Test context accumulation and reset."""
        set_log_context(event_id="e1")
        set_log_context(consumer="audit")

        assert get_log_context() == {"event_id": "e1", "consumer": "audit"}

        clear_log_context()
        assert get_log_context() == {}

    def test_filter_injects_without_overriding(self):
        """Test that explicit extra fields win over context."""
        set_log_context(event_id="from-context", consumer="notifications")
        record = _record(event_id="from-extra")

        assert ContextInjectingFilter().filter(record) is True

        assert record.event_id == "from-extra"
        assert record.consumer == "notifications"


class TestConfigureLogging:
    """Test suite for configure_logging()."""

    def test_installs_single_queue_handler(self):
        """Test that reconfiguring replaces the queue handler."""
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            configure_logging(json_logs=False, capture_warnings=False)
            configure_logging(json_logs=True, capture_warnings=False, log_level="DEBUG")

            queue_handlers = [h for h in root.handlers if isinstance(h, QueueHandler)]
            assert len(queue_handlers) == 1
            assert any(isinstance(f, ContextInjectingFilter) for f in queue_handlers[0].filters)
            assert root.level == logging.DEBUG
            assert logging.getLogger("aiormq").level == logging.WARNING
        finally:
            shutdown()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
