"""Logging configuration setup.

- dictConfig for levels and filters
- QueueHandler + QueueListener so the event loop never blocks on log I/O
- ContextInjectingFilter on the queue handler for per-task context
- JSONL output by default, plain text for local development
"""

from __future__ import annotations

import atexit
import logging
import logging.config
from logging.handlers import QueueHandler, QueueListener
from queue import Queue
from typing import TYPE_CHECKING, Any

from carecircle_events.infra.logging.context import ContextInjectingFilter
from carecircle_events.infra.logging.formatters import JSONFormatter

if TYPE_CHECKING:
    from carecircle_events.core.settings.logs import LoggingSettings

_log_queue: Queue[logging.LogRecord] | None = None
_listener: QueueListener | None = None
_LOGGING_INITIALIZED = False

TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Chatty client libraries capped at library_level
LIBRARY_LOGGERS = ("aio_pika", "aiormq", "apscheduler", "faststream", "sqlalchemy.engine")

logger = logging.getLogger(__name__)


def shutdown() -> None:
    """Stop the QueueListener, flushing pending records."""
    global _log_queue, _listener

    if _listener is not None:
        _listener.stop()
        _listener = None
    _log_queue = None


def setup_logging(
    log_settings: LoggingSettings | None = None,
    *,
    force: bool = False,
    **configure_kwargs: Any,
) -> None:
    """Configure logging once per process.

    Args:
        log_settings: Settings to use; loaded via get_logging_settings() when omitted.
        force: Reconfigure even if logging was already set up.
        **configure_kwargs: Overrides for configure_logging().
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED and not force:
        return

    if log_settings is None:
        from carecircle_events.core.settings import get_logging_settings

        log_settings = get_logging_settings()

    configure_logging(**{**log_settings.to_logging_kwargs(), **configure_kwargs})
    _LOGGING_INITIALIZED = True


def configure_logging(
    service_name: str = "carecircle-events",
    log_level: str = "INFO",
    json_logs: bool = True,
    include_context: bool = True,
    capture_warnings: bool = True,
    library_level: str = "WARNING",
) -> None:
    """Apply the logging configuration.

    Args:
        service_name: Static ``service`` field on JSON records.
        log_level: Root logger level.
        json_logs: Emit JSONL instead of text.
        include_context: Inject the per-task logging context.
        capture_warnings: Route ``warnings`` through logging.
        library_level: Level for the loggers in LIBRARY_LOGGERS.
    """
    global _log_queue, _listener

    if capture_warnings:
        logging.captureWarnings(True)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "root": {"level": log_level.upper(), "handlers": []},
            "loggers": {
                name: {"level": library_level.upper(), "propagate": True}
                for name in LIBRARY_LOGGERS
            },
        },
    )

    shutdown()

    console_handler = logging.StreamHandler()
    if json_logs:
        console_handler.setFormatter(JSONFormatter(static={"service": service_name}))
    else:
        console_handler.setFormatter(logging.Formatter(fmt=TEXT_FORMAT, datefmt=TEXT_DATEFMT))

    _log_queue = Queue()
    _listener = QueueListener(_log_queue, console_handler, respect_handler_level=True)
    _listener.start()
    atexit.register(shutdown)

    queue_handler = QueueHandler(_log_queue)
    if include_context:
        queue_handler.addFilter(ContextInjectingFilter())

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, QueueHandler):
            root.removeHandler(handler)
    root.addHandler(queue_handler)

    logger.debug(
        "Logging configured",
        extra={"level": log_level, "json_logs": json_logs, "service": service_name},
    )


__all__ = ["configure_logging", "setup_logging", "shutdown"]
