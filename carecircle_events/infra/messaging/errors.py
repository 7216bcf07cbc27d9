"""Classification of raw failures into transient and permanent.

Publish failures feed the relay's batch decision; consumer failures feed the
requeue flag. Both use the same rules:

- Connection, channel and timeout failures are transient.
- Serialization and validation failures are permanent.
- Messages mentioning timeouts, connections or rate limits are transient,
  which covers third-party SDK errors that only differ by text.
- Anything unrecognised falls back to a caller-chosen default. The relay
  uses transient, since its retry cap bounds the cost; consumers use
  permanent, since a requeue has no cap.

Additional permanent exception types can be registered at runtime.
"""

from __future__ import annotations

import asyncio
import threading

from carecircle_events.core.exceptions import (
    DeliveryError,
    PermanentDeliveryError,
    TransientBrokerError,
)

# ─────────────────────────────────────────────────────
# Thread-safe registry
# ─────────────────────────────────────────────────────

# Data and programming errors that will fail the same way on every attempt
_DEFAULT_PERMANENT: frozenset[str] = frozenset(
    {
        "ValueError",
        "TypeError",
        "KeyError",
        "AttributeError",
        "JSONDecodeError",
        "ValidationError",
        "UnicodeEncodeError",
        "UnicodeDecodeError",
        "NotImplementedError",
    },
)

_TRANSIENT_MARKERS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "connection",
    "econnrefused",
    "econnreset",
    "rate limit",
    "temporarily",
    "unavailable",
)

_custom_permanent: set[str] = set()
_lock = threading.Lock()


def register_permanent(*exception_classes: type[BaseException]) -> None:
    """Register exception types that should never be retried.

    Example:
        class InvalidDeviceTokenError(Exception):
            pass

        register_permanent(InvalidDeviceTokenError)
    """
    with _lock:
        for exc_class in exception_classes:
            _custom_permanent.add(exc_class.__name__)


def unregister_permanent(*exception_classes: type[BaseException]) -> None:
    """Remove exception types added with register_permanent."""
    with _lock:
        for exc_class in exception_classes:
            _custom_permanent.discard(exc_class.__name__)


def _is_connection_failure(exc: BaseException) -> bool:
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError, OSError)):
        return True
    # aio-pika / aiormq raise AMQPError subclasses for closed channels and
    # connections; match by module so the check works across versions.
    module = type(exc).__module__ or ""
    return module.startswith(("aiormq", "aio_pika", "pamqp"))


def is_transient_error(exc: BaseException, *, default: bool = True) -> bool:
    """Decide whether a failure may succeed on a later attempt.

    Args:
        exc: The failure to classify.
        default: Verdict for failures no rule recognises.

    Returns:
        True for transient failures, False for permanent ones.
    """
    if isinstance(exc, DeliveryError):
        return exc.transient
    transient_flag = getattr(exc, "transient", None)
    if isinstance(transient_flag, bool):
        return transient_flag

    if _is_connection_failure(exc):
        return True

    message = str(exc).lower()
    if any(marker in message for marker in _TRANSIENT_MARKERS):
        return True

    exc_name = type(exc).__name__
    if exc_name in _DEFAULT_PERMANENT:
        return False
    with _lock:
        if exc_name in _custom_permanent:
            return False
    return default


def classify_publish_error(exc: BaseException) -> DeliveryError:
    """Wrap a raw publish failure in the matching DeliveryError subclass.

    DeliveryErrors pass through unchanged.
    """
    if isinstance(exc, DeliveryError):
        return exc
    details = {"error_type": type(exc).__name__}
    message = str(exc) or type(exc).__name__
    if is_transient_error(exc):
        return TransientBrokerError(message, details)
    return PermanentDeliveryError(message, details)


__all__ = [
    "classify_publish_error",
    "is_transient_error",
    "register_permanent",
    "unregister_permanent",
]
