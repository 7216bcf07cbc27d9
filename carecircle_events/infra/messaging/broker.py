"""RabbitMQ broker lifecycle using FastStream.

The broker is created lazily from RabbitSettings so modules can import this
one without a reachable RabbitMQ. When RabbitMQ is disabled, ``get_broker()``
returns None and callers degrade: producers keep writing to the outbox and
the relay stays idle.

Usage Patterns:
- Application lifespan: ``start_broker()`` / ``stop_broker()``
- One-off commands: ``async with broker_context() as broker``
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any

from faststream.rabbit import RabbitBroker

from carecircle_events.core.settings import get_rabbit_settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class ConnectionState(str, Enum):
    """Connection states for the RabbitMQ broker."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    FAILED = "failed"


logger = logging.getLogger(__name__)

rabbit_settings = get_rabbit_settings()

broker: RabbitBroker | None = None
_not_configured_logged = False


def get_broker() -> RabbitBroker | None:
    """Get the process-wide broker, creating it on first use.

    Returns:
        RabbitBroker instance or None if RabbitMQ is not configured.
    """
    global broker, _not_configured_logged

    if broker is not None:
        return broker

    if not rabbit_settings.is_configured:
        if not _not_configured_logged:
            logger.warning("RabbitMQ not configured - messaging features disabled")
            _not_configured_logged = True
        return None

    broker = RabbitBroker(
        rabbit_settings.get_url(),
        graceful_timeout=rabbit_settings.graceful_timeout,
        logger=logger,
    )
    return broker


def is_broker_running(instance: RabbitBroker | None = None) -> bool:
    """Whether the broker has been started and not closed."""
    instance = instance if instance is not None else broker
    return bool(instance is not None and getattr(instance, "running", False))


async def start_broker() -> RabbitBroker | None:
    """Connect the broker, bounded by ``connection_timeout``.

    Returns:
        The started broker, or None if RabbitMQ is not configured.

    Raises:
        ConnectionError: If the connection is not established in time.
    """
    instance = get_broker()
    if instance is None:
        logger.warning("RabbitMQ not configured, skipping broker startup")
        return None

    if is_broker_running(instance):
        logger.debug("RabbitMQ broker already running")
        return instance

    logger.info(
        "Starting RabbitMQ broker",
        extra={
            "host": rabbit_settings.host,
            "connection_timeout": rabbit_settings.connection_timeout,
        },
    )

    try:
        await asyncio.wait_for(
            instance.start(),
            timeout=rabbit_settings.connection_timeout,
        )
        logger.info("RabbitMQ broker started successfully")
    except TimeoutError:
        error_msg = f"RabbitMQ connection timeout after {rabbit_settings.connection_timeout}s"
        logger.error(error_msg, extra={"host": rabbit_settings.host})
        raise ConnectionError(error_msg) from None
    except Exception as e:
        logger.exception("Failed to start RabbitMQ broker", extra={"error": str(e)})
        raise
    return instance


async def stop_broker() -> None:
    """Close the broker connection if it was created."""
    if broker is None:
        logger.debug("RabbitMQ not configured, skipping broker shutdown")
        return

    logger.info("Stopping RabbitMQ broker")
    try:
        await broker.close()
        logger.info("RabbitMQ broker stopped successfully")
    except Exception as e:
        logger.exception("Error stopping RabbitMQ broker", extra={"error": str(e)})


@asynccontextmanager
async def broker_context() -> AsyncIterator[RabbitBroker | None]:
    """Broker access for code running outside the application lifespan.

    Only closes the broker if this context started it, so a connection
    shared with a running application is left alone.

    Yields:
        RabbitBroker instance or None if not configured.
    """
    instance = get_broker()
    if instance is None:
        logger.warning("RabbitMQ not configured, broker_context yielding None")
        yield None
        return

    was_running = is_broker_running(instance)
    if not was_running:
        await start_broker()

    try:
        yield instance
    finally:
        if not was_running:
            try:
                await instance.close()
                logger.debug("Broker disconnected via context manager")
            except Exception as e:
                logger.warning("Error closing broker in context manager", extra={"error": str(e)})


async def check_broker_health() -> dict[str, Any]:
    """Report broker connectivity for health endpoints.

    Returns:
        Dictionary containing ``status``, ``state``, ``is_connected`` and,
        when not healthy, ``reason``.
    """
    if broker is None or not rabbit_settings.is_configured:
        return {
            "status": "unavailable",
            "state": ConnectionState.DISCONNECTED.value,
            "is_connected": False,
            "reason": "broker_not_configured",
        }

    if not is_broker_running(broker):
        return {
            "status": "unhealthy",
            "state": ConnectionState.DISCONNECTED.value,
            "is_connected": False,
            "reason": "broker_not_running",
        }

    return {
        "status": "healthy",
        "state": ConnectionState.CONNECTED.value,
        "is_connected": True,
    }


__all__ = [
    "ConnectionState",
    "broker_context",
    "check_broker_health",
    "get_broker",
    "is_broker_running",
    "start_broker",
    "stop_broker",
]
