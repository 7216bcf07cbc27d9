"""Application lifespan: startup and shutdown of the event pipeline.

Startup order:
    1. logging
    2. database (connectivity check, outbox table)
    3. consumer subscriptions (must exist before the broker starts)
    4. broker connection and topology declaration
    5. outbox relay scheduler

Shutdown runs in reverse. The relay stops before the broker closes so no
tick publishes into a closing connection.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from carecircle_events.core.settings import get_db_settings, get_rabbit_settings
from carecircle_events.infra.database import close_database, init_database
from carecircle_events.infra.events.outbox.scheduler import start_outbox_relay, stop_outbox_relay
from carecircle_events.infra.logging import setup_logging
from carecircle_events.infra.messaging.broker import get_broker, start_broker, stop_broker
from carecircle_events.infra.messaging.subscriptions import Consumers, register_subscriptions
from carecircle_events.infra.messaging.topology import declare_topology

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)


async def startup_messaging(consumers: Consumers) -> bool:
    """Subscribe consumers, connect the broker and declare the topology.

    Returns:
        Whether the broker is connected

    Raises:
        Exception: Broker failures when ``startup_require_rabbit`` is set
    """
    settings = get_rabbit_settings()
    broker = get_broker()
    if broker is None:
        return False

    if settings.consumers_enabled:
        register_subscriptions(broker, consumers)

    try:
        await start_broker()
        if settings.declare_topology:
            await declare_topology(broker)
    except Exception as e:
        if settings.startup_require_rabbit:
            logger.error(
                "RabbitMQ required but unavailable, failing startup",
                extra={"error": str(e), "startup_require_rabbit": True},
            )
            raise
        logger.warning(
            "RabbitMQ unavailable, continuing in degraded mode",
            extra={"error": str(e), "startup_require_rabbit": False},
        )
        return False
    return True


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the pipeline for the lifetime of the application."""
    setup_logging()
    consumers: Consumers = getattr(app.state, "consumers", None) or Consumers()

    if not get_db_settings().is_configured:
        logger.warning("Database not configured, using the local SQLite outbox")
    await init_database()

    broker_connected = await startup_messaging(consumers)
    relay = start_outbox_relay()

    logger.info(
        "Event pipeline started",
        extra={
            "broker_connected": broker_connected,
            "relay_running": relay is not None,
        },
    )

    try:
        yield
    finally:
        await stop_outbox_relay()
        await stop_broker()
        await close_database()
        logger.info("Event pipeline stopped")


__all__ = ["lifespan", "startup_messaging"]
