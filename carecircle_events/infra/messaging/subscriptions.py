"""Wire consumers to their queues on a FastStream RabbitBroker.

Each handler delegates to ``BaseConsumer.handle()`` and settles the message
itself from the returned Disposition, so FastStream's automatic
acknowledgement never runs for these subscribers.

Note: no ``from __future__ import annotations`` here. FastStream resolves
handler signatures at registration time and needs real annotation objects.
"""

import logging
from dataclasses import dataclass
from typing import Any

from faststream.rabbit import RabbitBroker
from faststream.rabbit.annotations import RabbitMessage

from carecircle_events.infra.messaging import conventions as names
from carecircle_events.infra.messaging.consumers import (
    AnalyticsSink,
    AuditSink,
    BaseConsumer,
    Disposition,
    NotificationDispatcher,
    WebSocketBridge,
)
from carecircle_events.infra.messaging.topology import get_topology, to_rabbit_queue

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Consumers:
    """The consumer instances a process runs. Unset consumers are not subscribed."""

    websocket: WebSocketBridge | None = None
    notifications: NotificationDispatcher | None = None
    audit: AuditSink | None = None
    analytics: AnalyticsSink | None = None


def queue_assignments(consumers: Consumers) -> list[tuple[str, BaseConsumer]]:
    """Queue name to consumer pairs for every configured consumer."""
    assignments: list[tuple[str, BaseConsumer]] = []
    if consumers.websocket is not None:
        assignments.append((names.WEBSOCKET_UPDATES_QUEUE_NAME, consumers.websocket))
    if consumers.notifications is not None:
        assignments.extend(
            (queue_name, consumers.notifications)
            for queue_name in (
                names.NOTIFICATION_EVENTS_QUEUE_NAME,
                names.EMERGENCY_QUEUE_NAME,
                names.NOTIFICATIONS_PUSH_QUEUE_NAME,
                names.NOTIFICATIONS_EMAIL_QUEUE_NAME,
                names.NOTIFICATIONS_SMS_QUEUE_NAME,
            )
        )
    if consumers.audit is not None:
        assignments.append((names.AUDIT_LOG_QUEUE_NAME, consumers.audit))
    if consumers.analytics is not None:
        assignments.append((names.AUDIT_ANALYTICS_QUEUE_NAME, consumers.analytics))
    return assignments


async def apply_disposition(message: Any, disposition: Disposition) -> None:
    """Settle a delivered message according to ``disposition``."""
    if disposition is Disposition.ACK:
        await message.ack()
    elif disposition is Disposition.NACK_REQUEUE:
        await message.nack(requeue=True)
    else:
        await message.nack(requeue=False)


def _make_handler(consumer: BaseConsumer):
    async def handle_message(body: Any, message: RabbitMessage) -> None:
        disposition = await consumer.handle(body)
        await apply_disposition(message, disposition)

    handle_message.__name__ = f"handle_{consumer.name}"
    return handle_message


def register_subscriptions(broker: RabbitBroker, consumers: Consumers) -> list[str]:
    """Subscribe every configured consumer to its queues.

    Must run before the broker starts consuming.

    Returns:
        Names of the subscribed queues
    """
    topology = get_topology()
    subscribed: list[str] = []
    for queue_name, consumer in queue_assignments(consumers):
        queue = to_rabbit_queue(topology.queue(queue_name))
        broker.subscriber(queue)(_make_handler(consumer))
        subscribed.append(queue_name)
        logger.debug(
            "Consumer subscribed",
            extra={"queue": queue_name, "consumer": consumer.name},
        )

    logger.info("Subscriptions registered", extra={"queues": len(subscribed)})
    return subscribed


__all__ = [
    "Consumers",
    "apply_disposition",
    "queue_assignments",
    "register_subscriptions",
]
