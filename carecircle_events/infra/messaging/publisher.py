"""Bounded, classified publishing to RabbitMQ.

BrokerPublisher is the only code that calls ``broker.publish``. Every publish
is limited by ``publish_timeout``; any failure is re-raised as either
TransientBrokerError or PermanentDeliveryError so callers decide on retry
without inspecting driver exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from carecircle_events.core.events.types import priority_for
from carecircle_events.core.exceptions import (
    PermanentDeliveryError,
    TopologyError,
    TransientBrokerError,
)
from carecircle_events.infra.messaging.errors import classify_publish_error
from carecircle_events.infra.messaging.topology import rabbit_exchange
from carecircle_events.infra.metrics.prometheus import (
    broker_publish_duration_seconds,
    broker_publish_total,
)

if TYPE_CHECKING:
    from faststream.rabbit import RabbitBroker

    from carecircle_events.core.events.envelope import EventEnvelope, JsonDocument
    from carecircle_events.infra.events.outbox.models import EventOutbox

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/json"


@dataclass(slots=True, frozen=True)
class OutgoingMessage:
    """One AMQP message ready to publish.

    Attributes:
        body: Wire envelope
        exchange: Exchange name
        routing_key: Routing key
        message_id: AMQP message id (the envelope id)
        correlation_id: AMQP correlation id
        headers: Application headers (x-event-type, x-aggregate-*...)
        priority: AMQP priority; set for safety-critical events
        persistent: Ask the broker to write the message to disk
        timestamp: AMQP timestamp property
    """

    body: JsonDocument
    exchange: str
    routing_key: str
    message_id: str
    correlation_id: str | None = None
    headers: dict[str, Any] = field(default_factory=dict)
    priority: int | None = None
    persistent: bool = True
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def event_type(self) -> str | None:
        """Event type header, if present."""
        return self.headers.get("x-event-type")


def _headers(
    event_type: str,
    *,
    aggregate_type: str | None,
    aggregate_id: str | None,
    retry_count: int,
    published_at: datetime,
) -> dict[str, Any]:
    headers: dict[str, Any] = {
        "x-event-type": event_type,
        "x-retry-count": retry_count,
        "x-published-at": int(published_at.timestamp() * 1000),
    }
    if aggregate_type is not None:
        headers["x-aggregate-type"] = aggregate_type
    if aggregate_id is not None:
        headers["x-aggregate-id"] = aggregate_id
    return headers


def message_from_record(record: EventOutbox) -> OutgoingMessage:
    """Build the AMQP message for an outbox record.

    The message id is the record id, which is also the envelope id.
    """
    now = datetime.now(UTC)
    return OutgoingMessage(
        body=record.payload,
        exchange=record.exchange,
        routing_key=record.routing_key,
        message_id=str(record.id),
        correlation_id=record.correlation_id,
        headers=_headers(
            record.event_type,
            aggregate_type=record.aggregate_type,
            aggregate_id=record.aggregate_id,
            retry_count=record.retry_count,
            published_at=now,
        ),
        priority=priority_for(record.event_type),
        timestamp=now,
    )


def message_from_envelope(
    envelope: EventEnvelope,
    *,
    exchange: str,
    routing_key: str,
    aggregate_type: str | None = None,
    aggregate_id: str | None = None,
) -> OutgoingMessage:
    """Build the AMQP message for a direct (non-outbox) publish."""
    now = datetime.now(UTC)
    return OutgoingMessage(
        body=envelope.to_wire(),
        exchange=exchange,
        routing_key=routing_key,
        message_id=envelope.id,
        correlation_id=envelope.correlation_id,
        headers=_headers(
            envelope.type,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            retry_count=0,
            published_at=now,
        ),
        priority=priority_for(envelope.type),
        timestamp=now,
    )


class BrokerPublisher:
    """Publishes OutgoingMessages with a timeout and failure classification.

    Args:
        broker: FastStream broker, or None when RabbitMQ is disabled
        timeout: Upper bound in seconds on one publish
    """

    def __init__(self, broker: RabbitBroker | None, *, timeout: float = 10.0) -> None:
        self._broker = broker
        self.timeout = timeout

    @classmethod
    def from_settings(cls, broker: RabbitBroker | None = None) -> BrokerPublisher:
        """Publisher bound to the process broker and configured timeout."""
        from carecircle_events.core.settings import get_rabbit_settings
        from carecircle_events.infra.messaging.broker import get_broker

        return cls(
            broker if broker is not None else get_broker(),
            timeout=get_rabbit_settings().publish_timeout,
        )

    @property
    def is_available(self) -> bool:
        """Whether a broker is configured at all."""
        return self._broker is not None

    async def publish(self, message: OutgoingMessage) -> None:
        """Publish one message.

        Raises:
            TransientBrokerError: Broker missing or unreachable, channel
                closed, or the publish did not finish within ``timeout``.
            PermanentDeliveryError: The message can never be delivered,
                e.g. it targets an exchange that is not part of the topology.
        """
        if self._broker is None:
            raise TransientBrokerError("RabbitMQ broker is not configured")

        try:
            exchange = rabbit_exchange(message.exchange)
        except TopologyError as exc:
            broker_publish_total.labels(outcome="permanent").inc()
            raise PermanentDeliveryError(
                "Message targets an undeclared exchange",
                {"exchange": message.exchange, "message_id": message.message_id},
            ) from exc

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            await asyncio.wait_for(
                self._broker.publish(
                    message.body,
                    exchange=exchange,
                    routing_key=message.routing_key,
                    persist=message.persistent,
                    content_type=CONTENT_TYPE,
                    message_id=message.message_id,
                    correlation_id=message.correlation_id,
                    headers=message.headers,
                    timestamp=message.timestamp,
                    priority=message.priority,
                ),
                timeout=self.timeout,
            )
        except TimeoutError as exc:
            broker_publish_total.labels(outcome="transient").inc()
            raise TransientBrokerError(
                f"Publish timed out after {self.timeout}s",
                {"exchange": message.exchange, "routing_key": message.routing_key},
            ) from exc
        except Exception as exc:
            error = classify_publish_error(exc)
            broker_publish_total.labels(
                outcome="transient" if error.transient else "permanent"
            ).inc()
            raise error from exc

        broker_publish_total.labels(outcome="success").inc()
        broker_publish_duration_seconds.observe(loop.time() - started)
        logger.debug(
            "Message published",
            extra={
                "message_id": message.message_id,
                "exchange": message.exchange,
                "routing_key": message.routing_key,
                "event_type": message.event_type,
            },
        )


__all__ = [
    "BrokerPublisher",
    "OutgoingMessage",
    "message_from_envelope",
    "message_from_record",
]
