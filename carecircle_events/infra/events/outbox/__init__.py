"""Transactional outbox.

Producers stage events in the ``event_outbox`` table inside their own
transaction; the relay claims staged rows, publishes them to RabbitMQ and
records the outcome. Delivery is at-least-once.
"""

from carecircle_events.infra.events.outbox.models import EventOutbox, OutboxStatus
from carecircle_events.infra.events.outbox.processor import OutboxProcessor, RelayResult
from carecircle_events.infra.events.outbox.repository import (
    CreateEventOptions,
    OutboxRepository,
    OutboxStats,
)
from carecircle_events.infra.events.outbox.scheduler import (
    RelayScheduler,
    get_outbox_relay,
    start_outbox_relay,
    stop_outbox_relay,
)

__all__ = [
    "CreateEventOptions",
    "EventOutbox",
    "OutboxProcessor",
    "OutboxRepository",
    "OutboxStats",
    "OutboxStatus",
    "RelayResult",
    "RelayScheduler",
    "get_outbox_relay",
    "start_outbox_relay",
    "stop_outbox_relay",
]
