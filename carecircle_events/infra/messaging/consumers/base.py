"""Shared consumer machinery: decoding, redelivery detection, dispositions.

A consumer never acknowledges a message itself. ``handle()`` returns a
Disposition and the subscription layer turns it into ack or nack, which
keeps consumers testable without a broker.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import ValidationError

from carecircle_events.core.events.envelope import EventEnvelope
from carecircle_events.infra.messaging.errors import is_transient_error
from carecircle_events.infra.metrics.prometheus import (
    consumer_duplicates_total,
    consumer_messages_total,
)

if TYPE_CHECKING:
    from carecircle_events.core.events.envelope import JsonDocument

logger = logging.getLogger(__name__)

DEFAULT_SEEN_CAPACITY = 10_000


class Disposition(StrEnum):
    """What to tell the broker about a delivered message."""

    ACK = "ack"
    NACK_REQUEUE = "nack_requeue"
    # Rejected without requeue; dead-lettered where the queue has a DLX
    NACK_DROP = "nack_drop"


class SeenMessages:
    """Bounded set of recently handled envelope ids (least recently seen evicted).

    Detects redeliveries within one process. It is not shared across
    processes, so side effects must still tolerate the occasional duplicate.
    """

    __slots__ = ("_ids", "capacity")

    def __init__(self, capacity: int = DEFAULT_SEEN_CAPACITY) -> None:
        if capacity < 1:
            msg = "capacity must be positive"
            raise ValueError(msg)
        self.capacity = capacity
        self._ids: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, message_id: str) -> None:
        """Remember ``message_id``, evicting the oldest entry when full."""
        self._ids[message_id] = None
        self._ids.move_to_end(message_id)
        while len(self._ids) > self.capacity:
            self._ids.popitem(last=False)


class BaseConsumer:
    """Base class for envelope consumers.

    Subclasses implement ``process()``; raising from it reports a failure,
    returning reports success. ``on_failure()`` maps a failure to a
    Disposition.
    """

    name: ClassVar[str] = "consumer"

    def __init__(self, *, seen: SeenMessages | None = None) -> None:
        self.seen = seen if seen is not None else SeenMessages()
        self._logger = logging.getLogger(f"{__name__}.{self.name}")

    async def handle(self, body: JsonDocument | str | bytes) -> Disposition:
        """Decode, deduplicate and process one delivered message."""
        try:
            envelope = EventEnvelope.from_wire(body)
        except (ValidationError, ValueError) as exc:
            self._logger.warning(
                "Dropping undecodable message",
                extra={"consumer": self.name, "error": str(exc)},
            )
            return self._count(Disposition.NACK_DROP)

        if envelope.id in self.seen:
            consumer_duplicates_total.labels(consumer=self.name).inc()
            self._logger.debug(
                "Redelivered message already handled",
                extra={"consumer": self.name, "event_id": envelope.id},
            )
            return self._count(Disposition.ACK)

        try:
            await self.process(envelope)
        except Exception as exc:
            disposition = self.on_failure(envelope, exc)
            self._logger.error(
                "Consumer failed to process event",
                extra={
                    "consumer": self.name,
                    "event_id": envelope.id,
                    "event_type": envelope.type,
                    "correlation_id": envelope.correlation_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "disposition": disposition.value,
                },
            )
            return self._count(disposition)

        self.seen.add(envelope.id)
        return self._count(Disposition.ACK)

    async def process(self, envelope: EventEnvelope) -> None:
        """Handle one decoded envelope."""
        raise NotImplementedError

    def on_failure(self, envelope: EventEnvelope, exc: Exception) -> Disposition:
        """Requeue recognisably transient failures, drop everything else."""
        _ = envelope
        if is_transient_error(exc, default=False):
            return Disposition.NACK_REQUEUE
        return Disposition.NACK_DROP

    def _count(self, disposition: Disposition) -> Disposition:
        consumer_messages_total.labels(consumer=self.name, disposition=disposition.value).inc()
        return disposition

    def describe(self) -> dict[str, Any]:
        return {"consumer": self.name, "seen": len(self.seen)}


__all__ = ["BaseConsumer", "Disposition", "SeenMessages"]
