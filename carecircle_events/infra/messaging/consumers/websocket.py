"""Bridge from domain events to live WebSocket updates.

Every event on the ``websocket.updates`` queue becomes one broadcast to the
rooms derived from its tenancy fields. Emergency events use the
broadcaster's emergency channel. A failed broadcast is requeued; a missed
live update would otherwise only show up on the client's next refresh.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from carecircle_events.infra.messaging.consumers.base import BaseConsumer, Disposition

if TYPE_CHECKING:
    from collections.abc import Sequence

    from carecircle_events.core.events.envelope import EventEnvelope, JsonDocument
    from carecircle_events.infra.messaging.consumers.base import SeenMessages

# Categories whose clients expect underscore-separated event names
# (family.member.left -> family_member_left)
_UNDERSCORED_CATEGORIES = frozenset({"family", "care_recipient", "document"})


class Broadcaster(Protocol):
    """Real-time fan-out to connected clients (implemented by the gateway)."""

    async def broadcast(self, event: str, data: JsonDocument, rooms: Sequence[str]) -> None: ...

    async def emergency(self, event: str, data: JsonDocument, rooms: Sequence[str]) -> None: ...


@dataclass(slots=True, frozen=True)
class BroadcastMessage:
    """What a client receives for one domain event."""

    event: str
    data: JsonDocument
    rooms: tuple[str, ...] = field(default_factory=tuple)
    emergency: bool = False


def rooms_for(envelope: EventEnvelope) -> tuple[str, ...]:
    """Rooms that should receive ``envelope``: its family and care recipient."""
    rooms: list[str] = []
    if envelope.family_id:
        rooms.append(f"family:{envelope.family_id}")
    if envelope.care_recipient_id:
        rooms.append(f"care-recipient:{envelope.care_recipient_id}")
    return tuple(rooms)


def to_broadcast(envelope: EventEnvelope) -> BroadcastMessage:
    """Map an envelope to its broadcast name, payload and rooms."""
    category = envelope.type.split(".", 1)[0]
    name = envelope.type.replace(".", "_") if category in _UNDERSCORED_CATEGORIES else envelope.type
    return BroadcastMessage(
        event=name,
        data=envelope.data,
        rooms=rooms_for(envelope),
        emergency=category == "emergency",
    )


class WebSocketBridge(BaseConsumer):
    """Forwards domain events to a Broadcaster."""

    name = "websocket"

    def __init__(self, broadcaster: Broadcaster, *, seen: SeenMessages | None = None) -> None:
        super().__init__(seen=seen)
        self.broadcaster = broadcaster

    async def process(self, envelope: EventEnvelope) -> None:
        message = to_broadcast(envelope)
        if message.emergency:
            self._logger.warning(
                "Broadcasting emergency event",
                extra={"event_type": envelope.type, "rooms": list(message.rooms)},
            )
            await self.broadcaster.emergency(message.event, message.data, message.rooms)
            return
        await self.broadcaster.broadcast(message.event, message.data, message.rooms)

    def on_failure(self, envelope: EventEnvelope, exc: Exception) -> Disposition:
        _ = envelope, exc
        return Disposition.NACK_REQUEUE


__all__ = ["BroadcastMessage", "Broadcaster", "WebSocketBridge", "rooms_for", "to_broadcast"]
