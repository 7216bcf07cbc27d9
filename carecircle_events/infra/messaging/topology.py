"""Broker topology: exchanges, queues, bindings and dead-lettering.

The topology is described with plain frozen dataclasses, validated, and then
turned into FastStream RabbitExchange / RabbitQueue objects for declaration.
Consumers subscribe with the same RabbitQueue objects so queue arguments
never disagree between declaration and subscription.

Exchanges:
    domain.events   topic    every domain event, routed by event type
    notifications   direct   channel requests (notify.push / email / sms)
    dlx             direct   dead letters, keyed by source queue
    audit           fanout   every bound queue sees every message; also
                             bound to domain.events with "#"

Rules enforced by validate_topology():
    - every queue fed by the domain-events exchange declares a dead-letter target
    - every dead-letter routing key is bound to a queue on the dead-letter exchange
    - every referenced exchange is declared
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from faststream.rabbit import ExchangeType, RabbitExchange, RabbitQueue

from carecircle_events.core.events.types import EMERGENCY_PRIORITY
from carecircle_events.core.exceptions import TopologyError
from carecircle_events.infra.messaging import conventions as names

if TYPE_CHECKING:
    from faststream.rabbit import RabbitBroker

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
WORKING_QUEUE_TTL_MS = DAY_MS
RETAINED_QUEUE_TTL_MS = 7 * DAY_MS


class ExchangeKind(StrEnum):
    """Supported exchange types."""

    TOPIC = "topic"
    DIRECT = "direct"
    FANOUT = "fanout"


_EXCHANGE_TYPES: dict[ExchangeKind, ExchangeType] = {
    ExchangeKind.TOPIC: ExchangeType.TOPIC,
    ExchangeKind.DIRECT: ExchangeType.DIRECT,
    ExchangeKind.FANOUT: ExchangeType.FANOUT,
}


# ──────────────────────────────────────────────────────────────────────────────
# Descriptors
# ──────────────────────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class ExchangeSpec:
    """An exchange to declare."""

    name: str
    kind: ExchangeKind
    durable: bool = True


@dataclass(slots=True, frozen=True)
class DeadLetterSpec:
    """Where a queue sends rejected or expired messages."""

    exchange: str
    routing_key: str


@dataclass(slots=True, frozen=True)
class QueueSpec:
    """A queue, its bindings and its arguments.

    Attributes:
        name: Queue name
        exchange: Exchange the queue is bound to
        binding_keys: Routing keys or topic patterns; ignored for fanout exchanges
        durable: Survive broker restarts
        dead_letter: Dead-letter target, if any
        max_priority: Enables priority delivery up to this value
        message_ttl_ms: Per-queue message TTL
        lazy: Keep messages on disk rather than in memory
    """

    name: str
    exchange: str
    binding_keys: tuple[str, ...] = ()
    durable: bool = True
    dead_letter: DeadLetterSpec | None = None
    max_priority: int | None = None
    message_ttl_ms: int | None = None
    lazy: bool = True

    def arguments(self) -> dict[str, Any]:
        """x-arguments passed when declaring the queue."""
        args: dict[str, Any] = {}
        if self.dead_letter is not None:
            args["x-dead-letter-exchange"] = self.dead_letter.exchange
            args["x-dead-letter-routing-key"] = self.dead_letter.routing_key
        if self.message_ttl_ms is not None:
            args["x-message-ttl"] = self.message_ttl_ms
        if self.max_priority is not None:
            args["x-max-priority"] = self.max_priority
        if self.lazy:
            args["x-queue-mode"] = "lazy"
        return args


@dataclass(slots=True, frozen=True)
class ExchangeBindingSpec:
    """Exchange-to-exchange binding: ``destination`` receives from ``source``."""

    source: str
    destination: str
    routing_key: str = ""


@dataclass(slots=True, frozen=True)
class Topology:
    """Complete, immutable broker topology."""

    exchanges: tuple[ExchangeSpec, ...]
    queues: tuple[QueueSpec, ...]
    exchange_bindings: tuple[ExchangeBindingSpec, ...] = field(default=())

    def exchange(self, name: str) -> ExchangeSpec:
        """Look up an exchange by name.

        Raises:
            TopologyError: If no exchange has that name.
        """
        for spec in self.exchanges:
            if spec.name == name:
                return spec
        raise TopologyError("Unknown exchange", {"exchange": name})

    def queue(self, name: str) -> QueueSpec:
        """Look up a queue by name.

        Raises:
            TopologyError: If no queue has that name.
        """
        for spec in self.queues:
            if spec.name == name:
                return spec
        raise TopologyError("Unknown queue", {"queue": name})

    def route(self, exchange: str, routing_key: str) -> set[str]:
        """Queues a message published to ``exchange`` with ``routing_key`` reaches.

        Follows exchange-to-exchange bindings, applying each exchange's
        routing semantics the way the broker does.
        """
        reached: set[str] = set()
        self._route(exchange, routing_key, reached, visited=set())
        return reached

    def _route(self, exchange: str, routing_key: str, reached: set[str], visited: set[str]) -> None:
        if exchange in visited:
            return
        visited.add(exchange)
        kind = self.exchange(exchange).kind
        for queue in self.queues:
            if queue.exchange == exchange and _binding_matches(
                kind, queue.binding_keys, routing_key
            ):
                reached.add(queue.name)
        for binding in self.exchange_bindings:
            if binding.source == exchange and _binding_matches(
                kind, (binding.routing_key,), routing_key
            ):
                self._route(binding.destination, routing_key, reached, visited)

    def describe(self) -> list[dict[str, Any]]:
        """Flat description of every queue, for CLI and diagnostics output."""
        return [
            {
                "queue": queue.name,
                "exchange": queue.exchange,
                "kind": self.exchange(queue.exchange).kind.value,
                "binding_keys": list(queue.binding_keys),
                "arguments": queue.arguments(),
            }
            for queue in self.queues
        ]


# ──────────────────────────────────────────────────────────────────────────────
# Routing semantics
# ──────────────────────────────────────────────────────────────────────────────


def topic_matches(pattern: str, routing_key: str) -> bool:
    """AMQP topic match: ``*`` is exactly one word, ``#`` is zero or more.

    Example:
        >>> topic_matches("emergency.#", "emergency.alert.created")
        True
        >>> topic_matches("emergency.*", "emergency.alert.created")
        False
    """
    return _match_words(pattern.split("."), routing_key.split("."))


def _match_words(pattern: list[str], words: list[str]) -> bool:
    if not pattern:
        return not words
    head, rest = pattern[0], pattern[1:]
    if head == "#":
        return any(_match_words(rest, words[i:]) for i in range(len(words) + 1))
    if not words:
        return False
    if head in ("*", words[0]):
        return _match_words(rest, words[1:])
    return False


def _binding_matches(kind: ExchangeKind, binding_keys: tuple[str, ...], routing_key: str) -> bool:
    if kind is ExchangeKind.FANOUT:
        return True
    if kind is ExchangeKind.DIRECT:
        return routing_key in binding_keys
    return any(topic_matches(pattern, routing_key) for pattern in binding_keys)


# ──────────────────────────────────────────────────────────────────────────────
# Topology definition
# ──────────────────────────────────────────────────────────────────────────────


def _dead_letter(queue_name: str) -> DeadLetterSpec:
    return DeadLetterSpec(
        exchange=names.DEAD_LETTER_EXCHANGE_NAME,
        routing_key=names.get_dead_letter_routing_key(queue_name),
    )


def build_topology() -> Topology:
    """Build the CareCircle topology from the configured naming prefixes."""
    exchanges = (
        ExchangeSpec(names.DOMAIN_EVENTS_EXCHANGE_NAME, ExchangeKind.TOPIC),
        ExchangeSpec(names.NOTIFICATIONS_EXCHANGE_NAME, ExchangeKind.DIRECT),
        ExchangeSpec(names.DEAD_LETTER_EXCHANGE_NAME, ExchangeKind.DIRECT),
        ExchangeSpec(names.AUDIT_EXCHANGE_NAME, ExchangeKind.FANOUT),
    )

    websocket = QueueSpec(
        name=names.WEBSOCKET_UPDATES_QUEUE_NAME,
        exchange=names.DOMAIN_EVENTS_EXCHANGE_NAME,
        binding_keys=(
            "medication.*",
            "appointment.*",
            "emergency.#",
            "shift.*",
            "timeline.#",
            "family.#",
            "care_recipient.*",
            "document.*",
        ),
        dead_letter=_dead_letter(names.WEBSOCKET_UPDATES_QUEUE_NAME),
        message_ttl_ms=WORKING_QUEUE_TTL_MS,
    )
    notification_events = QueueSpec(
        name=names.NOTIFICATION_EVENTS_QUEUE_NAME,
        exchange=names.DOMAIN_EVENTS_EXCHANGE_NAME,
        binding_keys=(
            "medication.logged",
            "medication.reminder",
            "shift.*",
            "appointment.reminder",
        ),
        dead_letter=_dead_letter(names.NOTIFICATION_EVENTS_QUEUE_NAME),
        message_ttl_ms=WORKING_QUEUE_TTL_MS,
    )
    emergency = QueueSpec(
        name=names.EMERGENCY_QUEUE_NAME,
        exchange=names.DOMAIN_EVENTS_EXCHANGE_NAME,
        binding_keys=("emergency.alert.created",),
        dead_letter=_dead_letter(names.EMERGENCY_QUEUE_NAME),
        max_priority=EMERGENCY_PRIORITY,
        # Emergency alerts are never expired by TTL
        message_ttl_ms=None,
        lazy=False,
    )
    channel_queues = tuple(
        QueueSpec(
            name=queue_name,
            exchange=names.NOTIFICATIONS_EXCHANGE_NAME,
            binding_keys=(routing_key,),
            dead_letter=_dead_letter(queue_name),
            message_ttl_ms=WORKING_QUEUE_TTL_MS,
        )
        for queue_name, routing_key in (
            (names.NOTIFICATIONS_PUSH_QUEUE_NAME, "notify.push"),
            (names.NOTIFICATIONS_EMAIL_QUEUE_NAME, "notify.email"),
            (names.NOTIFICATIONS_SMS_QUEUE_NAME, "notify.sms"),
        )
    )
    audit_queues = tuple(
        QueueSpec(
            name=queue_name,
            exchange=names.AUDIT_EXCHANGE_NAME,
            message_ttl_ms=RETAINED_QUEUE_TTL_MS,
        )
        for queue_name in (names.AUDIT_LOG_QUEUE_NAME, names.AUDIT_ANALYTICS_QUEUE_NAME)
    )

    processing_sources = (websocket, emergency)
    notification_sources = (notification_events, *channel_queues)
    dead_letter_queues = (
        QueueSpec(
            name=names.DLQ_PROCESSING_QUEUE_NAME,
            exchange=names.DEAD_LETTER_EXCHANGE_NAME,
            binding_keys=tuple(q.dead_letter.routing_key for q in processing_sources if q.dead_letter),
            message_ttl_ms=RETAINED_QUEUE_TTL_MS,
        ),
        QueueSpec(
            name=names.DLQ_NOTIFICATIONS_QUEUE_NAME,
            exchange=names.DEAD_LETTER_EXCHANGE_NAME,
            binding_keys=tuple(
                q.dead_letter.routing_key for q in notification_sources if q.dead_letter
            ),
            message_ttl_ms=RETAINED_QUEUE_TTL_MS,
        ),
    )

    return Topology(
        exchanges=exchanges,
        queues=(
            websocket,
            notification_events,
            emergency,
            *channel_queues,
            *audit_queues,
            *dead_letter_queues,
        ),
        exchange_bindings=(
            ExchangeBindingSpec(
                source=names.DOMAIN_EVENTS_EXCHANGE_NAME,
                destination=names.AUDIT_EXCHANGE_NAME,
                routing_key="#",
            ),
        ),
    )


def validate_topology(topology: Topology) -> None:
    """Check structural rules before anything is declared.

    Raises:
        TopologyError: On the first violation found.
    """
    exchange_names = {spec.name for spec in topology.exchanges}
    domain_exchange = names.DOMAIN_EVENTS_EXCHANGE_NAME

    for binding in topology.exchange_bindings:
        for exchange_name in (binding.source, binding.destination):
            if exchange_name not in exchange_names:
                raise TopologyError(
                    "Exchange binding references an undeclared exchange",
                    {"exchange": exchange_name},
                )

    for queue in topology.queues:
        if queue.exchange not in exchange_names:
            raise TopologyError(
                "Queue bound to an undeclared exchange",
                {"queue": queue.name, "exchange": queue.exchange},
            )
        if queue.exchange == domain_exchange and queue.dead_letter is None:
            raise TopologyError(
                "Domain event queue has no dead-letter target",
                {"queue": queue.name},
            )
        if queue.max_priority is not None and not 1 <= queue.max_priority <= 255:
            raise TopologyError(
                "x-max-priority must be between 1 and 255",
                {"queue": queue.name, "max_priority": queue.max_priority},
            )
        if queue.dead_letter is None:
            continue
        if queue.dead_letter.exchange not in exchange_names:
            raise TopologyError(
                "Dead-letter exchange is not declared",
                {"queue": queue.name, "exchange": queue.dead_letter.exchange},
            )
        if not topology.route(queue.dead_letter.exchange, queue.dead_letter.routing_key):
            raise TopologyError(
                "Dead-lettered messages would not reach any queue",
                {"queue": queue.name, "routing_key": queue.dead_letter.routing_key},
            )


@lru_cache(maxsize=1)
def get_topology() -> Topology:
    """Validated topology for this process."""
    topology = build_topology()
    validate_topology(topology)
    return topology


# ──────────────────────────────────────────────────────────────────────────────
# FastStream objects
# ──────────────────────────────────────────────────────────────────────────────


def to_rabbit_exchange(spec: ExchangeSpec) -> RabbitExchange:
    """FastStream exchange object for a descriptor."""
    return RabbitExchange(
        name=spec.name,
        type=_EXCHANGE_TYPES[spec.kind],
        durable=spec.durable,
        auto_delete=False,
    )


def to_rabbit_queue(spec: QueueSpec) -> RabbitQueue:
    """FastStream queue object for a descriptor."""
    return RabbitQueue(
        name=spec.name,
        durable=spec.durable,
        auto_delete=False,
        arguments=spec.arguments(),
    )


def rabbit_exchange(name: str) -> RabbitExchange:
    """FastStream exchange object for a declared exchange name."""
    return to_rabbit_exchange(get_topology().exchange(name))


def rabbit_queue(name: str) -> RabbitQueue:
    """FastStream queue object for a declared queue name."""
    return to_rabbit_queue(get_topology().queue(name))


async def declare_topology(broker: RabbitBroker, topology: Topology | None = None) -> None:
    """Declare every exchange, queue and binding on a connected broker.

    Declarations are idempotent, so every process may run this at startup.

    Args:
        broker: A started FastStream RabbitBroker.
        topology: Topology to declare; the validated default when omitted.
    """
    topology = topology or get_topology()
    validate_topology(topology)

    declared: dict[str, Any] = {}
    for spec in topology.exchanges:
        declared[spec.name] = await broker.declare_exchange(to_rabbit_exchange(spec))

    for binding in topology.exchange_bindings:
        await declared[binding.destination].bind(
            declared[binding.source],
            routing_key=binding.routing_key,
        )

    for spec in topology.queues:
        queue = await broker.declare_queue(to_rabbit_queue(spec))
        exchange = declared[spec.exchange]
        if topology.exchange(spec.exchange).kind is ExchangeKind.FANOUT:
            await queue.bind(exchange, routing_key="")
            continue
        for routing_key in spec.binding_keys:
            await queue.bind(exchange, routing_key=routing_key)

    logger.info(
        "Broker topology declared",
        extra={
            "exchanges": len(topology.exchanges),
            "queues": len(topology.queues),
            "exchange_bindings": len(topology.exchange_bindings),
        },
    )


__all__ = [
    "DeadLetterSpec",
    "ExchangeBindingSpec",
    "ExchangeKind",
    "ExchangeSpec",
    "QueueSpec",
    "Topology",
    "build_topology",
    "declare_topology",
    "get_topology",
    "rabbit_exchange",
    "rabbit_queue",
    "to_rabbit_exchange",
    "to_rabbit_queue",
    "topic_matches",
    "validate_topology",
]
