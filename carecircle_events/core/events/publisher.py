"""Publisher façade used by domain services.

Two delivery paths:

- Durable: the event is staged in the outbox inside the caller's
  transaction and relayed later. Survives broker outages and crashes.
  Default for domain events, and forced for safety-critical ones.
- Direct: the envelope is published immediately. Used for loss-tolerant
  traffic such as reminders; failures raise to the caller, except audit
  events, which are fire-and-forget.

Example:
    publisher = get_event_publisher()

    async with get_async_session() as session:
        session.add(log_entry)
        await publisher.publish_medication_logged(
            session,
            medication_id,
            {"dose": "5mg", "givenAt": given_at.isoformat()},
            PublishOptions(caused_by=user_id, family_id=family_id),
        )
        await session.commit()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, cast

from carecircle_events.core.events.envelope import DEFAULT_SOURCE, EventEnvelope
from carecircle_events.core.events.types import EventType, NotificationChannel, is_safety_critical
from carecircle_events.core.exceptions import DeliveryError, OutboxSessionRequiredError
from carecircle_events.infra.events.outbox.repository import CreateEventOptions, OutboxRepository
from carecircle_events.infra.messaging import conventions
from carecircle_events.infra.messaging.publisher import BrokerPublisher, message_from_envelope
from carecircle_events.infra.metrics.prometheus import direct_publish_failures_total

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from carecircle_events.core.events.envelope import JsonDocument
    from carecircle_events.infra.events.outbox.models import EventOutbox

logger = logging.getLogger(__name__)

_publisher: EventPublisher | None = None


@dataclass(slots=True, frozen=True)
class Aggregate:
    """The entity an event is about, e.g. ``Aggregate("Medication", med_id)``."""

    type: str
    id: str


@dataclass(slots=True, frozen=True)
class PublishOptions:
    """Per-call publishing options.

    Attributes:
        durable: Stage in the outbox (True) or publish now (False).
            Ignored for safety-critical events, which are always durable.
        correlation_id: Correlation id; generated when omitted
        caused_by: Actor that triggered the event
        family_id: Tenant id, used for real-time room fan-out
        care_recipient_id: Care recipient id
        exchange: Target exchange; domain events when omitted
        routing_key: Routing key; the event type when omitted
    """

    durable: bool = True
    correlation_id: str | None = None
    caused_by: str | None = None
    family_id: str | None = None
    care_recipient_id: str | None = None
    exchange: str | None = None
    routing_key: str | None = None


DEFAULT_OPTIONS = PublishOptions()


class EventPublisher:
    """Entry point for producing events.

    Args:
        repository: Outbox repository for durable publishes
        broker_publisher: Broker publisher for direct publishes
        source: Envelope ``source`` for direct publishes
    """

    def __init__(
        self,
        repository: OutboxRepository,
        broker_publisher: BrokerPublisher,
        *,
        source: str = DEFAULT_SOURCE,
    ) -> None:
        self.repository = repository
        self.broker_publisher = broker_publisher
        self.source = source

    @classmethod
    def from_settings(cls) -> EventPublisher:
        """Publisher wired to the configured outbox and process broker."""
        from carecircle_events.core.settings import get_app_settings

        return cls(
            OutboxRepository.from_settings(),
            BrokerPublisher.from_settings(),
            source=get_app_settings().event_source,
        )

    # ──────────────────────────────────────────────────────
    # Primitives
    # ──────────────────────────────────────────────────────

    async def publish(
        self,
        event_type: EventType | str,
        payload: JsonDocument,
        aggregate: Aggregate,
        options: PublishOptions = DEFAULT_OPTIONS,
        *,
        session: AsyncSession | None = None,
    ) -> EventOutbox | None:
        """Publish a domain event, durably unless told otherwise.

        Args:
            event_type: Event type (routing key)
            payload: Event data
            aggregate: Entity the event is about
            options: Delivery options
            session: The caller's open transaction; required for durable delivery

        Returns:
            The staged outbox record for durable delivery, None for direct

        Raises:
            OutboxSessionRequiredError: Durable delivery without a session
            DeliveryError: Direct delivery failed
        """
        event_type = str(event_type)
        durable = options.durable
        if not durable and is_safety_critical(event_type):
            logger.info(
                "Safety-critical event forced to durable delivery",
                extra={"event_type": event_type},
            )
            durable = True

        if not durable:
            await self.publish_direct(event_type, payload, options, aggregate=aggregate)
            return None

        if session is None:
            raise OutboxSessionRequiredError(event_type)

        return await self.repository.create_event(
            session,
            CreateEventOptions(
                event_type=event_type,
                aggregate_type=aggregate.type,
                aggregate_id=aggregate.id,
                payload=payload,
                exchange=options.exchange,
                routing_key=options.routing_key,
                correlation_id=options.correlation_id,
                caused_by=options.caused_by,
                family_id=options.family_id,
                care_recipient_id=options.care_recipient_id,
            ),
        )

    async def publish_direct(
        self,
        event_type: EventType | str,
        payload: JsonDocument,
        options: PublishOptions = DEFAULT_OPTIONS,
        *,
        aggregate: Aggregate | None = None,
        category: str = "domain",
    ) -> EventEnvelope:
        """Build an envelope and publish it now, bypassing the outbox.

        Safety-critical events are never sent this way; they go through
        ``publish()`` with the caller's session.

        Returns:
            The published envelope

        Raises:
            OutboxSessionRequiredError: The event type is safety-critical
            DeliveryError: The broker rejected or did not accept the message
        """
        if is_safety_critical(str(event_type)):
            raise OutboxSessionRequiredError(str(event_type))

        envelope = self._envelope(event_type, payload, options)
        message = message_from_envelope(
            envelope,
            exchange=options.exchange or conventions.DOMAIN_EVENTS_EXCHANGE_NAME,
            routing_key=options.routing_key if options.routing_key is not None else envelope.type,
            aggregate_type=aggregate.type if aggregate else None,
            aggregate_id=aggregate.id if aggregate else None,
        )
        try:
            await self.broker_publisher.publish(message)
        except DeliveryError as exc:
            direct_publish_failures_total.labels(category=category).inc()
            logger.error(
                "Direct publish failed",
                extra={
                    "event_type": envelope.type,
                    "event_id": envelope.id,
                    "exchange": message.exchange,
                    "error": str(exc),
                    "transient": exc.transient,
                },
            )
            raise

        logger.debug(
            "Event published directly",
            extra={"event_type": envelope.type, "event_id": envelope.id},
        )
        return envelope

    def _envelope(
        self,
        event_type: EventType | str,
        payload: JsonDocument,
        options: PublishOptions,
    ) -> EventEnvelope:
        return EventEnvelope.create(
            event_type,
            payload,
            source=self.source,
            correlation_id=options.correlation_id,
            caused_by=options.caused_by,
            family_id=options.family_id,
            care_recipient_id=options.care_recipient_id,
        )

    # ──────────────────────────────────────────────────────
    # Fixed-target wrappers
    # ──────────────────────────────────────────────────────

    async def publish_notification(
        self,
        channel: NotificationChannel | str,
        payload: JsonDocument,
        options: PublishOptions = DEFAULT_OPTIONS,
    ) -> EventEnvelope:
        """Send a notification request to one channel queue (push, email, sms).

        Raises:
            ValueError: Unknown channel
            DeliveryError: The broker did not accept the message
        """
        channel = NotificationChannel(channel)
        return await self.publish_direct(
            channel.routing_key,
            payload,
            replace(
                options,
                durable=False,
                exchange=conventions.NOTIFICATIONS_EXCHANGE_NAME,
                routing_key=channel.routing_key,
            ),
            category="notification",
        )

    async def publish_audit_event(
        self,
        event_type: str,
        payload: JsonDocument,
        options: PublishOptions = DEFAULT_OPTIONS,
    ) -> bool:
        """Fire-and-forget publish to the audit fanout exchange.

        Never raises; an audit failure must not break the caller.

        Returns:
            True if the broker accepted the message
        """
        try:
            await self.publish_direct(
                event_type,
                payload,
                replace(
                    options,
                    durable=False,
                    exchange=conventions.AUDIT_EXCHANGE_NAME,
                    routing_key="",
                ),
                category="audit",
            )
        except Exception as exc:
            logger.warning(
                "Audit event not published",
                extra={"event_type": event_type, "error": str(exc)},
            )
            return False
        return True

    async def publish_emergency_alert(
        self,
        session: AsyncSession,
        alert_id: str,
        payload: JsonDocument,
        options: PublishOptions = DEFAULT_OPTIONS,
    ) -> EventOutbox:
        """Stage an emergency alert; always durable and priority-routed."""
        record = await self.publish(
            EventType.EMERGENCY_ALERT_CREATED,
            payload,
            Aggregate("EmergencyAlert", alert_id),
            replace(options, durable=True),
            session=session,
        )
        # Durable delivery always returns the staged record
        return cast("EventOutbox", record)

    # Durable domain events

    async def publish_medication_logged(
        self,
        session: AsyncSession,
        medication_id: str,
        payload: JsonDocument,
        options: PublishOptions = DEFAULT_OPTIONS,
    ) -> EventOutbox | None:
        return await self.publish(
            EventType.MEDICATION_LOGGED,
            payload,
            Aggregate("Medication", medication_id),
            options,
            session=session,
        )

    async def publish_shift_started(
        self,
        session: AsyncSession,
        shift_id: str,
        payload: JsonDocument,
        options: PublishOptions = DEFAULT_OPTIONS,
    ) -> EventOutbox | None:
        return await self.publish(
            EventType.SHIFT_STARTED,
            payload,
            Aggregate("CaregiverShift", shift_id),
            options,
            session=session,
        )

    async def publish_shift_ended(
        self,
        session: AsyncSession,
        shift_id: str,
        payload: JsonDocument,
        options: PublishOptions = DEFAULT_OPTIONS,
    ) -> EventOutbox | None:
        return await self.publish(
            EventType.SHIFT_ENDED,
            payload,
            Aggregate("CaregiverShift", shift_id),
            options,
            session=session,
        )

    async def publish_timeline_entry(
        self,
        session: AsyncSession,
        entry_id: str,
        payload: JsonDocument,
        options: PublishOptions = DEFAULT_OPTIONS,
    ) -> EventOutbox | None:
        return await self.publish(
            EventType.TIMELINE_ENTRY_CREATED,
            payload,
            Aggregate("TimelineEntry", entry_id),
            options,
            session=session,
        )

    # Loss-tolerant reminders, published directly

    async def publish_appointment_reminder(
        self,
        appointment_id: str,
        payload: JsonDocument,
        options: PublishOptions = DEFAULT_OPTIONS,
    ) -> None:
        await self.publish(
            EventType.APPOINTMENT_REMINDER,
            payload,
            Aggregate("Appointment", appointment_id),
            replace(options, durable=False),
        )

    async def publish_medication_due(
        self,
        medication_id: str,
        payload: JsonDocument,
        options: PublishOptions = DEFAULT_OPTIONS,
    ) -> None:
        await self.publish(
            EventType.MEDICATION_DUE,
            payload,
            Aggregate("Medication", medication_id),
            replace(options, durable=False),
        )


def get_event_publisher() -> EventPublisher:
    """Get the process-wide EventPublisher, creating it on first use."""
    global _publisher

    if _publisher is None:
        _publisher = EventPublisher.from_settings()
    return _publisher


__all__ = [
    "Aggregate",
    "EventPublisher",
    "PublishOptions",
    "get_event_publisher",
]
