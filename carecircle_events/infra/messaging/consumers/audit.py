"""Audit and analytics sinks bound to the audit fanout exchange.

Each sink has its own queue and receives a copy of every audit event and of
every domain event. Neither retries, and the audit queues have no
dead-letter target: a record that cannot be written is logged and discarded.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from carecircle_events.infra.messaging.consumers.base import BaseConsumer, Disposition
from carecircle_events.infra.metrics.prometheus import analytics_events_total

if TYPE_CHECKING:
    from carecircle_events.core.events.envelope import EventEnvelope

audit_logger = logging.getLogger("carecircle_events.audit")


def audit_entry(envelope: EventEnvelope) -> dict[str, Any]:
    """Structured audit record for one envelope (camelCase keys)."""
    return {
        "timestamp": datetime.now(UTC).isoformat(),
        "eventId": envelope.id,
        "eventType": envelope.type,
        "eventTimestamp": envelope.timestamp.isoformat(),
        "source": envelope.source,
        "correlationId": envelope.correlation_id,
        "userId": envelope.caused_by,
        "familyId": envelope.family_id,
        "careRecipientId": envelope.care_recipient_id,
        "data": envelope.data,
    }


class AuditSink(BaseConsumer):
    """Writes one structured entry per event to the audit logger."""

    name = "audit"

    async def process(self, envelope: EventEnvelope) -> None:
        audit_logger.info("Audit event", extra={"audit": audit_entry(envelope)})

    def on_failure(self, envelope: EventEnvelope, exc: Exception) -> Disposition:
        _ = envelope, exc
        return Disposition.NACK_DROP


class AnalyticsSink(BaseConsumer):
    """Counts events by category for dashboards."""

    name = "analytics"

    async def process(self, envelope: EventEnvelope) -> None:
        category = envelope.type.split(".", 1)[0]
        analytics_events_total.labels(category=category).inc()
        self._logger.debug(
            "Analytics event recorded",
            extra={"event_type": envelope.type, "category": category},
        )

    def on_failure(self, envelope: EventEnvelope, exc: Exception) -> Disposition:
        _ = envelope, exc
        return Disposition.NACK_DROP


__all__ = ["AnalyticsSink", "AuditSink", "audit_entry"]
