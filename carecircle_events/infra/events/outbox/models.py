"""EventOutbox SQLAlchemy model for the transactional outbox pattern.

The outbox table stores events that need to be published to the message broker.
Events are written to this table in the same transaction as domain changes,
ensuring that either both succeed or both fail.

The relay claims rows from this table, publishes them to RabbitMQ and
records the outcome. Only retention cleanup ever deletes rows.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from carecircle_events.core.database.base import Base, TimestampMixin, UUIDv7PKMixin

JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class OutboxStatus(StrEnum):
    """Lifecycle of an outbox record.

    PENDING -> PROCESSING -> PROCESSED | FAILED, and FAILED -> PROCESSING
    while the retry count is below the cap. PROCESSED is terminal.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


CLAIMABLE_STATUSES = (OutboxStatus.PENDING, OutboxStatus.FAILED)


class EventOutbox(Base, UUIDv7PKMixin, TimestampMixin):
    """Outbox table for reliable event publishing.

    Attributes:
        id: UUID v7 primary key; equal to the envelope id and AMQP message id
        event_type: Event type identifier (e.g., "medication.logged")
        exchange: Exchange the event is published to
        routing_key: Routing key used for the publish
        payload: Full wire envelope as a JSON document
        aggregate_type: Aggregate type (e.g., "Medication")
        aggregate_id: Aggregate id
        status: Lifecycle status (see OutboxStatus)
        retry_count: Number of failed publish attempts
        last_error: Last error message if publishing failed
        processed_at: When the event was successfully published
        correlation_id: Correlation id copied from the envelope
        caused_by: Actor that triggered the event
        claimed_at: When the current PROCESSING claim was taken
        next_attempt_at: Earliest time a FAILED record may be claimed again
    """

    __tablename__ = "event_outbox"

    # Routing
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Event type identifier",
    )
    exchange: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Target exchange name",
    )
    routing_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Routing key used when publishing",
    )

    # Event payload (full envelope)
    payload: Mapped[dict[str, Any]] = mapped_column(
        JsonColumn,
        nullable=False,
        comment="Wire envelope as JSON",
    )

    # Aggregate context
    aggregate_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Aggregate type (e.g., Medication, Appointment)",
    )
    aggregate_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Aggregate identifier",
    )

    # Processing state
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OutboxStatus.PENDING.value,
        index=True,
        comment="pending | processing | processed | failed",
    )
    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of failed publish attempts",
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Last error message if publishing failed",
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the event was successfully published",
    )
    claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the current PROCESSING claim was taken",
    )
    next_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Earliest retry time for FAILED records",
    )

    # Tracing and actor
    correlation_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Correlation id shared by events from one request",
    )
    caused_by: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Actor (user id) that triggered the event",
    )

    __table_args__ = (
        # Relay scan: status filter, oldest first
        Index("ix_event_outbox_status_created", "status", "created_at"),
        Index("ix_event_outbox_aggregate", "aggregate_type", "aggregate_id"),
    )

    @property
    def is_processed(self) -> bool:
        """Check if event has been successfully published."""
        return self.status == OutboxStatus.PROCESSED

    def can_retry(self, max_retries: int) -> bool:
        """Check if a FAILED record is still eligible for another attempt."""
        if self.status != OutboxStatus.FAILED or self.retry_count >= max_retries:
            return False
        if self.next_attempt_at is None:
            return True
        next_attempt = self.next_attempt_at
        if next_attempt.tzinfo is None:
            next_attempt = next_attempt.replace(tzinfo=UTC)
        return datetime.now(UTC) >= next_attempt

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"EventOutbox("
            f"id={self.id}, "
            f"event_type={self.event_type!r}, "
            f"status={self.status}, "
            f"retries={self.retry_count}"
            f")"
        )


__all__ = ["CLAIMABLE_STATUSES", "EventOutbox", "OutboxStatus"]
