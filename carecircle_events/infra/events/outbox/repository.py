"""Repository for EventOutbox state transitions.

Provides methods for:
- Staging events inside the caller's transaction
- Selecting and atomically claiming records for the relay
- Recording publish outcomes
- Releasing abandoned claims
- Retention cleanup and statistics

None of these methods commit. The relay commits after each step so that an
outcome, once recorded, is never rolled back with a later failure.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, func, or_, select, update

from carecircle_events.core.database.repository import BaseRepository
from carecircle_events.core.events.envelope import DEFAULT_SOURCE, EventEnvelope
from carecircle_events.infra.events.outbox.models import EventOutbox, OutboxStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from carecircle_events.core.events.envelope import JsonDocument
    from carecircle_events.core.settings import OutboxSettings

MAX_ERROR_LENGTH = 1000


@dataclass(slots=True, frozen=True)
class CreateEventOptions:
    """Input for staging one outbox record.

    Attributes:
        event_type: Event type, also the default routing key
        aggregate_type: Aggregate type (e.g., "Medication")
        aggregate_id: Aggregate identifier
        payload: Event data placed in the envelope
        exchange: Target exchange; the domain-events exchange when omitted
        routing_key: Routing key; the event type when omitted
        correlation_id: Correlation id; generated when omitted
        caused_by: Actor that triggered the event
        family_id: Tenant id copied into the envelope
        care_recipient_id: Care recipient id copied into the envelope
    """

    event_type: str
    aggregate_type: str
    aggregate_id: str
    payload: JsonDocument
    exchange: str | None = None
    routing_key: str | None = None
    correlation_id: str | None = None
    caused_by: str | None = None
    family_id: str | None = None
    care_recipient_id: str | None = None


@dataclass(slots=True, frozen=True)
class OutboxStats:
    """Record counts by status.

    ``exhausted`` counts FAILED records that reached the retry cap and will
    not be attempted again without operator action.
    """

    pending: int = 0
    processing: int = 0
    processed: int = 0
    failed: int = 0
    exhausted: int = 0

    def to_dict(self) -> dict[str, int]:
        """Plain dict for logging and JSON responses."""
        return asdict(self)


def _truncate(message: str) -> str:
    return message[:MAX_ERROR_LENGTH]


class OutboxRepository(BaseRepository[EventOutbox]):
    """Outbox store used by producers and the relay.

    Args:
        max_retries: FAILED records with this many attempts are not claimed again
        retry_base_delay: Seconds before the first retry; doubles per attempt.
            Zero makes FAILED records eligible on the next relay tick.
        retry_max_delay: Cap on the retry delay in seconds
        default_exchange: Exchange used when CreateEventOptions.exchange is omitted
        source: Value of the envelope ``source`` field
    """

    __slots__ = ("default_exchange", "max_retries", "retry_base_delay", "retry_max_delay", "source")

    def __init__(
        self,
        *,
        max_retries: int = 5,
        retry_base_delay: float = 0.0,
        retry_max_delay: float = 300.0,
        default_exchange: str | None = None,
        source: str = DEFAULT_SOURCE,
    ) -> None:
        super().__init__(EventOutbox)
        if default_exchange is None:
            from carecircle_events.infra.messaging.conventions import (
                DOMAIN_EVENTS_EXCHANGE_NAME,
            )

            default_exchange = DOMAIN_EVENTS_EXCHANGE_NAME
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.default_exchange = default_exchange
        self.source = source

    @classmethod
    def from_settings(cls, settings: OutboxSettings | None = None) -> OutboxRepository:
        """Build a repository configured from OutboxSettings and AppSettings."""
        from carecircle_events.core.settings import get_app_settings, get_outbox_settings

        settings = settings or get_outbox_settings()
        return cls(
            max_retries=settings.max_retries,
            retry_base_delay=settings.retry_base_delay,
            retry_max_delay=settings.retry_max_delay,
            source=get_app_settings().event_source,
        )

    # ──────────────────────────────────────────────────────
    # Producer side
    # ──────────────────────────────────────────────────────

    async def create_event(
        self,
        session: AsyncSession,
        options: CreateEventOptions,
    ) -> EventOutbox:
        """Stage an event in the caller's transaction.

        The record becomes visible to the relay only when the caller commits;
        a rollback discards it together with the business change.

        Args:
            session: The caller's session (not committed here)
            options: Event description

        Returns:
            The staged record; its id equals the envelope id
        """
        envelope = EventEnvelope.create(
            options.event_type,
            options.payload,
            source=self.source,
            correlation_id=options.correlation_id,
            caused_by=options.caused_by,
            family_id=options.family_id,
            care_recipient_id=options.care_recipient_id,
        )
        record = EventOutbox(
            id=uuid.UUID(envelope.id),
            event_type=envelope.type,
            exchange=options.exchange or self.default_exchange,
            routing_key=options.routing_key or envelope.type,
            payload=envelope.to_wire(),
            aggregate_type=options.aggregate_type,
            aggregate_id=str(options.aggregate_id),
            status=OutboxStatus.PENDING.value,
            retry_count=0,
            correlation_id=envelope.correlation_id,
            caused_by=envelope.caused_by,
        )
        await self.create(session, record)

        self._logger.debug(
            "Outbox event staged",
            extra={
                "event_id": envelope.id,
                "event_type": envelope.type,
                "aggregate_type": record.aggregate_type,
                "aggregate_id": record.aggregate_id,
                "correlation_id": envelope.correlation_id,
            },
        )
        return record

    # ──────────────────────────────────────────────────────
    # Relay side
    # ──────────────────────────────────────────────────────

    def _retry_eligible(self, now: datetime) -> Any:
        return and_(
            EventOutbox.status == OutboxStatus.FAILED.value,
            EventOutbox.retry_count < self.max_retries,
            or_(EventOutbox.next_attempt_at.is_(None), EventOutbox.next_attempt_at <= now),
        )

    async def get_pending_events(
        self,
        session: AsyncSession,
        *,
        limit: int = 100,
    ) -> Sequence[EventOutbox]:
        """Select records the relay may attempt, oldest first.

        Returns PENDING records and FAILED records that are below the retry
        cap and past their backoff. PROCESSING records are never returned.

        Args:
            session: Database session
            limit: Maximum number of records

        Returns:
            Candidate records ordered by creation time
        """
        now = datetime.now(UTC)
        stmt = (
            select(EventOutbox)
            .where(
                or_(
                    EventOutbox.status == OutboxStatus.PENDING.value,
                    self._retry_eligible(now),
                )
            )
            .order_by(EventOutbox.created_at.asc(), EventOutbox.id.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def mark_as_processing(
        self,
        session: AsyncSession,
        ids: Iterable[uuid.UUID],
    ) -> list[uuid.UUID]:
        """Atomically claim records for this relay instance.

        A single conditional UPDATE moves only rows that are still claimable
        to PROCESSING. Rows another instance claimed in the meantime fail the
        condition and are left out of the result, so each record is claimed
        by at most one instance.

        Args:
            session: Database session
            ids: Candidate record ids from get_pending_events

        Returns:
            Ids actually claimed by this call
        """
        id_list = list(ids)
        if not id_list:
            return []

        now = datetime.now(UTC)
        stmt = (
            update(EventOutbox)
            .where(
                EventOutbox.id.in_(id_list),
                or_(
                    EventOutbox.status == OutboxStatus.PENDING.value,
                    and_(
                        EventOutbox.status == OutboxStatus.FAILED.value,
                        EventOutbox.retry_count < self.max_retries,
                    ),
                ),
            )
            .values(status=OutboxStatus.PROCESSING.value, claimed_at=now, updated_at=now)
            .returning(EventOutbox.id)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        claimed = set(result.scalars().all())
        # Keep the caller's ordering
        return [record_id for record_id in id_list if record_id in claimed]

    async def mark_as_processed(self, session: AsyncSession, record_id: uuid.UUID) -> bool:
        """Record a successful publish.

        Args:
            session: Database session
            record_id: Id of a PROCESSING record

        Returns:
            True if the record transitioned, False if it was not PROCESSING
        """
        now = datetime.now(UTC)
        stmt = (
            update(EventOutbox)
            .where(
                EventOutbox.id == record_id,
                EventOutbox.status == OutboxStatus.PROCESSING.value,
            )
            .values(
                status=OutboxStatus.PROCESSED.value,
                processed_at=now,
                last_error=None,
                claimed_at=None,
                next_attempt_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    def retry_delay(self, retry_count: int) -> timedelta | None:
        """Backoff before the next attempt after ``retry_count`` failures.

        Exponential: base, 2*base, 4*base... capped at retry_max_delay.
        Returns None when backoff is disabled.
        """
        if self.retry_base_delay <= 0 or retry_count <= 0:
            return None
        seconds = min(self.retry_base_delay * 2 ** (retry_count - 1), self.retry_max_delay)
        return timedelta(seconds=seconds)

    async def mark_as_failed(
        self,
        session: AsyncSession,
        record_id: uuid.UUID,
        error: str,
    ) -> bool:
        """Record a failed publish attempt.

        Increments retry_count, stores the (truncated) error and schedules
        the next attempt according to the backoff policy.

        Args:
            session: Database session
            record_id: Id of a PROCESSING record
            error: Failure description

        Returns:
            True if the record transitioned, False if it was not PROCESSING
        """
        current = await session.execute(
            select(EventOutbox.retry_count).where(
                EventOutbox.id == record_id,
                EventOutbox.status == OutboxStatus.PROCESSING.value,
            )
        )
        retry_count = current.scalar_one_or_none()
        if retry_count is None:
            return False

        now = datetime.now(UTC)
        new_count = retry_count + 1
        delay = self.retry_delay(new_count)
        stmt = (
            update(EventOutbox)
            .where(
                EventOutbox.id == record_id,
                EventOutbox.status == OutboxStatus.PROCESSING.value,
            )
            .values(
                status=OutboxStatus.FAILED.value,
                retry_count=EventOutbox.retry_count + 1,
                last_error=_truncate(error),
                claimed_at=None,
                next_attempt_at=now + delay if delay else None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def release_claims(
        self,
        session: AsyncSession,
        ids: Iterable[uuid.UUID],
        reason: str,
    ) -> int:
        """Give back claimed records that were never attempted.

        Used when a batch is aborted after a transient broker failure. The
        records move to FAILED without consuming a retry, so the next tick
        picks them up again.

        Returns:
            Number of records released
        """
        id_list = list(ids)
        if not id_list:
            return 0

        now = datetime.now(UTC)
        stmt = (
            update(EventOutbox)
            .where(
                EventOutbox.id.in_(id_list),
                EventOutbox.status == OutboxStatus.PROCESSING.value,
            )
            .values(
                status=OutboxStatus.FAILED.value,
                last_error=_truncate(reason),
                claimed_at=None,
                next_attempt_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount

    async def release_stale_claims(
        self,
        session: AsyncSession,
        *,
        older_than: timedelta,
    ) -> int:
        """Fail PROCESSING records whose claim has outlived ``older_than``.

        A relay that crashes between claiming and recording outcomes leaves
        records in PROCESSING. They count as an attempt, because the publish
        may or may not have happened.

        Returns:
            Number of records released
        """
        now = datetime.now(UTC)
        cutoff = now - older_than
        stmt = (
            update(EventOutbox)
            .where(
                EventOutbox.status == OutboxStatus.PROCESSING.value,
                or_(EventOutbox.claimed_at.is_(None), EventOutbox.claimed_at < cutoff),
            )
            .values(
                status=OutboxStatus.FAILED.value,
                retry_count=EventOutbox.retry_count + 1,
                last_error="Claim expired before an outcome was recorded",
                claimed_at=None,
                next_attempt_at=None,
                updated_at=now,
            )
            .returning(EventOutbox.id)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        released = result.scalars().all()
        if released:
            self._logger.warning(
                "Released stale outbox claims",
                extra={"count": len(released), "older_than_seconds": older_than.total_seconds()},
            )
        return len(released)

    # ──────────────────────────────────────────────────────
    # Maintenance
    # ──────────────────────────────────────────────────────

    async def cleanup_processed_events(
        self,
        session: AsyncSession,
        *,
        older_than_days: int = 7,
    ) -> int:
        """Delete PROCESSED records published more than ``older_than_days`` ago.

        Records in any other status are never deleted, whatever their age.

        Returns:
            Number of records deleted
        """
        cutoff = datetime.now(UTC) - timedelta(days=older_than_days)
        stmt = (
            delete(EventOutbox)
            .where(
                EventOutbox.status == OutboxStatus.PROCESSED.value,
                EventOutbox.processed_at.is_not(None),
                EventOutbox.processed_at < cutoff,
            )
            .returning(EventOutbox.id)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return len(result.scalars().all())

    async def get_stats(self, session: AsyncSession) -> OutboxStats:
        """Count records per status."""
        stmt = select(EventOutbox.status, func.count()).group_by(EventOutbox.status)
        result = await session.execute(stmt)
        counts = {status: count for status, count in result.all()}

        exhausted_stmt = (
            select(func.count())
            .select_from(EventOutbox)
            .where(
                EventOutbox.status == OutboxStatus.FAILED.value,
                EventOutbox.retry_count >= self.max_retries,
            )
        )
        exhausted = (await session.execute(exhausted_stmt)).scalar_one()

        return OutboxStats(
            pending=counts.get(OutboxStatus.PENDING.value, 0),
            processing=counts.get(OutboxStatus.PROCESSING.value, 0),
            processed=counts.get(OutboxStatus.PROCESSED.value, 0),
            failed=counts.get(OutboxStatus.FAILED.value, 0),
            exhausted=exhausted,
        )

    async def list_exhausted(
        self,
        session: AsyncSession,
        *,
        limit: int = 100,
    ) -> Sequence[EventOutbox]:
        """FAILED records at the retry cap, oldest first, for manual review."""
        stmt = (
            select(EventOutbox)
            .where(
                EventOutbox.status == OutboxStatus.FAILED.value,
                EventOutbox.retry_count >= self.max_retries,
            )
            .order_by(EventOutbox.created_at.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return result.scalars().all()


__all__ = ["CreateEventOptions", "OutboxRepository", "OutboxStats"]
