"""Outbox relay: claims staged events and publishes them to RabbitMQ.

One call to ``process_pending()`` is one relay tick:

1. Select up to ``batch_size`` candidate records and claim them with a
   conditional UPDATE, then commit the claim. Records another relay instance
   claimed first are simply absent from the result.
2. Publish the claimed records one at a time, oldest first.
3. Commit each outcome (PROCESSED or FAILED) as soon as it is known, so a
   later failure never rolls back a record that was already published.

A permanent delivery failure only fails its own record. A transient one
(broker down, publish timeout) fails the record and ends the tick; the rest
of the batch is released unattempted for the next tick to pick up.

Ticks never overlap within one process; across processes the claim is the
only coordination. A tick stops starting new publishes once its claims would
outlive ``stale_claim_after`` (less one publish timeout), so another
instance's reaper never takes back a record this tick may still publish.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from carecircle_events.core.exceptions import DeliveryError
from carecircle_events.infra.events.outbox.repository import OutboxRepository, OutboxStats
from carecircle_events.infra.messaging.publisher import BrokerPublisher, message_from_record
from carecircle_events.infra.metrics.prometheus import (
    outbox_batches_aborted_total,
    outbox_claim_deadline_stops_total,
    outbox_claims_lost_total,
    outbox_events_failed_total,
    outbox_events_published_total,
    outbox_records,
    outbox_records_deleted_total,
    outbox_stale_claims_released_total,
    outbox_tick_duration_seconds,
    outbox_ticks_skipped_total,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from carecircle_events.core.settings import OutboxSettings
    from carecircle_events.infra.events.outbox.models import EventOutbox

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RelayResult:
    """Outcome of one relay tick.

    Attributes:
        claimed: Records this instance claimed
        published: Records published and marked PROCESSED
        failed: Records marked FAILED (retry_count incremented)
        released: Claimed records given back unattempted after an abort or
            at the claim deadline
        lost: Records whose claim a reaper released before the outcome was
            recorded; their state is left as the reaper set it
        aborted: Whether the tick stopped early on a transient failure
        skipped: Whether the tick did nothing because one was already running
    """

    claimed: int = 0
    published: int = 0
    failed: int = 0
    released: int = 0
    lost: int = 0
    aborted: bool = False
    skipped: bool = False


class OutboxProcessor:
    """Relays outbox records to the broker.

    Args:
        publisher: Broker publisher used for every record
        repository: Outbox repository (owns the retry cap and backoff)
        session_factory: Factory for the relay's own sessions
        batch_size: Maximum records claimed per tick
        stale_claim_after: Age after which a PROCESSING claim is released
        retention_days: Default age for cleanup of PROCESSED records
    """

    def __init__(
        self,
        publisher: BrokerPublisher,
        *,
        repository: OutboxRepository | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        batch_size: int = 50,
        stale_claim_after: timedelta = timedelta(minutes=5),
        retention_days: int = 7,
    ) -> None:
        if stale_claim_after.total_seconds() <= publisher.timeout:
            msg = (
                f"stale_claim_after ({stale_claim_after.total_seconds()}s) must exceed "
                f"the publish timeout ({publisher.timeout}s)"
            )
            raise ValueError(msg)
        if session_factory is None:
            from carecircle_events.infra.database.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal

        self.publisher = publisher
        self.repository = repository or OutboxRepository()
        self.batch_size = batch_size
        self.stale_claim_after = stale_claim_after
        self.retention_days = retention_days
        self._session_factory = session_factory
        self._is_processing = False

    @classmethod
    def from_settings(
        cls,
        publisher: BrokerPublisher | None = None,
        settings: OutboxSettings | None = None,
    ) -> OutboxProcessor:
        """Processor wired to the process broker, database and OutboxSettings."""
        from carecircle_events.core.settings import get_outbox_settings

        settings = settings or get_outbox_settings()
        return cls(
            publisher or BrokerPublisher.from_settings(),
            repository=OutboxRepository.from_settings(settings),
            batch_size=settings.batch_size,
            stale_claim_after=timedelta(seconds=settings.stale_claim_seconds),
            retention_days=settings.retention_days,
        )

    @property
    def is_processing(self) -> bool:
        """Whether a tick is currently running in this process."""
        return self._is_processing

    # ──────────────────────────────────────────────────────
    # Relay tick
    # ──────────────────────────────────────────────────────

    async def process_pending(self) -> RelayResult:
        """Run one relay tick.

        Never raises: unexpected errors are logged and end the tick. Claimed
        records left in PROCESSING by such an error are recovered by
        ``reap_stale_claims``.
        """
        if self._is_processing:
            outbox_ticks_skipped_total.inc()
            logger.debug("Relay tick skipped, previous tick still running")
            return RelayResult(skipped=True)

        if not self.publisher.is_available:
            logger.debug("Relay tick skipped, no broker configured")
            return RelayResult(skipped=True)

        self._is_processing = True
        result = RelayResult()
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            async with self._session_factory() as session:
                await self._process_batch(session, result)
        except Exception:
            logger.exception(
                "Relay tick failed",
                extra={"claimed": result.claimed, "published": result.published},
            )
        finally:
            self._is_processing = False
            outbox_tick_duration_seconds.observe(loop.time() - started)

        if result.claimed:
            logger.info(
                "Outbox batch processed",
                extra={
                    "claimed": result.claimed,
                    "published": result.published,
                    "failed": result.failed,
                    "released": result.released,
                    "lost": result.lost,
                    "aborted": result.aborted,
                },
            )
        return result

    async def _process_batch(self, session: AsyncSession, result: RelayResult) -> None:
        repo = self.repository
        candidates = await repo.get_pending_events(session, limit=self.batch_size)
        if not candidates:
            return

        loop = asyncio.get_running_loop()
        # Last moment a publish may start and still finish before the claim is stale
        deadline = (
            loop.time() + self.stale_claim_after.total_seconds() - self.publisher.timeout
        )
        claimed_ids = await repo.mark_as_processing(session, [record.id for record in candidates])
        await session.commit()
        result.claimed = len(claimed_ids)
        if not claimed_ids:
            logger.debug(
                "All candidates claimed by another relay instance",
                extra={"candidates": len(candidates)},
            )
            return

        by_id = {record.id: record for record in candidates}
        batch = [by_id[record_id] for record_id in claimed_ids]

        for index, record in enumerate(batch):
            if loop.time() >= deadline:
                remaining = [pending.id for pending in batch[index:]]
                result.released = await repo.release_claims(
                    session,
                    remaining,
                    reason="Batch stopped at claim deadline",
                )
                await session.commit()
                outbox_claim_deadline_stops_total.inc()
                logger.warning(
                    "Relay batch stopped before its claims turned stale",
                    extra={
                        "released": result.released,
                        "stale_claim_seconds": self.stale_claim_after.total_seconds(),
                    },
                )
                return

            try:
                await self.publisher.publish(message_from_record(record))
            except DeliveryError as exc:
                transitioned = await repo.mark_as_failed(session, record.id, str(exc))
                await session.commit()
                kind = "transient" if exc.transient else "permanent"
                if transitioned:
                    result.failed += 1
                    outbox_events_failed_total.labels(
                        event_type=record.event_type, kind=kind
                    ).inc()
                    self._log_failure(record, exc, kind)
                else:
                    self._claim_lost(record, result)

                if not exc.transient:
                    continue

                remaining = [pending.id for pending in batch[index + 1 :]]
                result.released = await repo.release_claims(
                    session,
                    remaining,
                    reason=f"Batch aborted after transient failure: {exc}",
                )
                await session.commit()
                result.aborted = True
                outbox_batches_aborted_total.inc()
                logger.warning(
                    "Relay batch aborted on transient broker failure",
                    extra={"released": result.released, "error": str(exc)},
                )
                return

            if not await repo.mark_as_processed(session, record.id):
                await session.commit()
                self._claim_lost(record, result)
                continue
            await session.commit()
            result.published += 1
            outbox_events_published_total.labels(event_type=record.event_type).inc()
            logger.debug(
                "Outbox event published",
                extra={
                    "event_id": str(record.id),
                    "event_type": record.event_type,
                    "correlation_id": record.correlation_id,
                },
            )

    def _claim_lost(self, record: EventOutbox, result: RelayResult) -> None:
        result.lost += 1
        outbox_claims_lost_total.inc()
        logger.warning(
            "Outbox claim lost before outcome was recorded",
            extra={"event_id": str(record.id), "event_type": record.event_type},
        )

    def _log_failure(self, record: EventOutbox, exc: DeliveryError, kind: str) -> None:
        retry_count = record.retry_count + 1
        exhausted = retry_count >= self.repository.max_retries
        logger.log(
            logging.ERROR if exhausted else logging.WARNING,
            "Outbox event publish failed",
            extra={
                "event_id": str(record.id),
                "event_type": record.event_type,
                "error": str(exc),
                "kind": kind,
                "retry_count": retry_count,
                "exhausted": exhausted,
            },
        )

    # ──────────────────────────────────────────────────────
    # Maintenance jobs
    # ──────────────────────────────────────────────────────

    async def run_cleanup(self, older_than_days: int | None = None) -> int:
        """Delete PROCESSED records older than the retention window.

        Returns:
            Number of records deleted
        """
        days = older_than_days if older_than_days is not None else self.retention_days
        async with self._session_factory() as session:
            deleted = await self.repository.cleanup_processed_events(
                session, older_than_days=days
            )
            await session.commit()

        outbox_records_deleted_total.inc(deleted)
        logger.info(
            "Outbox retention cleanup finished",
            extra={"deleted": deleted, "older_than_days": days},
        )
        return deleted

    async def collect_stats(self) -> OutboxStats:
        """Read record counts and update the status gauges."""
        async with self._session_factory() as session:
            stats = await self.repository.get_stats(session)

        for status, count in stats.to_dict().items():
            outbox_records.labels(status=status).set(count)
        return stats

    async def log_stats(self) -> OutboxStats:
        """Log record counts; warns when exhausted records need attention."""
        stats = await self.collect_stats()
        logger.info("Outbox statistics", extra=stats.to_dict())
        if stats.exhausted:
            logger.warning(
                "Outbox records exhausted their retries",
                extra={"exhausted": stats.exhausted},
            )
        return stats

    async def list_exhausted(self, limit: int = 100) -> Sequence[EventOutbox]:
        """FAILED records at the retry cap, oldest first."""
        async with self._session_factory() as session:
            return await self.repository.list_exhausted(session, limit=limit)

    async def reap_stale_claims(self) -> int:
        """Release PROCESSING claims abandoned by a crashed or stuck relay."""
        if self._is_processing:
            # An in-flight tick owns its claims
            return 0
        async with self._session_factory() as session:
            released = await self.repository.release_stale_claims(
                session, older_than=self.stale_claim_after
            )
            await session.commit()

        outbox_stale_claims_released_total.inc(released)
        return released


__all__ = ["OutboxProcessor", "RelayResult"]
