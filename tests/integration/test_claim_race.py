"""Concurrent relay instances claiming the same outbox rows.

Two sessions stand in for two relay processes. Both select the same
candidates before either claims; the conditional UPDATE alone must keep
them from claiming the same row twice.
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from carecircle_events.infra.events.outbox.models import EventOutbox, OutboxStatus
from carecircle_events.infra.events.outbox.repository import CreateEventOptions

pytestmark = pytest.mark.integration


async def _stage(session_factory, repository, count: int) -> None:
    async with session_factory() as session:
        for index in range(count):
            await repository.create_event(
                session,
                CreateEventOptions(
                    event_type="medication.logged",
                    aggregate_type="Medication",
                    aggregate_id=f"med-{index}",
                    payload={"index": index},
                ),
            )
        await session.commit()


async def _count(session_factory, status: OutboxStatus) -> int:
    async with session_factory() as session:
        stmt = select(func.count()).select_from(EventOutbox).where(EventOutbox.status == status.value)
        return (await session.execute(stmt)).scalar_one()


class TestConcurrentClaims:
    """Each outbox record is claimed by at most one relay instance."""

    async def test_interleaved_claims_never_double_count(self, session_factory, repository):
        """Test that two instances claim 10 rows exactly once in total."""
        await _stage(session_factory, repository, 10)

        async with session_factory() as first, session_factory() as second:
            first_candidates = await repository.get_pending_events(first)
            second_candidates = await repository.get_pending_events(second)
            assert len(first_candidates) == len(second_candidates) == 10

            first_claimed = await repository.mark_as_processing(
                first, [record.id for record in first_candidates]
            )
            await first.commit()
            second_claimed = await repository.mark_as_processing(
                second, [record.id for record in second_candidates]
            )
            await second.commit()

        assert len(first_claimed) + len(second_claimed) == 10
        assert not set(first_claimed) & set(second_claimed)
        assert await _count(session_factory, OutboxStatus.PROCESSING) == 10
