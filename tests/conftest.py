"""Pytest configuration and shared fixtures.

Organization:
    - Environment: settings that keep tests off real infrastructure
    - Database Fixtures: file-backed SQLite engine, session factory, outbox repository
    - Messaging Fixtures: AsyncMock broker and the BrokerPublisher around it
    - Metric helpers: read sample values from the service registry

The database is a SQLite file under ``tmp_path`` rather than ``:memory:`` so
that several sessions (two relay instances, a producer and the relay) see
the same data, as they would against PostgreSQL.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import pytest

# Ensure tests run without external infrastructure
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("RABBIT_ENABLED", "false")
os.environ.setdefault("OUTBOX_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")

from carecircle_events.infra.database.session import build_engine, build_session_factory  # noqa: E402
from carecircle_events.infra.database.session import ensure_outbox_table  # noqa: E402
from carecircle_events.infra.events.outbox.repository import OutboxRepository  # noqa: E402
from carecircle_events.infra.messaging.publisher import BrokerPublisher  # noqa: E402
from carecircle_events.infra.metrics import REGISTRY  # noqa: E402

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """Async engine on a fresh SQLite file with the outbox table created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'outbox.db'}")
    await ensure_outbox_table(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the same options the application uses."""
    return build_session_factory(db_engine)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """One session for direct repository calls; rolled back afterwards."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


@pytest.fixture
def repository() -> OutboxRepository:
    """Outbox repository with the default cap of 5 and no backoff."""
    return OutboxRepository(max_retries=5)


# ============================================================================
# Messaging Fixtures
# ============================================================================


@pytest.fixture
def mock_broker() -> AsyncMock:
    """Stand-in for a started FastStream RabbitBroker.

    ``publish`` succeeds by default; set ``side_effect`` to simulate failures.
    """
    broker = AsyncMock()
    broker.publish = AsyncMock(return_value=None)
    return broker


@pytest.fixture
def broker_publisher(mock_broker: AsyncMock) -> BrokerPublisher:
    """BrokerPublisher around the mock broker with a short timeout."""
    return BrokerPublisher(mock_broker, timeout=0.2)


# ============================================================================
# Metric helpers
# ============================================================================


def metric_value(name: str, **labels: str) -> float:
    """Current value of a sample in the service registry (0 when unset)."""
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture
def metric():
    """Expose metric_value to tests as a fixture."""
    return metric_value
