"""Database engine and session management.

PostgreSQL through psycopg3 in deployments; any other SQLAlchemy async URL
(``sqlite+aiosqlite``) is accepted for local runs and tests.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from carecircle_events.core.settings import get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

SQLITE_FALLBACK_URL = "sqlite+aiosqlite:///./carecircle_events.db"

db_settings = get_db_settings()


def build_engine(url: str | None = None, **kwargs: Any) -> AsyncEngine:
    """Create an async engine from settings, or for an explicit URL.

    Args:
        url: Override URL; settings are used when omitted
        **kwargs: Extra create_async_engine arguments

    Returns:
        A new AsyncEngine
    """
    if url is None:
        url = db_settings.get_sqlalchemy_url() if db_settings.is_configured else SQLITE_FALLBACK_URL
        engine_kwargs = db_settings.sqlalchemy_engine_kwargs()
    else:
        engine_kwargs = {}
    engine_kwargs.update(kwargs)
    return create_async_engine(url, **engine_kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the options the outbox relies on."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine()

AsyncSessionLocal = build_session_factory(engine)

_outbox_table_initialized = False


async def ensure_outbox_table(bind: AsyncEngine | None = None) -> None:
    """Create the event_outbox table if migrations haven't run yet.

    Idempotent thanks to SQLAlchemy's ``checkfirst`` guard. Deployments are
    expected to run ``carecircle-events db upgrade`` instead.
    """
    global _outbox_table_initialized
    if bind is None and _outbox_table_initialized:
        return

    from carecircle_events.infra.events.outbox.models import EventOutbox

    async with (bind or engine).begin() as conn:
        await conn.run_sync(
            lambda sync_conn: cast("Any", EventOutbox.__table__).create(
                bind=sync_conn, checkfirst=True
            )
        )

    if bind is None:
        _outbox_table_initialized = True


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Yields:
        Database session that is automatically closed. Nothing is committed
        on the caller's behalf.

    Example:
        async with get_async_session() as session:
            await repo.create_event(session, options)
            await session.commit()
    """
    async with AsyncSessionLocal() as session:
        yield session


async def init_database() -> None:
    """Verify connectivity and make sure the outbox table exists.

    Raises:
        Exception: Whatever the driver raises when the database is unreachable.
    """
    db_url = engine.url.render_as_string(hide_password=True)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        await ensure_outbox_table()
    except Exception as e:
        logger.error(
            "Failed to connect to database",
            extra={"url": db_url, "error": str(e)},
        )
        raise
    logger.info("Database connection established", extra={"url": db_url})


async def close_database() -> None:
    """Dispose of the engine's connection pool."""
    logger.info("Closing database connection")
    await engine.dispose()


__all__ = [
    "AsyncSessionLocal",
    "SQLITE_FALLBACK_URL",
    "build_engine",
    "build_session_factory",
    "close_database",
    "engine",
    "ensure_outbox_table",
    "get_async_session",
    "init_database",
]
