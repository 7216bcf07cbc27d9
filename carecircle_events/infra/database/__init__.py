"""Database infrastructure: async engine, sessions and migrations.

Example:
    from carecircle_events.infra.database import get_async_session

    async with get_async_session() as session:
        stats = await repo.get_stats(session)
"""

from .alembic import AlembicCommandConfig, AlembicCommands, get_alembic_commands
from .session import (
    AsyncSessionLocal,
    build_engine,
    build_session_factory,
    close_database,
    engine,
    ensure_outbox_table,
    get_async_session,
    init_database,
)

__all__ = [
    "AlembicCommandConfig",
    "AlembicCommands",
    "AsyncSessionLocal",
    "build_engine",
    "build_session_factory",
    "close_database",
    "engine",
    "ensure_outbox_table",
    "get_alembic_commands",
    "get_async_session",
    "init_database",
]
