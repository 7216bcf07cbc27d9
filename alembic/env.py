"""Alembic migration environment with async engine support.

Used through ``carecircle-events db upgrade`` (see
carecircle_events.infra.database.alembic), which supplies the database URL
on an in-memory Config. Falls back to the configured database settings when
no URL is set.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

# Importing the models registers their tables on Base.metadata
from carecircle_events.core.database.base import Base
from carecircle_events.infra.events.outbox import models  # noqa: F401

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection

config = context.config

target_metadata = Base.metadata

if not config.get_main_option("sqlalchemy.url"):
    from carecircle_events.core.settings import get_db_settings
    from carecircle_events.infra.database.session import SQLITE_FALLBACK_URL

    db_settings = get_db_settings()
    url = db_settings.get_sqlalchemy_url() if db_settings.is_configured else SQLITE_FALLBACK_URL
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))

VERSION_TABLE = config.attributes.get("version_table_name", "alembic_version")


def include_object(
    obj: Any,
    name: str | None,
    type_: str,
    reflected: bool,
    compare_to: Any,
) -> bool:
    """Skip Alembic's own bookkeeping table during autogenerate."""
    _ = obj, reflected, compare_to
    return not (type_ == "table" and name == VERSION_TABLE)


def run_migrations_offline() -> None:
    """Emit SQL to the script output without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table=VERSION_TABLE,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    """Run migrations on a live connection; SQLite uses batch mode."""
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
        version_table=VERSION_TABLE,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Create a throwaway engine and run migrations through it."""
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
