"""Programmatic Alembic commands.

Runs migrations through the Alembic library instead of a subprocess, so the
CLI and deployments share one code path. There is no alembic.ini; the script
location and database URL are set on an in-memory Config.

Example:
    commands = get_alembic_commands()
    output = await commands.upgrade("head")
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT_LOCATION = Path(__file__).resolve().parents[3] / "alembic"


@dataclass
class AlembicCommandConfig:
    """Configuration for Alembic commands.

    Attributes:
        url: SQLAlchemy URL of the database to migrate
        script_location: Path to the alembic scripts directory
        version_table_name: Table name for version tracking
    """

    url: str
    script_location: Path = DEFAULT_SCRIPT_LOCATION
    version_table_name: str = "alembic_version"

    def get_alembic_config(self, output_buffer: io.StringIO | None = None) -> Config:
        """Build an Alembic Config without an ini file.

        Args:
            output_buffer: Optional StringIO to capture command output

        Returns:
            Configured Alembic Config object
        """
        config = Config(stdout=output_buffer or io.StringIO())
        config.set_main_option("script_location", str(self.script_location))
        # ConfigParser interpolation treats "%" specially
        config.set_main_option("sqlalchemy.url", self.url.replace("%", "%%"))
        config.attributes["version_table_name"] = self.version_table_name
        return config


class AlembicCommands:
    """Async wrappers around Alembic commands.

    Each command runs in a worker thread; env.py starts its own event loop
    there for the async engine.
    """

    def __init__(self, config: AlembicCommandConfig) -> None:
        self.config = config

    async def upgrade(self, revision: str = "head", *, sql: bool = False) -> str:
        """Upgrade the database to ``revision`` and return Alembic's output."""
        logger.info("Upgrading database", extra={"revision": revision})
        output = io.StringIO()
        alembic_config = self.config.get_alembic_config(output)
        await asyncio.to_thread(command.upgrade, alembic_config, revision, sql=sql)
        logger.info("Upgrade completed", extra={"revision": revision})
        return output.getvalue()

    async def downgrade(self, revision: str = "-1", *, sql: bool = False) -> str:
        """Downgrade the database to ``revision`` (one step back by default)."""
        logger.warning("Downgrading database", extra={"revision": revision})
        output = io.StringIO()
        alembic_config = self.config.get_alembic_config(output)
        await asyncio.to_thread(command.downgrade, alembic_config, revision, sql=sql)
        return output.getvalue()

    async def current(self, *, verbose: bool = False) -> str:
        """Show the current database revision."""
        output = io.StringIO()
        alembic_config = self.config.get_alembic_config(output)
        await asyncio.to_thread(command.current, alembic_config, verbose=verbose)
        return output.getvalue()


def get_alembic_commands(url: str | None = None) -> AlembicCommands:
    """Commands bound to ``url``, or to the configured database.

    Args:
        url: Database URL; the application engine's URL when omitted

    Returns:
        Configured AlembicCommands instance
    """
    if url is None:
        from carecircle_events.infra.database.session import engine

        url = engine.url.render_as_string(hide_password=False)
    return AlembicCommands(AlembicCommandConfig(url=url))


__all__ = [
    "AlembicCommandConfig",
    "AlembicCommands",
    "get_alembic_commands",
]
