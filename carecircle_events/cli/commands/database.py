"""Database migration commands using the programmatic Alembic API.

Example:bash
    # Apply all pending migrations
    carecircle-events db upgrade

    # Show the current revision
    carecircle-events db current

    # Roll back the last migration
    carecircle-events db downgrade
"""

import sys

import click

from carecircle_events.cli.utils import coro, error, info, success


def get_alembic_commands():
    """AlembicCommands bound to the configured database (lazy import)."""
    from carecircle_events.infra.database.alembic import get_alembic_commands

    return get_alembic_commands()


@click.group(name="db")
def db() -> None:
    """Database migration commands."""


@db.command()
@click.option("--revision", default="head", show_default=True, help="Target revision")
@click.option("--sql", is_flag=True, help="Print SQL instead of executing it")
@coro
async def upgrade(revision: str, sql: bool) -> None:
    """Upgrade the database schema."""
    info(f"Upgrading database to {revision}...")
    try:
        output = await get_alembic_commands().upgrade(revision, sql=sql)
    except Exception as e:
        error(f"Migration failed: {e}")
        sys.exit(1)
    if output:
        click.echo(output)
    success("Database upgraded")


@db.command()
@click.option("--revision", default="-1", show_default=True, help="Target revision")
@click.confirmation_option(prompt="Roll back the database schema?")
@coro
async def downgrade(revision: str) -> None:
    """Downgrade the database schema."""
    try:
        output = await get_alembic_commands().downgrade(revision)
    except Exception as e:
        error(f"Downgrade failed: {e}")
        sys.exit(1)
    if output:
        click.echo(output)
    success(f"Database downgraded to {revision}")


@db.command()
@click.option("--verbose", "-v", is_flag=True, help="Show revision details")
@coro
async def current(verbose: bool) -> None:
    """Show the current database revision."""
    output = await get_alembic_commands().current(verbose=verbose)
    click.echo(output.strip() or "No revision applied")
