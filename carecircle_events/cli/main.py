"""Main CLI entry point for carecircle-events management commands."""

import click

from carecircle_events import __version__
from carecircle_events.cli.commands import database, outbox, server, topology
from carecircle_events.infra.logging.config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="carecircle-events")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """CareCircle Events CLI - outbox relay and broker management.

    \b
    Command Groups:
      outbox     Outbox statistics, cleanup and the relay
      topology   RabbitMQ exchanges, queues and bindings
      db         Database migrations
      serve      Run the HTTP API, relay and consumers

    \b
    Quick Start:
      carecircle-events db upgrade         # Create the event_outbox table
      carecircle-events topology declare   # Declare exchanges and queues
      carecircle-events outbox relay       # Run the relay until Ctrl+C
    """
    ctx.ensure_object(dict)


cli.add_command(outbox.outbox)
cli.add_command(topology.topology)
cli.add_command(database.db)
cli.add_command(server.serve)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
