"""Broker topology commands.

Example:bash
    # Print exchanges, queues, bindings and queue arguments
    carecircle-events topology show

    # Declare everything on the configured broker
    carecircle-events topology declare
"""

import sys

import click

from carecircle_events.cli.utils import coro, error, header, print_json, print_table, success
from carecircle_events.core.exceptions import TopologyError
from carecircle_events.infra.messaging.topology import build_topology, validate_topology


@click.group(name="topology")
def topology() -> None:
    """RabbitMQ exchange and queue topology."""


@topology.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
def show(output_format: str) -> None:
    """Show the validated topology."""
    spec = build_topology()
    try:
        validate_topology(spec)
    except TopologyError as e:
        error(f"Invalid topology: {e}")
        sys.exit(1)

    queues = spec.describe()
    if output_format == "json":
        print_json(
            {
                "exchanges": [{"name": x.name, "kind": x.kind.value} for x in spec.exchanges],
                "queues": queues,
                "exchange_bindings": [
                    {"source": b.source, "destination": b.destination, "routing_key": b.routing_key}
                    for b in spec.exchange_bindings
                ],
            },
        )
        return

    header("Exchanges")
    print_table([{"name": x.name, "kind": x.kind.value} for x in spec.exchanges], ["name", "kind"])

    header("Queues")
    print_table(
        [
            {
                "queue": q["queue"],
                "exchange": q["exchange"],
                "bindings": ", ".join(q["binding_keys"]) or "(fanout)",
                "dead_letter": q["arguments"].get("x-dead-letter-routing-key", ""),
            }
            for q in queues
        ],
        ["queue", "exchange", "bindings", "dead_letter"],
    )


@topology.command()
@coro
async def declare() -> None:
    """Declare exchanges, queues and bindings on the configured broker."""
    from carecircle_events.infra.messaging.broker import broker_context
    from carecircle_events.infra.messaging.topology import declare_topology

    async with broker_context() as broker:
        if broker is None:
            error("RabbitMQ is not configured")
            sys.exit(1)
        await declare_topology(broker)
    success("Topology declared")
