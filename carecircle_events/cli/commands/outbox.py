"""Outbox inspection and relay commands.

Example:bash
    # Record counts by status
    carecircle-events outbox stats

    # Records that exhausted their retries
    carecircle-events outbox exhausted --limit 20

    # Delete processed records older than 14 days
    carecircle-events outbox cleanup --days 14

    # Run the relay in the foreground until interrupted
    carecircle-events outbox relay

    # Run a single relay tick
    carecircle-events outbox relay --once
"""

import asyncio
import sys
from dataclasses import asdict

import click

from carecircle_events.cli.utils import (
    coro,
    error,
    header,
    info,
    print_json,
    print_table,
    success,
    warning,
)
from carecircle_events.infra.events.outbox.processor import OutboxProcessor


def get_processor() -> OutboxProcessor:
    """Processor wired from settings (patched in tests)."""
    return OutboxProcessor.from_settings()


@click.group(name="outbox")
def outbox() -> None:
    """Transactional outbox management commands."""


@outbox.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@coro
async def stats(output_format: str) -> None:
    """Show outbox record counts by status."""
    result = await get_processor().collect_stats()
    counts = result.to_dict()

    if output_format == "json":
        print_json(counts)
        return

    header("Outbox Statistics")
    print_table([{"status": k, "count": v} for k, v in counts.items()], ["status", "count"])
    if result.exhausted:
        warning(f"{result.exhausted} record(s) exhausted their retries and need attention")


@outbox.command()
@click.option("--limit", type=click.IntRange(1, 1000), default=100, help="Maximum records to list")
@coro
async def exhausted(limit: int) -> None:
    """List FAILED records that reached the retry cap."""
    records = await get_processor().list_exhausted(limit)

    if not records:
        success("No exhausted outbox records")
        return

    header(f"Exhausted Outbox Records ({len(records)})")
    print_table(
        [
            {
                "id": str(record.id),
                "event_type": record.event_type,
                "retries": record.retry_count,
                "created_at": record.created_at.isoformat(),
                "error": (record.last_error or "")[:60],
            }
            for record in records
        ],
        ["id", "event_type", "retries", "created_at", "error"],
    )


@outbox.command()
@click.option(
    "--days",
    type=click.IntRange(1, 365),
    default=None,
    help="Delete PROCESSED records older than this many days (default: OUTBOX_RETENTION_DAYS)",
)
@coro
async def cleanup(days: int | None) -> None:
    """Delete processed outbox records past the retention age."""
    processor = get_processor()
    deleted = await processor.run_cleanup(days)
    success(f"Deleted {deleted} processed record(s) older than {days or processor.retention_days} day(s)")


@outbox.command()
@click.option("--once", is_flag=True, help="Run a single relay tick and exit")
@coro
async def relay(once: bool) -> None:
    """Run the outbox relay in the foreground."""
    from carecircle_events.core.settings import get_outbox_settings
    from carecircle_events.infra.events.outbox.scheduler import RelayScheduler
    from carecircle_events.infra.messaging.broker import broker_context
    from carecircle_events.infra.messaging.publisher import BrokerPublisher
    from carecircle_events.infra.messaging.topology import declare_topology

    async with broker_context() as broker:
        if broker is None:
            error("RabbitMQ is not configured (set RABBIT_ENABLED / RABBIT_AMQP_URI)")
            sys.exit(1)
        await declare_topology(broker)

        settings = get_outbox_settings()
        processor = OutboxProcessor.from_settings(BrokerPublisher.from_settings(broker), settings)

        if once:
            result = await processor.process_pending()
            print_json(asdict(result))
            return

        scheduler = RelayScheduler(processor, settings)
        scheduler.start()
        info(f"Relay running every {settings.poll_interval}s, press Ctrl+C to stop")
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.stop()
            info("Relay stopped")
