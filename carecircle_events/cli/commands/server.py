"""Serve the HTTP surface (stats, cleanup, broker health, metrics) with uvicorn."""

import click
import uvicorn

from carecircle_events.cli.utils import info


@click.command(name="serve")
@click.option("--host", default="0.0.0.0", show_default=True, help="Host to bind")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to bind")
@click.option(
    "--log-level",
    default="info",
    type=click.Choice(["critical", "error", "warning", "info", "debug"]),
    help="uvicorn log level",
)
def serve(host: str, port: int, log_level: str) -> None:
    """Run the API with the relay and consumers in one process."""
    info(f"Starting carecircle-events on {host}:{port}")
    uvicorn.run(
        "carecircle_events.app.main:create_app",
        factory=True,
        host=host,
        port=port,
        log_level=log_level,
        log_config=None,
    )
