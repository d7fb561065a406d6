"""CLI command for running the HTTP API."""

from __future__ import annotations

import click


@click.command()
@click.option("--port", default=None, type=int, help="Port to listen on (default: $STACKTRAIL_PORT or 8418)")
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind")
def serve(port: int | None, host: str) -> None:
    """Serve the ingest and query API for this .stacktrail/."""
    from stacktrail.api import main as api_main

    api_main(port=port, host=host)


def register(cli: click.Group) -> None:
    """Register server commands with the CLI group."""
    cli.add_command(serve)
