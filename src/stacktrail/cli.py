"""CLI for the stacktrail error tracker.

Convention-based: discovers .stacktrail/ by walking up from cwd
(or uses ``$STACKTRAIL_DB``).

Usage:
    stacktrail init                                   # Initialize .stacktrail/ in cwd
    stacktrail ingest "TypeError: x is undefined" --stack-file trace.txt
    stacktrail list --all                             # Open and resolved issues
    stacktrail show <id>                              # Issue details
    stacktrail resolve <id>                           # Mark resolved
    stacktrail reopen <id>                            # Reopen resolved issue
    stacktrail events <id> --mapped                   # Events with symbolicated frames
    stacktrail project create web --name "Web app"    # Projects and ingest keys
    stacktrail sourcemap upload web dist/app.js.map   # Upload a source map
    stacktrail sourcemap upload-archive web maps.tgz  # Upload an archive of maps
    stacktrail serve --port 8418                      # Run the HTTP API
"""

from __future__ import annotations

import json as json_mod
from pathlib import Path

import click

from stacktrail import __version__
from stacktrail.cli_commands import issues, projects, server, sourcemaps
from stacktrail.core import (
    DB_FILENAME,
    DEFAULT_CONFIG,
    STACKTRAIL_DIR_NAME,
    StackTrailDB,
    read_config,
    write_config,
)
from stacktrail.logging import setup_logging

# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="stacktrail")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """StackTrail: error tracking with issue grouping and source maps."""
    ctx.ensure_object(dict)


@cli.command()
@click.option("--project", "project_key", default="demo", show_default=True, help="Default project to create")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def init(project_key: str, as_json: bool) -> None:
    """Initialize .stacktrail/ in the current directory."""
    cwd = Path.cwd()
    stacktrail_dir = cwd / STACKTRAIL_DIR_NAME
    existed = stacktrail_dir.exists()

    if not existed:
        stacktrail_dir.mkdir()
        config = dict(DEFAULT_CONFIG)
        config["default_project"] = project_key
        write_config(stacktrail_dir, config)

    setup_logging(stacktrail_dir)
    config = read_config(stacktrail_dir)
    with StackTrailDB(stacktrail_dir / DB_FILENAME, config=config) as db:
        db.initialize()
        default_key = config.get("default_project", project_key)
        try:
            project = db.get_project(default_key)
        except KeyError:
            project = db.create_project(default_key)

    if as_json:
        click.echo(
            json_mod.dumps(
                {
                    "path": str(stacktrail_dir),
                    "created": not existed,
                    "project_key": project.project_key,
                    "ingest_key": project.ingest_key,
                },
                indent=2,
            )
        )
        return
    if existed:
        click.echo(f"{STACKTRAIL_DIR_NAME}/ already exists in {cwd}")
    else:
        click.echo(f"Initialized {STACKTRAIL_DIR_NAME}/ in {cwd}")
    click.echo(f"  Database: {stacktrail_dir / DB_FILENAME}")
    click.echo(f"  Project: {project.project_key}")
    click.echo(f"  Ingest key: {project.ingest_key}")


issues.register(cli)
projects.register(cli)
sourcemaps.register(cli)
server.register(cli)


if __name__ == "__main__":
    cli()
