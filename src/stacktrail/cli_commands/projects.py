"""CLI commands for projects and their ingest keys."""

from __future__ import annotations

import json as json_mod

import click

from stacktrail.cli_common import fail, get_db


@click.group()
def project() -> None:
    """Manage projects and ingest keys."""


@project.command("create")
@click.argument("project_key")
@click.option("--name", default=None, help="Display name (default: the key)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def project_create(project_key: str, name: str | None, as_json: bool) -> None:
    """Create a project (or rename an existing one)."""
    with get_db() as db:
        try:
            created = db.create_project(project_key, name)
        except ValueError as e:
            fail(str(e), as_json=as_json)

    if as_json:
        click.echo(json_mod.dumps({**created.to_dict(), "ingest_key": created.ingest_key}, indent=2))
        return
    click.echo(f"Project {created.project_key} ({created.name})")
    click.echo(f"  Ingest key: {created.ingest_key}")


@project.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def project_list(as_json: bool) -> None:
    """List projects, newest first."""
    with get_db() as db:
        found = db.list_projects()

    if as_json:
        click.echo(json_mod.dumps([p.to_dict() for p in found], indent=2))
        return
    if not found:
        click.echo("No projects")
        return
    for p in found:
        click.echo(f"{p.project_key}  {p.created_at}  {p.name}")


@project.command("delete")
@click.argument("project_key")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def project_delete(project_key: str, yes: bool, as_json: bool) -> None:
    """Delete a project with all of its issues, events and source maps."""
    if not yes and not as_json:
        click.confirm(f"Delete {project_key} and all of its data?", abort=True)
    with get_db() as db:
        try:
            db.delete_project(project_key)
        except KeyError:
            fail(f"Project not found: {project_key}", as_json=as_json)

    if as_json:
        click.echo(json_mod.dumps({"deleted": project_key}))
    else:
        click.echo(f"Deleted project {project_key}")


@project.command("key")
@click.argument("project_key")
@click.option("--rotate", is_flag=True, help="Replace the key with a new one")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def project_key_cmd(project_key: str, rotate: bool, as_json: bool) -> None:
    """Print (or rotate) the ingest key of a project."""
    with get_db() as db:
        try:
            key = db.rotate_ingest_key(project_key) if rotate else db.get_ingest_key(project_key)
        except KeyError:
            fail(f"Project not found: {project_key}", as_json=as_json)

    if as_json:
        click.echo(json_mod.dumps({"project_key": project_key, "ingest_key": key, "rotated": rotate}))
    else:
        click.echo(key)


def register(cli: click.Group) -> None:
    """Register project commands with the CLI group."""
    cli.add_command(project)
