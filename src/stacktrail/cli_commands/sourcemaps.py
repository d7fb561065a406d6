"""CLI commands for source maps: upload, upload-archive, list, delete."""

from __future__ import annotations

import json as json_mod
import sys
from pathlib import Path

import click

from stacktrail.cli_common import fail, get_db
from stacktrail.resolver import default_cache


@click.group()
def sourcemap() -> None:
    """Manage uploaded source maps."""


@sourcemap.command("upload")
@click.argument("project_key")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", "file_name", default=None, help="Stored file name (default: the file's name)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def sourcemap_upload(project_key: str, path: Path, file_name: str | None, as_json: bool) -> None:
    """Upload one .map file."""
    try:
        content = path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        fail(f"Cannot read {path}: {e}", as_json=as_json)

    with get_db() as db:
        try:
            stored = db.upload_source_map(project_key, file_name or path.name, content)
        except KeyError:
            fail(f"Project not found: {project_key}", as_json=as_json)
        except ValueError as e:
            fail(str(e), as_json=as_json)

    if as_json:
        click.echo(json_mod.dumps(stored.to_dict(), indent=2))
    else:
        click.echo(f"Uploaded {stored.id} as {stored.file_name} ({stored.size} bytes)")


@sourcemap.command("upload-archive")
@click.argument("project_key")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def sourcemap_upload_archive(project_key: str, path: Path, as_json: bool) -> None:
    """Upload every .map file in a zip, tar or tar.gz archive."""
    with get_db() as db:
        try:
            result = db.upload_archive(project_key, path.read_bytes(), filename=path.name)
        except KeyError:
            fail(f"Project not found: {project_key}", as_json=as_json)
        except ValueError as e:
            fail(f"Failed to parse archive: {e}", as_json=as_json)

    if as_json:
        click.echo(json_mod.dumps(dict(result), indent=2))
    else:
        for uploaded in result["uploaded"]:
            click.echo(f"Uploaded {uploaded['id']} as {uploaded['file_name']}")
        for warning in result["warnings"]:
            click.echo(f"Warning: {warning}", err=True)
    if not result["uploaded"]:
        if not as_json:
            click.echo("Error: No .map files found in archive", err=True)
        sys.exit(1)


@sourcemap.command("list")
@click.argument("project_key")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def sourcemap_list(project_key: str, as_json: bool) -> None:
    """List the source maps of a project, newest first."""
    with get_db() as db:
        maps = db.list_source_maps(project_key)

    if as_json:
        click.echo(json_mod.dumps([m.to_dict() for m in maps], indent=2))
        return
    if not maps:
        click.echo(f"No source maps in {project_key}")
        return
    for m in maps:
        click.echo(f"{m.id}  {m.uploaded_at}  {m.size:>9}  {m.file_name}")


@sourcemap.command("delete")
@click.argument("project_key")
@click.argument("map_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def sourcemap_delete(project_key: str, map_id: str, as_json: bool) -> None:
    """Delete one source map."""
    with get_db() as db:
        try:
            db.delete_source_map(project_key, map_id)
        except KeyError:
            fail(f"Source map not found: {map_id}", as_json=as_json)
    default_cache().discard(map_id)

    if as_json:
        click.echo(json_mod.dumps({"deleted": map_id}))
    else:
        click.echo(f"Deleted {map_id}")


def register(cli: click.Group) -> None:
    """Register source-map commands with the CLI group."""
    cli.add_command(sourcemap)
