"""CLI commands for events and issues: ingest, list, show, resolve, reopen, events, history."""

from __future__ import annotations

import json as json_mod
import sqlite3
from pathlib import Path

import click

from stacktrail.cli_common import fail, get_db
from stacktrail.core import Issue
from stacktrail.resolver import augment_with_mapped_frames


def _default_project(db_config: dict[str, object], project_key: str | None) -> str:
    return project_key or str(db_config.get("default_project", "demo"))


def _issue_line(issue: Issue) -> str:
    marker = "o" if issue.status == "open" else "x"
    return f"{marker} {issue.id}  x{issue.count:<5} {issue.last_seen}  {issue.title}"


@click.command()
@click.argument("message")
@click.option("--project", "-p", "project_key", default=None, help="Project key (default: config default_project)")
@click.option("--stack", default=None, help="Stack trace text")
@click.option("--stack-file", type=click.Path(exists=True, dir_okay=False), default=None, help="Read the stack from a file")
@click.option("--level", type=click.Choice(["error", "warning", "info"]), default=None, help="Severity level")
@click.option("--url", default=None, help="Page URL the error occurred on")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def ingest(
    message: str,
    project_key: str | None,
    stack: str | None,
    stack_file: str | None,
    level: str | None,
    url: str | None,
    as_json: bool,
) -> None:
    """Record one error report."""
    if stack_file:
        stack = Path(stack_file).read_text()
    extra = {k: v for k, v in (("level", level), ("url", url)) if v is not None}

    with get_db() as db:
        try:
            result = db.ingest(_default_project(dict(db.config), project_key), message, stack, **extra)
        except ValueError as e:
            fail(str(e), as_json=as_json)
        except sqlite3.Error as e:
            fail(f"Storage unavailable: {e}", as_json=as_json)

    if as_json:
        click.echo(json_mod.dumps(result.to_dict(), indent=2))
    else:
        verb = "New issue" if result.is_new_issue else "Grouped into"
        click.echo(f"{verb} {result.issue_id} (event {result.event_id})")


@click.command("list")
@click.option("--project", "-p", "project_key", default=None, help="Project key (default: config default_project)")
@click.option("--all", "include_resolved", is_flag=True, help="Include resolved issues")
@click.option("--limit", default=50, type=click.IntRange(min=1), help="Max issues to show")
@click.option("--offset", default=0, type=click.IntRange(min=0), help="Skip this many issues")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_issues(project_key: str | None, include_resolved: bool, limit: int, offset: int, as_json: bool) -> None:
    """List issues, most recently seen first."""
    with get_db() as db:
        key = _default_project(dict(db.config), project_key)
        found = db.list_issues(key, include_resolved=include_resolved, limit=limit, offset=offset)

    if as_json:
        click.echo(json_mod.dumps([i.to_dict() for i in found], indent=2))
        return
    if not found:
        click.echo(f"No {'' if include_resolved else 'open '}issues in {key}")
        return
    for issue in found:
        click.echo(_issue_line(issue))


@click.command()
@click.argument("issue_id")
@click.option("--project", "-p", "project_key", default=None, help="Only match issues of this project")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show(issue_id: str, project_key: str | None, as_json: bool) -> None:
    """Show issue details."""
    with get_db() as db:
        try:
            issue = db.get_issue(issue_id, project_key=project_key)
        except KeyError:
            fail(f"Not found: {issue_id}", as_json=as_json)

    if as_json:
        click.echo(json_mod.dumps(issue.to_dict(), indent=2))
        return
    click.echo(f"{issue.id}: {issue.title}")
    click.echo(f"  Project:     {issue.project_key}")
    click.echo(f"  Status:      {issue.status}" + (f" (resolved {issue.resolved_at})" if issue.resolved_at else ""))
    click.echo(f"  Events:      {issue.count}")
    click.echo(f"  First seen:  {issue.first_seen}")
    click.echo(f"  Last seen:   {issue.last_seen}")
    click.echo(f"  Fingerprint: {issue.fingerprint}")
    if issue.previous_issue_id:
        click.echo(f"  Previous:    {issue.previous_issue_id}")


def _set_resolved(issue_id: str, resolved: bool, as_json: bool) -> None:
    with get_db() as db:
        try:
            db.set_resolved(issue_id, resolved)
            issue = db.get_issue(issue_id)
        except KeyError:
            fail(f"Not found: {issue_id}", as_json=as_json)
        except ValueError as e:
            fail(str(e), as_json=as_json)

    if as_json:
        click.echo(json_mod.dumps(issue.to_dict(), indent=2))
    elif resolved:
        click.echo(f"Resolved {issue.id} at {issue.resolved_at}")
    else:
        click.echo(f"Reopened {issue.id}")


@click.command()
@click.argument("issue_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def resolve(issue_id: str, as_json: bool) -> None:
    """Mark an issue resolved; new matching events will open a linked issue."""
    _set_resolved(issue_id, True, as_json)


@click.command()
@click.argument("issue_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def reopen(issue_id: str, as_json: bool) -> None:
    """Reopen a resolved issue."""
    _set_resolved(issue_id, False, as_json)


@click.command()
@click.argument("issue_id")
@click.option("--limit", default=20, type=click.IntRange(min=1, max=200), help="Max events to show")
@click.option("--mapped", is_flag=True, help="Resolve stack frames through uploaded source maps")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def events(issue_id: str, limit: int, mapped: bool, as_json: bool) -> None:
    """Show the most recent events of an issue."""
    with get_db() as db:
        try:
            issue = db.get_issue(issue_id)
            records = [e.to_dict() for e in db.list_events(issue_id, limit=limit)]
        except KeyError:
            fail(f"Not found: {issue_id}", as_json=as_json)
        if mapped:
            records = augment_with_mapped_frames(
                records,
                db.list_source_maps(issue.project_key, include_content=True),
                fallback=db.fallback_enabled,
                max_frames=int(db.config.get("max_frames", 200)),
                max_candidate_maps=int(db.config.get("max_candidate_maps", 50)),
            )

    if as_json:
        click.echo(json_mod.dumps(records, indent=2, default=str))
        return
    for record in records:
        payload = record.get("payload", {})
        click.echo(f"{record['id']}  {record['occurred_at']}  {payload.get('message', '')}")
        for frame in record.get("mapped_frames", []):
            gen = frame["generated"]
            line = f"    at {frame.get('function') or '<anonymous>'} ({gen['file']}:{gen['line']}:{gen['column']})"
            original = frame.get("original")
            if original:
                line += f" -> {original['source']}:{original['line']}:{original['column']}"
            click.echo(line)


@click.command()
@click.argument("issue_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def history(issue_id: str, as_json: bool) -> None:
    """Show an issue and the resolved issues it regressed from."""
    with get_db() as db:
        try:
            chain = db.get_issue_history(issue_id)
        except KeyError:
            fail(f"Not found: {issue_id}", as_json=as_json)

    if as_json:
        click.echo(json_mod.dumps([i.to_dict() for i in chain], indent=2))
        return
    for issue in chain:
        click.echo(_issue_line(issue))


def register(cli: click.Group) -> None:
    """Register issue commands with the CLI group."""
    cli.add_command(ingest)
    cli.add_command(list_issues, "list")
    cli.add_command(show)
    cli.add_command(resolve)
    cli.add_command(reopen)
    cli.add_command(events)
    cli.add_command(history)
