"""Shared CLI helpers.

Provides ``get_db()`` and ``fail()`` so that ``cli.py`` and the
``cli_commands/*.py`` modules can use them without circular imports.
"""

from __future__ import annotations

import json as json_mod
import os
import sys
from pathlib import Path
from typing import NoReturn

import click

from stacktrail.core import (
    DB_FILENAME,
    STACKTRAIL_DIR_NAME,
    StackTrailDB,
    find_stacktrail_root,
    read_config,
)
from stacktrail.logging import setup_logging


def get_stacktrail_dir() -> Path:
    """Directory holding config and log: ``$STACKTRAIL_DB``'s parent, else discovered from cwd."""
    env_db = os.environ.get("STACKTRAIL_DB")
    if env_db:
        return Path(env_db).parent
    try:
        return find_stacktrail_root()
    except FileNotFoundError:
        click.echo(f"No {STACKTRAIL_DIR_NAME}/ found. Run 'stacktrail init' first.", err=True)
        sys.exit(1)


def get_db() -> StackTrailDB:
    """Discover .stacktrail/ and return an initialized StackTrailDB."""
    stacktrail_dir = get_stacktrail_dir()
    env_db = os.environ.get("STACKTRAIL_DB")
    db_path = Path(env_db) if env_db else stacktrail_dir / DB_FILENAME
    if stacktrail_dir.is_dir():
        setup_logging(stacktrail_dir)
    db = StackTrailDB(db_path, config=read_config(stacktrail_dir))
    db.initialize()
    return db


def fail(message: str, *, as_json: bool = False) -> NoReturn:
    """Report *message* (JSON on stdout or plain on stderr) and exit 1."""
    if as_json:
        click.echo(json_mod.dumps({"error": message}))
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(1)
