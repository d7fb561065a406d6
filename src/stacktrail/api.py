"""HTTP API for stacktrail: event ingestion, issues, projects and source maps.

A module-level ``_db`` is set at startup (or by test fixtures) and injected
into handlers via ``Depends(_get_db)``.

Usage:
    stacktrail serve                    # http://127.0.0.1:8418
    stacktrail serve --port 9000        # Custom port
"""

from __future__ import annotations

import logging
import os
from typing import Any

from fastapi.responses import JSONResponse

from stacktrail.core import (
    DB_FILENAME,
    StackTrailDB,
    find_stacktrail_root,
    read_config,
)

DEFAULT_PORT = 8418

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level state, set by main() or test fixtures
# ---------------------------------------------------------------------------

_db: StackTrailDB | None = None


def _get_db() -> StackTrailDB:
    """Return the active database connection."""
    from fastapi import HTTPException

    if _db is None:
        raise HTTPException(status_code=500, detail="Database not initialized")
    return _db


def create_app() -> Any:
    """Create the FastAPI application with all API routers mounted under ``/api``.

    NOTE: handlers are async despite doing synchronous SQLite I/O. This keeps
    every DB call on the event loop thread, so the single shared connection
    is never used by two threads at once.
    """
    from fastapi import Depends, FastAPI

    from stacktrail import __version__
    from stacktrail.api_routes import events, issues, projects, sourcemaps

    app = FastAPI(title="StackTrail", version=__version__, docs_url=None, redoc_url=None)

    app.include_router(events.create_router(), prefix="/api")
    app.include_router(issues.create_router(), prefix="/api")
    app.include_router(projects.create_router(), prefix="/api")
    app.include_router(sourcemaps.create_router(), prefix="/api")

    @app.get("/api/health")
    async def api_health(db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        import sqlite3

        from stacktrail.api_routes.common import _storage_error

        try:
            stats = db.stats()
        except sqlite3.Error as exc:
            return _storage_error(exc)
        return JSONResponse({"status": "ok", "version": __version__, **stats})

    return app


def main(port: int | None = None, *, host: str = "127.0.0.1") -> None:
    """Start the API server for the .stacktrail/ discovered from cwd (or ``STACKTRAIL_DB``)."""
    from pathlib import Path

    import uvicorn

    from stacktrail.logging import setup_logging

    global _db

    env_db = os.environ.get("STACKTRAIL_DB")
    if env_db:
        db_path = Path(env_db)
        stacktrail_dir = db_path.parent
    else:
        stacktrail_dir = find_stacktrail_root()
        db_path = stacktrail_dir / DB_FILENAME

    setup_logging(stacktrail_dir)
    _db = StackTrailDB(db_path, config=read_config(stacktrail_dir), check_same_thread=False)
    _db.initialize()

    if port is None:
        port = int(os.environ.get("STACKTRAIL_PORT", DEFAULT_PORT))

    app = create_app()
    logger.info("Serving %s on %s:%d", db_path, host, port)
    print(f"StackTrail API: http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="warning")
