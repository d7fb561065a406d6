"""Project route handlers."""

from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from starlette.requests import Request

from stacktrail.api_routes.common import _error_response, _parse_json_body, _storage_error
from stacktrail.core import StackTrailDB

logger = logging.getLogger(__name__)


def create_router() -> APIRouter:
    """Build the APIRouter for project endpoints."""
    from fastapi import Depends

    from stacktrail.api import _get_db

    router = APIRouter()

    @router.get("/projects")
    async def api_projects(db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        return JSONResponse({"projects": [p.to_dict() for p in db.list_projects()]})

    @router.post("/projects")
    async def api_create_project(request: Request, db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        """Create a project (or rename an existing one); returns it with its ingest key."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        project_key = body.get("project_key", body.get("projectKey"))
        try:
            project = db.create_project(project_key, body.get("name"))
        except ValueError as e:
            return _error_response(str(e), "VALIDATION_ERROR", 400)
        except sqlite3.Error as e:
            return _storage_error(e)
        return JSONResponse({**project.to_dict(), "ingest_key": project.ingest_key}, status_code=201)

    @router.get("/projects/{project_key}/ingest-key")
    async def api_ingest_key(project_key: str, db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        try:
            key = db.get_ingest_key(project_key)
        except KeyError:
            return _error_response(f"Project not found: {project_key}", "PROJECT_NOT_FOUND", 404)
        return JSONResponse({"project_key": project_key, "ingest_key": key})

    @router.delete("/projects/{project_key}")
    async def api_delete_project(project_key: str, db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        try:
            db.delete_project(project_key)
        except KeyError:
            return _error_response(f"Project not found: {project_key}", "PROJECT_NOT_FOUND", 404)
        except sqlite3.Error as e:
            return _storage_error(e)
        return JSONResponse({"success": True})

    return router
