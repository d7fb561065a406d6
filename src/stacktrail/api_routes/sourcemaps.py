"""Source-map route handlers: single upload, archive upload, listing and deletion."""

from __future__ import annotations

import json
import logging
import sqlite3

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from starlette.requests import Request

from stacktrail.api_routes.common import (
    _check_ingest_key,
    _error_response,
    _parse_json_body,
    _storage_error,
)
from stacktrail.core import StackTrailDB
from stacktrail.resolver import default_cache

logger = logging.getLogger(__name__)


def create_router() -> APIRouter:
    """Build the APIRouter for ``/projects/{project_key}/sourcemaps`` endpoints."""
    from fastapi import Depends

    from stacktrail.api import _get_db

    router = APIRouter()

    @router.get("/projects/{project_key}/sourcemaps")
    async def api_list_sourcemaps(project_key: str, db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        maps = db.list_source_maps(project_key)
        return JSONResponse({"project_key": project_key, "sourcemaps": [m.to_dict() for m in maps]})

    @router.post("/projects/{project_key}/sourcemaps")
    async def api_upload_sourcemap(project_key: str, request: Request, db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        """Upload one map as ``{"file_name": ..., "map": "<json text>"}``."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        denied = _check_ingest_key(request, db, project_key)
        if denied is not None:
            return denied

        file_name = body.get("file_name", body.get("fileName"))
        content = body.get("map")
        if isinstance(content, dict):
            content = json.dumps(content)
        if not file_name or not content:
            return _error_response("Missing file_name or map", "VALIDATION_ERROR", 400)

        try:
            source_map = db.upload_source_map(project_key, file_name, content)
        except KeyError:
            return _error_response(f"Project not found: {project_key}", "PROJECT_NOT_FOUND", 404)
        except ValueError as e:
            return _error_response(str(e), "VALIDATION_ERROR", 400)
        except sqlite3.Error as e:
            return _storage_error(e)
        return JSONResponse(source_map.to_dict(), status_code=201)

    @router.post("/projects/{project_key}/sourcemaps/bulk")
    async def api_upload_sourcemap_archive(
        project_key: str, request: Request, db: StackTrailDB = Depends(_get_db)
    ) -> JSONResponse:
        """Upload a zip / tar / tar.gz of ``.map`` files as the raw request body.

        Responds 201 with ``{"uploaded", "warnings"}`` when at least one map
        was stored, 400 (warnings in ``details``) otherwise.
        """
        denied = _check_ingest_key(request, db, project_key)
        if denied is not None:
            return denied

        data = await request.body()
        if not data:
            return _error_response("Missing archive body", "VALIDATION_ERROR", 400)
        filename = request.query_params.get("filename")

        try:
            result = db.upload_archive(project_key, data, filename=filename)
        except KeyError:
            return _error_response(f"Project not found: {project_key}", "PROJECT_NOT_FOUND", 404)
        except ValueError as e:
            return _error_response(f"Failed to parse archive: {e}", "INVALID_ARCHIVE", 400)
        except sqlite3.Error as e:
            return _storage_error(e)

        if not result["uploaded"]:
            return _error_response(
                "No .map files found in archive",
                "NO_MAPS_FOUND",
                400,
                {"warnings": result["warnings"]},
            )
        return JSONResponse(dict(result), status_code=201)

    @router.delete("/projects/{project_key}/sourcemaps/{map_id}")
    async def api_delete_sourcemap(project_key: str, map_id: str, db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        try:
            db.delete_source_map(project_key, map_id)
        except KeyError:
            return _error_response(f"Source map not found: {map_id}", "SOURCEMAP_NOT_FOUND", 404)
        except sqlite3.Error as e:
            return _storage_error(e)
        default_cache().discard(map_id)
        return JSONResponse({"success": True})

    return router
