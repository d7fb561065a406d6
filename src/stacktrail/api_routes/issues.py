"""Issue route handlers: listing, detail, resolve/reopen and symbolicated events."""

from __future__ import annotations

import logging
import sqlite3
import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from starlette.requests import Request

from stacktrail.api_routes.common import (
    _error_response,
    _get_bool_param,
    _parse_json_body,
    _parse_pagination,
    _storage_error,
)
from stacktrail.core import StackTrailDB
from stacktrail.db_events import DEFAULT_EVENT_PAGE_SIZE, MAX_EVENT_PAGE_SIZE
from stacktrail.db_issues import DEFAULT_ISSUE_PAGE_SIZE, DEFAULT_PAGE_SIZE_LIMIT
from stacktrail.resolver import DEFAULT_MAX_CANDIDATE_MAPS, augment_with_mapped_frames
from stacktrail.stacktrace import DEFAULT_MAX_FRAMES
from stacktrail.types.api import ResolveResponse
from stacktrail.types.core import ISOTimestamp

logger = logging.getLogger(__name__)

# Wall-clock budget for symbolicating one page of events.
_RESOLVE_BUDGET_SECONDS = 5.0


def create_router() -> APIRouter:
    """Build the APIRouter for issue endpoints."""
    from fastapi import Depends

    from stacktrail.api import _get_db

    router = APIRouter()

    @router.get("/issues")
    async def api_issues(request: Request, db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        params = request.query_params
        project_key = params.get("project_key") or params.get("projectKey") or db.config.get("default_project", "demo")
        include_resolved = _get_bool_param(params, "include_resolved", False)
        if not isinstance(include_resolved, bool):
            return include_resolved
        page = _parse_pagination(
            params,
            DEFAULT_ISSUE_PAGE_SIZE,
            int(db.config.get("page_size_limit", DEFAULT_PAGE_SIZE_LIMIT)),
        )
        if isinstance(page, JSONResponse):
            return page
        limit, offset = page

        try:
            issues = db.list_issues(project_key, include_resolved=include_resolved, limit=limit + 1, offset=offset)
        except sqlite3.Error as e:
            return _storage_error(e)
        return JSONResponse(
            {
                "project_key": project_key,
                "issues": [i.to_dict() for i in issues[:limit]],
                "limit": limit,
                "offset": offset,
                "has_more": len(issues) > limit,
            }
        )

    @router.get("/issues/{issue_id}")
    async def api_issue_detail(issue_id: str, request: Request, db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        project_key = request.query_params.get("project_key")
        try:
            issue = db.get_issue(issue_id, project_key=project_key)
        except KeyError:
            return _error_response(f"Issue not found: {issue_id}", "ISSUE_NOT_FOUND", 404)
        return JSONResponse(issue.to_dict())

    @router.get("/issues/{issue_id}/history")
    async def api_issue_history(issue_id: str, db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        """The issue and its resolved predecessors, newest first."""
        try:
            chain = db.get_issue_history(issue_id)
        except KeyError:
            return _error_response(f"Issue not found: {issue_id}", "ISSUE_NOT_FOUND", 404)
        return JSONResponse({"issue_id": issue_id, "history": [i.to_dict() for i in chain]})

    @router.post("/issues/{issue_id}/resolve")
    async def api_resolve_issue(issue_id: str, request: Request, db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        """Resolve (default) or reopen with ``{"resolved": false}``."""
        resolved = True
        if await request.body():
            body = await _parse_json_body(request)
            if isinstance(body, JSONResponse):
                return body
            if "resolved" in body:
                if not isinstance(body["resolved"], bool):
                    return _error_response("resolved must be a boolean", "VALIDATION_ERROR", 400)
                resolved = body["resolved"]

        try:
            resolved_at = db.set_resolved(issue_id, resolved)
        except KeyError:
            return _error_response(f"Issue not found: {issue_id}", "ISSUE_NOT_FOUND", 404)
        except ValueError as e:
            return _error_response(str(e), "CONFLICT", 409)
        except sqlite3.Error as e:
            return _storage_error(e)
        response = ResolveResponse(success=True, resolved_at=ISOTimestamp(resolved_at) if resolved_at else None)
        return JSONResponse(dict(response))

    @router.get("/issues/{issue_id}/events")
    async def api_issue_events(issue_id: str, request: Request, db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        """Events newest first; with ``mapped`` (default on) stacks are symbolicated."""
        params = request.query_params
        project_key = params.get("project_key")
        page = _parse_pagination(params, DEFAULT_EVENT_PAGE_SIZE, MAX_EVENT_PAGE_SIZE)
        if isinstance(page, JSONResponse):
            return page
        limit, offset = page
        mapped = _get_bool_param(params, "mapped", True)
        if not isinstance(mapped, bool):
            return mapped

        try:
            issue = db.get_issue(issue_id, project_key=project_key)
            events = [e.to_dict() for e in db.list_events(issue.id, limit=limit, offset=offset)]
            if mapped:
                maps = db.list_source_maps(issue.project_key, include_content=True)
                deadline = time.monotonic() + _RESOLVE_BUDGET_SECONDS
                events = augment_with_mapped_frames(
                    events,
                    maps,
                    fallback=db.fallback_enabled,
                    max_frames=int(db.config.get("max_frames", DEFAULT_MAX_FRAMES)),
                    max_candidate_maps=int(db.config.get("max_candidate_maps", DEFAULT_MAX_CANDIDATE_MAPS)),
                    cancel=lambda: time.monotonic() > deadline,
                )
        except KeyError:
            return _error_response(f"Issue not found: {issue_id}", "ISSUE_NOT_FOUND", 404)
        except sqlite3.Error as e:
            return _storage_error(e)
        return JSONResponse({"project_key": issue.project_key, "issue_id": issue.id, "events": events})

    return router
