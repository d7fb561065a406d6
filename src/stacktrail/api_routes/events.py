"""Event ingestion route handler."""

from __future__ import annotations

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
from stacktrail.types.api import IngestResponse
from stacktrail.validation import normalize_event_payload

logger = logging.getLogger(__name__)


def create_router() -> APIRouter:
    """Build the APIRouter for ``POST /events``."""
    from fastapi import Depends

    from stacktrail.api import _get_db

    router = APIRouter()

    @router.post("/events")
    async def api_ingest_event(request: Request, db: StackTrailDB = Depends(_get_db)) -> JSONResponse:
        """Accept one error report; responds 201 with the event and issue ids."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        payload, err = normalize_event_payload(body)
        if err:
            return _error_response(err, "VALIDATION_ERROR", 400)

        denied = _check_ingest_key(request, db, payload["project_key"])
        if denied is not None:
            return denied

        try:
            result = db.ingest_payload(payload)
        except ValueError as e:
            return _error_response(str(e), "VALIDATION_ERROR", 400)
        except sqlite3.Error as e:
            return _storage_error(e)

        response = IngestResponse(event_id=result.event_id, issue_id=result.issue_id, is_new_issue=result.is_new_issue)
        return JSONResponse(dict(response), status_code=201)

    return router
