"""Fixtures for HTTP API tests (FastAPI)."""

from __future__ import annotations

from collections.abc import AsyncIterator, Generator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

import stacktrail.api as api_module
from stacktrail.api import create_app
from stacktrail.core import StackTrailDB, default_config


@pytest.fixture
def api_db(tmp_path: Path) -> Generator[StackTrailDB, None, None]:
    """StackTrailDB usable from the ASGI test transport, with project "demo"."""
    d = StackTrailDB(tmp_path / "stacktrail.db", config=default_config(), check_same_thread=False)
    d.initialize()
    d.create_project("demo")
    yield d
    d.close()


@pytest.fixture
async def client(api_db: StackTrailDB) -> AsyncIterator[AsyncClient]:
    """HTTP client bound to an app serving ``api_db``."""
    api_module._db = api_db
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    api_module._db = None
