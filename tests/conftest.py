"""
tests/conftest.py -- Shared test fixtures for ClusterVuln tests.

This module provides:
  - _patch_lifespan(): wires the test store into app.state, bypassing real startup
  - api_client: TestClient backed by a seeded shared-memory database
  - ams_mock: enables AMS enrichment for one test with a MagicMock client

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from dataset import seed_store
from vulndb.store import VulnStore

# Rate limits are exercised by slowapi itself; counting every test request
# against one client address would make results depend on test order.
limiter.enabled = False


@pytest.fixture
def store() -> Generator[VulnStore, None, None]:
    """Seeded single-connection in-memory store for unit tests."""
    s = VulnStore("sqlite:///:memory:")
    seed_store(s)
    yield s
    s.close()


def _patch_lifespan(store: VulnStore):
    """Return an async context manager that replaces the real lifespan.

    AMS starts disabled; tests that need it use the ams_mock fixture.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.ams = None
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request: pytest.FixtureRequest) -> Generator[TestClient, None, None]:
    """Yield a TestClient whose app serves a freshly seeded database.

    The database name is per test module so modules never see each other's data.
    """
    db_name = request.module.__name__.replace(".", "_")
    store = VulnStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    seed_store(store)
    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client

    store.close()


@pytest.fixture
def ams_mock(api_client: TestClient) -> Generator[MagicMock, None, None]:
    """Enable AMS enrichment for a single test."""
    ams = MagicMock()
    api_client.app.state.ams = ams
    yield ams
    api_client.app.state.ams = None
