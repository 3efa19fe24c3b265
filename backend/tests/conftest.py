"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Markers plus store, app and client fixtures
WHY: Every test gets an isolated store (in-memory SQLite or the fake) so tests
     never touch ./data or each other
HOW: Build a fresh engine per test and override the app's store dependency
"""

import pytest
import httpx
from fastapi.testclient import TestClient

from dealdesk.core.database import create_db_engine, create_session_factory, init_db
from dealdesk.core.deal_store import SQLDealStore, get_deal_store
from dealdesk.engine.http_store import HTTPDealStore
from dealdesk.main import create_app

from tests.fixtures.fake_store import FakeDealStore


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end negotiation scenarios across both actors"
    )


@pytest.fixture
def fake_store():
    """Fresh in-memory FakeDealStore."""
    return FakeDealStore()


@pytest.fixture
def sql_store(tmp_path):
    """
    SQLDealStore on a throwaway SQLite file.

    WHAT: Real SQL store isolated per test
    WHY: Exercise ORM mapping and constraints without the app's database;
         a file (not :memory:) so concurrent threadpool requests get their own connections
    HOW: Engine under tmp_path, tables created up front, media under tmp_path
    """
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'store.db'}")
    init_db(db_engine)
    store = SQLDealStore(create_session_factory(db_engine), media_dir=str(tmp_path / "media"))
    yield store
    db_engine.dispose()


@pytest.fixture
def app(sql_store):
    """Deal store app wired to the per-test SQL store."""
    application = create_app()
    application.dependency_overrides[get_deal_store] = lambda: sql_store
    return application


@pytest.fixture
def client(app):
    """FastAPI test client (lifespan not run; tables already exist)."""
    return TestClient(app)


@pytest.fixture
async def http_store(app):
    """
    HTTPDealStore talking to the app in-process.

    WHAT: Real HTTP client stack against the real endpoints
    WHY: End-to-end scenarios without a running server
    HOW: httpx.ASGITransport mounted at the default base URL
    """
    transport = httpx.ASGITransport(app=app)
    client = httpx.AsyncClient(transport=transport, base_url="http://dealdesk.test")
    store = HTTPDealStore(base_url="http://dealdesk.test/api/v1", client=client)
    yield store
    await store.aclose()
