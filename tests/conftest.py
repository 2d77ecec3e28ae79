"""
Pytest configuration and fixtures

The API is exercised against FakeEventStore through FastAPI dependency
overrides; no database is needed except for the adapter tests, which use
a file-backed SQLite engine of their own. Nothing imports the Postgres
engine (core.database) until an API test asks for the client.
"""
import os
import sys
from pathlib import Path

import pytest

# Required settings must exist before core.config is imported
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-for-insights")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("INSIGHTS_TIMEZONE", "UTC")

# Add the project root (for core/, services/, routers/) and this directory (for fixtures/)
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from fastapi.testclient import TestClient

from core.security import create_access_token
from fixtures.insight_fixtures import FakeEventStore

TEST_USER_ID = "user-1"


@pytest.fixture
def store():
    return FakeEventStore()


@pytest.fixture
def auth_headers():
    token = create_access_token({"sub": TEST_USER_ID, "email": "lifter@example.com"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(store):
    """TestClient with the event store overridden by `store`."""
    from core.database import get_event_store
    from main import app

    app.dependency_overrides[get_event_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.pop(get_event_store, None)
