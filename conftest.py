"""
Pytest configuration and shared fixtures.

Points the app at a throwaway SQLite file before any smssink import so the
engine is created against it, then provides a client with fresh tables.
"""

import os
import tempfile

_test_db_dir = tempfile.mkdtemp(prefix="smssink-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_test_db_dir, 'test.db')}"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ["DEFAULT_API_KEY"] = "test-token"
os.environ.pop("SMSSINK_DEBUG", None)

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from smssink.config import get_settings
get_settings.cache_clear()

from smssink.main import app
from smssink.storage import Base, engine


TEST_API_KEY = "test-token"


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {TEST_API_KEY}", "Content-Type": "application/json"}


@pytest.fixture
def db_session():
    """A session against fresh tables, for repository-level tests."""
    from smssink.storage import SessionLocal, init_db

    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
