"""
Pytest configuration and shared fixtures.

Test settings are exported before any chatrelay import so the cached
settings and the module-level app are built from them.
"""
import os
from typing import Dict, NamedTuple

os.environ["JWT_SECRET"] = "test-secret-key-12345"
os.environ["DATABASE_URL"] = "sqlite:///./test_chatrelay.db"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_FORMAT"] = "text"
os.environ["PASSWORD_HASH_ITERATIONS"] = "1000"
os.environ["API_PREFIX"] = ""

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from chatrelay.core.config import get_settings  # noqa: E402

get_settings.cache_clear()

from chatrelay.core.database import Base, get_db_context, get_engine, init_db, reset_engine  # noqa: E402
from chatrelay.main import app  # noqa: E402

TEST_DB_FILE = "./test_chatrelay.db"


class AuthedUser(NamedTuple):
    id: str
    username: str
    token: str
    headers: Dict[str, str]


@pytest.fixture(scope="function")
def test_db():
    """Create a fresh test database for each test."""
    init_db()

    yield get_engine()

    Base.metadata.drop_all(bind=get_engine())
    reset_engine()
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(TEST_DB_FILE + suffix):
            os.remove(TEST_DB_FILE + suffix)


@pytest.fixture
def db(test_db):
    """A session on the test database."""
    with get_db_context() as session:
        yield session


@pytest.fixture
def client(test_db):
    """Test client with the application lifespan running."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(client):
    """Register a user through the API and return its id, token and auth headers."""

    def _make(username: str, password: str = "secret123", display_name: str = None) -> AuthedUser:
        response = client.post(
            "/auth/register",
            json={
                "username": username,
                "password": password,
                "displayName": display_name or username.title(),
            },
        )
        assert response.status_code == 201, response.text
        data = response.json()["data"]
        return AuthedUser(
            id=data["user"]["id"],
            username=data["user"]["username"],
            token=data["token"],
            headers={"Authorization": f"Bearer {data['token']}"},
        )

    return _make
