# backend/user_service/tests/conftest.py

import logging
import os
import tempfile

import pytest

# Point the app at throwaway settings before any app module reads them.
_STARTUP_DIR = tempfile.mkdtemp(prefix="user-service-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_STARTUP_DIR, 'startup.db')}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["STARTUP_MAX_RETRIES"] = "1"

from app.db import Base, build_engine, build_session_factory, get_store  # noqa: E402
from app.main import app  # noqa: E402
from app.store import DocumentStore  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

# Suppress noisy logs from SQLAlchemy/FastAPI/Uvicorn during tests for cleaner output
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("uvicorn.error").setLevel(logging.WARNING)
logging.getLogger("fastapi").setLevel(logging.WARNING)
logging.getLogger("app").setLevel(logging.WARNING)


class FakeClock:
    """Epoch clock the tests move by hand."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    """A fresh document store per test, also wired into the app."""
    engine = build_engine(f"sqlite:///{tmp_path / 'store.db'}")
    Base.metadata.create_all(bind=engine)
    document_store = DocumentStore(build_session_factory(engine), clock=clock)

    app.dependency_overrides[get_store] = lambda: document_store
    try:
        yield document_store
    finally:
        app.dependency_overrides.pop(get_store, None)
        engine.dispose()


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as test_client:
        yield test_client


def register_user(client, username="jdoe", password="s3cret-pass", email=None):
    payload = {
        "firstName": "Jane",
        "lastName": "Doe",
        "username": username,
        "email": email or f"{username}@example.com",
        "password": password,
    }
    response = client.post("/user/register", json=payload)
    assert response.status_code == 200, response.json()
    return response.json()["data"]


def login_user(client, username="jdoe", password="s3cret-pass"):
    response = client.post("/user/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.json()
    return response.json()["data"]


@pytest.fixture
def logged_in(client, store):
    """Registers and logs in a user; returns (auth headers, login data)."""
    register_user(client)
    data = login_user(client)
    headers = {"Authorization": f"Bearer {data['userInfo']['token']}"}
    return headers, data
