"""Pytest configuration and fixtures."""

import os
import tempfile

# Configure before any sitebuilder import reads the environment
_TMP_DIR = tempfile.mkdtemp(prefix="sitebuilder-tests-")
os.environ["SITEBUILDER_DATA_DIR"] = _TMP_DIR
os.environ["SITEBUILDER_DB_PATH"] = os.path.join(_TMP_DIR, "test.db")
os.environ["SITEBUILDER_LOG_PATH"] = os.path.join(_TMP_DIR, "test.log")
os.environ["SITEBUILDER_COOKIE_SECURE"] = "0"
os.environ["SITEBUILDER_KDF_ITERATIONS"] = "1000"
os.environ["SITEBUILDER_ADMIN_PASSWORD"] = "admin-secret"

import pytest
from fastapi.testclient import TestClient

from sitebuilder import web
from sitebuilder.core import models  # noqa: F401
from sitebuilder.core.db import Base, SessionLocal, engine
from sitebuilder.core.security import register_user


@pytest.fixture
def db_session():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_web_state():
    web.sessions.clear()
    web.login_attempts.clear()
    yield
    web.sessions.clear()
    web.login_attempts.clear()


@pytest.fixture
def alice(db_session):
    return register_user(db_session, "alice", "alice@example.com", "alice-pw")


@pytest.fixture
def bob(db_session):
    return register_user(db_session, "bob", "bob@example.com", "bob-pw")


@pytest.fixture
def admin(db_session):
    return register_user(db_session, "root", "root@example.com", "root-pw", is_admin=True)


@pytest.fixture
def client(db_session):
    return TestClient(web.app)


@pytest.fixture
def login():
    """Log a client in; returns the CSRF header for mutating requests."""

    def _login(client: TestClient, username: str, password: str) -> dict:
        response = client.post("/login", json={"username_or_email": username, "password": password})
        assert response.status_code == 200, response.text
        return {"X-CSRF-Token": response.json()["csrf_token"]}

    return _login
