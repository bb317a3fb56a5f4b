"""
Shared fixtures for the backend test suite.

The database path must be set before backend.config is imported, so the
environment is prepared at module import time. Every test session gets a
fresh SQLite file; tests isolate themselves with unique emails.

Run: pytest backend -v
"""

import os
import tempfile
import uuid

_TEST_DB_DIR = tempfile.mkdtemp(prefix="workspace_test_")
os.environ["DATABASE_PATH"] = os.path.join(_TEST_DB_DIR, "workspace_test.db")
os.environ["ENV"] = "dev"

import pytest
from fastapi.testclient import TestClient

from backend.db import get_db
from backend.main import app


@pytest.fixture(scope="session")
def client():
    return TestClient(app)


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(client):
    """Register a user with a unique email; admin=True also grants the global admin role."""

    def _make_user(name: str = "user", admin: bool = False) -> dict:
        email = f"{name}_{uuid.uuid4().hex[:8]}@test.com"
        response = client.post(
            "/auth/register",
            json={"email": email, "password": "password123", "fullName": name.title()},
        )
        assert response.status_code == 200, response.text
        data = response.json()["data"]
        user_id = data["user"]["id"]
        if admin:
            conn = get_db()
            try:
                conn.execute("INSERT INTO user_roles (user_id, role) VALUES (?, 'admin')", (user_id,))
                conn.commit()
            finally:
                conn.close()
        return {
            "id": user_id,
            "email": email,
            "token": data["access_token"],
            "headers": auth(data["access_token"]),
        }

    return _make_user


@pytest.fixture
def owner(make_user):
    return make_user("owner")


@pytest.fixture
def outsider(make_user):
    return make_user("outsider")


@pytest.fixture
def admin(make_user):
    return make_user("admin", admin=True)


@pytest.fixture
def project(client, owner):
    response = client.post(
        "/projects",
        json={"name": "Flight Control Software", "description": "FCS v2", "priority": "high"},
        headers=owner["headers"],
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]


@pytest.fixture
def grant(client, owner, project):
    """Grant a module to a user on the fixture project, acting as the owner."""

    def _grant(user: dict, module: str, level: str) -> dict:
        response = client.post(
            f"/projects/{project['id']}/access",
            json={"userEmail": user["email"], "module": module, "accessLevel": level},
            headers=owner["headers"],
        )
        assert response.status_code == 200, response.text
        return response.json()["data"]

    return _grant


@pytest.fixture
def other_project(client, outsider):
    """A second project owned by the outsider; the fixture owner has no access to it."""
    response = client.post("/projects", json={"name": "Cabin Systems"}, headers=outsider["headers"])
    assert response.status_code == 200, response.text
    return response.json()["data"]
