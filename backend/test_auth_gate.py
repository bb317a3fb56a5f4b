"""
Auth gate tests: bearer token handling and the /auth endpoints.

Run: pytest backend/test_auth_gate.py -v
"""

import uuid

from backend.auth_context import create_access_token


def test_missing_authorization_header_is_unauthorized(client):
    response = client.get("/projects")
    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "UNAUTHORIZED"


def test_non_bearer_scheme_is_unauthorized(client):
    response = client.get("/projects", headers={"Authorization": "Basic dXNlcjpwYXNz"})
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"


def test_garbage_token_is_invalid(client):
    response = client.get("/projects", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_TOKEN"


def test_expired_token_is_invalid(client, owner):
    token = create_access_token(owner["id"], owner["email"], minutes=-5)
    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_TOKEN"


def test_token_for_deleted_user_is_rejected(client):
    token = create_access_token(987654321, "ghost@test.com")
    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["code"] == "USER_NOT_FOUND"


def test_register_login_and_me(client):
    email = f"Pilot_{uuid.uuid4().hex[:8]}@Test.com"
    register = client.post("/auth/register", json={"email": email, "password": "secret99", "fullName": "Pilot"})
    assert register.status_code == 200
    assert register.json()["data"]["user"]["email"] == email.lower()
    assert register.json()["data"]["user"]["is_admin"] is False

    login = client.post("/auth/login", json={"email": email, "password": "secret99"})
    assert login.status_code == 200
    token = login.json()["data"]["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    identity = me.json()["data"]
    assert identity["email"] == email.lower()
    assert identity["full_name"] == "Pilot"
    assert identity["is_admin"] is False


def test_login_with_wrong_password(client, owner):
    response = client.post("/auth/login", json={"email": owner["email"], "password": "wrong-password"})
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"


def test_duplicate_registration_conflicts(client, owner):
    response = client.post("/auth/register", json={"email": owner["email"], "password": "password123"})
    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE_ENTRY"


def test_register_missing_password(client):
    response = client.post("/auth/register", json={"email": "nopass@test.com"})
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "MISSING_FIELDS"
    assert "password" in body["error"]


def test_admin_flag_reported_on_me(client, admin):
    response = client.get("/auth/me", headers=admin["headers"])
    assert response.status_code == 200
    assert response.json()["data"]["is_admin"] is True


def test_health_is_public(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestUserRole:
    def test_own_role(self, client, owner):
        response = client.get(f"/users/{owner['id']}/role", headers=owner["headers"])
        assert response.status_code == 200
        assert response.json()["data"] == {"userId": owner["id"], "role": "user"}

    def test_admin_reads_any_role(self, client, owner, admin):
        assert client.get(f"/users/{admin['id']}/role", headers=admin["headers"]).json()["data"]["role"] == "admin"
        response = client.get(f"/users/{owner['id']}/role", headers=admin["headers"])
        assert response.json()["data"]["role"] == "user"

    def test_other_users_role_is_forbidden(self, client, owner, outsider):
        response = client.get(f"/users/{outsider['id']}/role", headers=owner["headers"])
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_unknown_user_has_no_role(self, client, admin):
        response = client.get("/users/999999/role", headers=admin["headers"])
        assert response.status_code == 200
        assert response.json()["data"]["role"] is None
