"""
Project and module grant management tests.

Run: pytest backend/test_access_grants.py -v
"""


def test_grant_update_and_revoke(client, owner, outsider, project):
    base = f"/projects/{project['id']}/access"

    granted = client.post(
        base,
        json={"userEmail": outsider["email"], "module": "risk_register", "accessLevel": "read"},
        headers=owner["headers"],
    )
    assert granted.status_code == 200
    assert granted.json()["data"]["access_level"] == "read"

    # Re-granting the same module upserts instead of duplicating
    regrant = client.post(
        base,
        json={"userId": outsider["id"], "module": "risk_register", "accessLevel": "write"},
        headers=owner["headers"],
    )
    assert regrant.status_code == 200
    listed = client.get(base, headers=owner["headers"]).json()["data"]
    rows = [r for r in listed if r["user_id"] == outsider["id"]]
    assert len(rows) == 1
    assert rows[0]["access_level"] == "write"

    updated = client.put(
        f"{base}/{outsider['id']}",
        json={"module": "risk_register", "accessLevel": "read"},
        headers=owner["headers"],
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["access_level"] == "read"

    revoked = client.delete(f"{base}/{outsider['id']}?module=risk_register", headers=owner["headers"])
    assert revoked.status_code == 200
    assert revoked.json()["data"]["revoked"] == 1

    after = client.get(f"/projects/{project['id']}/risks", headers=outsider["headers"])
    assert after.status_code == 403


def test_grant_requires_all_fields(client, owner, outsider, project):
    response = client.post(
        f"/projects/{project['id']}/access",
        json={"userEmail": outsider["email"], "module": "risk_register"},
        headers=owner["headers"],
    )
    assert response.status_code == 400
    assert response.json()["code"] == "MISSING_FIELDS"


def test_grant_rejects_unknown_module(client, owner, outsider, project):
    response = client.post(
        f"/projects/{project['id']}/access",
        json={"userEmail": outsider["email"], "module": "payroll", "accessLevel": "read"},
        headers=owner["headers"],
    )
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_grant_to_unknown_user(client, owner, project):
    response = client.post(
        f"/projects/{project['id']}/access",
        json={"userEmail": "nobody_here@test.com", "module": "overview", "accessLevel": "read"},
        headers=owner["headers"],
    )
    assert response.status_code == 404
    assert response.json()["code"] == "USER_NOT_FOUND"


def test_grantee_cannot_grant_others(client, make_user, outsider, project, grant):
    grant(outsider, "overview", "write")
    third = make_user("third")
    response = client.post(
        f"/projects/{project['id']}/access",
        json={"userEmail": third["email"], "module": "overview", "accessLevel": "write"},
        headers=outsider["headers"],
    )
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


def test_revoke_missing_grant_is_404(client, owner, outsider, project):
    response = client.delete(f"/projects/{project['id']}/access/{outsider['id']}", headers=owner["headers"])
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_permissions_across_projects(client, outsider, project, grant):
    grant(outsider, "budget_management", "read")
    response = client.get("/permissions", headers=outsider["headers"])
    assert response.status_code == 200
    rows = response.json()["data"]
    assert {"project_id": project["id"], "project_name": project["name"],
            "module": "budget_management", "access_level": "read"} in rows


def test_project_list_visibility(client, owner, outsider, project, grant):
    mine = client.get("/projects", headers=owner["headers"]).json()["data"]
    assert project["id"] in [p["id"] for p in mine]

    before = client.get("/projects", headers=outsider["headers"]).json()["data"]
    assert project["id"] not in [p["id"] for p in before]

    grant(outsider, "overview", "read")
    after = client.get("/projects", headers=outsider["headers"]).json()["data"]
    assert project["id"] in [p["id"] for p in after]


def test_project_update_by_owner_only(client, owner, outsider, project, grant):
    grant(outsider, "overview", "write")
    denied = client.put(f"/projects/{project['id']}", json={"status": "active"}, headers=outsider["headers"])
    assert denied.status_code == 403

    allowed = client.put(f"/projects/{project['id']}", json={"status": "active"}, headers=owner["headers"])
    assert allowed.status_code == 200
    assert allowed.json()["data"]["status"] == "active"


def test_project_delete_and_stats_are_admin_only(client, owner, admin, project):
    assert client.get("/projects/stats", headers=owner["headers"]).status_code == 403
    stats = client.get("/projects/stats", headers=admin["headers"])
    assert stats.status_code == 200
    assert stats.json()["data"]["totalProjects"] >= 1

    assert client.delete(f"/projects/{project['id']}", headers=owner["headers"]).status_code == 403
    deleted = client.delete(f"/projects/{project['id']}", headers=admin["headers"])
    assert deleted.status_code == 200
    gone = client.get(f"/projects/{project['id']}", headers=admin["headers"])
    assert gone.status_code == 404
    assert gone.json()["code"] == "PROJECT_NOT_FOUND"


def test_history_records_grants(client, owner, outsider, project, grant):
    grant(outsider, "discussions", "write")
    response = client.get(f"/projects/{project['id']}/history?limit=10", headers=owner["headers"])
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["limit"] == 10
    actions = [e["action"] for e in data["entries"]]
    assert "grant" in actions
    assert "create" in actions
