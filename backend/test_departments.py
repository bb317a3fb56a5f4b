"""
Department registry tests: admin-only writes, unique names, and projects
referencing a department.

Run: pytest backend/test_departments.py -v
"""

import uuid

import pytest


@pytest.fixture
def department(client, admin):
    response = client.post("/departments", json={"name": f"Avionics {uuid.uuid4().hex[:6]}"},
                           headers=admin["headers"])
    assert response.status_code == 200, response.text
    return response.json()["data"]


class TestRegistry:
    def test_anyone_signed_in_can_list(self, client, owner, department):
        response = client.get("/departments", headers=owner["headers"])
        assert response.status_code == 200
        assert department["name"] in [d["name"] for d in response.json()["data"]]

    def test_listing_requires_auth(self, client):
        assert client.get("/departments").status_code == 401

    def test_writes_are_admin_only(self, client, owner, department):
        assert client.post("/departments", json={"name": "Cabin"}, headers=owner["headers"]).status_code == 403
        assert client.delete(f"/departments/{department['id']}", headers=owner["headers"]).status_code == 403

    def test_name_required(self, client, admin):
        response = client.post("/departments", json={"name": "  "}, headers=admin["headers"])
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_FIELDS"

    def test_duplicate_name(self, client, admin, department):
        response = client.post("/departments", json={"name": department["name"]}, headers=admin["headers"])
        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_ENTRY"

    def test_delete(self, client, admin, department):
        assert client.delete(f"/departments/{department['id']}", headers=admin["headers"]).status_code == 200
        response = client.delete(f"/departments/{department['id']}", headers=admin["headers"])
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


class TestProjectDepartment:
    def test_project_reports_department_name(self, client, owner, admin, department):
        created = client.post("/projects", json={"name": "Cabin Lighting", "departmentId": department["id"]},
                              headers=owner["headers"])
        assert created.status_code == 200, created.text
        project = created.json()["data"]
        assert project["department_id"] == department["id"]
        assert project["department_name"] == department["name"]

        # Referenced departments cannot be removed
        response = client.delete(f"/departments/{department['id']}", headers=admin["headers"])
        assert response.status_code == 400
        assert response.json()["code"] == "FOREIGN_KEY_VIOLATION"

    def test_unknown_department_rejected(self, client, owner):
        response = client.post("/projects", json={"name": "Orphan", "departmentId": 999999},
                               headers=owner["headers"])
        assert response.status_code == 400
        assert response.json()["code"] == "FOREIGN_KEY_VIOLATION"
