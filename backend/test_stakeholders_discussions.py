"""
Stakeholder register, meeting discussions and discussion action items.

Run: pytest backend/test_stakeholders_discussions.py -v
"""

import pytest


@pytest.fixture
def discussion(client, owner, project):
    response = client.post(
        f"/projects/{project['id']}/discussions",
        json={"meeting_title": "Weekly sync", "meeting_date": "2025-03-10", "attendees": "Asha, Ravi , "},
        headers=owner["headers"],
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]


class TestStakeholders:
    def test_crud(self, client, owner, project):
        base = f"/projects/{project['id']}/stakeholders"
        created = client.post(base, json={"name": "Chief Engineer", "raci": "A", "department": "Engineering"},
                              headers=owner["headers"])
        assert created.status_code == 200
        stakeholder = created.json()["data"]
        assert stakeholder["raci"] == "A"

        updated = client.put(f"{base}/{stakeholder['id']}", json={"influence_level": "high"},
                             headers=owner["headers"])
        assert updated.status_code == 200
        assert updated.json()["data"]["influence_level"] == "high"
        assert updated.json()["data"]["name"] == "Chief Engineer"

        listed = client.get(base, headers=owner["headers"]).json()["data"]
        assert [s["name"] for s in listed] == ["Chief Engineer"]

        assert client.delete(f"{base}/{stakeholder['id']}", headers=owner["headers"]).status_code == 200
        assert client.get(base, headers=owner["headers"]).json()["data"] == []

    def test_name_required(self, client, owner, project):
        response = client.post(f"/projects/{project['id']}/stakeholders", json={"email": "x@test.com"},
                               headers=owner["headers"])
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_FIELDS"

    def test_update_unknown_stakeholder(self, client, owner, project):
        response = client.put(f"/projects/{project['id']}/stakeholders/999999", json={"name": "x"},
                              headers=owner["headers"])
        assert response.status_code == 404


class TestDiscussions:
    def test_attendees_are_a_list(self, discussion):
        assert discussion["attendees"] == ["Asha", "Ravi"]

    def test_update_discussion(self, client, owner, project, discussion):
        response = client.put(
            f"/projects/{project['id']}/discussions/{discussion['id']}",
            json={"attendees": ["Asha"], "summary_notes": "Agreed on freeze date"},
            headers=owner["headers"],
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["attendees"] == ["Asha"]
        assert data["meeting_title"] == "Weekly sync"

    def test_action_item_lifecycle(self, client, owner, project, discussion):
        created = client.post(
            f"/projects/{project['id']}/action-items",
            json={"discussion_id": discussion["id"], "task_description": "Send minutes", "owner_id": owner["id"]},
            headers=owner["headers"],
        )
        assert created.status_code == 200
        item = created.json()["data"]
        assert item["status"] == "open"
        assert item["project_id"] == project["id"]

        updated = client.put(f"/action-items/{item['id']}", json={"status": "done"}, headers=owner["headers"])
        assert updated.status_code == 200
        assert updated.json()["data"]["status"] == "done"

        listed = client.get(f"/projects/{project['id']}/action-items", headers=owner["headers"]).json()["data"]
        assert listed[0]["meeting_title"] == "Weekly sync"

        assert client.delete(f"/action-items/{item['id']}", headers=owner["headers"]).status_code == 200
        assert client.put(f"/action-items/{item['id']}", json={"status": "x"},
                          headers=owner["headers"]).status_code == 404

    def test_action_item_needs_discussion_in_same_project(self, client, owner, project):
        other = client.post("/projects", json={"name": "Other"}, headers=owner["headers"]).json()["data"]
        foreign = client.post(
            f"/projects/{other['id']}/discussions",
            json={"meeting_title": "Elsewhere", "meeting_date": "2025-03-11"},
            headers=owner["headers"],
        ).json()["data"]
        response = client.post(
            f"/projects/{project['id']}/action-items",
            json={"discussion_id": foreign["id"], "task_description": "Leak"},
            headers=owner["headers"],
        )
        assert response.status_code == 404

    def test_action_item_write_requires_discussions_write(self, client, owner, outsider, project, discussion,
                                                          grant):
        item = client.post(
            f"/projects/{project['id']}/action-items",
            json={"discussion_id": discussion["id"], "task_description": "Book room"},
            headers=owner["headers"],
        ).json()["data"]
        grant(outsider, "discussions", "read")
        response = client.put(f"/action-items/{item['id']}", json={"status": "done"}, headers=outsider["headers"])
        assert response.status_code == 403
