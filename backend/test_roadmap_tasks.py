"""
Roadmap milestones and task handler tests.

Run: pytest backend/test_roadmap_tasks.py -v
"""

from datetime import date, timedelta

import pytest


@pytest.fixture
def milestone(client, owner, project):
    due = (date.today() + timedelta(days=30)).isoformat()
    response = client.post(
        f"/projects/{project['id']}/roadmap",
        json={"name": "Design Freeze", "dueDate": due},
        headers=owner["headers"],
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]["milestone"]


class TestRoadmap:
    def test_create_milestone_in_future_is_not_overdue(self, client, owner, project, milestone):
        assert milestone["name"] == "Design Freeze"
        assert milestone["status"] == "planning"
        assert milestone["overdue"] is False

        roadmap = client.get(f"/projects/{project['id']}/roadmap", headers=owner["headers"])
        assert roadmap.status_code == 200
        data = roadmap.json()["data"]
        assert data["projectId"] == project["id"]
        assert [m["name"] for m in data["milestones"]] == ["Design Freeze"]

    def test_past_due_milestone_is_overdue_until_completed(self, client, owner, project):
        past = (date.today() - timedelta(days=3)).isoformat()
        created = client.post(
            f"/projects/{project['id']}/roadmap",
            json={"name": "PDR", "dueDate": past},
            headers=owner["headers"],
        ).json()["data"]["milestone"]
        assert created["overdue"] is True

        done = client.put(
            f"/projects/{project['id']}/roadmap/{created['id']}",
            json={"status": "completed"},
            headers=owner["headers"],
        )
        assert done.status_code == 200
        assert done.json()["data"]["milestone"]["overdue"] is False

    def test_milestone_requires_name_and_due_date(self, client, owner, project):
        response = client.post(f"/projects/{project['id']}/roadmap", json={"name": "  "}, headers=owner["headers"])
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "MISSING_FIELDS"
        fields = {d["field"] for d in body["details"]}
        assert {"name", "dueDate"} & fields

    def test_read_grant_cannot_edit_roadmap(self, client, outsider, project, milestone, grant):
        grant(outsider, "roadmap", "read")
        assert client.get(f"/projects/{project['id']}/roadmap", headers=outsider["headers"]).status_code == 200
        response = client.put(
            f"/projects/{project['id']}/roadmap/{milestone['id']}",
            json={"name": "Renamed"},
            headers=outsider["headers"],
        )
        assert response.status_code == 403

    def test_delete_milestone_detaches_tasks(self, client, owner, project, milestone):
        task = client.post(
            f"/projects/{project['id']}/tasks",
            json={"title": "Freeze interfaces", "milestoneId": milestone["id"]},
            headers=owner["headers"],
        ).json()["data"]
        deleted = client.delete(f"/projects/{project['id']}/roadmap/{milestone['id']}", headers=owner["headers"])
        assert deleted.status_code == 200

        tasks = client.get(f"/projects/{project['id']}/tasks", headers=owner["headers"]).json()["data"]
        remaining = [t for t in tasks if t["id"] == task["id"]]
        assert remaining and remaining[0]["milestone_id"] is None


class TestTasks:
    def test_create_and_filter_tasks(self, client, owner, project, milestone):
        base = f"/projects/{project['id']}/tasks"
        client.post(base, json={"title": "Write ICD", "milestoneId": milestone["id"]}, headers=owner["headers"])
        client.post(base, json={"title": "Order parts", "status": "in_progress"}, headers=owner["headers"])

        by_milestone = client.get(f"{base}?milestone_id={milestone['id']}", headers=owner["headers"]).json()["data"]
        assert [t["title"] for t in by_milestone] == ["Write ICD"]
        assert by_milestone[0]["milestone_name"] == "Design Freeze"

        by_status = client.get(f"{base}?status=in_progress", headers=owner["headers"]).json()["data"]
        assert [t["title"] for t in by_status] == ["Order parts"]

        milestones = client.get(f"/projects/{project['id']}/milestones", headers=owner["headers"]).json()["data"]
        assert milestones[0]["task_count"] == 1

    def test_status_change_writes_history(self, client, owner, project):
        task = client.post(
            f"/projects/{project['id']}/tasks", json={"title": "Bench test"}, headers=owner["headers"]
        ).json()["data"]
        assert task["status"] == "todo"

        updated = client.put(
            f"/tasks/{task['id']}",
            json={"status": "in_progress", "statusNote": "Rig available"},
            headers=owner["headers"],
        )
        assert updated.status_code == 200
        assert updated.json()["data"]["status"] == "in_progress"

        # A non-status edit adds no history row
        client.put(f"/tasks/{task['id']}", json={"priority": "high"}, headers=owner["headers"])

        history = client.get(f"/tasks/{task['id']}/status-history", headers=owner["headers"]).json()["data"]
        assert len(history) == 1
        entry = history[0]
        assert entry["old_status"] == "todo"
        assert entry["new_status"] == "in_progress"
        assert entry["changed_by"] == owner["id"]
        assert entry["notes"] == "Rig available"

    def test_task_cannot_point_at_foreign_milestone(self, client, owner, project):
        other = client.post("/projects", json={"name": "Other programme"}, headers=owner["headers"]).json()["data"]
        foreign = client.post(
            f"/projects/{other['id']}/roadmap",
            json={"name": "Foreign", "dueDate": date.today().isoformat()},
            headers=owner["headers"],
        ).json()["data"]["milestone"]

        response = client.post(
            f"/projects/{project['id']}/tasks",
            json={"title": "Cross-linked", "milestoneId": foreign["id"]},
            headers=owner["headers"],
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_move_task_between_milestones(self, client, owner, project, milestone):
        task = client.post(
            f"/projects/{project['id']}/tasks", json={"title": "Loose task"}, headers=owner["headers"]
        ).json()["data"]
        moved = client.put(f"/tasks/{task['id']}/move", json={"milestoneId": milestone["id"]},
                           headers=owner["headers"])
        assert moved.status_code == 200
        assert moved.json()["data"]["milestone_id"] == milestone["id"]

        detached = client.put(f"/tasks/{task['id']}/move", json={"milestoneId": None}, headers=owner["headers"])
        assert detached.json()["data"]["milestone_id"] is None

    def test_child_routes_enforce_module_access(self, client, owner, outsider, project, grant):
        task = client.post(
            f"/projects/{project['id']}/tasks", json={"title": "Guarded"}, headers=owner["headers"]
        ).json()["data"]

        assert client.put(f"/tasks/{task['id']}", json={"title": "x"}, headers=outsider["headers"]).status_code == 403

        grant(outsider, "tasks_milestones", "read")
        assert client.get(f"/tasks/{task['id']}/status-history", headers=outsider["headers"]).status_code == 200
        assert client.delete(f"/tasks/{task['id']}", headers=outsider["headers"]).status_code == 403

    def test_unknown_task_is_404(self, client, owner):
        response = client.put("/tasks/999999", json={"title": "x"}, headers=owner["headers"])
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_delete_task(self, client, owner, project):
        task = client.post(
            f"/projects/{project['id']}/tasks", json={"title": "Temporary"}, headers=owner["headers"]
        ).json()["data"]
        assert client.delete(f"/tasks/{task['id']}", headers=owner["headers"]).status_code == 200
        assert client.get(f"/tasks/{task['id']}/status-history", headers=owner["headers"]).status_code == 404
