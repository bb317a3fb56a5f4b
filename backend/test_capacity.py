"""
Team capacity tests: week generation, effective capacity, the polymorphic
capacity endpoints, teams and weekly availability.

Run: pytest backend/test_capacity.py -v
"""

from datetime import date

import pytest

from backend.routes_capacity import effective_capacity, generate_weeks


class TestGenerateWeeks:
    def test_two_full_weeks(self):
        weeks = generate_weeks(date(2025, 1, 6), date(2025, 1, 19))
        assert weeks == [
            (1, date(2025, 1, 6), date(2025, 1, 12)),
            (2, date(2025, 1, 13), date(2025, 1, 19)),
        ]

    def test_partial_last_week_is_clipped(self):
        weeks = generate_weeks(date(2025, 1, 6), date(2025, 1, 15))
        assert len(weeks) == 2
        assert weeks[-1] == (2, date(2025, 1, 13), date(2025, 1, 15))

    def test_single_day_iteration(self):
        assert generate_weeks(date(2025, 1, 6), date(2025, 1, 6)) == [(1, date(2025, 1, 6), date(2025, 1, 6))]


class TestEffectiveCapacity:
    def test_leaves_and_availability(self):
        assert effective_capacity(10, 2, 50) == 4.0

    def test_never_negative(self):
        assert effective_capacity(5, 8, 100) == 0

    def test_rounded_to_two_places(self):
        assert effective_capacity(10, 0, 33) == 3.3
        assert effective_capacity(7, 0, 33) == 2.31


@pytest.fixture
def iteration(client, owner, project):
    response = client.post(
        f"/projects/{project['id']}/capacity",
        json={"type": "iteration", "iterationName": "Sprint 1", "startDate": "2025-01-06",
              "endDate": "2025-01-19", "workingDays": 10},
        headers=owner["headers"],
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]


class TestCapacityEndpoints:
    def test_missing_type(self, client, owner, project):
        response = client.post(f"/projects/{project['id']}/capacity", json={"iterationName": "x"},
                               headers=owner["headers"])
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_TYPE"

    def test_invalid_type(self, client, owner, project):
        response = client.post(f"/projects/{project['id']}/capacity", json={"type": "sprint"},
                               headers=owner["headers"])
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_TYPE"

    def test_iteration_missing_working_days(self, client, owner, project):
        response = client.post(
            f"/projects/{project['id']}/capacity",
            json={"type": "iteration", "iterationName": "S", "startDate": "2025-01-06",
                  "endDate": "2025-01-19", "workingDays": 0},
            headers=owner["headers"],
        )
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_FIELDS"

    def test_iteration_creates_weeks(self, client, owner, iteration):
        assert iteration["weeks_count"] == 2
        detail = client.get(f"/iterations/{iteration['id']}", headers=owner["headers"]).json()["data"]
        assert [w["week_index"] for w in detail["weeks"]] == [1, 2]
        assert detail["weeks"][1]["week_end"] == "2025-01-19"

    def test_member_capacity_and_summary(self, client, owner, project, iteration):
        response = client.post(
            f"/projects/{project['id']}/capacity",
            json={"type": "member", "iterationId": iteration["id"], "memberName": "Asha", "role": "Engineer",
                  "leaves": 2, "availabilityPercent": 50},
            headers=owner["headers"],
        )
        assert response.status_code == 200, response.text
        member = response.json()["data"]
        assert member["effective_capacity_days"] == 4.0

        summary = client.get(f"/projects/{project['id']}/capacity", headers=owner["headers"]).json()["data"]
        assert summary["summary"] == {"totalIterations": 1, "totalCapacity": 4.0}

        updated = client.put(
            f"/projects/{project['id']}/capacity/{iteration['id']}",
            json={"type": "iteration", "workingDays": 8},
            headers=owner["headers"],
        )
        assert updated.status_code == 200
        refreshed = client.get(f"/projects/{project['id']}/capacity", headers=owner["headers"]).json()["data"]
        assert refreshed["members"][0]["effective_capacity_days"] == 3.0

    def test_member_update_recomputes(self, client, owner, project, iteration):
        member = client.post(
            f"/projects/{project['id']}/capacity",
            json={"type": "member", "iterationId": iteration["id"], "memberName": "Ravi", "role": "QA"},
            headers=owner["headers"],
        ).json()["data"]
        assert member["effective_capacity_days"] == 10.0
        updated = client.put(
            f"/projects/{project['id']}/capacity/{member['id']}",
            json={"type": "member", "leaves": 5},
            headers=owner["headers"],
        )
        assert updated.status_code == 200
        assert updated.json()["data"]["effective_capacity_days"] == 5.0

    def test_member_for_unknown_iteration(self, client, owner, project):
        response = client.post(
            f"/projects/{project['id']}/capacity",
            json={"type": "member", "iterationId": 999999, "memberName": "Ghost", "role": "Dev"},
            headers=owner["headers"],
        )
        assert response.status_code == 404
        assert response.json()["code"] == "ITERATION_NOT_FOUND"

    def test_date_change_regenerates_weeks(self, client, owner, project, iteration):
        response = client.put(
            f"/projects/{project['id']}/capacity/{iteration['id']}",
            json={"type": "iteration", "endDate": "2025-01-26"},
            headers=owner["headers"],
        )
        assert response.status_code == 200
        assert response.json()["data"]["weeks_count"] == 3

    def test_delete_requires_type(self, client, owner, project, iteration):
        missing = client.delete(f"/projects/{project['id']}/capacity/{iteration['id']}", headers=owner["headers"])
        assert missing.json()["code"] == "MISSING_TYPE"
        deleted = client.delete(f"/projects/{project['id']}/capacity/{iteration['id']}?type=iteration",
                                headers=owner["headers"])
        assert deleted.status_code == 200
        gone = client.get(f"/iterations/{iteration['id']}", headers=owner["headers"])
        assert gone.json()["code"] == "ITERATION_NOT_FOUND"


class TestTeamsAndAvailability:
    def test_team_members_and_weekly_availability(self, client, owner, project, iteration):
        team = client.post(f"/projects/{project['id']}/teams", json={"name": "Avionics"},
                           headers=owner["headers"]).json()["data"]
        member = client.post(
            f"/teams/{team['id']}/members",
            json={"memberName": "Asha", "role": "Lead", "defaultAvailabilityPercent": 80},
            headers=owner["headers"],
        ).json()["data"]
        assert member["project_id"] == project["id"]

        weeks = client.get(f"/iterations/{iteration['id']}", headers=owner["headers"]).json()["data"]["weeks"]
        entry = {"iteration_week_id": weeks[0]["id"], "team_member_id": member["id"],
                 "availability_percent": 50, "leaves": 1}
        saved = client.post(f"/iterations/{iteration['id']}/availability", json={"entries": [entry]},
                            headers=owner["headers"])
        assert saved.status_code == 200

        # Upsert on (week, member)
        entry["leaves"] = 0
        client.post(f"/iterations/{iteration['id']}/availability", json={"entries": [entry]},
                    headers=owner["headers"])
        detail = client.get(f"/iterations/{iteration['id']}", headers=owner["headers"]).json()["data"]
        assert len(detail["availability"]) == 1
        assert detail["availability"][0]["effective_capacity"] == 2.5
        assert detail["availability"][0]["member_name"] == "Asha"

        teams = client.get(f"/projects/{project['id']}/teams", headers=owner["headers"]).json()["data"]
        assert teams[0]["members"][0]["member_name"] == "Asha"

    def test_empty_availability_rejected(self, client, owner, iteration):
        response = client.post(f"/iterations/{iteration['id']}/availability", json={"entries": []},
                               headers=owner["headers"])
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_FIELDS"

    def test_week_from_other_iteration_rejected(self, client, owner, project, iteration):
        team = client.post(f"/projects/{project['id']}/teams", json={"name": "Ops"},
                           headers=owner["headers"]).json()["data"]
        member = client.post(f"/teams/{team['id']}/members", json={"memberName": "Li"},
                             headers=owner["headers"]).json()["data"]
        response = client.post(
            f"/iterations/{iteration['id']}/availability",
            json={"entries": [{"iteration_week_id": 999999, "team_member_id": member["id"]}]},
            headers=owner["headers"],
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_stats_admin_only(self, client, owner, admin, iteration):
        assert client.get("/capacity/stats", headers=owner["headers"]).status_code == 403
        assert client.get("/capacity/stats", headers=admin["headers"]).status_code == 200


class TestCrossProjectReferences:
    """Teams and team members can only be referenced from their own project."""

    @pytest.fixture
    def foreign_member(self, client, outsider, other_project):
        team = client.post(f"/projects/{other_project['id']}/teams", json={"name": "Cabin team"},
                           headers=outsider["headers"]).json()["data"]
        member = client.post(f"/teams/{team['id']}/members", json={"memberName": "Mira Cabin"},
                             headers=outsider["headers"]).json()["data"]
        return team, member

    def test_iteration_rejects_foreign_team(self, client, owner, project, foreign_member, outsider, other_project):
        team, _ = foreign_member
        response = client.post(
            f"/projects/{project['id']}/capacity",
            json={"type": "iteration", "iterationName": "Borrowed", "startDate": "2025-01-06",
                  "endDate": "2025-01-19", "workingDays": 10, "teamId": team["id"]},
            headers=owner["headers"],
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

        analytics = client.get(f"/projects/{other_project['id']}/analytics/team-capacity",
                               headers=outsider["headers"]).json()["data"]
        assert len(analytics["capacityData"]) == 1
        assert all(row["iterations"] == 0 for row in analytics["capacityData"])

    def test_iteration_accepts_own_team(self, client, owner, project):
        team = client.post(f"/projects/{project['id']}/teams", json={"name": "Avionics"},
                           headers=owner["headers"]).json()["data"]
        response = client.post(
            f"/projects/{project['id']}/capacity",
            json={"type": "iteration", "iterationName": "Own", "startDate": "2025-01-06",
                  "endDate": "2025-01-12", "workingDays": 5, "teamId": team["id"]},
            headers=owner["headers"],
        )
        assert response.status_code == 200
        assert response.json()["data"]["team_id"] == team["id"]

    def test_capacity_member_rejects_foreign_team_member(self, client, owner, project, iteration, foreign_member):
        _, member = foreign_member
        response = client.post(
            f"/projects/{project['id']}/capacity",
            json={"type": "member", "iterationId": iteration["id"], "memberName": "Mira", "role": "Dev",
                  "teamMemberId": member["id"]},
            headers=owner["headers"],
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_availability_rejects_foreign_team_member(self, client, owner, iteration, foreign_member):
        _, member = foreign_member
        weeks = client.get(f"/iterations/{iteration['id']}", headers=owner["headers"]).json()["data"]["weeks"]
        response = client.post(
            f"/iterations/{iteration['id']}/availability",
            json={"entries": [{"iteration_week_id": weeks[0]["id"], "team_member_id": member["id"]}]},
            headers=owner["headers"],
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

        detail = client.get(f"/iterations/{iteration['id']}", headers=owner["headers"]).json()["data"]
        assert detail["availability"] == []


class TestTeamDetail:
    def test_team_with_members(self, client, owner, project):
        team = client.post(f"/projects/{project['id']}/teams", json={"name": "Flight Dynamics"},
                           headers=owner["headers"]).json()["data"]
        for name in ("Zoe", "Arun"):
            client.post(f"/teams/{team['id']}/members", json={"memberName": name}, headers=owner["headers"])

        response = client.get(f"/teams/{team['id']}", headers=owner["headers"])
        assert response.status_code == 200, response.text
        data = response.json()["data"]
        assert data["name"] == "Flight Dynamics"
        assert data["project_id"] == project["id"]
        assert [m["member_name"] for m in data["members"]] == ["Arun", "Zoe"]

    def test_requires_team_capacity_read(self, client, owner, outsider, project, grant):
        team = client.post(f"/projects/{project['id']}/teams", json={"name": "Ground"},
                           headers=owner["headers"]).json()["data"]
        assert client.get(f"/teams/{team['id']}", headers=outsider["headers"]).status_code == 403
        grant(outsider, "team_capacity", "read")
        assert client.get(f"/teams/{team['id']}", headers=outsider["headers"]).status_code == 200

    def test_unknown_team(self, client, owner):
        response = client.get("/teams/999999", headers=owner["headers"])
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"
