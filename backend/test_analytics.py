"""
Analytics tests.

The reducers are pure, so most cases feed them plain dicts with a fixed
reference time. A few endpoint tests cover the fetch fan-out and the
access check.

Run: pytest backend/test_analytics.py -v
"""

import sqlite3
from datetime import datetime

import pytest

from backend.analytics import (
    ProjectDataset,
    budget_analytics,
    compute_analytics,
    fetch_project_dataset,
    framework_display_name,
    health_scores,
    read_retrospectives,
    read_tasks,
    retrospective_analytics,
    risk_analysis,
    round_half_up,
    task_analytics,
    team_capacity,
    team_performance,
    truncate_text,
)
from backend.db import get_db
from backend.errors import ApiError, ErrorCode

NOW = datetime(2025, 3, 10, 12, 0, 0)

EMPTY_TASKS = {"totalTasks": 0, "completedTasks": 0}
EMPTY_BUDGET = {"totalAllocated": 0, "totalSpent": 0}
EMPTY_RISKS = {"totalRisks": 0, "highRisks": 0}
EMPTY_TEAM = {"totalMembers": 0}


def test_round_half_up_matches_ui_rounding():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_half_up(1.49) == 1
    assert round_half_up(71.25) == 71


class TestTaskAnalytics:
    def test_counts_and_overdue(self):
        tasks = [
            {"id": 1, "title": "Late", "status": "todo", "due_date": "2025-03-08", "owner_id": 7},
            {"id": 2, "title": "Late but done", "status": "completed", "due_date": "2025-03-01"},
            {"id": 3, "title": "Running", "status": "in_progress", "due_date": "2025-04-01"},
            {"id": 4, "title": "Stuck", "status": "blocked"},
        ]
        result = task_analytics(tasks, NOW)
        assert result["totalTasks"] == 4
        assert result["completedTasks"] == 1
        assert result["inProgressTasks"] == 1
        assert result["todoTasks"] == 1
        assert result["blockedTasks"] == 1
        assert result["overdueTasks"] == 1
        overdue = result["overdueTasksList"][0]
        assert overdue["id"] == 1
        assert overdue["daysOverdue"] == 3
        assert overdue["owner"] == 7

    def test_unassigned_bucket(self):
        result = task_analytics([{"status": "done"}, {"status": "todo"}], NOW)
        assert result["tasksByOwner"] == [
            {"owner": "Unassigned", "total": 2, "completed": 1, "inProgress": 0, "blocked": 0}
        ]

    def test_no_tasks_has_no_status_chart(self):
        assert task_analytics([], NOW)["tasksByStatus"] == []


class TestBudgetAnalytics:
    def test_remaining_never_negative(self):
        budgets = [{"currency": "USD", "categories": [
            {"name": "Rigs", "budget_allocated": 100, "spending": [{"amount": 90}, {"amount": 60}]},
        ]}]
        result = budget_analytics(budgets)
        assert result["totalAllocated"] == 100
        assert result["totalSpent"] == 150
        assert result["remainingBudget"] == 0

    def test_falls_back_to_budget_total(self):
        result = budget_analytics([{"currency": "INR", "total_budget_allocated": 5000, "categories": []}])
        assert result["totalAllocated"] == 5000
        assert result["remainingBudget"] == 5000

    def test_no_budget(self):
        result = budget_analytics([])
        assert result["totalAllocated"] == 0
        assert result["spendByCategory"] == []


class TestRiskAndTeam:
    def test_high_risk_threshold(self):
        risks = [
            {"likelihood": 3, "impact": 3, "status": "open", "category": "Supply"},
            {"likelihood": 2, "impact": 4, "status": "mitigated", "category": "Supply"},
            {"likelihood": None, "impact": 5, "status": "closed"},
        ]
        result = risk_analysis(risks, threshold=9)
        assert result["highRisks"] == 1
        assert result["mitigatedRisks"] == 2
        assert {"category": "Supply", "count": 2} in result["risksByCategory"]
        assert {"category": "Uncategorized", "count": 1} in result["risksByCategory"]

    def test_team_performance_averages_per_iteration(self):
        iterations = [
            {"members": [{"effective_capacity_days": 8, "availability_percent": 100},
                         {"effective_capacity_days": 4, "availability_percent": 50}]},
            {"members": []},
        ]
        result = team_performance(iterations)
        assert result["totalMembers"] == 2
        assert result["avgCapacity"] == 3
        assert result["avgEfficiency"] == 38

    def test_team_capacity_status(self):
        teams = [{"name": "Avionics", "members": [{"default_availability_percent": 80},
                                                 {"default_availability_percent": 100}], "iterations": []}]
        result = team_capacity(teams)
        row = result["capacityData"][0]
        assert row["capacity"] == 90
        assert row["efficiency"] == 81
        assert row["utilization"] == 77
        assert row["status"] == "optimal"
        assert result["overallMetrics"]["totalMembers"] == 2


class TestHealthScores:
    def test_optimistic_empty_project(self):
        result = health_scores([], EMPTY_TASKS, EMPTY_BUDGET, EMPTY_RISKS, EMPTY_TEAM, policy="optimistic")
        assert result["overall"] == 100
        assert result["timeline"] == 100
        assert sorted(result["insufficientData"]) == ["budget", "risks", "team", "timeline"]

    def test_exclude_empty_project(self):
        result = health_scores([], EMPTY_TASKS, EMPTY_BUDGET, EMPTY_RISKS, EMPTY_TEAM, policy="exclude")
        assert result["overall"] is None
        assert result["budget"] is None
        assert result["policy"] == "exclude"

    def test_exclude_averages_only_present_scores(self):
        milestones = [{"status": "completed"}, {"status": "planning"}]
        result = health_scores(milestones, EMPTY_TASKS, EMPTY_BUDGET, EMPTY_RISKS, EMPTY_TEAM, policy="exclude")
        assert result["timeline"] == 50
        assert result["overall"] == 50
        assert result["insufficientData"] == ["budget", "risks", "team"]

    def test_all_scores_present(self):
        milestones = [{"status": "completed"}, {"status": "planning"}]
        result = health_scores(
            milestones,
            EMPTY_TASKS,
            {"totalAllocated": 100, "totalSpent": 25},
            {"totalRisks": 4, "highRisks": 1},
            {"totalMembers": 3},
            policy="exclude",
        )
        assert result["timeline"] == 50
        assert result["budget"] == 75
        assert result["risks"] == 75
        assert result["team"] == 85
        assert result["overall"] == 71
        assert result["insufficientData"] == []

    def test_timeline_falls_back_to_tasks(self):
        result = health_scores([], {"totalTasks": 4, "completedTasks": 1}, EMPTY_BUDGET, EMPTY_RISKS,
                               EMPTY_TEAM, policy="exclude")
        assert result["timeline"] == 25

    def test_overspent_budget_floors_at_zero(self):
        result = health_scores([], EMPTY_TASKS, {"totalAllocated": 100, "totalSpent": 400}, EMPTY_RISKS,
                               EMPTY_TEAM, policy="exclude")
        assert result["budget"] == 0


class TestRetrospectiveAnalytics:
    def test_framework_names(self):
        assert framework_display_name("4ls") == "4Ls"
        assert framework_display_name("mad_sad_glad") == "Mad/Sad/Glad"
        assert framework_display_name("starfish") == "starfish"

    def test_truncate(self):
        assert truncate_text("a" * 100) == "a" * 100
        assert truncate_text("a" * 101) == "a" * 100 + "..."

    def test_conversion_and_top_cards(self):
        retros = [{
            "framework": "kiss",
            "created_at": "2025-03-01T10:00:00Z",
            "columns": [
                {"title": "Keep", "cards": [{"id": 1, "text": "Pairing", "votes": 2}]},
                {"title": "Stop", "cards": [{"id": 2, "text": "Late builds", "votes": 5}]},
            ],
        }]
        actions = [{"converted_to_task": 1}, {"converted_to_task": 0}, {"converted_to_task": 0}]
        result = retrospective_analytics(retros, actions)
        assert result["totalRetrospectives"] == 1
        assert result["totalActionItems"] == 2
        assert result["totalVotes"] == 7
        assert result["conversionRate"] == 33
        assert result["retrospectivesByFramework"] == [{"framework": "KISS", "count": 1}]
        assert [c["id"] for c in result["topVotedCards"]] == [2, 1]
        assert result["topVotedCards"][0]["retrospective"] == "kiss (2025-03-01)"

    def test_no_actions_means_zero_rate(self):
        assert retrospective_analytics([], [])["conversionRate"] == 0


class TestComputeAnalytics:
    def test_unknown_type(self):
        with pytest.raises(ApiError) as exc_info:
            compute_analytics("velocity", ProjectDataset())
        assert exc_info.value.code == ErrorCode.INVALID_TYPE

    def test_comprehensive_bundles_everything(self):
        result = compute_analytics("comprehensive", ProjectDataset(), NOW, policy="optimistic")
        assert set(result) == {"projectOverview", "teamCapacity", "retrospectives"}
        assert result["projectOverview"]["projectHealth"]["overall"] == 100


class TestFetch:
    def test_any_failed_read_fails_the_whole_fetch(self, project):
        def broken(conn, project_id):
            raise sqlite3.OperationalError("no such table: nowhere")

        with pytest.raises(ApiError) as exc_info:
            fetch_project_dataset(project["id"], readers={"tasks": read_tasks, "risks": broken})
        assert exc_info.value.code == ErrorCode.FETCH_ERROR
        assert exc_info.value.status_code == 500
        assert "risks" in exc_info.value.details[0]

    def test_partial_reader_set(self, client, owner, project):
        client.post(f"/projects/{project['id']}/tasks", json={"title": "Only task"}, headers=owner["headers"])
        dataset = fetch_project_dataset(project["id"], readers={"tasks": read_tasks})
        assert [t["title"] for t in dataset.tasks] == ["Only task"]
        assert dataset.risks == []

    def test_nested_reads_scale_past_sqlite_variable_limit(self, owner, project, other_project):
        # More parents than SQLite allows bound variables in one statement
        boards = 1200
        conn = get_db()
        try:
            cur = conn.cursor()
            for project_id in (project["id"], other_project["id"]):
                for n in range(boards if project_id == project["id"] else 1):
                    cur.execute("INSERT INTO retrospectives (project_id, created_by) VALUES (?, ?)",
                                (project_id, owner["id"]))
                    cur.execute("INSERT INTO retrospective_columns (retrospective_id, title) VALUES (?, ?)",
                                (cur.lastrowid, f"Column {n}"))
                    cur.execute("INSERT INTO retrospective_cards (column_id, text, created_by) VALUES (?, ?, ?)",
                                (cur.lastrowid, f"Card {n}", owner["id"]))
            conn.commit()
        finally:
            conn.close()

        dataset = fetch_project_dataset(project["id"], readers={"retrospectives": read_retrospectives})
        assert len(dataset.retrospectives) == boards
        for retro in dataset.retrospectives:
            assert len(retro["columns"]) == 1
            assert len(retro["columns"][0]["cards"]) == 1
        assert all(r["project_id"] == project["id"] for r in dataset.retrospectives)


class TestEndpoint:
    def test_project_overview(self, client, owner, project):
        base = f"/projects/{project['id']}"
        client.post(f"{base}/tasks", json={"title": "Done", "status": "completed"}, headers=owner["headers"])
        client.post(f"{base}/tasks", json={"title": "Open"}, headers=owner["headers"])
        client.post(f"{base}/risks", json={"risk_code": "R1", "title": "Big", "likelihood": 5, "impact": 5},
                    headers=owner["headers"])

        response = client.get(f"{base}/analytics/project-overview", headers=owner["headers"])
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["taskAnalytics"]["totalTasks"] == 2
        assert data["taskAnalytics"]["completedTasks"] == 1
        assert data["riskAnalysis"]["highRisks"] == 1
        assert data["projectHealth"]["timeline"] == 50
        assert data["projectHealth"]["risks"] == 0

    def test_invalid_type(self, client, owner, project):
        response = client.get(f"/projects/{project['id']}/analytics/velocity", headers=owner["headers"])
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_TYPE"

    def test_requires_overview_read(self, client, outsider, project, grant):
        url = f"/projects/{project['id']}/analytics/team-capacity"
        assert client.get(url, headers=outsider["headers"]).status_code == 403
        grant(outsider, "overview", "read")
        response = client.get(url, headers=outsider["headers"])
        assert response.status_code == 200
        assert response.json()["data"]["overallMetrics"]["totalTeams"] == 0
