"""
backend/analytics.py

Project analytics: concurrent reads, then pure reduction.

fetch_project_dataset() fans the table reads out over a thread pool, one
SQLite connection per read, and waits for all of them. If any read fails the
whole call fails with FETCH_ERROR; there is no partial dataset.

Everything below the fetch section is pure: reducers take plain lists of
dicts and a reference time, so they can be unit tested without a database.

Health scores (each 0-100, overall is the unweighted mean):
- timeline: % of milestones completed, else % of tasks completed
- budget:   remaining / allocated * 100, floored at 0
- risk:     100 - high-risk share, floored at 0
- team:     TEAM_HEALTH_WITH_MEMBERS when any iteration has members

A sub-score with no underlying data is handled by HEALTH_EMPTY_POLICY:
"optimistic" scores it 100, "exclude" reports null and leaves it out of
the mean. Either way its name is listed in insufficientData.
"""

from __future__ import annotations

import math
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from backend.config import (
    ANALYTICS_MAX_WORKERS,
    HEALTH_EMPTY_POLICY,
    HIGH_RISK_THRESHOLD,
    IS_DEV,
    TEAM_HEALTH_WITH_MEMBERS,
)
from backend.db import get_db, rows_to_dicts
from backend.errors import ApiError, ErrorCode
from backend.models import DONE_STATUSES, MITIGATED_RISK_STATUSES

ANALYTICS_TYPES = ("project-overview", "team-capacity", "retrospectives", "comprehensive")

IN_PROGRESS_STATUSES = {"in_progress", "in progress"}
TODO_STATUSES = {"todo", "backlog"}

CATEGORY_COLORS = ["#2563eb", "#10b981", "#f59e0b", "#ef4444", "#8b5cf6"]

FRAMEWORK_NAMES = {
    "classic": "Classic",
    "4ls": "4Ls",
    "kiss": "KISS",
    "sailboat": "Sailboat",
    "mad_sad_glad": "Mad/Sad/Glad",
}


@dataclass
class ProjectDataset:
    """Everything the reducers need for one project, read in one fan-out."""
    tasks: List[dict] = field(default_factory=list)
    milestones: List[dict] = field(default_factory=list)
    risks: List[dict] = field(default_factory=list)
    stakeholders: List[dict] = field(default_factory=list)
    retrospectives: List[dict] = field(default_factory=list)
    retro_actions: List[dict] = field(default_factory=list)
    budgets: List[dict] = field(default_factory=list)
    iterations: List[dict] = field(default_factory=list)
    teams: List[dict] = field(default_factory=list)


# =========================================================
# Fetch (one connection per read)
# =========================================================
def _select(conn: sqlite3.Connection, sql: str, params: tuple) -> List[dict]:
    cur = conn.cursor()
    cur.execute(sql, params)
    return rows_to_dicts(cur.fetchall())


def _children(conn: sqlite3.Connection, sql: str, project_id: int, fk: str,
              parents: List[dict]) -> Dict[int, List[dict]]:
    """Group child rows by foreign key for the given parent rows.

    `sql` selects the children of one project by joining up to the table that
    carries `project_id`, so the query binds a single parameter however many
    parents there are.
    """
    grouped: Dict[int, List[dict]] = {p["id"]: [] for p in parents}
    if not parents:
        return grouped
    for row in _select(conn, sql, (project_id,)):
        # Children inserted after the parent read have no slot
        if row[fk] in grouped:
            grouped[row[fk]].append(row)
    return grouped


def read_tasks(conn, project_id):
    return _select(conn, "SELECT * FROM tasks WHERE project_id = ?", (project_id,))


def read_milestones(conn, project_id):
    return _select(conn, "SELECT * FROM milestones WHERE project_id = ?", (project_id,))


def read_risks(conn, project_id):
    return _select(conn, "SELECT * FROM risk_register WHERE project_id = ?", (project_id,))


def read_stakeholders(conn, project_id):
    return _select(conn, "SELECT * FROM stakeholders WHERE project_id = ?", (project_id,))


def read_retrospectives(conn, project_id):
    retros = _select(conn, "SELECT * FROM retrospectives WHERE project_id = ?", (project_id,))
    columns = _children(
        conn,
        """
        SELECT c.* FROM retrospective_columns c
        JOIN retrospectives r ON r.id = c.retrospective_id
        WHERE r.project_id = ?
        ORDER BY c.column_order, c.id
        """,
        project_id, "retrospective_id", retros,
    )
    all_columns = [c for cols in columns.values() for c in cols]
    cards = _children(
        conn,
        """
        SELECT k.* FROM retrospective_cards k
        JOIN retrospective_columns c ON c.id = k.column_id
        JOIN retrospectives r ON r.id = c.retrospective_id
        WHERE r.project_id = ?
        ORDER BY k.id
        """,
        project_id, "column_id", all_columns,
    )
    for retro in retros:
        retro["columns"] = columns[retro["id"]]
        for column in retro["columns"]:
            column["cards"] = cards[column["id"]]
    return retros


def read_retro_actions(conn, project_id):
    return _select(
        conn,
        """
        SELECT a.* FROM retrospective_action_items a
        JOIN retrospectives r ON r.id = a.retrospective_id
        WHERE r.project_id = ?
        """,
        (project_id,),
    )


def read_budgets(conn, project_id):
    budgets = _select(conn, "SELECT * FROM project_budgets WHERE project_id = ?", (project_id,))
    categories = _children(
        conn,
        """
        SELECT bc.* FROM budget_categories bc
        JOIN project_budgets b ON b.id = bc.project_budget_id
        WHERE b.project_id = ?
        ORDER BY bc.id
        """,
        project_id, "project_budget_id", budgets,
    )
    all_categories = [c for cats in categories.values() for c in cats]
    spending = _children(
        conn,
        """
        SELECT s.* FROM budget_spending s
        JOIN budget_categories bc ON bc.id = s.budget_category_id
        JOIN project_budgets b ON b.id = bc.project_budget_id
        WHERE b.project_id = ?
        ORDER BY s.id
        """,
        project_id, "budget_category_id", all_categories,
    )
    for budget in budgets:
        budget["categories"] = categories[budget["id"]]
        for category in budget["categories"]:
            category["spending"] = spending[category["id"]]
    return budgets


def read_iterations(conn, project_id):
    iterations = _select(conn, "SELECT * FROM capacity_iterations WHERE project_id = ?", (project_id,))
    members = _children(
        conn,
        """
        SELECT m.* FROM capacity_members m
        JOIN capacity_iterations i ON i.id = m.iteration_id
        WHERE i.project_id = ?
        ORDER BY m.id
        """,
        project_id, "iteration_id", iterations,
    )
    for iteration in iterations:
        iteration["members"] = members[iteration["id"]]
    return iterations


def read_teams(conn, project_id):
    teams = _select(conn, "SELECT * FROM teams WHERE project_id = ?", (project_id,))
    members = _children(
        conn,
        """
        SELECT tm.* FROM team_members tm
        JOIN teams t ON t.id = tm.team_id
        WHERE t.project_id = ?
        ORDER BY tm.id
        """,
        project_id, "team_id", teams,
    )
    # Only iterations of this project count toward its teams
    iterations = _children(
        conn,
        """
        SELECT i.* FROM capacity_iterations i
        JOIN teams t ON t.id = i.team_id
        WHERE t.project_id = ? AND i.project_id = t.project_id
        ORDER BY i.id
        """,
        project_id, "team_id", teams,
    )
    for team in teams:
        team["members"] = members[team["id"]]
        team["iterations"] = iterations[team["id"]]
    return teams


READERS: Dict[str, Callable[[sqlite3.Connection, int], List[dict]]] = {
    "tasks": read_tasks,
    "milestones": read_milestones,
    "risks": read_risks,
    "stakeholders": read_stakeholders,
    "retrospectives": read_retrospectives,
    "retro_actions": read_retro_actions,
    "budgets": read_budgets,
    "iterations": read_iterations,
    "teams": read_teams,
}


def _run_reader(reader: Callable[[sqlite3.Connection, int], List[dict]], project_id: int) -> List[dict]:
    conn = get_db()
    try:
        return reader(conn, project_id)
    finally:
        conn.close()


def fetch_project_dataset(project_id: int, readers: Optional[Dict[str, Callable]] = None) -> ProjectDataset:
    """
    Read every source table for a project concurrently.

    Raises:
        ApiError(500, FETCH_ERROR): any single read failed
    """
    readers = readers or READERS
    with ThreadPoolExecutor(max_workers=ANALYTICS_MAX_WORKERS, thread_name_prefix="analytics_") as pool:
        futures = {name: pool.submit(_run_reader, reader, project_id) for name, reader in readers.items()}
        results: Dict[str, List[dict]] = {}
        failures = []
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except Exception as e:
                failures.append(f"{name}: {e}")
    if failures:
        print(f"[ANALYTICS] Fetch failed for project_id={project_id}: {'; '.join(failures)}")
        raise ApiError(ErrorCode.FETCH_ERROR, "Failed to fetch analytics data", status_code=500, details=failures)
    if IS_DEV:
        counts = ", ".join(f"{name}={len(rows)}" for name, rows in results.items())
        print(f"[ANALYTICS] Fetched project_id={project_id}: {counts}")
    return ProjectDataset(**results)


# =========================================================
# Pure reducers
# =========================================================
def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _parse_due(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        if len(raw) == 10:
            return datetime.combine(date.fromisoformat(raw), datetime.min.time())
        return datetime.fromisoformat(raw.replace("Z", ""))
    except ValueError:
        return None


def is_overdue(task: dict, now: datetime) -> bool:
    due = _parse_due(task.get("due_date"))
    return due is not None and due < now and task.get("status") not in DONE_STATUSES


def task_analytics(tasks: List[dict], now: datetime) -> Dict[str, Any]:
    completed = sum(1 for t in tasks if t.get("status") in DONE_STATUSES)
    in_progress = sum(1 for t in tasks if t.get("status") in IN_PROGRESS_STATUSES)
    todo = sum(1 for t in tasks if t.get("status") in TODO_STATUSES)
    blocked = sum(1 for t in tasks if t.get("status") == "blocked")
    overdue = [t for t in tasks if is_overdue(t, now)]

    by_owner: Dict[Any, Dict[str, Any]] = {}
    for task in tasks:
        owner = task.get("owner_id") or "Unassigned"
        bucket = by_owner.setdefault(owner, {"owner": owner, "total": 0, "completed": 0,
                                             "inProgress": 0, "blocked": 0})
        bucket["total"] += 1
        status = task.get("status")
        if status in DONE_STATUSES:
            bucket["completed"] += 1
        elif status in IN_PROGRESS_STATUSES:
            bucket["inProgress"] += 1
        elif status == "blocked":
            bucket["blocked"] += 1

    overdue_list = []
    for task in overdue:
        delta = now - _parse_due(task["due_date"])
        overdue_list.append({
            "id": task.get("id"),
            "title": task.get("title"),
            "owner": task.get("owner_id") or "Unassigned",
            "dueDate": task.get("due_date"),
            "daysOverdue": math.ceil(delta.total_seconds() / 86400),
        })

    return {
        "totalTasks": len(tasks),
        "completedTasks": completed,
        "inProgressTasks": in_progress,
        "todoTasks": todo,
        "blockedTasks": blocked,
        "overdueTasks": len(overdue),
        "tasksByStatus": [
            {"status": "Completed", "count": completed, "color": "#22c55e"},
            {"status": "In Progress", "count": in_progress, "color": "#06b6d4"},
            {"status": "Todo", "count": todo, "color": "#f97316"},
            {"status": "Blocked", "count": blocked, "color": "#ef4444"},
        ] if tasks else [],
        "tasksByOwner": list(by_owner.values()),
        "overdueTasksList": overdue_list,
    }


def risk_analysis(risks: List[dict], threshold: int = HIGH_RISK_THRESHOLD) -> Dict[str, Any]:
    high = sum(1 for r in risks if (r.get("likelihood") or 0) * (r.get("impact") or 0) >= threshold)
    mitigated = sum(1 for r in risks if r.get("status") in MITIGATED_RISK_STATUSES)
    by_category: Dict[str, int] = {}
    for risk in risks:
        category = risk.get("category") or "Uncategorized"
        by_category[category] = by_category.get(category, 0) + 1
    return {
        "totalRisks": len(risks),
        "highRisks": high,
        "mitigatedRisks": mitigated,
        "risksByCategory": [{"category": k, "count": v} for k, v in by_category.items()],
    }


def budget_analytics(budgets: List[dict]) -> Dict[str, Any]:
    """Rollup of the project's budget; remainingBudget never goes below zero."""
    budget = budgets[0] if budgets else {}
    categories = budget.get("categories") or []
    allocated = sum(c.get("budget_allocated") or 0 for c in categories) or (budget.get("total_budget_allocated") or 0)
    spend_by_category = []
    spent = 0.0
    for index, category in enumerate(categories):
        category_spent = sum(s.get("amount") or 0 for s in category.get("spending") or [])
        spent += category_spent
        spend_by_category.append({
            "name": category.get("name") or "Unknown",
            "value": category_spent,
            "color": CATEGORY_COLORS[index % len(CATEGORY_COLORS)],
        })
    return {
        "currency": budget.get("currency"),
        "totalAllocated": allocated,
        "totalSpent": spent,
        "remainingBudget": max(0, allocated - spent),
        "spendByCategory": spend_by_category,
    }


def team_performance(iterations: List[dict]) -> Dict[str, Any]:
    total_members = sum(len(i.get("members") or []) for i in iterations)
    if not iterations:
        return {"totalMembers": 0, "activeMembers": 0, "avgCapacity": 0, "avgEfficiency": 0}
    capacity_sum = 0.0
    efficiency_sum = 0.0
    for iteration in iterations:
        members = iteration.get("members") or []
        divisor = max(1, len(members))
        capacity_sum += sum(m.get("effective_capacity_days") or 0 for m in members) / divisor
        efficiency_sum += sum(m.get("availability_percent") or 0 for m in members) / divisor
    return {
        "totalMembers": total_members,
        "activeMembers": total_members,
        "avgCapacity": round_half_up(capacity_sum / len(iterations)),
        "avgEfficiency": round_half_up(efficiency_sum / len(iterations)),
    }


def health_scores(
    milestones: List[dict],
    tasks_summary: Dict[str, Any],
    budget_summary: Dict[str, Any],
    risk_summary: Dict[str, Any],
    team_summary: Dict[str, Any],
    policy: str = HEALTH_EMPTY_POLICY,
) -> Dict[str, Any]:
    raw: Dict[str, Optional[float]] = {}

    if milestones:
        done = sum(1 for m in milestones if m.get("status") == "completed")
        raw["timeline"] = done / len(milestones) * 100
    elif tasks_summary["totalTasks"]:
        raw["timeline"] = tasks_summary["completedTasks"] / tasks_summary["totalTasks"] * 100
    else:
        raw["timeline"] = None

    allocated = budget_summary["totalAllocated"]
    if allocated > 0:
        raw["budget"] = max(0.0, (allocated - budget_summary["totalSpent"]) / allocated * 100)
    else:
        raw["budget"] = None

    if risk_summary["totalRisks"]:
        raw["risks"] = max(0.0, 100 - risk_summary["highRisks"] / risk_summary["totalRisks"] * 100)
    else:
        raw["risks"] = None

    raw["team"] = TEAM_HEALTH_WITH_MEMBERS if team_summary["totalMembers"] > 0 else None

    insufficient = [name for name, value in raw.items() if value is None]
    if policy == "optimistic":
        raw = {name: (100.0 if value is None else value) for name, value in raw.items()}

    present = [v for v in raw.values() if v is not None]
    overall = round_half_up(sum(present) / len(present)) if present else None
    scores = {name: (None if value is None else round_half_up(value)) for name, value in raw.items()}
    return {"overall": overall, **scores, "insufficientData": insufficient, "policy": policy}


def project_overview(dataset: ProjectDataset, now: Optional[datetime] = None,
                     policy: str = HEALTH_EMPTY_POLICY) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    tasks = task_analytics(dataset.tasks, now)
    risks = risk_analysis(dataset.risks)
    budget = budget_analytics(dataset.budgets)
    team = team_performance(dataset.iterations)
    retro_cards = sum(len(c.get("cards") or []) for r in dataset.retrospectives for c in r.get("columns") or [])
    return {
        "projectHealth": health_scores(dataset.milestones, tasks, budget, risks, team, policy),
        "budgetAnalytics": budget,
        "taskAnalytics": tasks,
        "teamPerformance": team,
        "riskAnalysis": risks,
        "stakeholderAnalytics": {
            "totalStakeholders": len(dataset.stakeholders),
            "activeStakeholders": len(dataset.stakeholders),
        },
        "retrospectiveAnalytics": {
            "totalRetros": len(dataset.retrospectives),
            "totalActionItems": retro_cards,
            "convertedToTasks": sum(1 for a in dataset.retro_actions if a.get("converted_to_task")),
        },
    }


def capacity_status(capacity: float) -> str:
    if capacity > 90:
        return "overloaded"
    if capacity > 70:
        return "optimal"
    return "underutilized"


def team_capacity(teams: List[dict]) -> Dict[str, Any]:
    capacity_data = []
    for team in teams:
        members = team.get("members") or []
        avg = (sum(m.get("default_availability_percent") or 0 for m in members) / len(members)) if members else 0
        capacity_data.append({
            "team_name": team.get("name"),
            "members": len(members),
            "iterations": len(team.get("iterations") or []),
            "capacity": round_half_up(avg),
            "efficiency": round_half_up(avg * 0.9),
            "utilization": round_half_up(avg * 0.85),
            "status": capacity_status(avg),
        })
    count = len(capacity_data)
    return {
        "capacityData": capacity_data,
        "overallMetrics": {
            "totalTeams": len(teams),
            "totalMembers": sum(len(t.get("members") or []) for t in teams),
            "avgCapacity": round_half_up(sum(t["capacity"] for t in capacity_data) / count) if count else 0,
            "avgEfficiency": round_half_up(sum(t["efficiency"] for t in capacity_data) / count) if count else 0,
        },
    }


def framework_display_name(framework: Optional[str]) -> Optional[str]:
    return FRAMEWORK_NAMES.get(framework, framework)


def truncate_text(text: str, limit: int = 100) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def retrospective_analytics(retrospectives: List[dict], actions: List[dict]) -> Dict[str, Any]:
    cards = []
    for retro in retrospectives:
        for column in retro.get("columns") or []:
            for card in column.get("cards") or []:
                cards.append({**card, "column": column.get("title"), "framework": retro.get("framework"),
                              "retro_date": (retro.get("created_at") or "")[:10]})

    frameworks: Dict[str, int] = {}
    for retro in retrospectives:
        name = framework_display_name(retro.get("framework"))
        frameworks[name] = frameworks.get(name, 0) + 1

    converted = sum(1 for a in actions if a.get("converted_to_task"))
    top = sorted(cards, key=lambda c: c.get("votes") or 0, reverse=True)[:10]
    return {
        "totalRetrospectives": len(retrospectives),
        "totalActionItems": len(cards),
        "totalVotes": sum(c.get("votes") or 0 for c in cards),
        "conversionRate": round_half_up(converted / len(actions) * 100) if actions else 0,
        "retrospectivesByFramework": [{"framework": k, "count": v} for k, v in frameworks.items()],
        "topVotedCards": [
            {
                "id": card.get("id"),
                "text": truncate_text(card.get("text") or ""),
                "votes": card.get("votes") or 0,
                "column": card["column"],
                "retrospective": f"{card['framework']} ({card['retro_date']})",
            }
            for card in top
        ],
    }


def compute_analytics(analytics_type: str, dataset: ProjectDataset, now: Optional[datetime] = None,
                      policy: str = HEALTH_EMPTY_POLICY) -> Dict[str, Any]:
    if analytics_type == "project-overview":
        return project_overview(dataset, now, policy)
    if analytics_type == "team-capacity":
        return team_capacity(dataset.teams)
    if analytics_type == "retrospectives":
        return retrospective_analytics(dataset.retrospectives, dataset.retro_actions)
    if analytics_type == "comprehensive":
        return {
            "projectOverview": project_overview(dataset, now, policy),
            "teamCapacity": team_capacity(dataset.teams),
            "retrospectives": retrospective_analytics(dataset.retrospectives, dataset.retro_actions),
        }
    raise ApiError(ErrorCode.INVALID_TYPE, f"Invalid analytics type: {analytics_type}")
