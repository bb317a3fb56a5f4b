"""
backend/routes_roadmap.py

Roadmap milestones. Reads require roadmap:read, mutations roadmap:write.
Each milestone carries a computed `overdue` flag and its task count.
"""

from __future__ import annotations

import sqlite3
from datetime import date

from fastapi import APIRouter, Depends

from backend.audit import record_audit
from backend.db import build_update, db_value, get_db, now_iso, row_to_dict, transaction
from backend.dependencies import ProjectScope, require_module_access
from backend.errors import ErrorCode, missing_fields, not_found, translate_db_error
from backend.models import AccessLevel, ModuleName
from backend.responses import ok
from backend.schemas_workspace import MilestoneCreateRequest, MilestoneUpdateRequest

router = APIRouter(tags=["roadmap"])

MILESTONE_SELECT = """
    SELECT m.*, (SELECT COUNT(*) FROM tasks t WHERE t.milestone_id = m.id) AS task_count
    FROM milestones m
"""


def with_overdue(milestone: dict, today: date = None) -> dict:
    """Overdue: due date strictly before today and not completed."""
    today_str = (today or date.today()).isoformat()
    due = milestone.get("due_date")
    milestone["overdue"] = bool(due) and due[:10] < today_str and milestone.get("status") != "completed"
    return milestone


def fetch_milestone(cur: sqlite3.Cursor, project_id: int, milestone_id: int) -> dict:
    cur.execute(MILESTONE_SELECT + " WHERE m.id = ? AND m.project_id = ?", (milestone_id, project_id))
    row = cur.fetchone()
    if not row:
        raise not_found("Milestone")
    return with_overdue(row_to_dict(row))


@router.get("/projects/{project_id}/roadmap")
def list_roadmap(scope: ProjectScope = Depends(require_module_access(ModuleName.roadmap))):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(MILESTONE_SELECT + " WHERE m.project_id = ? ORDER BY m.due_date, m.id", (scope.project_id,))
        today = date.today()
        milestones = [with_overdue(dict(row), today) for row in cur.fetchall()]
        return ok({"projectId": scope.project_id, "milestones": milestones})
    except sqlite3.Error as e:
        print(f"[ROADMAP] DB error on list: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch roadmap")
    finally:
        conn.close()


@router.post("/projects/{project_id}/roadmap")
def create_milestone(
    request: MilestoneCreateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.roadmap, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            now = now_iso()
            cur.execute(
                """
                INSERT INTO milestones (project_id, name, description, due_date, status,
                                        created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    scope.project_id,
                    request.name,
                    request.description,
                    db_value(request.due_date),
                    db_value(request.status),
                    scope.user_id,
                    now,
                    now,
                ),
            )
            milestone_id = cur.lastrowid
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.roadmap, "create", "milestone",
                         milestone_id, new_values=request.dict())
            milestone = fetch_milestone(cur, scope.project_id, milestone_id)
        return ok({"message": "Milestone created successfully", "milestone": milestone},
                  "Milestone created successfully")
    except sqlite3.Error as e:
        print(f"[ROADMAP] DB error on create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create milestone")
    finally:
        conn.close()


@router.put("/projects/{project_id}/roadmap/{milestone_id}")
def update_milestone(
    milestone_id: int,
    request: MilestoneUpdateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.roadmap, AccessLevel.write)),
):
    changes = request.dict(exclude_unset=True)
    for required in ("name", "due_date"):
        if required in changes and changes[required] in (None, ""):
            raise missing_fields(f"{required} cannot be cleared")

    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_milestone(cur, scope.project_id, milestone_id)
            if changes:
                set_clause, params = build_update(changes)
                cur.execute(
                    f"UPDATE milestones SET {set_clause}, updated_at = ? WHERE id = ? AND project_id = ?",
                    (*params, now_iso(), milestone_id, scope.project_id),
                )
                record_audit(cur, scope.user_id, scope.project_id, ModuleName.roadmap, "update", "milestone",
                             milestone_id, old_values={k: before.get(k) for k in changes}, new_values=changes)
            milestone = fetch_milestone(cur, scope.project_id, milestone_id)
        return ok({"message": "Milestone updated successfully", "milestone": milestone},
                  "Milestone updated successfully")
    except sqlite3.Error as e:
        print(f"[ROADMAP] DB error on update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update milestone")
    finally:
        conn.close()


@router.delete("/projects/{project_id}/roadmap/{milestone_id}")
def delete_milestone(
    milestone_id: int,
    scope: ProjectScope = Depends(require_module_access(ModuleName.roadmap, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_milestone(cur, scope.project_id, milestone_id)
            cur.execute("DELETE FROM milestones WHERE id = ? AND project_id = ?", (milestone_id, scope.project_id))
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.roadmap, "delete", "milestone",
                         milestone_id, old_values={"name": before["name"]})
        return ok({"id": milestone_id}, "Milestone deleted successfully")
    except sqlite3.Error as e:
        print(f"[ROADMAP] DB error on delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete milestone")
    finally:
        conn.close()
