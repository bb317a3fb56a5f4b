"""
backend/routes_tasks.py

Task CRUD under the tasks_milestones module.

Routes keyed by task id resolve the owning project first and then run the
same module check as project-scoped routes. Status changes are written to
task_status_history with the acting user passed in explicitly.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.audit import record_audit
from backend.auth_context import AuthContext, require_auth_context
from backend.config import IS_DEV
from backend.db import build_update, db_value, get_db, now_iso, row_to_dict, rows_to_dicts, transaction
from backend.dependencies import ProjectScope, authorize_module, require_module_access
from backend.errors import ApiError, ErrorCode, missing_fields, not_found, translate_db_error
from backend.models import AccessLevel, ModuleName
from backend.responses import ok
from backend.schemas_workspace import TaskCreateRequest, TaskMoveRequest, TaskUpdateRequest

router = APIRouter(tags=["tasks"])

TASK_SELECT = """
    SELECT t.*, m.name AS milestone_name, u.full_name AS owner_name
    FROM tasks t
    LEFT JOIN milestones m ON m.id = t.milestone_id
    LEFT JOIN users u ON u.id = t.owner_id
"""


def fetch_task(cur: sqlite3.Cursor, task_id: int) -> dict:
    cur.execute(TASK_SELECT + " WHERE t.id = ?", (task_id,))
    row = cur.fetchone()
    if not row:
        raise not_found("Task")
    return row_to_dict(row)


def task_project_id(conn: sqlite3.Connection, task_id: int) -> int:
    cur = conn.cursor()
    cur.execute("SELECT project_id FROM tasks WHERE id = ?", (task_id,))
    row = cur.fetchone()
    if not row:
        raise not_found("Task")
    return row["project_id"]


def ensure_milestone_in_project(cur: sqlite3.Cursor, milestone_id: Optional[int], project_id: int) -> None:
    """A task may only point at a milestone of its own project."""
    if milestone_id is None:
        return
    cur.execute("SELECT project_id FROM milestones WHERE id = ?", (milestone_id,))
    row = cur.fetchone()
    if not row:
        raise not_found("Milestone")
    if row["project_id"] != project_id:
        raise ApiError(ErrorCode.VALIDATION_ERROR, "Milestone belongs to a different project")


def insert_task(cur: sqlite3.Cursor, user_id: int, project_id: int, fields: dict) -> int:
    """Insert a task row. Shared with the backlog move and the wizard."""
    now = now_iso()
    cur.execute(
        """
        INSERT INTO tasks (project_id, milestone_id, title, description, status, priority,
                           due_date, owner_id, created_by, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            project_id,
            fields.get("milestone_id"),
            fields["title"],
            fields.get("description"),
            db_value(fields.get("status") or "todo"),
            db_value(fields.get("priority") or "medium"),
            db_value(fields.get("due_date")),
            fields.get("owner_id"),
            user_id,
            now,
            now,
        ),
    )
    return cur.lastrowid


@router.get("/projects/{project_id}/tasks")
def list_tasks(
    status: Optional[str] = Query(None, description="Filter by status"),
    milestone_id: Optional[int] = Query(None, description="Filter by milestone"),
    scope: ProjectScope = Depends(require_module_access(ModuleName.tasks_milestones)),
):
    conn = get_db()
    cur = conn.cursor()
    try:
        sql = TASK_SELECT + " WHERE t.project_id = ?"
        params = [scope.project_id]
        if status:
            sql += " AND t.status = ?"
            params.append(status)
        if milestone_id is not None:
            sql += " AND t.milestone_id = ?"
            params.append(milestone_id)
        cur.execute(sql + " ORDER BY t.created_at DESC, t.id DESC", params)
        return ok(rows_to_dicts(cur.fetchall()))
    except sqlite3.Error as e:
        print(f"[TASKS] DB error on list: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch tasks")
    finally:
        conn.close()


@router.get("/projects/{project_id}/milestones")
def list_milestones_with_counts(scope: ProjectScope = Depends(require_module_access(ModuleName.tasks_milestones))):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            SELECT m.*, COUNT(t.id) AS task_count
            FROM milestones m
            LEFT JOIN tasks t ON t.milestone_id = m.id
            WHERE m.project_id = ?
            GROUP BY m.id
            ORDER BY m.due_date, m.id
            """,
            (scope.project_id,),
        )
        return ok(rows_to_dicts(cur.fetchall()))
    except sqlite3.Error as e:
        print(f"[TASKS] DB error on milestones: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch milestones")
    finally:
        conn.close()


@router.post("/projects/{project_id}/tasks")
def create_task(
    request: TaskCreateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.tasks_milestones, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            ensure_milestone_in_project(cur, request.milestone_id, scope.project_id)
            task_id = insert_task(cur, scope.user_id, scope.project_id, request.dict())
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.tasks_milestones, "create", "task",
                         task_id, new_values=request.dict())
            task = fetch_task(cur, task_id)
        if IS_DEV:
            print(f"[TASKS] Created task_id={task_id}, project_id={scope.project_id}")
        return ok(task, "Task created successfully")
    except sqlite3.Error as e:
        print(f"[TASKS] DB error on create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create task")
    finally:
        conn.close()


@router.put("/tasks/{task_id}")
def update_task(task_id: int, request: TaskUpdateRequest, ctx: AuthContext = Depends(require_auth_context)):
    changes = request.dict(exclude_unset=True)
    status_note = changes.pop("status_note", None)
    if "title" in changes and not (changes["title"] or "").strip():
        raise missing_fields("Task title cannot be empty")
    if "status" in changes and changes["status"] is None:
        raise missing_fields("Task status cannot be cleared")

    conn = get_db()
    try:
        project_id = task_project_id(conn, task_id)
        authorize_module(conn, ctx, project_id, ModuleName.tasks_milestones, AccessLevel.write)
        with transaction(conn) as cur:
            before = fetch_task(cur, task_id)
            if "milestone_id" in changes:
                ensure_milestone_in_project(cur, changes["milestone_id"], project_id)
            if changes:
                set_clause, params = build_update(changes)
                cur.execute(f"UPDATE tasks SET {set_clause}, updated_at = ? WHERE id = ?",
                            (*params, now_iso(), task_id))
            new_status = db_value(changes.get("status"))
            if new_status and new_status != before["status"]:
                cur.execute(
                    """
                    INSERT INTO task_status_history (task_id, old_status, new_status, changed_by, notes, changed_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (task_id, before["status"], new_status, ctx.user_id, status_note, now_iso()),
                )
            if changes:
                record_audit(cur, ctx.user_id, project_id, ModuleName.tasks_milestones, "update", "task", task_id,
                             old_values={k: before.get(k) for k in changes}, new_values=changes)
            task = fetch_task(cur, task_id)
        return ok(task, "Task updated successfully")
    except sqlite3.Error as e:
        print(f"[TASKS] DB error on update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update task")
    finally:
        conn.close()


@router.delete("/tasks/{task_id}")
def delete_task(task_id: int, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        project_id = task_project_id(conn, task_id)
        authorize_module(conn, ctx, project_id, ModuleName.tasks_milestones, AccessLevel.write)
        with transaction(conn) as cur:
            before = fetch_task(cur, task_id)
            cur.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            record_audit(cur, ctx.user_id, project_id, ModuleName.tasks_milestones, "delete", "task", task_id,
                         old_values={"title": before["title"], "status": before["status"]})
        return ok({"id": task_id}, "Task deleted successfully")
    except sqlite3.Error as e:
        print(f"[TASKS] DB error on delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete task")
    finally:
        conn.close()


@router.get("/tasks/{task_id}/status-history")
def task_status_history(task_id: int, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    cur = conn.cursor()
    try:
        project_id = task_project_id(conn, task_id)
        authorize_module(conn, ctx, project_id, ModuleName.tasks_milestones)
        cur.execute(
            """
            SELECT h.*, u.full_name AS changed_by_name, u.email AS changed_by_email
            FROM task_status_history h
            LEFT JOIN users u ON u.id = h.changed_by
            WHERE h.task_id = ?
            ORDER BY h.changed_at DESC, h.id DESC
            """,
            (task_id,),
        )
        return ok(rows_to_dicts(cur.fetchall()))
    except sqlite3.Error as e:
        print(f"[TASKS] DB error on status history: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch status history")
    finally:
        conn.close()


@router.put("/tasks/{task_id}/move")
def move_task(task_id: int, request: TaskMoveRequest, ctx: AuthContext = Depends(require_auth_context)):
    """Assign the task to another milestone of the same project (null detaches it)."""
    conn = get_db()
    try:
        project_id = task_project_id(conn, task_id)
        authorize_module(conn, ctx, project_id, ModuleName.tasks_milestones, AccessLevel.write)
        with transaction(conn) as cur:
            before = fetch_task(cur, task_id)
            ensure_milestone_in_project(cur, request.milestone_id, project_id)
            cur.execute("UPDATE tasks SET milestone_id = ?, updated_at = ? WHERE id = ?",
                        (request.milestone_id, now_iso(), task_id))
            record_audit(cur, ctx.user_id, project_id, ModuleName.tasks_milestones, "move", "task", task_id,
                         old_values={"milestone_id": before["milestone_id"]},
                         new_values={"milestone_id": request.milestone_id})
            task = fetch_task(cur, task_id)
        return ok(task, "Task moved successfully")
    except sqlite3.Error as e:
        print(f"[TASKS] DB error on move: {e}")
        raise translate_db_error(e, ErrorCode.MOVE_ERROR, "Failed to move task")
    finally:
        conn.close()
