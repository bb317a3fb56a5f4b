"""
backend/routes_backlog.py

Task backlog (module task_backlog).

Moving an item into a milestone creates a todo task from it and marks the
item done in a single transaction; moving writes tasks, so the caller also
needs tasks_milestones write.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.audit import record_audit
from backend.config import IS_DEV
from backend.db import build_update, db_value, get_db, now_iso, row_to_dict, rows_to_dicts, transaction
from backend.dependencies import ProjectScope, authorize_module, require_module_access
from backend.errors import ErrorCode, missing_fields, not_found, translate_db_error
from backend.models import AccessLevel, ModuleName
from backend.responses import ok
from backend.routes_tasks import ensure_milestone_in_project, fetch_task, insert_task
from backend.schemas_workspace import BacklogCreateRequest, BacklogMoveRequest, BacklogUpdateRequest

router = APIRouter(tags=["backlog"])


def fetch_item(cur: sqlite3.Cursor, project_id: int, item_id: int) -> dict:
    cur.execute("SELECT * FROM task_backlog WHERE id = ? AND project_id = ?", (item_id, project_id))
    row = cur.fetchone()
    if not row:
        raise not_found("Backlog item")
    return row_to_dict(row)


@router.get("/projects/{project_id}/backlog")
def list_backlog(
    status: Optional[str] = Query(None, description="Filter by status"),
    scope: ProjectScope = Depends(require_module_access(ModuleName.task_backlog)),
):
    conn = get_db()
    cur = conn.cursor()
    try:
        sql = "SELECT * FROM task_backlog WHERE project_id = ?"
        params = [scope.project_id]
        if status:
            sql += " AND status = ?"
            params.append(status)
        cur.execute(sql + " ORDER BY created_at DESC, id DESC", params)
        return ok({"projectId": scope.project_id, "items": rows_to_dicts(cur.fetchall())})
    except sqlite3.Error as e:
        print(f"[BACKLOG] DB error on list: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch backlog")
    finally:
        conn.close()


@router.post("/projects/{project_id}/backlog")
def create_backlog_item(
    request: BacklogCreateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.task_backlog, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            now = now_iso()
            cur.execute(
                """
                INSERT INTO task_backlog (project_id, title, description, priority, status, owner_id,
                                          target_date, source_type, source_id, created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (scope.project_id, request.title, request.description, db_value(request.priority),
                 request.status, request.owner_id, db_value(request.target_date), request.source_type,
                 request.source_id, scope.user_id, now, now),
            )
            item_id = cur.lastrowid
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.task_backlog, "create", "backlog_item",
                         item_id, new_values=request.dict())
            item = fetch_item(cur, scope.project_id, item_id)
        return ok(item, "Backlog item created successfully")
    except sqlite3.Error as e:
        print(f"[BACKLOG] DB error on create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create backlog item")
    finally:
        conn.close()


@router.put("/projects/{project_id}/backlog/{item_id}")
def update_backlog_item(
    item_id: int,
    request: BacklogUpdateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.task_backlog, AccessLevel.write)),
):
    changes = request.dict(exclude_unset=True)
    if "title" in changes and not (changes["title"] or "").strip():
        raise missing_fields("Backlog title cannot be empty")

    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_item(cur, scope.project_id, item_id)
            if changes:
                set_clause, params = build_update(changes)
                cur.execute(
                    f"UPDATE task_backlog SET {set_clause}, updated_at = ? WHERE id = ?",
                    (*params, now_iso(), item_id),
                )
                record_audit(cur, scope.user_id, scope.project_id, ModuleName.task_backlog, "update",
                             "backlog_item", item_id,
                             old_values={k: before.get(k) for k in changes}, new_values=changes)
            item = fetch_item(cur, scope.project_id, item_id)
        return ok(item, "Backlog item updated successfully")
    except sqlite3.Error as e:
        print(f"[BACKLOG] DB error on update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update backlog item")
    finally:
        conn.close()


@router.delete("/projects/{project_id}/backlog/{item_id}")
def delete_backlog_item(
    item_id: int,
    scope: ProjectScope = Depends(require_module_access(ModuleName.task_backlog, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_item(cur, scope.project_id, item_id)
            cur.execute("DELETE FROM task_backlog WHERE id = ?", (item_id,))
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.task_backlog, "delete", "backlog_item",
                         item_id, old_values={"title": before["title"]})
        return ok({"id": item_id}, "Backlog item deleted successfully")
    except sqlite3.Error as e:
        print(f"[BACKLOG] DB error on delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete backlog item")
    finally:
        conn.close()


@router.post("/projects/{project_id}/backlog/{item_id}/move")
def move_backlog_item(
    item_id: int,
    request: BacklogMoveRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.task_backlog, AccessLevel.write)),
):
    conn = get_db()
    try:
        authorize_module(conn, scope.ctx, scope.project_id, ModuleName.tasks_milestones, AccessLevel.write)
        with transaction(conn) as cur:
            item = fetch_item(cur, scope.project_id, item_id)
            ensure_milestone_in_project(cur, request.milestone_id, scope.project_id)
            task_id = insert_task(cur, scope.user_id, scope.project_id, {
                "milestone_id": request.milestone_id,
                "title": item["title"],
                "description": item["description"],
                "status": "todo",
                "priority": item["priority"],
                "due_date": item["target_date"],
                "owner_id": item["owner_id"],
            })
            cur.execute("UPDATE task_backlog SET status = 'done', updated_at = ? WHERE id = ?",
                        (now_iso(), item_id))
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.task_backlog, "move", "backlog_item",
                         item_id, new_values={"task_id": task_id, "milestone_id": request.milestone_id})
            task = fetch_task(cur, task_id)
        if IS_DEV:
            print(f"[BACKLOG] Moved item_id={item_id} to task_id={task_id}")
        return ok({"task": task, "backlogItemId": item_id}, "Backlog item moved to milestone")
    except sqlite3.Error as e:
        print(f"[BACKLOG] DB error on move: {e}")
        raise translate_db_error(e, ErrorCode.MOVE_ERROR, "Failed to move backlog item")
    finally:
        conn.close()
