"""
backend/routes_discussions.py

Meeting notes and their action items (module discussions).
Attendees are stored as a JSON list.
"""

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends

from backend.audit import record_audit
from backend.auth_context import AuthContext, require_auth_context
from backend.db import build_update, db_value, dump_json, get_db, load_json, now_iso, row_to_dict, rows_to_dicts, transaction
from backend.dependencies import ProjectScope, authorize_module, require_module_access
from backend.errors import ErrorCode, missing_fields, not_found, translate_db_error
from backend.models import AccessLevel, ModuleName
from backend.responses import ok
from backend.schemas_workspace import (
    ActionItemCreateRequest,
    ActionItemUpdateRequest,
    DiscussionCreateRequest,
    DiscussionUpdateRequest,
)

router = APIRouter(tags=["discussions"])


def discussion_out(row) -> dict:
    discussion = row_to_dict(row)
    discussion["attendees"] = load_json(discussion.get("attendees"), [])
    return discussion


def fetch_discussion(cur: sqlite3.Cursor, project_id: int, discussion_id: int) -> dict:
    cur.execute("SELECT * FROM project_discussions WHERE id = ? AND project_id = ?", (discussion_id, project_id))
    row = cur.fetchone()
    if not row:
        raise not_found("Discussion")
    return discussion_out(row)


def fetch_action_item(cur: sqlite3.Cursor, item_id: int) -> dict:
    cur.execute(
        """
        SELECT a.*, d.project_id, d.meeting_title
        FROM discussion_action_items a
        JOIN project_discussions d ON d.id = a.discussion_id
        WHERE a.id = ?
        """,
        (item_id,),
    )
    row = cur.fetchone()
    if not row:
        raise not_found("Action item")
    return row_to_dict(row)


# ---------------------------------------------------------
# Discussions
# ---------------------------------------------------------
@router.get("/projects/{project_id}/discussions")
def list_discussions(scope: ProjectScope = Depends(require_module_access(ModuleName.discussions))):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(
            "SELECT * FROM project_discussions WHERE project_id = ? ORDER BY meeting_date DESC, id DESC",
            (scope.project_id,),
        )
        return ok([discussion_out(row) for row in cur.fetchall()])
    except sqlite3.Error as e:
        print(f"[DISCUSSIONS] DB error on list: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch discussions")
    finally:
        conn.close()


@router.post("/projects/{project_id}/discussions")
def create_discussion(
    request: DiscussionCreateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.discussions, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            now = now_iso()
            cur.execute(
                """
                INSERT INTO project_discussions (project_id, meeting_title, meeting_date, attendees,
                                                 summary_notes, created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (scope.project_id, request.meeting_title, db_value(request.meeting_date),
                 dump_json(request.attendees), request.summary_notes, scope.user_id, now, now),
            )
            discussion_id = cur.lastrowid
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.discussions, "create", "discussion",
                         discussion_id, new_values=request.dict())
            discussion = fetch_discussion(cur, scope.project_id, discussion_id)
        return ok(discussion, "Discussion created successfully")
    except sqlite3.Error as e:
        print(f"[DISCUSSIONS] DB error on create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create discussion")
    finally:
        conn.close()


@router.put("/projects/{project_id}/discussions/{discussion_id}")
def update_discussion(
    discussion_id: int,
    request: DiscussionUpdateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.discussions, AccessLevel.write)),
):
    changes = request.dict(exclude_unset=True)
    for required in ("meeting_title", "meeting_date"):
        if required in changes and changes[required] in (None, ""):
            raise missing_fields(f"{required} cannot be cleared")

    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_discussion(cur, scope.project_id, discussion_id)
            if changes:
                set_clause, params = build_update(changes)
                cur.execute(
                    f"UPDATE project_discussions SET {set_clause}, updated_at = ? WHERE id = ?",
                    (*params, now_iso(), discussion_id),
                )
                record_audit(cur, scope.user_id, scope.project_id, ModuleName.discussions, "update",
                             "discussion", discussion_id,
                             old_values={k: before.get(k) for k in changes}, new_values=changes)
            discussion = fetch_discussion(cur, scope.project_id, discussion_id)
        return ok(discussion, "Discussion updated successfully")
    except sqlite3.Error as e:
        print(f"[DISCUSSIONS] DB error on update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update discussion")
    finally:
        conn.close()


@router.delete("/projects/{project_id}/discussions/{discussion_id}")
def delete_discussion(
    discussion_id: int,
    scope: ProjectScope = Depends(require_module_access(ModuleName.discussions, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_discussion(cur, scope.project_id, discussion_id)
            cur.execute("DELETE FROM project_discussions WHERE id = ?", (discussion_id,))
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.discussions, "delete", "discussion",
                         discussion_id, old_values={"meeting_title": before["meeting_title"]})
        return ok({"id": discussion_id}, "Discussion deleted successfully")
    except sqlite3.Error as e:
        print(f"[DISCUSSIONS] DB error on delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete discussion")
    finally:
        conn.close()


# ---------------------------------------------------------
# Action items
# ---------------------------------------------------------
@router.get("/projects/{project_id}/action-items")
def list_action_items(scope: ProjectScope = Depends(require_module_access(ModuleName.discussions))):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            SELECT a.*, d.meeting_title, d.meeting_date, u.full_name AS owner_name
            FROM discussion_action_items a
            JOIN project_discussions d ON d.id = a.discussion_id
            LEFT JOIN users u ON u.id = a.owner_id
            WHERE d.project_id = ?
            ORDER BY a.target_date, a.id
            """,
            (scope.project_id,),
        )
        return ok(rows_to_dicts(cur.fetchall()))
    except sqlite3.Error as e:
        print(f"[DISCUSSIONS] DB error on action items: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch action items")
    finally:
        conn.close()


@router.post("/projects/{project_id}/action-items")
def create_action_item(
    request: ActionItemCreateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.discussions, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            fetch_discussion(cur, scope.project_id, request.discussion_id)
            now = now_iso()
            cur.execute(
                """
                INSERT INTO discussion_action_items (discussion_id, task_description, owner_id, target_date,
                                                     status, created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (request.discussion_id, request.task_description, request.owner_id,
                 db_value(request.target_date), request.status, scope.user_id, now, now),
            )
            item_id = cur.lastrowid
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.discussions, "create", "action_item",
                         item_id, new_values=request.dict())
            item = fetch_action_item(cur, item_id)
        return ok(item, "Action item created successfully")
    except sqlite3.Error as e:
        print(f"[DISCUSSIONS] DB error on action item create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create action item")
    finally:
        conn.close()


@router.put("/action-items/{item_id}")
def update_action_item(item_id: int, request: ActionItemUpdateRequest,
                       ctx: AuthContext = Depends(require_auth_context)):
    changes = request.dict(exclude_unset=True)
    if "task_description" in changes and not (changes["task_description"] or "").strip():
        raise missing_fields("task_description cannot be empty")

    conn = get_db()
    try:
        cur = conn.cursor()
        before = fetch_action_item(cur, item_id)
        project_id = before["project_id"]
        authorize_module(conn, ctx, project_id, ModuleName.discussions, AccessLevel.write)
        with transaction(conn) as cur:
            if changes:
                set_clause, params = build_update(changes)
                cur.execute(
                    f"UPDATE discussion_action_items SET {set_clause}, updated_at = ? WHERE id = ?",
                    (*params, now_iso(), item_id),
                )
                record_audit(cur, ctx.user_id, project_id, ModuleName.discussions, "update", "action_item",
                             item_id, old_values={k: before.get(k) for k in changes}, new_values=changes)
            item = fetch_action_item(cur, item_id)
        return ok(item, "Action item updated successfully")
    except sqlite3.Error as e:
        print(f"[DISCUSSIONS] DB error on action item update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update action item")
    finally:
        conn.close()


@router.delete("/action-items/{item_id}")
def delete_action_item(item_id: int, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        cur = conn.cursor()
        before = fetch_action_item(cur, item_id)
        project_id = before["project_id"]
        authorize_module(conn, ctx, project_id, ModuleName.discussions, AccessLevel.write)
        with transaction(conn) as cur:
            cur.execute("DELETE FROM discussion_action_items WHERE id = ?", (item_id,))
            record_audit(cur, ctx.user_id, project_id, ModuleName.discussions, "delete", "action_item", item_id,
                         old_values={"task_description": before["task_description"]})
        return ok({"id": item_id}, "Action item deleted successfully")
    except sqlite3.Error as e:
        print(f"[DISCUSSIONS] DB error on action item delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete action item")
    finally:
        conn.close()
