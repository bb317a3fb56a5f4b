"""
backend/routes_projects.py

Project CRUD, membership, the workspace landing summary and admin statistics.

Security guarantees:
- All endpoints require authentication (require_auth_context)
- Listing only returns projects the caller can view
- Update requires project owner or global admin; delete requires global admin
- The workspace summary requires overview read
- created_by always comes from the auth context, never from the body
"""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from backend.analytics import round_half_up
from backend.audit import record_audit
from backend.auth_context import AuthContext, require_auth_context
from backend.config import IS_DEV
from backend.db import build_update, db_value, get_db, now_iso, row_to_dict, rows_to_dicts, transaction
from backend.dependencies import (
    ProjectScope,
    require_admin,
    require_module_access,
    require_project_access,
    require_project_manager,
)
from backend.errors import ApiError, ErrorCode, missing_fields, not_found, translate_db_error
from backend.models import DONE_STATUSES, ModuleName
from backend.responses import ok
from backend.routes_roadmap import MILESTONE_SELECT, with_overdue
from backend.routes_tasks import TASK_SELECT
from backend.schemas_projects import MemberAddRequest, ProjectCreateRequest, ProjectUpdateRequest

router = APIRouter(tags=["projects"])

RECENT_TASKS_LIMIT = 10
UPCOMING_MILESTONES_LIMIT = 5


def insert_project(cur: sqlite3.Cursor, user_id: int, fields: dict) -> int:
    """Insert a project and its owner membership row. Shared with the wizard."""
    now = now_iso()
    cur.execute(
        """
        INSERT INTO projects (name, description, status, priority, start_date, end_date, department_id,
                              created_by, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            fields["name"],
            fields.get("description"),
            db_value(fields.get("status") or "planning"),
            db_value(fields.get("priority") or "medium"),
            db_value(fields.get("start_date")),
            db_value(fields.get("end_date")),
            fields.get("department_id"),
            user_id,
            now,
            now,
        ),
    )
    project_id = cur.lastrowid
    cur.execute(
        "INSERT INTO project_members (project_id, user_id, role, joined_at) VALUES (?, ?, 'owner', ?)",
        (project_id, user_id, now),
    )
    record_audit(cur, user_id, project_id, ModuleName.overview, "create", "project", project_id,
                 new_values={"name": fields["name"]})
    return project_id


def fetch_project(cur: sqlite3.Cursor, project_id: int) -> dict:
    cur.execute(
        """
        SELECT p.*, u.email AS owner_email, u.full_name AS owner_name, d.name AS department_name
        FROM projects p
        LEFT JOIN users u ON u.id = p.created_by
        LEFT JOIN departments d ON d.id = p.department_id
        WHERE p.id = ?
        """,
        (project_id,),
    )
    row = cur.fetchone()
    if not row:
        raise ApiError(ErrorCode.PROJECT_NOT_FOUND, "Project not found")
    return row_to_dict(row)


@router.get("/projects")
def list_projects(ctx: AuthContext = Depends(require_auth_context)):
    """Projects the caller owns, is a member of, or holds any module grant on (admins see all)."""
    conn = get_db()
    cur = conn.cursor()
    try:
        if ctx.is_admin:
            cur.execute("SELECT * FROM projects ORDER BY created_at DESC, id DESC")
        else:
            cur.execute(
                """
                SELECT * FROM projects
                WHERE created_by = ?
                   OR id IN (SELECT project_id FROM project_members WHERE user_id = ?)
                   OR id IN (SELECT project_id FROM module_permissions WHERE user_id = ?)
                ORDER BY created_at DESC, id DESC
                """,
                (ctx.user_id, ctx.user_id, ctx.user_id),
            )
        projects = rows_to_dicts(cur.fetchall())
        if IS_DEV:
            print(f"[PROJECTS] List: user_id={ctx.user_id}, results={len(projects)}")
        return ok(projects)
    except sqlite3.Error as e:
        print(f"[PROJECTS] DB error on list: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch projects")
    finally:
        conn.close()


@router.post("/projects")
def create_project(request: ProjectCreateRequest, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            project_id = insert_project(cur, ctx.user_id, request.dict())
            project = fetch_project(cur, project_id)
        print(f"[PROJECTS] Created project_id={project_id}, user_id={ctx.user_id}")
        return ok(project, "Project created successfully")
    except sqlite3.Error as e:
        print(f"[PROJECTS] DB error on create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create project")
    finally:
        conn.close()


# Registered before /projects/{project_id} so "stats" is not parsed as an id
@router.get("/projects/stats")
def project_stats(ctx: AuthContext = Depends(require_admin)):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute("SELECT status, COUNT(*) AS count FROM projects GROUP BY status")
        by_status = {row["status"] or "unknown": row["count"] for row in cur.fetchall()}
        return ok({"totalProjects": sum(by_status.values()), "byStatus": by_status})
    except sqlite3.Error as e:
        print(f"[PROJECTS] DB error on stats: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch project statistics")
    finally:
        conn.close()


@router.get("/projects/{project_id}")
def get_project(scope: ProjectScope = Depends(require_project_access)):
    conn = get_db()
    cur = conn.cursor()
    try:
        project = fetch_project(cur, scope.project_id)
        project["access"] = scope.access.to_dict()
        return ok(project)
    except sqlite3.Error as e:
        print(f"[PROJECTS] DB error on get: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch project")
    finally:
        conn.close()


@router.put("/projects/{project_id}")
def update_project(request: ProjectUpdateRequest, scope: ProjectScope = Depends(require_project_manager)):
    changes = request.dict(exclude_unset=True)
    if "name" in changes and not (changes["name"] or "").strip():
        raise missing_fields("Project name cannot be empty")

    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_project(cur, scope.project_id)
            if changes:
                set_clause, params = build_update(changes)
                cur.execute(
                    f"UPDATE projects SET {set_clause}, updated_at = ? WHERE id = ?",
                    (*params, now_iso(), scope.project_id),
                )
                record_audit(cur, scope.user_id, scope.project_id, ModuleName.overview, "update", "project",
                             scope.project_id, old_values={k: before.get(k) for k in changes}, new_values=changes)
            project = fetch_project(cur, scope.project_id)
        return ok(project, "Project updated successfully")
    except sqlite3.Error as e:
        print(f"[PROJECTS] DB error on update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update project")
    finally:
        conn.close()


@router.delete("/projects/{project_id}")
def delete_project(project_id: int, ctx: AuthContext = Depends(require_admin)):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            cur.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            if cur.rowcount == 0:
                raise ApiError(ErrorCode.PROJECT_NOT_FOUND, "Project not found")
        print(f"[PROJECTS] Deleted project_id={project_id} by admin user_id={ctx.user_id}")
        return ok({"id": project_id}, "Project deleted successfully")
    except sqlite3.Error as e:
        print(f"[PROJECTS] DB error on delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete project")
    finally:
        conn.close()


# ---------------------------------------------------------
# Membership
# ---------------------------------------------------------
@router.get("/projects/{project_id}/members")
def list_members(scope: ProjectScope = Depends(require_project_access)):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            SELECT pm.id, pm.user_id, pm.role, pm.joined_at, u.email, u.full_name
            FROM project_members pm
            JOIN users u ON u.id = pm.user_id
            WHERE pm.project_id = ?
            ORDER BY pm.joined_at, pm.id
            """,
            (scope.project_id,),
        )
        return ok(rows_to_dicts(cur.fetchall()))
    except sqlite3.Error as e:
        print(f"[PROJECTS] DB error on members: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch project members")
    finally:
        conn.close()


def resolve_user_id(cur: sqlite3.Cursor, user_id: Optional[int], user_email: Optional[str]) -> int:
    """Find the target user by id or email (USER_NOT_FOUND with 404 when absent)."""
    if user_id is not None:
        cur.execute("SELECT id FROM users WHERE id = ?", (user_id,))
    else:
        cur.execute("SELECT id FROM users WHERE email = ?", (user_email.strip().lower(),))
    row = cur.fetchone()
    if not row:
        raise ApiError(ErrorCode.USER_NOT_FOUND, "User not found", status_code=404)
    return row["id"]


@router.post("/projects/{project_id}/members")
def add_member(request: MemberAddRequest, scope: ProjectScope = Depends(require_project_manager)):
    if request.user_id is None and not request.user_email:
        raise missing_fields("userId or userEmail is required")

    conn = get_db()
    try:
        with transaction(conn) as cur:
            target_id = resolve_user_id(cur, request.user_id, request.user_email)
            cur.execute(
                """
                INSERT INTO project_members (project_id, user_id, role, joined_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (project_id, user_id) DO UPDATE SET role = excluded.role
                """,
                (scope.project_id, target_id, request.role, now_iso()),
            )
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.overview, "add_member",
                         "project_member", target_id, new_values={"role": request.role})
        return ok({"projectId": scope.project_id, "userId": target_id, "role": request.role},
                  "Member added successfully")
    except sqlite3.Error as e:
        print(f"[PROJECTS] DB error on add member: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to add member")
    finally:
        conn.close()


@router.delete("/projects/{project_id}/members/{user_id}")
def remove_member(user_id: int, scope: ProjectScope = Depends(require_project_manager)):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            cur.execute(
                "DELETE FROM project_members WHERE project_id = ? AND user_id = ? AND role != 'owner'",
                (scope.project_id, user_id),
            )
            if cur.rowcount == 0:
                raise not_found("Member")
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.overview, "remove_member",
                         "project_member", user_id)
        return ok({"userId": user_id}, "Member removed successfully")
    except sqlite3.Error as e:
        print(f"[PROJECTS] DB error on remove member: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to remove member")
    finally:
        conn.close()


def completion_rate(done: int, total: int) -> int:
    return round_half_up(done / total * 100) if total else 0


@router.get("/projects/{project_id}/workspace")
def project_workspace(scope: ProjectScope = Depends(require_module_access(ModuleName.overview))):
    """Landing summary: completion rates, latest task activity and the next open milestones."""
    conn = get_db()
    cur = conn.cursor()
    try:
        project = fetch_project(cur, scope.project_id)
        placeholders = ", ".join("?" for _ in DONE_STATUSES)
        cur.execute(
            f"""
            SELECT
                (SELECT COUNT(*) FROM tasks WHERE project_id = ?) AS total_tasks,
                (SELECT COUNT(*) FROM tasks WHERE project_id = ? AND status IN ({placeholders})) AS completed_tasks,
                (SELECT COUNT(*) FROM milestones WHERE project_id = ?) AS total_milestones,
                (SELECT COUNT(*) FROM milestones WHERE project_id = ? AND status = 'completed')
                    AS completed_milestones
            """,
            (scope.project_id, scope.project_id, *sorted(DONE_STATUSES), scope.project_id, scope.project_id),
        )
        counts = row_to_dict(cur.fetchone())
        summary = {
            **project,
            **counts,
            "taskCompletionRate": completion_rate(counts["completed_tasks"], counts["total_tasks"]),
            "milestoneCompletionRate": completion_rate(counts["completed_milestones"], counts["total_milestones"]),
        }

        cur.execute(
            TASK_SELECT + " WHERE t.project_id = ? ORDER BY t.updated_at DESC, t.id DESC LIMIT ?",
            (scope.project_id, RECENT_TASKS_LIMIT),
        )
        recent_tasks = rows_to_dicts(cur.fetchall())

        # Undated milestones sort after dated ones
        cur.execute(
            MILESTONE_SELECT
            + " WHERE m.project_id = ? AND m.status != 'completed'"
            + " ORDER BY m.due_date IS NULL, m.due_date, m.id LIMIT ?",
            (scope.project_id, UPCOMING_MILESTONES_LIMIT),
        )
        today = date.today()
        upcoming = [with_overdue(dict(row), today) for row in cur.fetchall()]

        if IS_DEV:
            print(f"[PROJECTS] Workspace summary project_id={scope.project_id}: "
                  f"tasks={counts['total_tasks']}, milestones={counts['total_milestones']}")
        return ok({
            "projectId": scope.project_id,
            "summary": summary,
            "recentTasks": recent_tasks,
            "upcomingMilestones": upcoming,
        })
    except sqlite3.Error as e:
        print(f"[PROJECTS] DB error on workspace summary: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch workspace data")
    finally:
        conn.close()
