"""
backend/routes_access.py

Module permission grants per (project, user, module).

- Listing grants requires project visibility
- Granting, updating and revoking require the project owner or a global admin
- GET /projects/{id}/access/me returns the caller's evaluated access
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.access_policy import parse_level, parse_module
from backend.audit import record_audit, record_module_access
from backend.auth_context import AuthContext, require_auth_context
from backend.config import IS_DEV
from backend.db import get_db, now_iso, row_to_dict, rows_to_dicts, transaction
from backend.dependencies import ProjectScope, authorize_module, require_project_access, require_project_manager
from backend.errors import ErrorCode, missing_fields, not_found, translate_db_error
from backend.models import ModuleName
from backend.responses import ok
from backend.routes_projects import resolve_user_id
from backend.schemas_projects import AccessGrantRequest, AccessUpdateRequest, ModuleAccessLogRequest

router = APIRouter(tags=["access"])


@router.get("/projects/{project_id}/access")
def list_access(scope: ProjectScope = Depends(require_project_access)):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            SELECT mp.id, mp.user_id, mp.module, mp.access_level, mp.granted_by,
                   mp.created_at, mp.updated_at, u.email, u.full_name
            FROM module_permissions mp
            JOIN users u ON u.id = mp.user_id
            WHERE mp.project_id = ?
            ORDER BY u.email, mp.module
            """,
            (scope.project_id,),
        )
        return ok(rows_to_dicts(cur.fetchall()))
    except sqlite3.Error as e:
        print(f"[ACCESS] DB error on list: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch access permissions")
    finally:
        conn.close()


@router.get("/projects/{project_id}/access/me")
def my_access(scope: ProjectScope = Depends(require_project_access)):
    return ok(scope.access.to_dict())


@router.post("/projects/{project_id}/access")
def grant_access(request: AccessGrantRequest, scope: ProjectScope = Depends(require_project_manager)):
    if (request.user_id is None and not request.user_email) or not request.module or not request.access_level:
        raise missing_fields("userEmail or userId, module, and accessLevel are required")
    module = parse_module(request.module)
    level = parse_level(request.access_level)

    conn = get_db()
    try:
        with transaction(conn) as cur:
            target_id = resolve_user_id(cur, request.user_id, request.user_email)
            now = now_iso()
            cur.execute(
                """
                INSERT INTO module_permissions (project_id, user_id, module, access_level,
                                                granted_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (project_id, user_id, module) DO UPDATE SET
                    access_level = excluded.access_level,
                    granted_by = excluded.granted_by,
                    updated_at = excluded.updated_at
                """,
                (scope.project_id, target_id, module.value, level.value, scope.user_id, now, now),
            )
            cur.execute(
                "SELECT * FROM module_permissions WHERE project_id = ? AND user_id = ? AND module = ?",
                (scope.project_id, target_id, module.value),
            )
            permission = row_to_dict(cur.fetchone())
            record_audit(cur, scope.user_id, scope.project_id, module, "grant", "module_permission",
                         permission["id"], new_values={"user_id": target_id, "access_level": level})
        if IS_DEV:
            print(f"[ACCESS] Granted {module.value}={level.value} to user_id={target_id} "
                  f"on project_id={scope.project_id}")
        return ok(permission, "Permission granted successfully")
    except sqlite3.Error as e:
        print(f"[ACCESS] DB error on grant: {e}")
        raise translate_db_error(e, ErrorCode.GRANT_ERROR, "Failed to grant permission")
    finally:
        conn.close()


@router.put("/projects/{project_id}/access/{user_id}")
def update_access(user_id: int, request: AccessUpdateRequest,
                  scope: ProjectScope = Depends(require_project_manager)):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            cur.execute(
                """
                UPDATE module_permissions SET access_level = ?, updated_at = ?
                WHERE project_id = ? AND user_id = ? AND module = ?
                """,
                (request.access_level.value, now_iso(), scope.project_id, user_id, request.module.value),
            )
            if cur.rowcount == 0:
                raise not_found("Permission")
            cur.execute(
                "SELECT * FROM module_permissions WHERE project_id = ? AND user_id = ? AND module = ?",
                (scope.project_id, user_id, request.module.value),
            )
            permission = row_to_dict(cur.fetchone())
            record_audit(cur, scope.user_id, scope.project_id, request.module, "update", "module_permission",
                         permission["id"], new_values={"user_id": user_id, "access_level": request.access_level})
        return ok(permission, "Permission updated successfully")
    except sqlite3.Error as e:
        print(f"[ACCESS] DB error on update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update permission")
    finally:
        conn.close()


@router.delete("/projects/{project_id}/access/{user_id}")
def revoke_access(
    user_id: int,
    module: Optional[str] = Query(None, description="Module to revoke; all modules when omitted"),
    scope: ProjectScope = Depends(require_project_manager),
):
    module_name = parse_module(module) if module else None

    conn = get_db()
    try:
        with transaction(conn) as cur:
            if module_name:
                cur.execute(
                    "DELETE FROM module_permissions WHERE project_id = ? AND user_id = ? AND module = ?",
                    (scope.project_id, user_id, module_name.value),
                )
            else:
                cur.execute(
                    "DELETE FROM module_permissions WHERE project_id = ? AND user_id = ?",
                    (scope.project_id, user_id),
                )
            revoked = cur.rowcount
            if revoked == 0:
                raise not_found("Permission")
            record_audit(cur, scope.user_id, scope.project_id, module_name or ModuleName.overview, "revoke",
                         "module_permission", None,
                         old_values={"user_id": user_id, "module": module_name.value if module_name else "*"})
        return ok({"userId": user_id, "revoked": revoked}, "Permission revoked successfully")
    except sqlite3.Error as e:
        print(f"[ACCESS] DB error on revoke: {e}")
        raise translate_db_error(e, ErrorCode.REVOKE_ERROR, "Failed to revoke permission")
    finally:
        conn.close()


@router.get("/permissions")
def my_permissions(ctx: AuthContext = Depends(require_auth_context)):
    """Every module grant the caller holds, across projects."""
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            SELECT mp.project_id, p.name AS project_name, mp.module, mp.access_level
            FROM module_permissions mp
            JOIN projects p ON p.id = mp.project_id
            WHERE mp.user_id = ?
            ORDER BY p.name, mp.module
            """,
            (ctx.user_id,),
        )
        return ok(rows_to_dicts(cur.fetchall()))
    except sqlite3.Error as e:
        print(f"[ACCESS] DB error on permissions: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch permissions")
    finally:
        conn.close()


@router.post("/log-access")
def log_module_access(request: ModuleAccessLogRequest, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        authorize_module(conn, ctx, request.project_id, request.module)
        with transaction(conn) as cur:
            entry_id = record_module_access(cur, ctx.user_id, request.project_id, request.module,
                                            request.access_type)
        return ok({"id": entry_id}, "Access logged")
    except sqlite3.Error as e:
        print(f"[ACCESS] DB error on access log: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to log module access")
    finally:
        conn.close()
