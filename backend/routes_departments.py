"""
backend/routes_departments.py

Department registry. Projects may reference one department.

- Any authenticated user can list departments
- Creating and deleting require the global admin role
- A department still referenced by a project cannot be deleted
"""

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends

from backend.auth_context import AuthContext, require_auth_context
from backend.db import get_db, now_iso, row_to_dict, rows_to_dicts, transaction
from backend.dependencies import require_admin
from backend.errors import ErrorCode, not_found, translate_db_error
from backend.responses import ok
from backend.schemas_projects import DepartmentCreateRequest

router = APIRouter(tags=["departments"])


@router.get("/departments")
def list_departments(ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute("SELECT id, name, created_at, updated_at FROM departments ORDER BY name")
        return ok(rows_to_dicts(cur.fetchall()))
    except sqlite3.Error as e:
        print(f"[DEPARTMENTS] DB error on list: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch departments")
    finally:
        conn.close()


@router.post("/departments")
def create_department(request: DepartmentCreateRequest, ctx: AuthContext = Depends(require_admin)):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            now = now_iso()
            cur.execute(
                "INSERT INTO departments (name, created_at, updated_at) VALUES (?, ?, ?)",
                (request.name, now, now),
            )
            department_id = cur.lastrowid
            cur.execute("SELECT * FROM departments WHERE id = ?", (department_id,))
            department = row_to_dict(cur.fetchone())
        print(f"[DEPARTMENTS] Created department_id={department_id} by admin user_id={ctx.user_id}")
        return ok(department, "Department created successfully")
    except sqlite3.Error as e:
        # Duplicate names surface as DUPLICATE_ENTRY
        print(f"[DEPARTMENTS] DB error on create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create department")
    finally:
        conn.close()


@router.delete("/departments/{department_id}")
def delete_department(department_id: int, ctx: AuthContext = Depends(require_admin)):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            cur.execute("DELETE FROM departments WHERE id = ?", (department_id,))
            if cur.rowcount == 0:
                raise not_found("Department")
        print(f"[DEPARTMENTS] Deleted department_id={department_id} by admin user_id={ctx.user_id}")
        return ok({"id": department_id}, "Department deleted successfully")
    except sqlite3.Error as e:
        print(f"[DEPARTMENTS] DB error on delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete department")
    finally:
        conn.close()
