# backend/routes_audit.py
# Project change history, filtered audit logs and manual audit entries

from __future__ import annotations

import sqlite3
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.audit import record_audit
from backend.auth_context import AuthContext, require_auth_context
from backend.db import get_db, load_json, transaction
from backend.dependencies import ProjectScope, authorize_module, require_project_access
from backend.errors import ErrorCode, translate_db_error
from backend.responses import ok
from backend.schemas_projects import AuditLogRequest

router = APIRouter(tags=["audit"])

AUDIT_SELECT = """
    SELECT a.*, u.email AS user_email, u.full_name AS user_name
    FROM audit_log a
    LEFT JOIN users u ON u.id = a.user_id
"""


def audit_out(row) -> dict:
    entry = dict(row)
    entry["old_values"] = load_json(entry.get("old_values"))
    entry["new_values"] = load_json(entry.get("new_values"))
    return entry


@router.get("/projects/{project_id}/history")
def project_history(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    scope: ProjectScope = Depends(require_project_access),
):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(
            AUDIT_SELECT + " WHERE a.project_id = ? ORDER BY a.created_at DESC, a.id DESC LIMIT ? OFFSET ?",
            (scope.project_id, limit, offset),
        )
        entries = [audit_out(row) for row in cur.fetchall()]
        cur.execute("SELECT COUNT(*) AS c FROM audit_log WHERE project_id = ?", (scope.project_id,))
        total = cur.fetchone()["c"]
        return ok({"entries": entries, "total": total, "limit": limit, "offset": offset})
    except sqlite3.Error as e:
        print(f"[AUDIT] DB error on history: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch project history")
    finally:
        conn.close()


@router.get("/projects/{project_id}/logs")
def project_logs(
    module: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    scope: ProjectScope = Depends(require_project_access),
):
    conn = get_db()
    cur = conn.cursor()
    try:
        sql = AUDIT_SELECT + " WHERE a.project_id = ?"
        params = [scope.project_id]
        if module:
            sql += " AND a.module = ?"
            params.append(module)
        if action:
            sql += " AND a.action = ?"
            params.append(action)
        cur.execute(sql + " ORDER BY a.created_at DESC, a.id DESC LIMIT 200", params)
        return ok([audit_out(row) for row in cur.fetchall()])
    except sqlite3.Error as e:
        print(f"[AUDIT] DB error on logs: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch audit logs")
    finally:
        conn.close()


@router.post("/audit/log")
def create_audit_entry(request: AuditLogRequest, ctx: AuthContext = Depends(require_auth_context)):
    """Client-reported audit entry; the caller needs read access to the named module."""
    conn = get_db()
    try:
        authorize_module(conn, ctx, request.project_id, request.module)
        with transaction(conn) as cur:
            entry_id = record_audit(cur, ctx.user_id, request.project_id, request.module, request.action,
                                    request.entity_type, request.entity_id, request.old_values,
                                    request.new_values, request.description)
        return ok({"id": entry_id}, "Audit entry recorded")
    except sqlite3.Error as e:
        print(f"[AUDIT] DB error on log: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to record audit entry")
    finally:
        conn.close()
