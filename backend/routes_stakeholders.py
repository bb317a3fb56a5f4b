# backend/routes_stakeholders.py
# Stakeholder register CRUD (module stakeholders)

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends

from backend.audit import record_audit
from backend.db import build_update, get_db, now_iso, row_to_dict, rows_to_dicts, transaction
from backend.dependencies import ProjectScope, require_module_access
from backend.errors import ErrorCode, missing_fields, not_found, translate_db_error
from backend.models import AccessLevel, ModuleName
from backend.responses import ok
from backend.schemas_workspace import StakeholderCreateRequest, StakeholderUpdateRequest

router = APIRouter(tags=["stakeholders"])


def fetch_stakeholder(cur: sqlite3.Cursor, project_id: int, stakeholder_id: int) -> dict:
    cur.execute("SELECT * FROM stakeholders WHERE id = ? AND project_id = ?", (stakeholder_id, project_id))
    row = cur.fetchone()
    if not row:
        raise not_found("Stakeholder")
    return row_to_dict(row)


@router.get("/projects/{project_id}/stakeholders")
def list_stakeholders(scope: ProjectScope = Depends(require_module_access(ModuleName.stakeholders))):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM stakeholders WHERE project_id = ? ORDER BY name, id", (scope.project_id,))
        return ok(rows_to_dicts(cur.fetchall()))
    except sqlite3.Error as e:
        print(f"[STAKEHOLDERS] DB error on list: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch stakeholders")
    finally:
        conn.close()


@router.post("/projects/{project_id}/stakeholders")
def create_stakeholder(
    request: StakeholderCreateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.stakeholders, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            now = now_iso()
            cur.execute(
                """
                INSERT INTO stakeholders (project_id, name, email, department, raci, influence_level,
                                          notes, created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (scope.project_id, request.name, request.email, request.department, request.raci,
                 request.influence_level, request.notes, scope.user_id, now, now),
            )
            stakeholder_id = cur.lastrowid
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.stakeholders, "create", "stakeholder",
                         stakeholder_id, new_values=request.dict())
            stakeholder = fetch_stakeholder(cur, scope.project_id, stakeholder_id)
        return ok(stakeholder, "Stakeholder created successfully")
    except sqlite3.Error as e:
        print(f"[STAKEHOLDERS] DB error on create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create stakeholder")
    finally:
        conn.close()


@router.put("/projects/{project_id}/stakeholders/{stakeholder_id}")
def update_stakeholder(
    stakeholder_id: int,
    request: StakeholderUpdateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.stakeholders, AccessLevel.write)),
):
    changes = request.dict(exclude_unset=True)
    if "name" in changes and not (changes["name"] or "").strip():
        raise missing_fields("Stakeholder name cannot be empty")

    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_stakeholder(cur, scope.project_id, stakeholder_id)
            if changes:
                set_clause, params = build_update(changes)
                cur.execute(
                    f"UPDATE stakeholders SET {set_clause}, updated_at = ? WHERE id = ? AND project_id = ?",
                    (*params, now_iso(), stakeholder_id, scope.project_id),
                )
                record_audit(cur, scope.user_id, scope.project_id, ModuleName.stakeholders, "update",
                             "stakeholder", stakeholder_id,
                             old_values={k: before.get(k) for k in changes}, new_values=changes)
            stakeholder = fetch_stakeholder(cur, scope.project_id, stakeholder_id)
        return ok(stakeholder, "Stakeholder updated successfully")
    except sqlite3.Error as e:
        print(f"[STAKEHOLDERS] DB error on update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update stakeholder")
    finally:
        conn.close()


@router.delete("/projects/{project_id}/stakeholders/{stakeholder_id}")
def delete_stakeholder(
    stakeholder_id: int,
    scope: ProjectScope = Depends(require_module_access(ModuleName.stakeholders, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_stakeholder(cur, scope.project_id, stakeholder_id)
            cur.execute("DELETE FROM stakeholders WHERE id = ?", (stakeholder_id,))
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.stakeholders, "delete", "stakeholder",
                         stakeholder_id, old_values={"name": before["name"]})
        return ok({"id": stakeholder_id}, "Stakeholder deleted successfully")
    except sqlite3.Error as e:
        print(f"[STAKEHOLDERS] DB error on delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete stakeholder")
    finally:
        conn.close()
