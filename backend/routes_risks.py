"""
backend/routes_risks.py

Risk register. Scores are always derived on the server:

    risk_score          = likelihood * impact
    residual_risk_score = residual_likelihood * residual_impact

A client-supplied risk_score is accepted but ignored.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from fastapi import APIRouter, Depends

from backend.audit import record_audit
from backend.db import build_update, db_value, get_db, load_json, now_iso, row_to_dict, today_iso, transaction
from backend.dependencies import ProjectScope, require_module_access
from backend.errors import ErrorCode, missing_fields, not_found, translate_db_error
from backend.models import AccessLevel, ModuleName
from backend.responses import ok
from backend.schemas_workspace import RiskCreateRequest, RiskUpdateRequest

router = APIRouter(tags=["risks"])

RISK_COLUMNS = (
    "risk_code", "title", "description", "category", "cause", "consequence", "owner",
    "likelihood", "impact", "response_strategy", "mitigation_plan", "contingency_plan",
    "status", "next_review_date", "residual_likelihood", "residual_impact", "notes",
)


def score(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None or b is None:
        return None
    return a * b


def risk_out(row) -> dict:
    risk = row_to_dict(row)
    risk["mitigation_plan"] = load_json(risk.get("mitigation_plan"), [])
    return risk


def fetch_risk(cur: sqlite3.Cursor, project_id: int, risk_id: int) -> dict:
    cur.execute("SELECT * FROM risk_register WHERE id = ? AND project_id = ?", (risk_id, project_id))
    row = cur.fetchone()
    if not row:
        raise not_found("Risk")
    return risk_out(row)


@router.get("/projects/{project_id}/risks")
def list_risks(scope: ProjectScope = Depends(require_module_access(ModuleName.risk_register))):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(
            "SELECT * FROM risk_register WHERE project_id = ? ORDER BY risk_score DESC, id",
            (scope.project_id,),
        )
        return ok([risk_out(row) for row in cur.fetchall()])
    except sqlite3.Error as e:
        print(f"[RISKS] DB error on list: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch risks")
    finally:
        conn.close()


@router.post("/projects/{project_id}/risks")
def create_risk(
    request: RiskCreateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.risk_register, AccessLevel.write)),
):
    fields = request.dict(exclude={"risk_score"})
    fields["status"] = fields.get("status") or "open"

    conn = get_db()
    try:
        with transaction(conn) as cur:
            now = now_iso()
            columns = list(RISK_COLUMNS) + [
                "risk_score", "residual_risk_score", "identified_date", "last_updated",
                "project_id", "created_by", "created_at", "updated_at",
            ]
            values = [db_value(fields.get(c)) for c in RISK_COLUMNS] + [
                score(fields.get("likelihood"), fields.get("impact")),
                score(fields.get("residual_likelihood"), fields.get("residual_impact")),
                today_iso(),
                now,
                scope.project_id,
                scope.user_id,
                now,
                now,
            ]
            placeholders = ", ".join("?" for _ in columns)
            cur.execute(
                f"INSERT INTO risk_register ({', '.join(columns)}) VALUES ({placeholders})",
                values,
            )
            risk_id = cur.lastrowid
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.risk_register, "create", "risk",
                         risk_id, new_values=fields)
            risk = fetch_risk(cur, scope.project_id, risk_id)
        return ok(risk, "Risk created successfully")
    except sqlite3.Error as e:
        print(f"[RISKS] DB error on create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create risk")
    finally:
        conn.close()


@router.put("/projects/{project_id}/risks/{risk_id}")
def update_risk(
    risk_id: int,
    request: RiskUpdateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.risk_register, AccessLevel.write)),
):
    changes = request.dict(exclude_unset=True, exclude={"risk_score"})
    for required in ("risk_code", "title"):
        if required in changes and not changes[required]:
            raise missing_fields(f"{required} cannot be empty")

    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_risk(cur, scope.project_id, risk_id)
            merged = {**before, **changes}
            changes["risk_score"] = score(merged.get("likelihood"), merged.get("impact"))
            changes["residual_risk_score"] = score(merged.get("residual_likelihood"), merged.get("residual_impact"))
            changes["last_updated"] = now_iso()
            set_clause, params = build_update(changes)
            cur.execute(
                f"UPDATE risk_register SET {set_clause}, updated_at = ? WHERE id = ? AND project_id = ?",
                (*params, now_iso(), risk_id, scope.project_id),
            )
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.risk_register, "update", "risk", risk_id,
                         old_values={k: before.get(k) for k in changes}, new_values=changes)
            risk = fetch_risk(cur, scope.project_id, risk_id)
        return ok(risk, "Risk updated successfully")
    except sqlite3.Error as e:
        print(f"[RISKS] DB error on update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update risk")
    finally:
        conn.close()


@router.delete("/projects/{project_id}/risks/{risk_id}")
def delete_risk(
    risk_id: int,
    scope: ProjectScope = Depends(require_module_access(ModuleName.risk_register, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_risk(cur, scope.project_id, risk_id)
            cur.execute("DELETE FROM risk_register WHERE id = ? AND project_id = ?", (risk_id, scope.project_id))
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.risk_register, "delete", "risk", risk_id,
                         old_values={"risk_code": before["risk_code"], "title": before["title"]})
        return ok({"id": risk_id}, "Risk deleted successfully")
    except sqlite3.Error as e:
        print(f"[RISKS] DB error on delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete risk")
    finally:
        conn.close()
