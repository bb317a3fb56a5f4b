"""
backend/routes_budget.py

Project budgets (module budget_management).

One budget per project, split into categories typed CAPEX/OPEX; spending
entries roll up into each category's amount_spent in the same transaction
that records them.
"""

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends

from backend.audit import record_audit
from backend.auth_context import AuthContext, require_auth_context
from backend.db import db_value, get_db, now_iso, row_to_dict, rows_to_dicts, transaction
from backend.dependencies import ProjectScope, authorize_module, require_module_access
from backend.errors import ApiError, ErrorCode, not_found, translate_db_error
from backend.models import AccessLevel, ModuleName
from backend.responses import ok
from backend.schemas_planning import BudgetCategoryCreateRequest, BudgetUpsertRequest, SpendingCreateRequest

router = APIRouter(tags=["budget"])


def fetch_budget(cur: sqlite3.Cursor, project_id: int) -> dict:
    cur.execute("SELECT * FROM project_budgets WHERE project_id = ?", (project_id,))
    return row_to_dict(cur.fetchone())


def fetch_category(cur: sqlite3.Cursor, category_id: int) -> dict:
    cur.execute(
        """
        SELECT bc.*, pb.project_id
        FROM budget_categories bc
        JOIN project_budgets pb ON pb.id = bc.project_budget_id
        WHERE bc.id = ?
        """,
        (category_id,),
    )
    row = cur.fetchone()
    if not row:
        raise not_found("Budget category")
    return row_to_dict(row)


@router.get("/budget-types")
def list_budget_types(ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM budget_type_config ORDER BY code")
        return ok(rows_to_dicts(cur.fetchall()))
    except sqlite3.Error as e:
        print(f"[BUDGET] DB error on budget types: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch budget types")
    finally:
        conn.close()


@router.get("/projects/{project_id}/budget")
def get_budget(scope: ProjectScope = Depends(require_module_access(ModuleName.budget_management))):
    conn = get_db()
    cur = conn.cursor()
    try:
        budget = fetch_budget(cur, scope.project_id)
        if not budget:
            return ok({"budget": None, "categories": []})
        cur.execute(
            "SELECT * FROM budget_categories WHERE project_budget_id = ? ORDER BY budget_type_code, name",
            (budget["id"],),
        )
        categories = rows_to_dicts(cur.fetchall())
        for category in categories:
            cur.execute(
                "SELECT * FROM budget_spending WHERE budget_category_id = ? ORDER BY date DESC, id DESC",
                (category["id"],),
            )
            category["spending"] = rows_to_dicts(cur.fetchall())
            category["spent_total"] = round(sum(s["amount"] for s in category["spending"]), 2)
        return ok({
            "budget": budget,
            "categories": categories,
            "totals": {
                "allocated": round(sum(c["budget_allocated"] or 0 for c in categories), 2),
                "spent": round(sum(c["spent_total"] for c in categories), 2),
            },
        })
    except sqlite3.Error as e:
        print(f"[BUDGET] DB error on fetch: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch budget")
    finally:
        conn.close()


@router.post("/projects/{project_id}/budget")
def upsert_budget(
    request: BudgetUpsertRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.budget_management, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            now = now_iso()
            cur.execute(
                """
                INSERT INTO project_budgets (project_id, currency, total_budget_allocated, total_budget_received,
                                             created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (project_id) DO UPDATE SET
                    currency = excluded.currency,
                    total_budget_allocated = excluded.total_budget_allocated,
                    total_budget_received = excluded.total_budget_received,
                    updated_at = excluded.updated_at
                """,
                (scope.project_id, request.currency, request.total_budget_allocated,
                 request.total_budget_received, scope.user_id, now, now),
            )
            budget = fetch_budget(cur, scope.project_id)
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.budget_management, "upsert", "budget",
                         budget["id"], new_values=request.dict())
        return ok(budget, "Budget saved successfully")
    except sqlite3.Error as e:
        print(f"[BUDGET] DB error on upsert: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to save budget")
    finally:
        conn.close()


@router.post("/projects/{project_id}/categories")
def create_category(
    request: BudgetCategoryCreateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.budget_management, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            budget = fetch_budget(cur, scope.project_id)
            if not budget:
                raise not_found("Budget")
            cur.execute("SELECT 1 FROM budget_type_config WHERE code = ?", (request.budget_type_code,))
            if not cur.fetchone():
                raise ApiError(ErrorCode.VALIDATION_ERROR, f"Unknown budget type: {request.budget_type_code}")
            now = now_iso()
            cur.execute(
                """
                INSERT INTO budget_categories (project_budget_id, budget_type_code, name, budget_allocated,
                                               amount_spent, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?)
                """,
                (budget["id"], request.budget_type_code, request.name, request.budget_allocated, now, now),
            )
            category_id = cur.lastrowid
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.budget_management, "create",
                         "budget_category", category_id, new_values=request.dict())
            category = fetch_category(cur, category_id)
        return ok(category, "Category created successfully")
    except sqlite3.Error as e:
        print(f"[BUDGET] DB error on category create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create category")
    finally:
        conn.close()


@router.post("/categories/{category_id}/spending")
def add_spending(category_id: int, request: SpendingCreateRequest,
                 ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        category = fetch_category(conn.cursor(), category_id)
        authorize_module(conn, ctx, category["project_id"], ModuleName.budget_management, AccessLevel.write)
        with transaction(conn) as cur:
            cur.execute(
                """
                INSERT INTO budget_spending (budget_category_id, date, vendor, description, amount, status,
                                             created_by, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (category_id, db_value(request.spend_date), request.vendor, request.description,
                 request.amount, request.status, ctx.user_id, now_iso()),
            )
            spending_id = cur.lastrowid
            cur.execute(
                """
                UPDATE budget_categories
                SET amount_spent = (SELECT COALESCE(SUM(amount), 0) FROM budget_spending
                                    WHERE budget_category_id = ?),
                    updated_at = ?
                WHERE id = ?
                """,
                (category_id, now_iso(), category_id),
            )
            record_audit(cur, ctx.user_id, category["project_id"], ModuleName.budget_management, "create",
                         "budget_spending", spending_id, new_values=request.dict())
            cur.execute("SELECT * FROM budget_spending WHERE id = ?", (spending_id,))
            spending = row_to_dict(cur.fetchone())
            updated = fetch_category(cur, category_id)
        return ok({"spending": spending, "category": updated}, "Spending recorded successfully")
    except sqlite3.Error as e:
        print(f"[BUDGET] DB error on spending create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to record spending")
    finally:
        conn.close()
