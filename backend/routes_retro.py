"""
backend/routes_retro.py

Retrospective boards (module retrospectives).

A board has ordered columns, columns hold cards, and each card keeps a vote
tally. Vote rows are unique per (card, user); toggling a vote and updating
the tally happen in one transaction, with the tally re-derived from the vote
rows so concurrent toggles cannot drift it.
"""

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends

from backend.audit import record_audit
from backend.auth_context import AuthContext, require_auth_context
from backend.config import IS_DEV
from backend.db import get_db, now_iso, row_to_dict, rows_to_dicts, transaction
from backend.dependencies import ProjectScope, authorize_module, require_admin, require_module_access
from backend.errors import ApiError, ErrorCode, translate_db_error
from backend.models import AccessLevel, ModuleName
from backend.responses import ok
from backend.routes_capacity import ensure_iteration_in_project
from backend.schemas_planning import (
    DEFAULT_RETRO_COLUMNS,
    CardCreateRequest,
    CardMoveRequest,
    RetroActionCreateRequest,
    RetrospectiveCreateRequest,
)

router = APIRouter(tags=["retrospectives"])


# ---------------------------------------------------------
# Lookups (each resolves the owning project for the module check)
# ---------------------------------------------------------
def fetch_retro(cur: sqlite3.Cursor, retro_id: int) -> dict:
    cur.execute("SELECT * FROM retrospectives WHERE id = ?", (retro_id,))
    row = cur.fetchone()
    if not row:
        raise ApiError(ErrorCode.RETRO_NOT_FOUND, "Retrospective not found")
    return row_to_dict(row)


def fetch_column(cur: sqlite3.Cursor, column_id: int) -> dict:
    cur.execute(
        """
        SELECT c.*, r.project_id
        FROM retrospective_columns c
        JOIN retrospectives r ON r.id = c.retrospective_id
        WHERE c.id = ?
        """,
        (column_id,),
    )
    row = cur.fetchone()
    if not row:
        raise ApiError(ErrorCode.COLUMN_NOT_FOUND, "Column not found")
    return row_to_dict(row)


def fetch_card(cur: sqlite3.Cursor, card_id: int) -> dict:
    cur.execute(
        """
        SELECT k.*, c.retrospective_id, r.project_id
        FROM retrospective_cards k
        JOIN retrospective_columns c ON c.id = k.column_id
        JOIN retrospectives r ON r.id = c.retrospective_id
        WHERE k.id = ?
        """,
        (card_id,),
    )
    row = cur.fetchone()
    if not row:
        raise ApiError(ErrorCode.CARD_NOT_FOUND, "Card not found")
    return row_to_dict(row)


def load_board(cur: sqlite3.Cursor, retro: dict) -> dict:
    """Attach columns (with cards) and action items to a retrospective row."""
    cur.execute(
        "SELECT * FROM retrospective_columns WHERE retrospective_id = ? ORDER BY column_order, id",
        (retro["id"],),
    )
    columns = rows_to_dicts(cur.fetchall())
    for column in columns:
        cur.execute(
            "SELECT * FROM retrospective_cards WHERE column_id = ? ORDER BY card_order, id",
            (column["id"],),
        )
        column["cards"] = rows_to_dicts(cur.fetchall())
    cur.execute(
        "SELECT * FROM retrospective_action_items WHERE retrospective_id = ? ORDER BY id",
        (retro["id"],),
    )
    retro["columns"] = columns
    retro["action_items"] = rows_to_dicts(cur.fetchall())
    return retro


# Registered before any /retrospectives/{id} route
@router.get("/retrospectives/stats")
def retrospective_stats(ctx: AuthContext = Depends(require_admin)):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute("SELECT COUNT(*) AS c FROM retrospectives")
        total_retros = cur.fetchone()["c"]
        cur.execute("SELECT COUNT(*) AS c, COALESCE(SUM(votes), 0) AS votes FROM retrospective_cards")
        cards = cur.fetchone()
        cur.execute(
            "SELECT COUNT(*) AS c, COALESCE(SUM(converted_to_task), 0) AS converted FROM retrospective_action_items"
        )
        actions = cur.fetchone()
        conversion = round(actions["converted"] / actions["c"] * 100) if actions["c"] else 0
        return ok({
            "totalRetrospectives": total_retros,
            "totalCards": cards["c"],
            "totalVotes": cards["votes"],
            "totalActionItems": actions["c"],
            "conversionRate": conversion,
        })
    except sqlite3.Error as e:
        print(f"[RETRO] DB error on stats: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch retrospective statistics")
    finally:
        conn.close()


@router.get("/projects/{project_id}/retrospectives")
def list_retrospectives(scope: ProjectScope = Depends(require_module_access(ModuleName.retrospectives))):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(
            "SELECT * FROM retrospectives WHERE project_id = ? ORDER BY created_at DESC, id DESC",
            (scope.project_id,),
        )
        retros = [load_board(cur, r) for r in rows_to_dicts(cur.fetchall())]
        return ok(retros)
    except sqlite3.Error as e:
        print(f"[RETRO] DB error on list: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch retrospectives")
    finally:
        conn.close()


@router.post("/projects/{project_id}/retrospectives")
def create_retrospective(
    request: RetrospectiveCreateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.retrospectives, AccessLevel.write)),
):
    columns = request.columns or []
    column_specs = [(c.title, c.subtitle) for c in columns] or [(t, None) for t in DEFAULT_RETRO_COLUMNS]

    conn = get_db()
    try:
        with transaction(conn) as cur:
            ensure_iteration_in_project(cur, request.iteration_id, scope.project_id)
            now = now_iso()
            cur.execute(
                """
                INSERT INTO retrospectives (project_id, iteration_id, framework, status,
                                            created_by, created_at, updated_at)
                VALUES (?, ?, ?, 'active', ?, ?, ?)
                """,
                (scope.project_id, request.iteration_id, request.framework, scope.user_id, now, now),
            )
            retro_id = cur.lastrowid
            cur.executemany(
                """
                INSERT INTO retrospective_columns (retrospective_id, title, subtitle, column_order, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [(retro_id, title, subtitle, order, now) for order, (title, subtitle) in enumerate(column_specs)],
            )
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.retrospectives, "create",
                         "retrospective", retro_id,
                         new_values={"framework": request.framework, "columns": len(column_specs)})
            retro = load_board(cur, fetch_retro(cur, retro_id))
        if IS_DEV:
            print(f"[RETRO] Created retro_id={retro_id} with {len(column_specs)} columns")
        return ok(retro, "Retrospective created successfully")
    except sqlite3.Error as e:
        print(f"[RETRO] DB error on create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create retrospective")
    finally:
        conn.close()


@router.delete("/retrospectives/{retro_id}")
def delete_retrospective(retro_id: int, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        retro = fetch_retro(conn.cursor(), retro_id)
        authorize_module(conn, ctx, retro["project_id"], ModuleName.retrospectives, AccessLevel.write)
        with transaction(conn) as cur:
            cur.execute("DELETE FROM retrospectives WHERE id = ?", (retro_id,))
            record_audit(cur, ctx.user_id, retro["project_id"], ModuleName.retrospectives, "delete",
                         "retrospective", retro_id, old_values={"framework": retro["framework"]})
        return ok({"id": retro_id}, "Retrospective deleted successfully")
    except sqlite3.Error as e:
        print(f"[RETRO] DB error on delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete retrospective")
    finally:
        conn.close()


@router.post("/retrospectives/{retro_id}/actions")
def create_retro_action(retro_id: int, request: RetroActionCreateRequest,
                        ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        retro = fetch_retro(conn.cursor(), retro_id)
        authorize_module(conn, ctx, retro["project_id"], ModuleName.retrospectives, AccessLevel.write)
        with transaction(conn) as cur:
            if request.from_card_id is not None:
                card = fetch_card(cur, request.from_card_id)
                if card["retrospective_id"] != retro_id:
                    raise ApiError(ErrorCode.VALIDATION_ERROR, "Card belongs to a different retrospective")
            now = now_iso()
            cur.execute(
                """
                INSERT INTO retrospective_action_items (retrospective_id, from_card_id, what_task, how_approach,
                                                        who_responsible, when_sprint, backlog_ref_id,
                                                        created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (retro_id, request.from_card_id, request.what_task, request.how_approach,
                 request.who_responsible, request.when_sprint, request.backlog_ref_id, ctx.user_id, now, now),
            )
            action_id = cur.lastrowid
            record_audit(cur, ctx.user_id, retro["project_id"], ModuleName.retrospectives, "create",
                         "retro_action", action_id, new_values=request.dict())
            cur.execute("SELECT * FROM retrospective_action_items WHERE id = ?", (action_id,))
            action = row_to_dict(cur.fetchone())
        return ok(action, "Action item created successfully")
    except sqlite3.Error as e:
        print(f"[RETRO] DB error on action create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create action item")
    finally:
        conn.close()


# ---------------------------------------------------------
# Cards
# ---------------------------------------------------------
@router.post("/columns/{column_id}/cards")
def create_card(column_id: int, request: CardCreateRequest, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        column = fetch_column(conn.cursor(), column_id)
        authorize_module(conn, ctx, column["project_id"], ModuleName.retrospectives, AccessLevel.write)
        with transaction(conn) as cur:
            order = request.card_order
            if order is None:
                cur.execute("SELECT COALESCE(MAX(card_order) + 1, 0) AS next FROM retrospective_cards "
                            "WHERE column_id = ?", (column_id,))
                order = cur.fetchone()["next"]
            now = now_iso()
            cur.execute(
                """
                INSERT INTO retrospective_cards (column_id, text, votes, card_order, created_by, created_at, updated_at)
                VALUES (?, ?, 0, ?, ?, ?, ?)
                """,
                (column_id, request.text, order, ctx.user_id, now, now),
            )
            card_id = cur.lastrowid
            record_audit(cur, ctx.user_id, column["project_id"], ModuleName.retrospectives, "create", "retro_card",
                         card_id, new_values={"column_id": column_id, "text": request.text})
            card = fetch_card(cur, card_id)
        return ok(card, "Card created successfully")
    except sqlite3.Error as e:
        print(f"[RETRO] DB error on card create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create card")
    finally:
        conn.close()


@router.post("/cards/{card_id}/vote")
def toggle_vote(card_id: int, ctx: AuthContext = Depends(require_auth_context)):
    """Toggle the caller's vote on a card."""
    conn = get_db()
    try:
        card = fetch_card(conn.cursor(), card_id)
        authorize_module(conn, ctx, card["project_id"], ModuleName.retrospectives, AccessLevel.write)
        with transaction(conn) as cur:
            cur.execute("DELETE FROM retrospective_card_votes WHERE card_id = ? AND user_id = ?",
                        (card_id, ctx.user_id))
            voted = cur.rowcount == 0
            if voted:
                cur.execute(
                    "INSERT INTO retrospective_card_votes (card_id, user_id, created_at) VALUES (?, ?, ?)",
                    (card_id, ctx.user_id, now_iso()),
                )
            cur.execute(
                """
                UPDATE retrospective_cards
                SET votes = (SELECT COUNT(*) FROM retrospective_card_votes WHERE card_id = ?), updated_at = ?
                WHERE id = ?
                """,
                (card_id, now_iso(), card_id),
            )
            cur.execute("SELECT votes FROM retrospective_cards WHERE id = ?", (card_id,))
            votes = cur.fetchone()["votes"]
        if IS_DEV:
            print(f"[RETRO] Vote {'added' if voted else 'removed'}: card_id={card_id}, user_id={ctx.user_id}, "
                  f"votes={votes}")
        return ok({"card_id": card_id, "votes": votes, "voted": voted},
                  "Vote added" if voted else "Vote removed")
    except sqlite3.Error as e:
        print(f"[RETRO] DB error on vote: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to toggle vote")
    finally:
        conn.close()


@router.delete("/cards/{card_id}")
def delete_card(card_id: int, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        card = fetch_card(conn.cursor(), card_id)
        authorize_module(conn, ctx, card["project_id"], ModuleName.retrospectives, AccessLevel.write)
        with transaction(conn) as cur:
            cur.execute("DELETE FROM retrospective_cards WHERE id = ?", (card_id,))
            record_audit(cur, ctx.user_id, card["project_id"], ModuleName.retrospectives, "delete", "retro_card",
                         card_id, old_values={"text": card["text"], "votes": card["votes"]})
        return ok({"id": card_id}, "Card deleted successfully")
    except sqlite3.Error as e:
        print(f"[RETRO] DB error on card delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete card")
    finally:
        conn.close()


@router.put("/cards/{card_id}/move")
def move_card(card_id: int, request: CardMoveRequest, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        cur = conn.cursor()
        card = fetch_card(cur, card_id)
        authorize_module(conn, ctx, card["project_id"], ModuleName.retrospectives, AccessLevel.write)
        target = fetch_column(cur, request.column_id)
        if target["retrospective_id"] != card["retrospective_id"]:
            raise ApiError(ErrorCode.VALIDATION_ERROR, "Target column belongs to a different retrospective")
        with transaction(conn) as cur:
            cur.execute(
                "UPDATE retrospective_cards SET column_id = ?, card_order = ?, updated_at = ? WHERE id = ?",
                (request.column_id, request.card_order, now_iso(), card_id),
            )
            record_audit(cur, ctx.user_id, card["project_id"], ModuleName.retrospectives, "move", "retro_card",
                         card_id, old_values={"column_id": card["column_id"], "card_order": card["card_order"]},
                         new_values={"column_id": request.column_id, "card_order": request.card_order})
            moved = fetch_card(cur, card_id)
        return ok(moved, "Card moved successfully")
    except sqlite3.Error as e:
        print(f"[RETRO] DB error on card move: {e}")
        raise translate_db_error(e, ErrorCode.MOVE_ERROR, "Failed to move card")
    finally:
        conn.close()
