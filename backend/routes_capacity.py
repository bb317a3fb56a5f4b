"""
backend/routes_capacity.py

Team capacity planning (module team_capacity).

- Teams and their members are reusable across iterations
- Iterations are split into weekly buckets when created
- Capacity members carry an effective capacity in days:
      (working_days - leaves) * availability_percent / 100
- Weekly availability is upserted per (week, team member)

POST/PUT/DELETE on /projects/{id}/capacity are polymorphic on `type`
(iteration | member).
"""

from __future__ import annotations

import math
import sqlite3
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Body, Depends, Query
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from backend.audit import record_audit
from backend.auth_context import AuthContext, require_auth_context
from backend.config import IS_DEV
from backend.db import build_update, db_value, get_db, now_iso, row_to_dict, rows_to_dicts, transaction
from backend.dependencies import ProjectScope, authorize_module, require_admin, require_module_access
from backend.errors import ApiError, ErrorCode, missing_fields, not_found, translate_db_error
from backend.models import AccessLevel, ModuleName
from backend.responses import ok
from backend.schemas_planning import (
    AvailabilityUpsertRequest,
    CapacityMemberCreateRequest,
    CapacityMemberUpdateRequest,
    IterationCreateRequest,
    IterationUpdateRequest,
    TeamCreateRequest,
    TeamMemberCreateRequest,
    TeamMemberUpdateRequest,
    TeamUpdateRequest,
)

router = APIRouter(tags=["capacity"])

CAPACITY_TYPES = ("iteration", "member")
WORKING_DAYS_PER_WEEK = 5


# =========================================================
# Pure helpers
# =========================================================
def generate_weeks(start: date, end: date) -> List[Tuple[int, date, date]]:
    """
    Split [start, end] into 7-day buckets: (week_index, week_start, week_end).
    The last bucket is clipped to end; there is always at least one.
    """
    days = (end - start).days + 1
    weeks_count = max(1, math.ceil(days / 7))
    weeks = []
    for i in range(weeks_count):
        week_start = start + timedelta(days=7 * i)
        week_end = min(week_start + timedelta(days=6), end)
        weeks.append((i + 1, week_start, week_end))
    return weeks


def effective_capacity(working_days: int, leaves: int, availability_percent: int) -> float:
    days = max(0, (working_days or 0) - (leaves or 0))
    return round(days * (availability_percent if availability_percent is not None else 100) / 100, 2)


def parse_body(model, payload: Dict[str, Any]):
    """Validate a polymorphic body against the schema chosen by `type`."""
    try:
        return model.parse_obj(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors())


def capacity_type(payload_type: Optional[str]) -> str:
    if not payload_type:
        raise ApiError(ErrorCode.MISSING_TYPE, "type is required (iteration or member)")
    if payload_type not in CAPACITY_TYPES:
        raise ApiError(ErrorCode.INVALID_TYPE, f"Invalid type: {payload_type}")
    return payload_type


# =========================================================
# Lookups
# =========================================================
def fetch_iteration(cur: sqlite3.Cursor, iteration_id: int, project_id: Optional[int] = None) -> dict:
    if project_id is None:
        cur.execute("SELECT * FROM capacity_iterations WHERE id = ?", (iteration_id,))
    else:
        cur.execute("SELECT * FROM capacity_iterations WHERE id = ? AND project_id = ?", (iteration_id, project_id))
    row = cur.fetchone()
    if not row:
        raise ApiError(ErrorCode.ITERATION_NOT_FOUND, "Iteration not found")
    return row_to_dict(row)


def fetch_capacity_member(cur: sqlite3.Cursor, member_id: int, project_id: int) -> dict:
    cur.execute(
        """
        SELECT cm.*, ci.working_days
        FROM capacity_members cm
        JOIN capacity_iterations ci ON ci.id = cm.iteration_id
        WHERE cm.id = ? AND ci.project_id = ?
        """,
        (member_id, project_id),
    )
    row = cur.fetchone()
    if not row:
        raise not_found("Capacity member")
    return row_to_dict(row)


def fetch_team(cur: sqlite3.Cursor, team_id: int) -> dict:
    cur.execute("SELECT * FROM teams WHERE id = ?", (team_id,))
    row = cur.fetchone()
    if not row:
        raise not_found("Team")
    return row_to_dict(row)


def fetch_team_member(cur: sqlite3.Cursor, member_id: int) -> dict:
    cur.execute(
        """
        SELECT tm.*, t.project_id
        FROM team_members tm
        JOIN teams t ON t.id = tm.team_id
        WHERE tm.id = ?
        """,
        (member_id,),
    )
    row = cur.fetchone()
    if not row:
        raise not_found("Team member")
    return row_to_dict(row)


def ensure_team_in_project(cur: sqlite3.Cursor, team_id: Optional[int], project_id: int) -> None:
    """An iteration may only be linked to a team of its own project."""
    if team_id is None:
        return
    if fetch_team(cur, team_id)["project_id"] != project_id:
        raise ApiError(ErrorCode.VALIDATION_ERROR, "Team belongs to a different project")


def ensure_team_member_in_project(cur: sqlite3.Cursor, member_id: Optional[int], project_id: int) -> None:
    if member_id is None:
        return
    if fetch_team_member(cur, member_id)["project_id"] != project_id:
        raise ApiError(ErrorCode.VALIDATION_ERROR, f"Team member {member_id} belongs to a different project")


def ensure_iteration_in_project(cur: sqlite3.Cursor, iteration_id: Optional[int], project_id: int) -> None:
    if iteration_id is None:
        return
    if fetch_iteration(cur, iteration_id)["project_id"] != project_id:
        raise ApiError(ErrorCode.VALIDATION_ERROR, "Iteration belongs to a different project")


def write_weeks(cur: sqlite3.Cursor, iteration_id: int, start: date, end: date) -> int:
    weeks = generate_weeks(start, end)
    cur.executemany(
        "INSERT INTO iteration_weeks (iteration_id, week_index, week_start, week_end) VALUES (?, ?, ?, ?)",
        [(iteration_id, index, ws.isoformat(), we.isoformat()) for index, ws, we in weeks],
    )
    return len(weeks)


# =========================================================
# Teams
# =========================================================
@router.get("/projects/{project_id}/teams")
def list_teams(scope: ProjectScope = Depends(require_module_access(ModuleName.team_capacity))):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute("SELECT * FROM teams WHERE project_id = ? ORDER BY name, id", (scope.project_id,))
        teams = rows_to_dicts(cur.fetchall())
        for team in teams:
            cur.execute("SELECT * FROM team_members WHERE team_id = ? ORDER BY member_name, id", (team["id"],))
            team["members"] = rows_to_dicts(cur.fetchall())
        return ok(teams)
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on teams: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch teams")
    finally:
        conn.close()


@router.post("/projects/{project_id}/teams")
def create_team(
    request: TeamCreateRequest,
    scope: ProjectScope = Depends(require_module_access(ModuleName.team_capacity, AccessLevel.write)),
):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            now = now_iso()
            cur.execute(
                """
                INSERT INTO teams (project_id, name, description, created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (scope.project_id, request.name, request.description, scope.user_id, now, now),
            )
            team_id = cur.lastrowid
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.team_capacity, "create", "team",
                         team_id, new_values=request.dict())
            team = fetch_team(cur, team_id)
        return ok(team, "Team created successfully")
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on team create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create team")
    finally:
        conn.close()


@router.get("/teams/{team_id}")
def get_team(team_id: int, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    cur = conn.cursor()
    try:
        team = fetch_team(cur, team_id)
        authorize_module(conn, ctx, team["project_id"], ModuleName.team_capacity)
        cur.execute("SELECT * FROM team_members WHERE team_id = ? ORDER BY member_name, id", (team_id,))
        team["members"] = rows_to_dicts(cur.fetchall())
        return ok(team)
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on team detail: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch team")
    finally:
        conn.close()


@router.put("/teams/{team_id}")
def update_team(team_id: int, request: TeamUpdateRequest, ctx: AuthContext = Depends(require_auth_context)):
    changes = request.dict(exclude_unset=True)
    if "name" in changes and not (changes["name"] or "").strip():
        raise missing_fields("Team name cannot be empty")

    conn = get_db()
    try:
        before = fetch_team(conn.cursor(), team_id)
        authorize_module(conn, ctx, before["project_id"], ModuleName.team_capacity, AccessLevel.write)
        with transaction(conn) as cur:
            if changes:
                set_clause, params = build_update(changes)
                cur.execute(f"UPDATE teams SET {set_clause}, updated_at = ? WHERE id = ?",
                            (*params, now_iso(), team_id))
                record_audit(cur, ctx.user_id, before["project_id"], ModuleName.team_capacity, "update", "team",
                             team_id, old_values={k: before.get(k) for k in changes}, new_values=changes)
            team = fetch_team(cur, team_id)
        return ok(team, "Team updated successfully")
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on team update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update team")
    finally:
        conn.close()


@router.delete("/teams/{team_id}")
def delete_team(team_id: int, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        before = fetch_team(conn.cursor(), team_id)
        authorize_module(conn, ctx, before["project_id"], ModuleName.team_capacity, AccessLevel.write)
        with transaction(conn) as cur:
            cur.execute("DELETE FROM teams WHERE id = ?", (team_id,))
            record_audit(cur, ctx.user_id, before["project_id"], ModuleName.team_capacity, "delete", "team",
                         team_id, old_values={"name": before["name"]})
        return ok({"id": team_id}, "Team deleted successfully")
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on team delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete team")
    finally:
        conn.close()


@router.get("/teams/{team_id}/members")
def list_team_members(team_id: int, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    cur = conn.cursor()
    try:
        team = fetch_team(cur, team_id)
        authorize_module(conn, ctx, team["project_id"], ModuleName.team_capacity)
        cur.execute("SELECT * FROM team_members WHERE team_id = ? ORDER BY member_name, id", (team_id,))
        return ok(rows_to_dicts(cur.fetchall()))
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on team members: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch team members")
    finally:
        conn.close()


@router.post("/teams/{team_id}/members")
def add_team_member(team_id: int, request: TeamMemberCreateRequest,
                    ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        team = fetch_team(conn.cursor(), team_id)
        authorize_module(conn, ctx, team["project_id"], ModuleName.team_capacity, AccessLevel.write)
        with transaction(conn) as cur:
            now = now_iso()
            cur.execute(
                """
                INSERT INTO team_members (team_id, member_name, role, email, work_mode,
                                          default_availability_percent, created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (team_id, request.member_name, request.role, request.email, db_value(request.work_mode),
                 request.default_availability_percent, ctx.user_id, now, now),
            )
            member_id = cur.lastrowid
            record_audit(cur, ctx.user_id, team["project_id"], ModuleName.team_capacity, "create", "team_member",
                         member_id, new_values=request.dict())
            member = fetch_team_member(cur, member_id)
        return ok(member, "Team member added successfully")
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on team member create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to add team member")
    finally:
        conn.close()


@router.put("/team-members/{member_id}")
def update_team_member(member_id: int, request: TeamMemberUpdateRequest,
                       ctx: AuthContext = Depends(require_auth_context)):
    changes = request.dict(exclude_unset=True)
    if "member_name" in changes and not (changes["member_name"] or "").strip():
        raise missing_fields("memberName cannot be empty")

    conn = get_db()
    try:
        before = fetch_team_member(conn.cursor(), member_id)
        authorize_module(conn, ctx, before["project_id"], ModuleName.team_capacity, AccessLevel.write)
        with transaction(conn) as cur:
            if changes:
                set_clause, params = build_update(changes)
                cur.execute(f"UPDATE team_members SET {set_clause}, updated_at = ? WHERE id = ?",
                            (*params, now_iso(), member_id))
                record_audit(cur, ctx.user_id, before["project_id"], ModuleName.team_capacity, "update",
                             "team_member", member_id,
                             old_values={k: before.get(k) for k in changes}, new_values=changes)
            member = fetch_team_member(cur, member_id)
        return ok(member, "Team member updated successfully")
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on team member update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update team member")
    finally:
        conn.close()


@router.delete("/team-members/{member_id}")
def delete_team_member(member_id: int, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        before = fetch_team_member(conn.cursor(), member_id)
        authorize_module(conn, ctx, before["project_id"], ModuleName.team_capacity, AccessLevel.write)
        with transaction(conn) as cur:
            cur.execute("DELETE FROM team_members WHERE id = ?", (member_id,))
            record_audit(cur, ctx.user_id, before["project_id"], ModuleName.team_capacity, "delete",
                         "team_member", member_id, old_values={"member_name": before["member_name"]})
        return ok({"id": member_id}, "Team member removed successfully")
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on team member delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to remove team member")
    finally:
        conn.close()


# =========================================================
# Capacity (iterations + members)
# =========================================================
@router.get("/projects/{project_id}/capacity")
def get_capacity(scope: ProjectScope = Depends(require_module_access(ModuleName.team_capacity))):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute(
            "SELECT * FROM capacity_iterations WHERE project_id = ? ORDER BY start_date DESC, id DESC",
            (scope.project_id,),
        )
        iterations = rows_to_dicts(cur.fetchall())
        cur.execute(
            """
            SELECT cm.*, ci.iteration_name
            FROM capacity_members cm
            JOIN capacity_iterations ci ON ci.id = cm.iteration_id
            WHERE ci.project_id = ?
            ORDER BY cm.iteration_id, cm.member_name
            """,
            (scope.project_id,),
        )
        members = rows_to_dicts(cur.fetchall())
        total_capacity = sum(m["effective_capacity_days"] or 0 for m in members)
        return ok({
            "projectId": scope.project_id,
            "iterations": iterations,
            "members": members,
            "summary": {
                "totalIterations": len(iterations),
                "totalCapacity": round(total_capacity, 1),
            },
        })
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on fetch: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch capacity")
    finally:
        conn.close()


@router.post("/projects/{project_id}/capacity")
def create_capacity_item(
    payload: Dict[str, Any] = Body(...),
    scope: ProjectScope = Depends(require_module_access(ModuleName.team_capacity, AccessLevel.write)),
):
    kind = capacity_type(payload.get("type"))
    if kind == "iteration":
        return create_iteration(scope, parse_body(IterationCreateRequest, payload))
    return create_capacity_member(scope, parse_body(CapacityMemberCreateRequest, payload))


def create_iteration(scope: ProjectScope, request: IterationCreateRequest):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            ensure_team_in_project(cur, request.team_id, scope.project_id)
            now = now_iso()
            weeks_count = len(generate_weeks(request.start_date, request.end_date))
            cur.execute(
                """
                INSERT INTO capacity_iterations (project_id, team_id, iteration_name, start_date, end_date,
                                                 working_days, committed_story_points, weeks_count,
                                                 created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (scope.project_id, request.team_id, request.iteration_name, db_value(request.start_date),
                 db_value(request.end_date), request.working_days, request.committed_story_points,
                 weeks_count, scope.user_id, now, now),
            )
            iteration_id = cur.lastrowid
            write_weeks(cur, iteration_id, request.start_date, request.end_date)
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.team_capacity, "create", "iteration",
                         iteration_id, new_values=request.dict())
            iteration = fetch_iteration(cur, iteration_id)
        if IS_DEV:
            print(f"[CAPACITY] Created iteration_id={iteration_id} with {weeks_count} weeks")
        return ok(iteration, "Iteration created successfully")
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on iteration create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to create iteration")
    finally:
        conn.close()


def create_capacity_member(scope: ProjectScope, request: CapacityMemberCreateRequest):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            iteration = fetch_iteration(cur, request.iteration_id, scope.project_id)
            ensure_team_member_in_project(cur, request.team_member_id, scope.project_id)
            capacity = effective_capacity(iteration["working_days"], request.leaves, request.availability_percent)
            now = now_iso()
            cur.execute(
                """
                INSERT INTO capacity_members (iteration_id, team_member_id, member_name, role, work_mode, leaves,
                                              availability_percent, effective_capacity_days,
                                              created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (request.iteration_id, request.team_member_id, request.member_name, request.role,
                 db_value(request.work_mode), request.leaves, request.availability_percent, capacity,
                 scope.user_id, now, now),
            )
            member_id = cur.lastrowid
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.team_capacity, "create",
                         "capacity_member", member_id, new_values=request.dict())
            member = fetch_capacity_member(cur, member_id, scope.project_id)
        return ok(member, "Member added successfully")
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on member create: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to add capacity member")
    finally:
        conn.close()


@router.put("/projects/{project_id}/capacity/{item_id}")
def update_capacity_item(
    item_id: int,
    payload: Dict[str, Any] = Body(...),
    scope: ProjectScope = Depends(require_module_access(ModuleName.team_capacity, AccessLevel.write)),
):
    kind = capacity_type(payload.get("type"))
    if kind == "iteration":
        return update_iteration(scope, item_id, parse_body(IterationUpdateRequest, payload))
    return update_capacity_member(scope, item_id, parse_body(CapacityMemberUpdateRequest, payload))


def update_iteration(scope: ProjectScope, iteration_id: int, request: IterationUpdateRequest):
    changes = request.dict(exclude_unset=True)
    if "iteration_name" in changes and not (changes["iteration_name"] or "").strip():
        raise missing_fields("iterationName cannot be empty")

    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_iteration(cur, iteration_id, scope.project_id)
            start = changes.get("start_date") or date.fromisoformat(before["start_date"])
            end = changes.get("end_date") or date.fromisoformat(before["end_date"])
            if end < start:
                raise ApiError(ErrorCode.VALIDATION_ERROR, "endDate must not be before startDate")
            dates_changed = "start_date" in changes or "end_date" in changes
            if dates_changed:
                changes["weeks_count"] = len(generate_weeks(start, end))
            if changes:
                set_clause, params = build_update(changes)
                cur.execute(f"UPDATE capacity_iterations SET {set_clause}, updated_at = ? WHERE id = ?",
                            (*params, now_iso(), iteration_id))
            if dates_changed:
                # Weekly availability rows cascade with the old weeks
                cur.execute("DELETE FROM iteration_weeks WHERE iteration_id = ?", (iteration_id,))
                write_weeks(cur, iteration_id, start, end)
            if "working_days" in changes:
                cur.execute("SELECT id, leaves, availability_percent FROM capacity_members WHERE iteration_id = ?",
                            (iteration_id,))
                for member in cur.fetchall():
                    cur.execute(
                        "UPDATE capacity_members SET effective_capacity_days = ?, updated_at = ? WHERE id = ?",
                        (effective_capacity(changes["working_days"], member["leaves"],
                                            member["availability_percent"]), now_iso(), member["id"]),
                    )
            if changes:
                record_audit(cur, scope.user_id, scope.project_id, ModuleName.team_capacity, "update", "iteration",
                             iteration_id, old_values={k: before.get(k) for k in changes}, new_values=changes)
            iteration = fetch_iteration(cur, iteration_id)
        return ok(iteration, "Iteration updated successfully")
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on iteration update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update iteration")
    finally:
        conn.close()


def update_capacity_member(scope: ProjectScope, member_id: int, request: CapacityMemberUpdateRequest):
    changes = request.dict(exclude_unset=True)
    for required in ("member_name", "role"):
        if required in changes and not (changes[required] or "").strip():
            raise missing_fields(f"{required} cannot be empty")

    conn = get_db()
    try:
        with transaction(conn) as cur:
            before = fetch_capacity_member(cur, member_id, scope.project_id)
            merged = {**before, **changes}
            changes["effective_capacity_days"] = effective_capacity(
                before["working_days"], merged["leaves"], merged["availability_percent"]
            )
            set_clause, params = build_update(changes)
            cur.execute(f"UPDATE capacity_members SET {set_clause}, updated_at = ? WHERE id = ?",
                        (*params, now_iso(), member_id))
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.team_capacity, "update",
                         "capacity_member", member_id,
                         old_values={k: before.get(k) for k in changes}, new_values=changes)
            member = fetch_capacity_member(cur, member_id, scope.project_id)
        return ok(member, "Member updated successfully")
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on member update: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to update capacity member")
    finally:
        conn.close()


@router.delete("/projects/{project_id}/capacity/{item_id}")
def delete_capacity_item(
    item_id: int,
    type: Optional[str] = Query(None, description="iteration or member"),
    scope: ProjectScope = Depends(require_module_access(ModuleName.team_capacity, AccessLevel.write)),
):
    kind = capacity_type(type)
    conn = get_db()
    try:
        with transaction(conn) as cur:
            if kind == "iteration":
                before = fetch_iteration(cur, item_id, scope.project_id)
                cur.execute("DELETE FROM capacity_iterations WHERE id = ?", (item_id,))
                old_values = {"iteration_name": before["iteration_name"]}
            else:
                before = fetch_capacity_member(cur, item_id, scope.project_id)
                cur.execute("DELETE FROM capacity_members WHERE id = ?", (item_id,))
                old_values = {"member_name": before["member_name"]}
            record_audit(cur, scope.user_id, scope.project_id, ModuleName.team_capacity, "delete",
                         "iteration" if kind == "iteration" else "capacity_member", item_id, old_values=old_values)
        return ok({"id": item_id, "type": kind}, "Deleted successfully")
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on delete: {e}")
        raise translate_db_error(e, ErrorCode.DELETE_ERROR, "Failed to delete capacity item")
    finally:
        conn.close()


# =========================================================
# Iteration detail + weekly availability
# =========================================================
@router.get("/iterations/{iteration_id}")
def get_iteration(iteration_id: int, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    cur = conn.cursor()
    try:
        iteration = fetch_iteration(cur, iteration_id)
        authorize_module(conn, ctx, iteration["project_id"], ModuleName.team_capacity)
        cur.execute("SELECT * FROM iteration_weeks WHERE iteration_id = ? ORDER BY week_index", (iteration_id,))
        weeks = rows_to_dicts(cur.fetchall())
        cur.execute("SELECT * FROM capacity_members WHERE iteration_id = ? ORDER BY member_name, id",
                    (iteration_id,))
        members = rows_to_dicts(cur.fetchall())
        cur.execute(
            """
            SELECT wa.*, iw.week_index, tm.member_name
            FROM weekly_availability wa
            JOIN iteration_weeks iw ON iw.id = wa.iteration_week_id
            JOIN team_members tm ON tm.id = wa.team_member_id
            WHERE iw.iteration_id = ?
            ORDER BY iw.week_index, tm.member_name
            """,
            (iteration_id,),
        )
        availability = rows_to_dicts(cur.fetchall())
        return ok({"iteration": iteration, "weeks": weeks, "members": members, "availability": availability})
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on iteration detail: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch iteration")
    finally:
        conn.close()


@router.post("/iterations/{iteration_id}/availability")
def upsert_availability(iteration_id: int, request: AvailabilityUpsertRequest,
                        ctx: AuthContext = Depends(require_auth_context)):
    if not request.entries:
        raise missing_fields("entries must contain at least one availability row")

    conn = get_db()
    try:
        iteration = fetch_iteration(conn.cursor(), iteration_id)
        authorize_module(conn, ctx, iteration["project_id"], ModuleName.team_capacity, AccessLevel.write)
        with transaction(conn) as cur:
            cur.execute("SELECT id FROM iteration_weeks WHERE iteration_id = ?", (iteration_id,))
            week_ids = {row["id"] for row in cur.fetchall()}
            now = now_iso()
            for entry in request.entries:
                if entry.iteration_week_id not in week_ids:
                    raise ApiError(ErrorCode.VALIDATION_ERROR,
                                   f"Week {entry.iteration_week_id} does not belong to this iteration")
                ensure_team_member_in_project(cur, entry.team_member_id, iteration["project_id"])
                capacity = entry.effective_capacity
                if capacity is None:
                    capacity = effective_capacity(WORKING_DAYS_PER_WEEK, entry.leaves, entry.availability_percent)
                cur.execute(
                    """
                    INSERT INTO weekly_availability (iteration_week_id, team_member_id, availability_percent,
                                                     leaves, effective_capacity, notes, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (iteration_week_id, team_member_id) DO UPDATE SET
                        availability_percent = excluded.availability_percent,
                        leaves = excluded.leaves,
                        effective_capacity = excluded.effective_capacity,
                        notes = excluded.notes,
                        updated_at = excluded.updated_at
                    """,
                    (entry.iteration_week_id, entry.team_member_id, entry.availability_percent, entry.leaves,
                     capacity, entry.notes, now),
                )
            record_audit(cur, ctx.user_id, iteration["project_id"], ModuleName.team_capacity, "upsert",
                         "weekly_availability", iteration_id, new_values={"entries": len(request.entries)})
        return ok({"iterationId": iteration_id, "saved": len(request.entries)}, "Availability saved")
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on availability upsert: {e}")
        raise translate_db_error(e, ErrorCode.UPDATE_ERROR, "Failed to save availability")
    finally:
        conn.close()


@router.get("/capacity/stats")
def capacity_stats(ctx: AuthContext = Depends(require_admin)):
    conn = get_db()
    cur = conn.cursor()
    try:
        cur.execute("SELECT COUNT(*) AS c FROM capacity_iterations")
        total_iterations = cur.fetchone()["c"]
        cur.execute(
            "SELECT COUNT(*) AS c, COALESCE(SUM(effective_capacity_days), 0) AS total, "
            "COALESCE(AVG(availability_percent), 0) AS avg_pct FROM capacity_members"
        )
        row = cur.fetchone()
        cur.execute("SELECT COUNT(*) AS c FROM teams")
        total_teams = cur.fetchone()["c"]
        return ok({
            "totalIterations": total_iterations,
            "totalTeams": total_teams,
            "totalMembers": row["c"],
            "totalCapacity": round(row["total"], 1),
            "avgAvailability": round(row["avg_pct"], 1),
        })
    except sqlite3.Error as e:
        print(f"[CAPACITY] DB error on stats: {e}")
        raise translate_db_error(e, ErrorCode.FETCH_ERROR, "Failed to fetch capacity statistics")
    finally:
        conn.close()
