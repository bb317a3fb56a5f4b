"""
backend/routes_wizard.py

Project creation wizard.

/projects/create builds the project, its owner membership, milestones and
tasks in one transaction: either everything is stored or nothing is.
Top-level tasks are only inserted when no milestones were supplied.
"""

from __future__ import annotations

import sqlite3
import uuid
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from backend.audit import record_audit
from backend.auth_context import AuthContext, require_auth_context
from backend.db import db_value, get_db, now_iso, transaction
from backend.errors import ApiError, ErrorCode, translate_db_error
from backend.models import ModuleName
from backend.responses import ok
from backend.routes_projects import fetch_project, insert_project
from backend.routes_tasks import insert_task
from backend.schemas_projects import ProjectCreateRequest, WizardCreateRequest

router = APIRouter(tags=["wizard"])


@router.post("/projects/wizard/start")
def start_wizard(seed: Dict[str, Any] = Body(default={}), ctx: AuthContext = Depends(require_auth_context)):
    session_id = str(uuid.uuid4())
    print(f"[WIZARD] Session started: session_id={session_id}, user_id={ctx.user_id}")
    return ok({"message": "Wizard session started", "sessionId": session_id, "seed": seed or {}})


@router.post("/projects/wizard/complete")
def complete_wizard(request: ProjectCreateRequest, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    try:
        with transaction(conn) as cur:
            project_id = insert_project(cur, ctx.user_id, request.dict())
            project = fetch_project(cur, project_id)
        return ok({"message": "Wizard completed", "project": project}, "Wizard completed")
    except sqlite3.Error as e:
        print(f"[WIZARD] DB error on complete: {e}")
        raise translate_db_error(e, ErrorCode.CREATE_ERROR, "Failed to complete wizard")
    finally:
        conn.close()


@router.post("/projects/create")
def create_project_with_plan(request: WizardCreateRequest, ctx: AuthContext = Depends(require_auth_context)):
    conn = get_db()
    milestones_created = 0
    tasks_created = 0
    try:
        with transaction(conn) as cur:
            project_id = insert_project(cur, ctx.user_id, {
                "name": request.project_name,
                "description": request.description,
                "priority": request.priority,
                "start_date": request.start_date,
                "end_date": request.end_date,
            })
            for milestone in request.milestones:
                now = now_iso()
                cur.execute(
                    """
                    INSERT INTO milestones (project_id, name, description, due_date, status,
                                            created_by, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 'planning', ?, ?, ?)
                    """,
                    (project_id, milestone.name, milestone.description, db_value(milestone.due_date),
                     ctx.user_id, now, now),
                )
                milestone_id = cur.lastrowid
                milestones_created += 1
                for task in milestone.tasks:
                    insert_task(cur, ctx.user_id, project_id, {**task.dict(), "milestone_id": milestone_id})
                    tasks_created += 1
            if not request.milestones:
                for task in request.tasks:
                    insert_task(cur, ctx.user_id, project_id, task.dict())
                    tasks_created += 1
            summary = {"milestonesCreated": milestones_created, "tasksCreated": tasks_created}
            record_audit(cur, ctx.user_id, project_id, ModuleName.overview, "wizard_create", "project",
                         project_id, new_values=summary)
            project = fetch_project(cur, project_id)
        print(f"[WIZARD] Created project_id={project_id}: {milestones_created} milestones, {tasks_created} tasks")
        return ok({"project": project, "summary": summary}, "Project created successfully")
    except sqlite3.Error as e:
        print(f"[WIZARD] DB error on create, rolled back: {e}")
        raise ApiError(ErrorCode.CREATE_ERROR, "Failed to create project", status_code=500, details=str(e))
    finally:
        conn.close()
