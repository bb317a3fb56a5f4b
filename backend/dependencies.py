"""
backend/dependencies.py

Reusable FastAPI dependencies for project/module authorization.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Callable, Union

from fastapi import Depends, Path

from backend.access_policy import ProjectAccess, can_view_project, evaluate, has_permission
from backend.auth_context import AuthContext, require_auth_context
from backend.config import IS_DEV
from backend.db import get_db
from backend.errors import ApiError, ErrorCode, forbidden
from backend.models import AccessLevel, ModuleName


@dataclass(frozen=True)
class ProjectScope:
    """Authenticated caller plus the evaluated access for one project."""
    ctx: AuthContext
    project_id: int
    access: ProjectAccess

    @property
    def user_id(self) -> int:
        return self.ctx.user_id


def authorize_module(
    conn: sqlite3.Connection,
    ctx: AuthContext,
    project_id: int,
    module: Union[str, ModuleName],
    level: Union[str, AccessLevel] = AccessLevel.read,
) -> ProjectAccess:
    """
    Evaluate access and enforce has_permission(module, level).
    Used directly by routes keyed by a child id (task, card, column, ...).

    Raises:
        ApiError(404, PROJECT_NOT_FOUND): project does not exist
        ApiError(403, FORBIDDEN): permission missing
    """
    access = evaluate(conn, ctx.user_id, project_id)
    if not has_permission(access, module, level):
        if IS_DEV:
            print(f"[AUTHZ] Denied: user_id={ctx.user_id}, project_id={project_id}, "
                  f"module={ModuleName(module).value}, required={AccessLevel(level).value}")
        raise forbidden(f"Insufficient permissions for {ModuleName(module).value} ({AccessLevel(level).value})")
    return access


def require_module_access(module: ModuleName, level: AccessLevel = AccessLevel.read) -> Callable:
    """
    FastAPI dependency factory for routes with a {project_id} path parameter.

    Usage in routes:
        @router.get("/projects/{project_id}/risks")
        def list_risks(scope: ProjectScope = Depends(require_module_access(ModuleName.risk_register))):
            ...
    """
    def _check_module_access(
        project_id: int = Path(..., description="Project ID"),
        ctx: AuthContext = Depends(require_auth_context),
    ) -> ProjectScope:
        conn = get_db()
        try:
            access = authorize_module(conn, ctx, project_id, module, level)
        finally:
            conn.close()
        return ProjectScope(ctx=ctx, project_id=project_id, access=access)

    return _check_module_access


def require_project_access(
    project_id: int = Path(..., description="Project ID"),
    ctx: AuthContext = Depends(require_auth_context),
) -> ProjectScope:
    """Project visibility gate (owner, admin, member, or any module grant)."""
    conn = get_db()
    try:
        if not can_view_project(conn, ctx.user_id, project_id):
            raise forbidden("You do not have access to this project")
        access = evaluate(conn, ctx.user_id, project_id)
    finally:
        conn.close()
    return ProjectScope(ctx=ctx, project_id=project_id, access=access)


def require_project_manager(scope: ProjectScope = Depends(require_project_access)) -> ProjectScope:
    """Owner or global admin of the project."""
    if not (scope.access.is_owner or scope.access.is_admin):
        raise forbidden("Only the project owner or an admin can perform this action")
    return scope


def require_admin(ctx: AuthContext = Depends(require_auth_context)) -> AuthContext:
    """Global admin role (user_roles.role = 'admin')."""
    if not ctx.is_admin:
        raise ApiError(ErrorCode.FORBIDDEN, "Admin access required")
    return ctx
