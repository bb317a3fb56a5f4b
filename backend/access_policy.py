"""
backend/access_policy.py

Access Policy Evaluator: per-module read/write decisions for (user, project).

Rules:
- Project owner (projects.created_by) and global admins get write on every module
- Everyone else gets exactly the module_permissions rows stored for them
- A module with no row is unreadable, even for project members
- Write implies read; read never implies write
- An unresolved evaluation denies everything (fail-closed)
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from backend.errors import ApiError, ErrorCode
from backend.models import AccessLevel, ModuleName


# ============================================================================
# Evaluation Result
# ============================================================================

@dataclass(frozen=True)
class ProjectAccess:
    """Outcome of evaluate(); permissions maps module -> granted level."""
    project_id: Optional[int] = None
    is_owner: bool = False
    is_admin: bool = False
    permissions: Dict[ModuleName, AccessLevel] = field(default_factory=dict)
    resolved: bool = True

    @classmethod
    def unresolved(cls) -> "ProjectAccess":
        """Placeholder while evaluation is in flight; every check answers False."""
        return cls(resolved=False)

    def to_dict(self) -> dict:
        return {
            "projectId": self.project_id,
            "isOwner": self.is_owner,
            "isAdmin": self.is_admin,
            "permissions": {m.value: lvl.value for m, lvl in self.permissions.items()},
        }


def full_access() -> Dict[ModuleName, AccessLevel]:
    return {module: AccessLevel.write for module in ModuleName}


def parse_module(value: Union[str, ModuleName]) -> ModuleName:
    """Coerce a module name, rejecting anything outside the closed set."""
    try:
        return ModuleName(value)
    except ValueError:
        valid = [m.value for m in ModuleName]
        raise ApiError(ErrorCode.VALIDATION_ERROR, f"Unknown module {value!r}. Valid options: {valid}")


def parse_level(value: Union[str, AccessLevel]) -> AccessLevel:
    try:
        return AccessLevel(value)
    except ValueError:
        raise ApiError(ErrorCode.VALIDATION_ERROR, f"Invalid access level {value!r}. Use 'read' or 'write'")


# ============================================================================
# Lookups
# ============================================================================

def is_global_admin(conn: sqlite3.Connection, user_id: int) -> bool:
    cur = conn.cursor()
    cur.execute("SELECT 1 FROM user_roles WHERE user_id = ? AND role = 'admin'", (user_id,))
    return cur.fetchone() is not None


def evaluate(conn: sqlite3.Connection, user_id: int, project_id: int) -> ProjectAccess:
    """
    Decide module access for (user, project).

    Raises:
        ApiError(404, PROJECT_NOT_FOUND): project does not exist
    """
    cur = conn.cursor()
    cur.execute("SELECT id, created_by FROM projects WHERE id = ?", (project_id,))
    project = cur.fetchone()
    if not project:
        raise ApiError(ErrorCode.PROJECT_NOT_FOUND, "Project not found")

    is_owner = project["created_by"] == user_id
    is_admin = is_global_admin(conn, user_id)
    if is_owner or is_admin:
        return ProjectAccess(
            project_id=project_id,
            is_owner=is_owner,
            is_admin=is_admin,
            permissions=full_access(),
        )

    cur.execute(
        "SELECT module, access_level FROM module_permissions WHERE project_id = ? AND user_id = ?",
        (project_id, user_id),
    )
    permissions: Dict[ModuleName, AccessLevel] = {}
    for row in cur.fetchall():
        try:
            permissions[ModuleName(row["module"])] = AccessLevel(row["access_level"])
        except ValueError:
            # Rows written before a module was retired are ignored
            print(f"[AUTHZ] Ignoring unknown grant: module={row['module']!r} level={row['access_level']!r}")

    return ProjectAccess(project_id=project_id, permissions=permissions)


def has_permission(
    access: ProjectAccess,
    module: Union[str, ModuleName],
    required: Union[str, AccessLevel] = AccessLevel.read,
) -> bool:
    """write requires write; read is satisfied by read or write."""
    if not access.resolved:
        return False
    try:
        module = ModuleName(module)
        required = AccessLevel(required)
    except ValueError:
        return False

    granted = access.permissions.get(module)
    if granted is None:
        return False
    if required == AccessLevel.write:
        return granted == AccessLevel.write
    return True


def can_view_project(conn: sqlite3.Connection, user_id: int, project_id: int) -> bool:
    """
    Project-level visibility: owner, global admin, explicit member,
    or holder of any module grant on the project.
    """
    cur = conn.cursor()
    cur.execute("SELECT created_by FROM projects WHERE id = ?", (project_id,))
    project = cur.fetchone()
    if not project:
        raise ApiError(ErrorCode.PROJECT_NOT_FOUND, "Project not found")
    if project["created_by"] == user_id or is_global_admin(conn, user_id):
        return True
    cur.execute(
        """
        SELECT 1 FROM project_members WHERE project_id = ? AND user_id = ?
        UNION
        SELECT 1 FROM module_permissions WHERE project_id = ? AND user_id = ?
        """,
        (project_id, user_id, project_id, user_id),
    )
    return cur.fetchone() is not None
