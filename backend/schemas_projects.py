"""
backend/schemas_projects.py

Pydantic schemas for auth, projects, membership, module access grants,
audit entries and the project creation wizard.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import Field, validator

from backend.models import AccessLevel, ModuleName, Priority, ProjectStatus
from backend.schemas_workspace import WorkspaceModel, blank_to_none, require_text


# ========================================================================
# AUTH
# ========================================================================

class RegisterRequest(WorkspaceModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=6, max_length=200)
    full_name: Optional[str] = Field(None, alias="fullName")

    @validator("email", pre=True)
    def normalize_email(cls, v):
        v = require_text(v)
        if isinstance(v, str):
            v = v.lower()
            if "@" not in v:
                raise ValueError("email must contain '@'")
        return v


class LoginRequest(WorkspaceModel):
    email: str
    password: str

    @validator("email", pre=True)
    def normalize_email(cls, v):
        v = require_text(v)
        return v.lower() if isinstance(v, str) else v


# ========================================================================
# PROJECTS
# ========================================================================

class ProjectCreateRequest(WorkspaceModel):
    name: str = Field(..., max_length=200)
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.planning
    priority: Priority = Priority.medium
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    department_id: Optional[int] = Field(None, alias="departmentId")

    @validator("name", pre=True)
    def name_required(cls, v):
        return require_text(v)

    @validator("start_date", "end_date", pre=True)
    def blank_dates(cls, v):
        return blank_to_none(v)


class ProjectUpdateRequest(WorkspaceModel):
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None
    priority: Optional[Priority] = None
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    department_id: Optional[int] = Field(None, alias="departmentId")


class DepartmentCreateRequest(WorkspaceModel):
    name: str = Field(..., max_length=120)

    @validator("name", pre=True)
    def name_required(cls, v):
        return require_text(v)


class MemberAddRequest(WorkspaceModel):
    user_id: Optional[int] = Field(None, alias="userId")
    user_email: Optional[str] = Field(None, alias="userEmail")
    role: str = "member"


# ========================================================================
# MODULE ACCESS
# ========================================================================

class AccessGrantRequest(WorkspaceModel):
    """userEmail or userId identifies the grantee; module/accessLevel are checked by the handler."""
    user_id: Optional[int] = Field(None, alias="userId")
    user_email: Optional[str] = Field(None, alias="userEmail")
    module: Optional[str] = None
    access_level: Optional[str] = Field(None, alias="accessLevel")

    @validator("user_email", "module", "access_level", pre=True)
    def blank_optional(cls, v):
        return blank_to_none(v)


class AccessUpdateRequest(WorkspaceModel):
    module: ModuleName
    access_level: AccessLevel = Field(..., alias="accessLevel")


class ModuleAccessLogRequest(WorkspaceModel):
    project_id: int = Field(..., alias="projectId")
    module: ModuleName
    access_type: str = Field("view", alias="accessType")


# ========================================================================
# AUDIT
# ========================================================================

class AuditLogRequest(WorkspaceModel):
    project_id: int = Field(..., alias="projectId")
    module: ModuleName
    action: str
    entity_type: str = Field("manual", alias="entityType")
    entity_id: Optional[int] = Field(None, alias="entityId")
    old_values: Optional[Dict[str, Any]] = Field(None, alias="oldValues")
    new_values: Optional[Dict[str, Any]] = Field(None, alias="newValues")
    description: Optional[str] = None

    @validator("action", pre=True)
    def action_required(cls, v):
        return require_text(v)


# ========================================================================
# WIZARD
# ========================================================================

class WizardTask(WorkspaceModel):
    title: str
    description: Optional[str] = None
    priority: Priority = Priority.medium
    due_date: Optional[date] = Field(None, alias="dueDate")
    owner_id: Optional[int] = Field(None, alias="ownerId")

    @validator("title", pre=True)
    def title_required(cls, v):
        return require_text(v)

    @validator("due_date", "owner_id", pre=True)
    def blank_optional(cls, v):
        return blank_to_none(v)


class WizardMilestone(WorkspaceModel):
    name: str
    due_date: date = Field(..., alias="dueDate")
    description: Optional[str] = None
    tasks: List[WizardTask] = Field(default_factory=list)

    @validator("name", pre=True)
    def name_required(cls, v):
        return require_text(v)


class WizardCreateRequest(WorkspaceModel):
    project_name: str = Field(..., alias="projectName")
    description: Optional[str] = None
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    priority: Priority = Priority.medium
    milestones: List[WizardMilestone] = Field(default_factory=list)
    tasks: List[WizardTask] = Field(default_factory=list)

    @validator("project_name", pre=True)
    def project_name_required(cls, v):
        return require_text(v)

    @validator("start_date", "end_date", pre=True)
    def blank_dates(cls, v):
        return blank_to_none(v)
