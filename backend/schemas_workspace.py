"""
backend/schemas_workspace.py

Pydantic schemas for the project workspace modules:
milestones (roadmap), tasks, risks, stakeholders, discussions, backlog.

Create schemas declare required fields so a missing or blank value is
reported as MISSING_FIELDS. Update schemas are all-optional; handlers apply
only the fields the client actually sent (exclude_unset).
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, validator

from backend.models import MilestoneStatus, Priority, TaskStatus


def require_text(v):
    """Trim strings; blank required text counts as missing."""
    if isinstance(v, str):
        v = v.strip()
    if v is None or v == "":
        raise ValueError("field required")
    return v


def blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


def normalize_attendees(v):
    """Attendees are stored as a JSON list; a comma-separated string is split."""
    if v is None:
        return []
    if isinstance(v, str):
        return [a.strip() for a in v.split(",") if a.strip()]
    return v


class WorkspaceModel(BaseModel):
    """Accepts both snake_case field names and the camelCase aliases the UI sends."""

    class Config:
        allow_population_by_field_name = True
        extra = "ignore"


# ========================================================================
# MILESTONES (ROADMAP)
# ========================================================================

class MilestoneCreateRequest(WorkspaceModel):
    name: str = Field(..., max_length=200)
    due_date: date = Field(..., alias="dueDate")
    description: Optional[str] = None
    status: MilestoneStatus = MilestoneStatus.planning

    @validator("name", pre=True)
    def name_required(cls, v):
        return require_text(v)


class MilestoneUpdateRequest(WorkspaceModel):
    name: Optional[str] = Field(None, max_length=200)
    due_date: Optional[date] = Field(None, alias="dueDate")
    description: Optional[str] = None
    status: Optional[MilestoneStatus] = None


# ========================================================================
# TASKS
# ========================================================================

class TaskCreateRequest(WorkspaceModel):
    title: str = Field(..., max_length=300)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.todo
    priority: Priority = Priority.medium
    due_date: Optional[date] = Field(None, alias="dueDate")
    milestone_id: Optional[int] = Field(None, alias="milestoneId")
    owner_id: Optional[int] = Field(None, alias="ownerId")

    @validator("title", pre=True)
    def title_required(cls, v):
        return require_text(v)

    @validator("due_date", "milestone_id", "owner_id", pre=True)
    def blank_optional(cls, v):
        return blank_to_none(v)


class TaskUpdateRequest(WorkspaceModel):
    title: Optional[str] = Field(None, max_length=300)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    due_date: Optional[date] = Field(None, alias="dueDate")
    milestone_id: Optional[int] = Field(None, alias="milestoneId")
    owner_id: Optional[int] = Field(None, alias="ownerId")
    status_note: Optional[str] = Field(None, alias="statusNote")


class TaskMoveRequest(WorkspaceModel):
    milestone_id: Optional[int] = Field(None, alias="milestoneId")


# ========================================================================
# RISKS
# ========================================================================

class RiskFields(WorkspaceModel):
    description: Optional[str] = None
    category: Optional[str] = None
    cause: Optional[str] = None
    consequence: Optional[str] = None
    owner: Optional[str] = None
    likelihood: Optional[int] = Field(None, ge=1, le=5)
    impact: Optional[int] = Field(None, ge=1, le=5)
    response_strategy: Optional[str] = None
    mitigation_plan: Optional[List[str]] = None
    contingency_plan: Optional[str] = None
    status: Optional[str] = None
    next_review_date: Optional[date] = None
    residual_likelihood: Optional[int] = Field(None, ge=1, le=5)
    residual_impact: Optional[int] = Field(None, ge=1, le=5)
    notes: Optional[str] = None
    # Accepted for compatibility but never stored: the server recomputes it
    risk_score: Optional[int] = None

    @validator("*", pre=True)
    def empty_strings_are_null(cls, v):
        return blank_to_none(v)

    @validator("mitigation_plan", pre=True)
    def split_mitigation_plan(cls, v):
        if isinstance(v, str):
            return [line.strip() for line in v.splitlines() if line.strip()]
        return v


class RiskCreateRequest(RiskFields):
    risk_code: str = Field(..., max_length=50)
    title: str = Field(..., max_length=300)

    @validator("risk_code", "title", pre=True)
    def code_and_title_required(cls, v):
        return require_text(v)


class RiskUpdateRequest(RiskFields):
    risk_code: Optional[str] = Field(None, max_length=50)
    title: Optional[str] = Field(None, max_length=300)


# ========================================================================
# STAKEHOLDERS
# ========================================================================

class StakeholderCreateRequest(WorkspaceModel):
    name: str = Field(..., max_length=200)
    email: Optional[str] = None
    department: Optional[str] = None
    raci: Optional[str] = None
    influence_level: Optional[str] = None
    notes: Optional[str] = None

    @validator("name", pre=True)
    def name_required(cls, v):
        return require_text(v)


class StakeholderUpdateRequest(WorkspaceModel):
    name: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = None
    department: Optional[str] = None
    raci: Optional[str] = None
    influence_level: Optional[str] = None
    notes: Optional[str] = None


# ========================================================================
# DISCUSSIONS
# ========================================================================

class DiscussionCreateRequest(WorkspaceModel):
    meeting_title: str = Field(..., max_length=300)
    meeting_date: date
    attendees: List[str] = Field(default_factory=list)
    summary_notes: Optional[str] = None

    @validator("meeting_title", pre=True)
    def title_required(cls, v):
        return require_text(v)

    @validator("attendees", pre=True)
    def attendees_list(cls, v):
        return normalize_attendees(v)


class DiscussionUpdateRequest(WorkspaceModel):
    meeting_title: Optional[str] = Field(None, max_length=300)
    meeting_date: Optional[date] = None
    attendees: Optional[List[str]] = None
    summary_notes: Optional[str] = None

    @validator("attendees", pre=True)
    def attendees_list(cls, v):
        return normalize_attendees(v)


class ActionItemCreateRequest(WorkspaceModel):
    discussion_id: int
    task_description: str
    owner_id: Optional[int] = None
    target_date: Optional[date] = None
    status: str = "open"

    @validator("task_description", pre=True)
    def description_required(cls, v):
        return require_text(v)

    @validator("owner_id", "target_date", pre=True)
    def blank_optional(cls, v):
        return blank_to_none(v)


class ActionItemUpdateRequest(WorkspaceModel):
    task_description: Optional[str] = None
    owner_id: Optional[int] = None
    target_date: Optional[date] = None
    status: Optional[str] = None


# ========================================================================
# BACKLOG
# ========================================================================

class BacklogCreateRequest(WorkspaceModel):
    title: str = Field(..., max_length=300)
    description: Optional[str] = None
    priority: Priority = Priority.medium
    status: str = "backlog"
    owner_id: Optional[int] = Field(None, alias="ownerId")
    target_date: Optional[date] = Field(None, alias="targetDate")
    source_type: str = Field("manual", alias="sourceType")
    source_id: Optional[int] = Field(None, alias="sourceId")

    @validator("title", pre=True)
    def title_required(cls, v):
        return require_text(v)

    @validator("owner_id", "target_date", "source_id", pre=True)
    def blank_optional(cls, v):
        return blank_to_none(v)


class BacklogUpdateRequest(WorkspaceModel):
    title: Optional[str] = Field(None, max_length=300)
    description: Optional[str] = None
    priority: Optional[Priority] = None
    status: Optional[str] = None
    owner_id: Optional[int] = Field(None, alias="ownerId")
    target_date: Optional[date] = Field(None, alias="targetDate")


class BacklogMoveRequest(WorkspaceModel):
    milestone_id: int = Field(..., alias="milestoneId")
