"""
backend/schemas_planning.py

Pydantic schemas for capacity planning, retrospectives and budgets.
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import Field, validator

from backend.models import WorkMode
from backend.schemas_workspace import WorkspaceModel, blank_to_none, require_text


# ========================================================================
# TEAMS
# ========================================================================

class TeamCreateRequest(WorkspaceModel):
    name: str = Field(..., max_length=200)
    description: Optional[str] = None

    @validator("name", pre=True)
    def name_required(cls, v):
        return require_text(v)


class TeamUpdateRequest(WorkspaceModel):
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None


class TeamMemberCreateRequest(WorkspaceModel):
    member_name: str = Field(..., alias="memberName")
    role: Optional[str] = None
    email: Optional[str] = None
    work_mode: WorkMode = Field(WorkMode.office, alias="workMode")
    default_availability_percent: int = Field(100, ge=0, le=100, alias="defaultAvailabilityPercent")

    @validator("member_name", pre=True)
    def member_name_required(cls, v):
        return require_text(v)


class TeamMemberUpdateRequest(WorkspaceModel):
    member_name: Optional[str] = Field(None, alias="memberName")
    role: Optional[str] = None
    email: Optional[str] = None
    work_mode: Optional[WorkMode] = Field(None, alias="workMode")
    default_availability_percent: Optional[int] = Field(None, ge=0, le=100, alias="defaultAvailabilityPercent")


# ========================================================================
# CAPACITY ITERATIONS + MEMBERS
# ========================================================================

class IterationCreateRequest(WorkspaceModel):
    iteration_name: str = Field(..., alias="iterationName")
    start_date: date = Field(..., alias="startDate")
    end_date: date = Field(..., alias="endDate")
    working_days: int = Field(..., ge=1, alias="workingDays")
    committed_story_points: int = Field(0, ge=0, alias="committedStoryPoints")
    team_id: Optional[int] = Field(None, alias="teamId")

    @validator("iteration_name", pre=True)
    def name_required(cls, v):
        return require_text(v)

    @validator("working_days", pre=True)
    def working_days_required(cls, v):
        # 0 / "" are treated as not provided
        if v in (None, "", 0):
            raise ValueError("field required")
        return v

    @validator("end_date")
    def end_after_start(cls, v, values):
        start = values.get("start_date")
        if start and v < start:
            raise ValueError("endDate must not be before startDate")
        return v


class IterationUpdateRequest(WorkspaceModel):
    iteration_name: Optional[str] = Field(None, alias="iterationName")
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    working_days: Optional[int] = Field(None, ge=1, alias="workingDays")
    committed_story_points: Optional[int] = Field(None, ge=0, alias="committedStoryPoints")


class CapacityMemberCreateRequest(WorkspaceModel):
    iteration_id: int = Field(..., alias="iterationId")
    member_name: str = Field(..., alias="memberName")
    role: str
    work_mode: WorkMode = Field(WorkMode.office, alias="workMode")
    availability_percent: int = Field(100, ge=0, le=100, alias="availabilityPercent")
    leaves: int = Field(0, ge=0)
    team_member_id: Optional[int] = Field(None, alias="teamMemberId")

    @validator("member_name", "role", pre=True)
    def text_required(cls, v):
        return require_text(v)

    @validator("availability_percent", pre=True)
    def availability_default(cls, v):
        return 100 if v in (None, "") else v

    @validator("leaves", pre=True)
    def leaves_default(cls, v):
        return 0 if v in (None, "") else v


class CapacityMemberUpdateRequest(WorkspaceModel):
    member_name: Optional[str] = Field(None, alias="memberName")
    role: Optional[str] = None
    work_mode: Optional[WorkMode] = Field(None, alias="workMode")
    availability_percent: Optional[int] = Field(None, ge=0, le=100, alias="availabilityPercent")
    leaves: Optional[int] = Field(None, ge=0)


class AvailabilityEntry(WorkspaceModel):
    iteration_week_id: int
    team_member_id: int
    availability_percent: int = Field(100, ge=0, le=100)
    leaves: int = Field(0, ge=0)
    effective_capacity: Optional[float] = None
    notes: Optional[str] = None


class AvailabilityUpsertRequest(WorkspaceModel):
    entries: List[AvailabilityEntry]


# ========================================================================
# RETROSPECTIVES
# ========================================================================

DEFAULT_RETRO_COLUMNS = ["Went well", "To improve", "Action items"]


class RetroColumnInput(WorkspaceModel):
    title: str
    subtitle: Optional[str] = None

    @validator("title", pre=True)
    def title_required(cls, v):
        return require_text(v)


class RetrospectiveCreateRequest(WorkspaceModel):
    framework: str = "classic"
    iteration_id: Optional[int] = Field(None, alias="iterationId")
    columns: Optional[List[RetroColumnInput]] = None

    @validator("framework", pre=True)
    def framework_default(cls, v):
        v = blank_to_none(v)
        return (v or "classic").strip().lower()

    @validator("iteration_id", pre=True)
    def blank_iteration(cls, v):
        return blank_to_none(v)


class RetroActionCreateRequest(WorkspaceModel):
    what_task: str
    how_approach: Optional[str] = None
    who_responsible: Optional[str] = None
    when_sprint: Optional[str] = None
    backlog_ref_id: Optional[str] = None
    from_card_id: Optional[int] = None

    @validator("what_task", pre=True)
    def what_required(cls, v):
        return require_text(v)


class CardCreateRequest(WorkspaceModel):
    text: str = Field(..., max_length=2000)
    card_order: Optional[int] = None

    @validator("text", pre=True)
    def text_required(cls, v):
        return require_text(v)


class CardMoveRequest(WorkspaceModel):
    column_id: int = Field(..., alias="columnId")
    card_order: int = Field(0, ge=0, alias="cardOrder")


# ========================================================================
# BUDGET
# ========================================================================

class BudgetUpsertRequest(WorkspaceModel):
    currency: str = Field("INR", min_length=3, max_length=3)
    total_budget_allocated: float = Field(0, ge=0)
    total_budget_received: float = Field(0, ge=0)

    @validator("currency", pre=True)
    def upper_currency(cls, v):
        if isinstance(v, str):
            return v.strip().upper() or "INR"
        return v


class BudgetCategoryCreateRequest(WorkspaceModel):
    budget_type_code: str
    name: str
    budget_allocated: float = Field(0, ge=0)

    @validator("budget_type_code", "name", pre=True)
    def text_required(cls, v):
        return require_text(v)

    @validator("budget_type_code")
    def upper_code(cls, v):
        return v.upper()


class SpendingCreateRequest(WorkspaceModel):
    spend_date: date = Field(..., alias="date")
    amount: float = Field(..., gt=0)
    vendor: Optional[str] = None
    description: Optional[str] = None
    status: str = "pending"
