from enum import Enum


# Enums
class ModuleName(str, Enum):
    """Functional areas of a project that can be granted independently."""
    overview = "overview"
    tasks_milestones = "tasks_milestones"
    roadmap = "roadmap"
    kanban = "kanban"
    stakeholders = "stakeholders"
    risk_register = "risk_register"
    discussions = "discussions"
    task_backlog = "task_backlog"
    team_capacity = "team_capacity"
    retrospectives = "retrospectives"
    budget_management = "budget_management"


class AccessLevel(str, Enum):
    read = "read"
    write = "write"


class AppRole(str, Enum):
    admin = "admin"
    user = "user"


class ProjectStatus(str, Enum):
    planning = "planning"
    active = "active"
    on_hold = "on_hold"
    completed = "completed"
    cancelled = "cancelled"


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class TaskStatus(str, Enum):
    todo = "todo"
    in_progress = "in_progress"
    blocked = "blocked"
    review = "review"
    completed = "completed"
    done = "done"


class MilestoneStatus(str, Enum):
    planning = "planning"
    in_progress = "in_progress"
    completed = "completed"
    blocked = "blocked"


class WorkMode(str, Enum):
    office = "office"
    wfh = "wfh"
    hybrid = "hybrid"


# Statuses the analytics treat as finished work
DONE_STATUSES = {"completed", "done"}
MITIGATED_RISK_STATUSES = {"closed", "mitigated"}
