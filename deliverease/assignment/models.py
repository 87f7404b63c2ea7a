"""Data models for the assignment engine."""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, field_validator, model_validator


# Availability bands, in utilization percent
BUSY_THRESHOLD = 90.0
OVERLOADED_THRESHOLD = 95.0


class AvailabilityStatus(str, Enum):
    """Availability derived from utilization."""
    AVAILABLE = "available"  # < 90%
    BUSY = "busy"  # 90-95%
    OVERLOADED = "overloaded"  # > 95%


class WorkItemCategory(str, Enum):
    """Kind of work item; decides scoring variant and threshold."""
    TASK = "task"
    REVIEW = "review"  # Quality checkpoint


class WorkItemStatus(str, Enum):
    PLANNED = "planned"  # Waiting on dependencies or a later phase
    BLOCKED = "blocked"
    UNASSIGNED = "unassigned"  # Eligible, not started
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


WAITING_STATUSES = (WorkItemStatus.PLANNED, WorkItemStatus.BLOCKED)
PENDING_STATUSES = (WorkItemStatus.UNASSIGNED, WorkItemStatus.ASSIGNED)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


PRIORITY_ORDER = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.CRITICAL: 3,
}


class AssignmentMethod(str, Enum):
    AI_OPTIMIZED = "ai_optimized"
    MANUAL_BULK = "manual_bulk"
    REBALANCED = "rebalanced"
    ESCALATED = "escalated"


def availability_for(utilization: float) -> AvailabilityStatus:
    """Map a utilization percentage to its availability band."""
    if utilization > OVERLOADED_THRESHOLD:
        return AvailabilityStatus.OVERLOADED
    if utilization >= BUSY_THRESHOLD:
        return AvailabilityStatus.BUSY
    return AvailabilityStatus.AVAILABLE


def _normalize_tags(values: Optional[List[str]]) -> List[str]:
    seen = []
    for value in values or []:
        tag = str(value).strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class TeamMember(BaseModel):
    """A team member's capacity record."""
    team_member_id: str
    name: Optional[str] = None
    skill_specializations: List[str] = []
    current_weekly_hours: float = Field(default=0.0, ge=0)
    max_weekly_hours: float = Field(default=40.0, gt=0)
    quality_score_average: Optional[float] = Field(default=None, ge=0, le=10)
    slack_user_id: Optional[str] = None
    email: Optional[str] = None
    version: int = 0  # Optimistic-concurrency counter

    @field_validator("skill_specializations", mode="before")
    @classmethod
    def _clean_skills(cls, value):
        return _normalize_tags(value)

    @property
    def utilization_percentage(self) -> float:
        """Always recomputed; any stored copy is only a cache."""
        return self.current_weekly_hours * 100 / self.max_weekly_hours

    @property
    def availability_status(self) -> AvailabilityStatus:
        return availability_for(self.utilization_percentage)

    @property
    def remaining_hours(self) -> float:
        return self.max_weekly_hours - self.current_weekly_hours

    def can_take(self, hours: float) -> bool:
        """Hard capacity check: committed + hours must not exceed maximum."""
        return self.current_weekly_hours + hours <= self.max_weekly_hours


class WorkItem(BaseModel):
    """A task or quality checkpoint that needs an assignee."""
    work_item_id: str
    title: str = ""
    category: WorkItemCategory = WorkItemCategory.TASK
    required_skills: List[str] = []
    estimated_hours: float = Field(default=8.0, ge=0)
    status: WorkItemStatus = WorkItemStatus.UNASSIGNED
    assignee_id: Optional[str] = None
    backup_assignee_id: Optional[str] = None
    dependencies: List[str] = []
    priority: Priority = Priority.MEDIUM
    deliverable_type: Optional[str] = None
    assignment_method: Optional[AssignmentMethod] = None
    assigned_at: Optional[datetime] = None
    escalation_reason: Optional[str] = None

    @field_validator("required_skills", mode="before")
    @classmethod
    def _clean_skills(cls, value):
        return _normalize_tags(value)

    @field_validator("deliverable_type", mode="before")
    @classmethod
    def _clean_deliverable_type(cls, value):
        if value is None:
            return None
        value = str(value).strip().lower()
        return value or None

    @model_validator(mode="after")
    def _no_self_dependency(self):
        if self.work_item_id in self.dependencies:
            raise ValueError(f"Work item {self.work_item_id} cannot depend on itself")
        return self

    @property
    def is_review(self) -> bool:
        return self.category == WorkItemCategory.REVIEW


class ScoredCandidate(BaseModel):
    """Scored team member with reasoning."""
    member: TeamMember
    total_score: float
    reasoning: str
    factors: Dict[str, Any]


class AssignmentDecision(BaseModel):
    """Outcome of one assignment attempt. No assignee means no eligible candidate."""
    work_item_id: str
    assignee_id: Optional[str] = None
    score: float = 0.0
    method: Optional[AssignmentMethod] = None
    backup_assignee_id: Optional[str] = None
    reason: str = ""
    factors: Dict[str, Any] = {}

    @property
    def assigned(self) -> bool:
        return self.assignee_id is not None


class Move(BaseModel):
    """A single rebalance reassignment."""
    work_item_id: str
    from_member: str = Field(alias="from")
    to_member: str = Field(alias="to")

    model_config = {"populate_by_name": True}


class BulkAssignmentResult(BaseModel):
    """Per-item outcome of a manual bulk assignment."""
    team_member_id: str
    assigned: List[str] = []
    rejected: Dict[str, str] = {}


class CascadeResult(BaseModel):
    """What a completion cascade did."""
    work_item_id: str
    already_completed: bool = False
    released_hours: float = 0.0
    unblocked: List[str] = []
    decisions: List[AssignmentDecision] = []
    errors: Dict[str, str] = {}

    @property
    def partial_failure(self) -> bool:
        return bool(self.errors)

    def raise_for_errors(self):
        """Raise CascadePartialFailure if any dependent failed."""
        if self.errors:
            from deliverease.assignment.errors import CascadePartialFailure
            raise CascadePartialFailure(self.work_item_id, dict(self.errors))
