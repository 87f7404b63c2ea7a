"""Assignment engine for DeliverEase - scoring, selection, capacity, cascade and rebalance."""

from deliverease.assignment.models import (
    TeamMember,
    WorkItem,
    AssignmentDecision,
    Move,
    CascadeResult,
)
from deliverease.assignment.scoring import score, review_score
from deliverease.assignment.selector import select, select_backup
from deliverease.assignment.errors import (
    AssignmentError,
    CapacityConflict,
    MissingCandidate,
    WorkItemNotFound,
    CascadePartialFailure,
)

__all__ = [
    "TeamMember",
    "WorkItem",
    "AssignmentDecision",
    "Move",
    "CascadeResult",
    "score",
    "review_score",
    "select",
    "select_backup",
    "AssignmentError",
    "CapacityConflict",
    "MissingCandidate",
    "WorkItemNotFound",
    "CascadePartialFailure",
]
