"""Database package for capacity records, work items and the audit trail."""

from deliverease.db.database import get_db, init_db, get_session
from deliverease.db.models import (
    Base, TeamCapacity, WorkItemRecord, AssignmentEvent
)

__all__ = [
    "get_db",
    "init_db",
    "get_session",
    "Base",
    "TeamCapacity",
    "WorkItemRecord",
    "AssignmentEvent",
]
