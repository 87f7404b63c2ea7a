"""Exceptions raised by the assignment engine."""

from typing import Dict


class AssignmentError(Exception):
    """Base class for assignment engine errors."""


class CapacityConflict(AssignmentError):
    """Commit-time re-validation found the member has no room for the hours."""

    def __init__(self, member_id: str, committed: float, delta: float, maximum: float):
        self.member_id = member_id
        self.committed = committed
        self.delta = delta
        self.maximum = maximum
        super().__init__(
            f"Capacity conflict for {member_id}: {committed:.1f}h + {delta:.1f}h > {maximum:.1f}h"
        )


class MissingCandidate(AssignmentError):
    """The team member no longer exists."""

    def __init__(self, member_id: str):
        self.member_id = member_id
        super().__init__(f"Team member not found: {member_id}")


class WorkItemNotFound(AssignmentError):
    def __init__(self, work_item_id: str):
        self.work_item_id = work_item_id
        super().__init__(f"Work item not found: {work_item_id}")


class CascadePartialFailure(AssignmentError):
    """One or more dependents could not be processed during a cascade."""

    def __init__(self, work_item_id: str, errors: Dict[str, str]):
        self.work_item_id = work_item_id
        self.errors = errors
        super().__init__(
            f"Cascade from {work_item_id} failed for {len(errors)} dependent(s): "
            + ", ".join(sorted(errors))
        )
