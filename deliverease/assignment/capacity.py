"""
Capacity bookkeeping.

Applies assignment (+hours) and release (-hours) to a member's capacity
record. Writes for one member are serialized by a per-member lock inside
this process and by a version compare-and-swap in the database, so two
concurrent assignments can never both overshoot a member's maximum.
"""

import logging
import threading
from typing import Optional, Dict
from deliverease.assignment.errors import CapacityConflict
from deliverease.assignment.models import TeamMember
from deliverease.config import settings
from deliverease.db.repository import AssignmentRepository

logger = logging.getLogger(__name__)


class MemberLocks:
    """One lock per team member id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def for_member(self, team_member_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(team_member_id)
            if lock is None:
                lock = self._locks[team_member_id] = threading.Lock()
            return lock


_process_locks = MemberLocks()


class CapacityMutator:
    """Commits and releases hours against capacity records."""

    def __init__(
        self,
        repository: AssignmentRepository,
        locks: Optional[MemberLocks] = None,
        max_retries: Optional[int] = None,
    ):
        self.repository = repository
        self.locks = locks or _process_locks
        self.max_retries = settings.capacity_commit_retries if max_retries is None else max_retries

    def commit(self, team_member_id: str, hours_delta: float) -> Optional[TeamMember]:
        """
        Add hours_delta to a member's committed hours.

        Positive deltas are re-validated against the authoritative record:
        committed + delta must not exceed the maximum. Negative deltas are
        clamped so committed hours never drop below zero.

        Returns:
            The updated member, or None if the member no longer exists

        Raises:
            CapacityConflict: the hours do not fit, or the record kept
                changing underneath us for every retry
        """
        for attempt in range(self.max_retries + 1):
            with self.locks.for_member(team_member_id):
                member = self.repository.get_member(team_member_id)
                if member is None:
                    logger.warning(f"Capacity update skipped, member {team_member_id} not found")
                    return None

                new_hours = member.current_weekly_hours + hours_delta
                if hours_delta > 0 and new_hours > member.max_weekly_hours:
                    raise CapacityConflict(
                        team_member_id,
                        member.current_weekly_hours,
                        hours_delta,
                        member.max_weekly_hours,
                    )
                if new_hours < 0:
                    logger.warning(
                        f"Release of {-hours_delta:.1f}h from {team_member_id} exceeds "
                        f"committed {member.current_weekly_hours:.1f}h, clamping to 0"
                    )
                    new_hours = 0.0

                updated = member.model_copy(update={
                    "current_weekly_hours": new_hours,
                    "version": member.version + 1,
                })

                if self.repository.persist_capacity_update(updated, expected_version=member.version):
                    logger.info(
                        f"Capacity for {team_member_id}: {member.current_weekly_hours:.1f}h -> "
                        f"{new_hours:.1f}h ({updated.utilization_percentage:.1f}%, "
                        f"{updated.availability_status.value})"
                    )
                    self.repository.log_event("capacity_updated", {
                        "team_member_id": team_member_id,
                        "hours_delta": hours_delta,
                        "current_weekly_hours": new_hours,
                        "utilization_percentage": updated.utilization_percentage,
                        "availability_status": updated.availability_status.value,
                    })
                    return updated

            logger.info(
                f"Capacity record for {team_member_id} changed concurrently, "
                f"retrying ({attempt + 1}/{self.max_retries})"
            )

        latest = self.repository.get_member(team_member_id)
        raise CapacityConflict(
            team_member_id,
            latest.current_weekly_hours if latest else 0.0,
            hours_delta,
            latest.max_weekly_hours if latest else 0.0,
        )

    def release(self, team_member_id: str, hours: float) -> Optional[TeamMember]:
        """Give back hours, e.g. on completion or reassignment."""
        return self.commit(team_member_id, -abs(hours))
