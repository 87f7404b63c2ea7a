"""
Assignment service.

Ties selection, capacity commits, persistence and notifications together:
- Auto-assign a task or quality review
- Auto-assign everything still unassigned
- Manual bulk assignment
- Escalation
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Iterable, Callable, Awaitable
from deliverease.assignment import selector
from deliverease.assignment.capacity import CapacityMutator
from deliverease.assignment.errors import (
    AssignmentError, CapacityConflict, MissingCandidate, WorkItemNotFound
)
from deliverease.assignment.models import (
    TeamMember, WorkItem, WorkItemStatus, WorkItemCategory, Priority,
    AssignmentMethod, AssignmentDecision, BulkAssignmentResult,
    PRIORITY_ORDER, WAITING_STATUSES,
)
from deliverease.assignment.notifier import notify_assignment
from deliverease.config import settings
from deliverease.db.repository import AssignmentRepository

logger = logging.getLogger(__name__)

Notifier = Callable[[WorkItem, TeamMember], Awaitable[bool]]

# Selection is re-run once against a fresh snapshot after a capacity conflict
SELECTION_ATTEMPTS = 2


class AssignmentService:
    """Assigns work items to team members."""

    def __init__(
        self,
        repository: AssignmentRepository,
        mutator: Optional[CapacityMutator] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.repository = repository
        self.mutator = mutator or CapacityMutator(repository)
        self.notifier = notifier or notify_assignment

    def _get_item(self, work_item_id: str) -> WorkItem:
        item = self.repository.get_work_item(work_item_id)
        if item is None:
            raise WorkItemNotFound(work_item_id)
        return item

    def candidates_for(self, item: WorkItem) -> List[TeamMember]:
        """Candidate pool: available members for tasks, members at or under 85% for reviews."""
        if item.is_review:
            return self.repository.fetch_available_candidates(
                only_available=False,
                max_utilization=settings.reviewer_max_utilization,
            )
        return self.repository.fetch_available_candidates(only_available=True)

    async def _notify(self, item: WorkItem, team_member_id: str):
        member = self.repository.get_member(team_member_id)
        if member is None:
            return
        try:
            await self.notifier(item, member)
        except Exception as e:
            logger.error(f"Notification for {item.work_item_id} failed: {e}", exc_info=True)

    # =============================================================================
    # Automatic assignment
    # =============================================================================

    async def auto_assign(self, work_item_id: str) -> AssignmentDecision:
        """Auto-assign a single work item by id."""
        return await self.assign_item(self._get_item(work_item_id))

    async def assign_item(self, item: WorkItem) -> AssignmentDecision:
        """
        Pick the best assignee for an item and reserve their hours.

        A capacity conflict at commit time triggers one retry against a
        fresh candidate snapshot; if that also fails the item stays
        unassigned.

        Returns:
            AssignmentDecision; assignee_id is None when nobody qualified
        """
        if item.assignee_id:
            return AssignmentDecision(
                work_item_id=item.work_item_id,
                assignee_id=item.assignee_id,
                method=item.assignment_method,
                backup_assignee_id=item.backup_assignee_id,
                reason="Already assigned",
            )
        if item.status in WAITING_STATUSES:
            return AssignmentDecision(work_item_id=item.work_item_id, reason="Waiting on dependencies")
        if item.status == WorkItemStatus.COMPLETED:
            return AssignmentDecision(work_item_id=item.work_item_id, reason="Already completed")

        best = None
        candidates: List[TeamMember] = []
        reason = "No eligible candidate"

        for attempt in range(SELECTION_ATTEMPTS):
            candidates = self.candidates_for(item)
            best = selector.select(item, candidates)
            if best is None:
                break
            try:
                committed = self.mutator.commit(best.member.team_member_id, item.estimated_hours)
            except CapacityConflict as e:
                logger.info(f"{e}; refreshing candidates for {item.work_item_id}")
                reason = "Capacity conflict"
                best = None
                continue
            if committed is None:
                reason = "Selected member no longer exists"
                best = None
                continue
            break

        if best is None:
            logger.info(f"{item.work_item_id} left unassigned: {reason}")
            self.repository.log_event("no_eligible_candidate", {
                "work_item_id": item.work_item_id,
                "reason": reason,
            })
            return AssignmentDecision(work_item_id=item.work_item_id, reason=reason)

        backup = None
        if item.is_review:
            backup = selector.select_backup(item, candidates, best.member.team_member_id)

        assignee_id = best.member.team_member_id
        updated = item.model_copy(update={
            "assignee_id": assignee_id,
            "backup_assignee_id": backup.member.team_member_id if backup else None,
            "status": WorkItemStatus.ASSIGNED,
            "assignment_method": AssignmentMethod.AI_OPTIMIZED,
            "assigned_at": datetime.now(timezone.utc),
        })

        try:
            claimed = self.repository.claim_work_item_assignment(updated)
        except Exception:
            self.mutator.release(assignee_id, item.estimated_hours)
            raise

        if not claimed:
            # Someone else assigned it since our snapshot; give the hours back
            self.mutator.release(assignee_id, item.estimated_hours)
            current = self.repository.get_work_item(item.work_item_id)
            logger.info(
                f"{item.work_item_id} was assigned concurrently to "
                f"{current.assignee_id if current else None}, releasing {assignee_id}"
            )
            if current is None:
                raise WorkItemNotFound(item.work_item_id)
            if current.assignee_id is None:
                return AssignmentDecision(work_item_id=item.work_item_id, reason="Already completed")
            return AssignmentDecision(
                work_item_id=item.work_item_id,
                assignee_id=current.assignee_id,
                method=current.assignment_method,
                backup_assignee_id=current.backup_assignee_id,
                reason="Already assigned",
            )

        updated = self.repository.get_work_item(item.work_item_id)
        self.repository.log_event("task_assigned", {
            "work_item_id": item.work_item_id,
            "team_member_id": assignee_id,
            "method": AssignmentMethod.AI_OPTIMIZED.value,
            "score": best.total_score,
            "backup_assignee_id": updated.backup_assignee_id,
        })
        await self._notify(updated, assignee_id)

        return AssignmentDecision(
            work_item_id=item.work_item_id,
            assignee_id=assignee_id,
            score=best.total_score,
            method=AssignmentMethod.AI_OPTIMIZED,
            backup_assignee_id=updated.backup_assignee_id,
            reason=best.reasoning,
            factors=best.factors,
        )

    async def auto_assign_unassigned(
        self,
        category: Optional[WorkItemCategory] = None,
    ) -> List[AssignmentDecision]:
        """
        Auto-assign every eligible unassigned item, highest priority first.

        Returns only the decisions that produced an assignee.
        """
        items = self.repository.fetch_pending_work_items(
            statuses=[WorkItemStatus.UNASSIGNED],
            category=category,
            unassigned_only=True,
        )
        items.sort(key=lambda item: PRIORITY_ORDER[item.priority], reverse=True)

        decisions = []
        for item in items:
            decision = await self.assign_item(item)
            if decision.assigned:
                decisions.append(decision)

        logger.info(f"Auto-assigned {len(decisions)} of {len(items)} unassigned items")
        return decisions

    # =============================================================================
    # Reassignment
    # =============================================================================

    async def reassign(
        self,
        item: WorkItem,
        to_member_id: str,
        method: AssignmentMethod,
    ) -> WorkItem:
        """
        Move an item to another member.

        Hours are reserved on the new member first (re-validated), the item
        is persisted, then the previous assignee's hours are released.

        Raises:
            CapacityConflict: the new member has no room
            MissingCandidate: the new member does not exist
        """
        if item.status == WorkItemStatus.COMPLETED:
            raise AssignmentError(f"Cannot reassign completed work item {item.work_item_id}")

        previous = item.assignee_id
        if self.mutator.commit(to_member_id, item.estimated_hours) is None:
            raise MissingCandidate(to_member_id)

        status = item.status
        if status == WorkItemStatus.UNASSIGNED:
            status = WorkItemStatus.ASSIGNED

        updated = item.model_copy(update={
            "assignee_id": to_member_id,
            "status": status,
            "assignment_method": method,
            "assigned_at": datetime.now(timezone.utc),
        })
        if updated.backup_assignee_id == to_member_id:
            updated.backup_assignee_id = None

        try:
            updated = self.repository.persist_work_item_assignment(updated)
        except Exception:
            self.mutator.release(to_member_id, item.estimated_hours)
            raise

        if previous:
            self.mutator.release(previous, item.estimated_hours)

        self.repository.log_event("task_reassigned", {
            "work_item_id": item.work_item_id,
            "team_member_id": to_member_id,
            "from": previous,
            "method": method.value,
        })
        await self._notify(updated, to_member_id)
        return updated

    async def bulk_assign(self, work_item_ids: Iterable[str], team_member_id: str) -> BulkAssignmentResult:
        """
        Manually assign several items to one member.

        Each item is committed on its own; items that do not fit are
        reported, not raised.
        """
        if self.repository.get_member(team_member_id) is None:
            raise MissingCandidate(team_member_id)

        # Each id once; a repeat would commit and release the same hours twice
        ids = list(dict.fromkeys(work_item_ids))
        items = self.repository.get_work_items(ids)
        result = BulkAssignmentResult(team_member_id=team_member_id)

        for work_item_id in ids:
            item = items.get(work_item_id)
            if item is None:
                result.rejected[work_item_id] = "Work item not found"
                continue
            if item.status == WorkItemStatus.COMPLETED:
                result.rejected[work_item_id] = "Work item already completed"
                continue
            if item.assignee_id == team_member_id:
                result.assigned.append(work_item_id)
                continue
            try:
                await self.reassign(item, team_member_id, AssignmentMethod.MANUAL_BULK)
                result.assigned.append(work_item_id)
            except CapacityConflict as e:
                result.rejected[work_item_id] = str(e)

        logger.info(
            f"Bulk assigned {len(result.assigned)} items to {team_member_id}, "
            f"{len(result.rejected)} rejected"
        )
        return result

    # =============================================================================
    # Escalation
    # =============================================================================

    async def escalate(
        self,
        work_item_id: str,
        reason: str,
        escalate_to: Optional[str] = None,
    ) -> WorkItem:
        """Raise an item to critical priority and optionally hand it to someone else."""
        item = self._get_item(work_item_id)
        item = item.model_copy(update={
            "priority": Priority.CRITICAL,
            "escalation_reason": reason,
        })

        if escalate_to and escalate_to != item.assignee_id:
            item = await self.reassign(item, escalate_to, AssignmentMethod.ESCALATED)
        else:
            item = self.repository.persist_work_item_assignment(item)

        logger.warning(f"Escalated {work_item_id}: {reason}")
        self.repository.log_event("work_item_escalated", {
            "work_item_id": work_item_id,
            "team_member_id": item.assignee_id,
            "reason": reason,
        })
        return item
