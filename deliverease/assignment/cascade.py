"""
Completion cascade.

When a work item completes, its assignee's hours are released and any
dependent items whose dependencies are now all complete become eligible
and are auto-assigned.

The cascade runs off an explicit queue of events instead of recursive
calls. It goes one level deep: a newly eligible item cascades further
only when it completes later and this handler runs again for it.
"""

import logging
from collections import deque
from typing import List, Union
from pydantic import BaseModel
from deliverease.assignment.errors import WorkItemNotFound
from deliverease.assignment.models import (
    WorkItem, WorkItemStatus, AssignmentDecision, CascadeResult, WAITING_STATUSES,
)
from deliverease.assignment.service import AssignmentService
from deliverease.db.repository import AssignmentRepository

logger = logging.getLogger(__name__)


class CompletionEvent(BaseModel):
    """A work item reached completed."""
    work_item_id: str


class AssignmentRequest(BaseModel):
    """A dependent item that just became eligible."""
    work_item: WorkItem


CascadeEvent = Union[CompletionEvent, AssignmentRequest]


class CascadeTrigger:
    """Handles work item completion and the assignments it unlocks."""

    def __init__(self, repository: AssignmentRepository, service: AssignmentService):
        self.repository = repository
        self.service = service

    async def on_completed(self, work_item_id: str) -> CascadeResult:
        """
        Complete a work item and cascade to its dependents.

        Completing an item that is already completed does nothing, so
        capacity is released exactly once.

        Returns:
            CascadeResult; per-dependent failures are in result.errors and
            do not undo the completion

        Raises:
            Whatever the capacity release raised; the item is then put back
            in its previous status so a retry can release the hours
        """
        item = self.repository.get_work_item(work_item_id)
        if item is None:
            raise WorkItemNotFound(work_item_id)

        result = CascadeResult(work_item_id=work_item_id)

        # The conditional update makes the transition, and so the release, happen once
        if item.status == WorkItemStatus.COMPLETED or not self.repository.mark_completed(work_item_id):
            logger.info(f"{work_item_id} already completed, nothing to do")
            result.already_completed = True
            return result

        if item.assignee_id:
            try:
                self.service.mutator.release(item.assignee_id, item.estimated_hours)
            except Exception as e:
                self._undo_completion(item, e)
                raise
            result.released_hours = item.estimated_hours

        self.repository.log_event("work_item_completed", {
            "work_item_id": work_item_id,
            "team_member_id": item.assignee_id,
            "released_hours": result.released_hours,
        })

        queue = deque([CompletionEvent(work_item_id=work_item_id)])
        while queue:
            event = queue.popleft()
            if isinstance(event, CompletionEvent):
                queue.extend(self._ready_dependents(event.work_item_id, result))
            else:
                await self._activate(event.work_item, result)

        if result.errors:
            logger.warning(
                f"Cascade from {work_item_id} finished with {len(result.errors)} failure(s): "
                f"{', '.join(sorted(result.errors))}"
            )
        return result

    def _undo_completion(self, item: WorkItem, error: Exception):
        """
        Put the item back in its previous status after a failed release,
        so the next completion attempt releases the hours.
        """
        logger.error(
            f"Releasing {item.estimated_hours:.1f}h from {item.assignee_id} for "
            f"{item.work_item_id} failed: {error}",
            exc_info=True,
        )
        self.repository.log_event("release_failed", {
            "work_item_id": item.work_item_id,
            "team_member_id": item.assignee_id,
            "hours": item.estimated_hours,
            "error": str(error),
        })
        reverted = self.repository.transition_status(
            item.work_item_id, item.status, [WorkItemStatus.COMPLETED]
        )
        if not reverted:
            logger.error(f"Could not restore {item.work_item_id} to {item.status.value}")

    def _ready_dependents(self, work_item_id: str, result: CascadeResult) -> List[AssignmentRequest]:
        """Waiting dependents of work_item_id whose dependencies are all completed."""
        try:
            dependents = self.repository.find_dependents(work_item_id)
        except Exception as e:
            logger.error(f"Dependent lookup for {work_item_id} failed: {e}", exc_info=True)
            result.errors[work_item_id] = f"Dependent lookup failed: {e}"
            return []

        ready = []
        for dependent in dependents:
            try:
                if self._dependencies_completed(dependent):
                    ready.append(AssignmentRequest(work_item=dependent))
                else:
                    logger.info(f"{dependent.work_item_id} still waiting on dependencies")
            except Exception as e:
                logger.error(f"Dependency check for {dependent.work_item_id} failed: {e}", exc_info=True)
                result.errors[dependent.work_item_id] = str(e)
        return ready

    def _dependencies_completed(self, item: WorkItem) -> bool:
        found = self.repository.get_work_items(item.dependencies)
        missing = [dep for dep in item.dependencies if dep not in found]
        if missing:
            logger.warning(
                f"{item.work_item_id} lists unknown dependencies {missing}, ignoring them"
            )
        return all(dep.status == WorkItemStatus.COMPLETED for dep in found.values())

    async def _activate(self, item: WorkItem, result: CascadeResult):
        """Make a dependent eligible and auto-assign it if nobody owns it yet."""
        try:
            # Hours of a pre-assigned item were reserved when it was assigned
            target = WorkItemStatus.ASSIGNED if item.assignee_id else WorkItemStatus.UNASSIGNED
            if not self.repository.transition_status(item.work_item_id, target, WAITING_STATUSES):
                logger.info(f"{item.work_item_id} was already activated elsewhere")
                return

            if item.assignee_id:
                decision = AssignmentDecision(
                    work_item_id=item.work_item_id,
                    assignee_id=item.assignee_id,
                    method=item.assignment_method,
                    reason="Already assigned",
                )
            else:
                activated = self.repository.get_work_item(item.work_item_id)
                decision = await self.service.assign_item(activated)

            result.unblocked.append(item.work_item_id)
            result.decisions.append(decision)
            logger.info(f"{item.work_item_id} unblocked, assignee: {decision.assignee_id}")
        except Exception as e:
            logger.error(f"Cascade assignment for {item.work_item_id} failed: {e}", exc_info=True)
            result.errors[item.work_item_id] = str(e)
