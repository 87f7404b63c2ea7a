"""
Repository for capacity records, work items and the assignment audit trail.

This is the only place the assignment engine touches the database.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Iterable
from sqlalchemy.orm import Session

from deliverease.assignment.models import (
    TeamMember, WorkItem, WorkItemStatus, Priority, WorkItemCategory,
    PRIORITY_ORDER, WAITING_STATUSES, AvailabilityStatus,
)
from deliverease.db.models import TeamCapacity, WorkItemRecord, AssignmentEvent

logger = logging.getLogger(__name__)


def _member_from_row(row: TeamCapacity) -> TeamMember:
    return TeamMember(
        team_member_id=row.team_member_id,
        name=row.name,
        skill_specializations=row.skill_specializations or [],
        current_weekly_hours=row.current_weekly_hours,
        max_weekly_hours=row.max_weekly_hours,
        quality_score_average=row.quality_score_average,
        slack_user_id=row.slack_user_id,
        email=row.email,
        version=row.version,
    )


def _item_from_row(row: WorkItemRecord) -> WorkItem:
    return WorkItem(
        work_item_id=row.work_item_id,
        title=row.title,
        category=row.category,
        required_skills=row.required_skills or [],
        estimated_hours=row.estimated_hours,
        status=row.status,
        assignee_id=row.assignee_id,
        backup_assignee_id=row.backup_assignee_id,
        dependencies=row.dependencies or [],
        priority=row.priority,
        deliverable_type=row.deliverable_type,
        assignment_method=row.assignment_method,
        assigned_at=row.assigned_at,
        escalation_reason=row.escalation_reason,
    )


def _item_values(item: WorkItem) -> Dict[str, Any]:
    return {
        "title": item.title,
        "category": item.category.value,
        "required_skills": list(item.required_skills),
        "estimated_hours": item.estimated_hours,
        "status": item.status.value,
        "assignee_id": item.assignee_id,
        "backup_assignee_id": item.backup_assignee_id,
        "dependencies": list(item.dependencies),
        "priority": item.priority.value,
        "deliverable_type": item.deliverable_type,
        "assignment_method": item.assignment_method.value if item.assignment_method else None,
        "assigned_at": item.assigned_at,
        "escalation_reason": item.escalation_reason,
    }


class AssignmentRepository:
    """Persistence for the assignment engine."""

    def __init__(self, db: Session):
        self.db = db

    # =============================================================================
    # Team capacity
    # =============================================================================

    def add_member(self, member: TeamMember) -> TeamMember:
        """Create or replace a member's capacity record (onboarding)."""
        row = self.db.query(TeamCapacity).filter(
            TeamCapacity.team_member_id == member.team_member_id
        ).first()

        if row is None:
            row = TeamCapacity(team_member_id=member.team_member_id, version=0)
            self.db.add(row)
        else:
            row.version = row.version + 1

        row.name = member.name
        row.skill_specializations = list(member.skill_specializations)
        row.current_weekly_hours = member.current_weekly_hours
        row.max_weekly_hours = member.max_weekly_hours
        row.quality_score_average = member.quality_score_average
        row.slack_user_id = member.slack_user_id
        row.email = member.email
        row.utilization_percentage = member.utilization_percentage
        row.availability_status = member.availability_status.value
        row.last_capacity_update = datetime.now(timezone.utc)

        self.db.commit()
        self.db.refresh(row)
        return _member_from_row(row)

    def get_member(self, team_member_id: str) -> Optional[TeamMember]:
        """Authoritative read of one capacity record."""
        self.db.expire_all()
        row = self.db.query(TeamCapacity).filter(
            TeamCapacity.team_member_id == team_member_id
        ).first()
        return _member_from_row(row) if row else None

    def get_members(self, team_member_ids: Iterable[str]) -> List[TeamMember]:
        ids = list(team_member_ids)
        if not ids:
            return []
        self.db.expire_all()
        rows = self.db.query(TeamCapacity).filter(
            TeamCapacity.team_member_id.in_(ids)
        ).all()
        by_id = {row.team_member_id: _member_from_row(row) for row in rows}
        return [by_id[i] for i in ids if i in by_id]

    def fetch_available_candidates(
        self,
        only_available: bool = True,
        max_utilization: Optional[float] = None,
    ) -> List[TeamMember]:
        """
        Fetch candidate team members, least committed first.

        Availability and utilization filters are applied to freshly computed
        values, not to the cached columns.
        """
        self.db.expire_all()
        rows = self.db.query(TeamCapacity).order_by(
            TeamCapacity.current_weekly_hours.asc(),
            TeamCapacity.id.asc(),
        ).all()

        members = []
        for row in rows:
            member = _member_from_row(row)
            if only_available and member.availability_status != AvailabilityStatus.AVAILABLE:
                continue
            if max_utilization is not None and member.utilization_percentage > max_utilization:
                continue
            members.append(member)
        return members

    def persist_capacity_update(self, member: TeamMember, expected_version: int) -> bool:
        """
        Compare-and-swap write of a capacity record.

        Returns False when the row changed since expected_version was read.
        """
        updated = self.db.query(TeamCapacity).filter(
            TeamCapacity.team_member_id == member.team_member_id,
            TeamCapacity.version == expected_version,
        ).update(
            {
                TeamCapacity.current_weekly_hours: member.current_weekly_hours,
                TeamCapacity.utilization_percentage: member.utilization_percentage,
                TeamCapacity.availability_status: member.availability_status.value,
                TeamCapacity.last_capacity_update: datetime.now(timezone.utc),
                TeamCapacity.version: expected_version + 1,
            },
            synchronize_session=False,
        )
        self.db.commit()
        return updated == 1

    # =============================================================================
    # Work items
    # =============================================================================

    def add_work_item(self, item: WorkItem) -> WorkItem:
        row = self.db.query(WorkItemRecord).filter(
            WorkItemRecord.work_item_id == item.work_item_id
        ).first()
        if row is None:
            row = WorkItemRecord(work_item_id=item.work_item_id)
            self.db.add(row)
        for key, value in _item_values(item).items():
            setattr(row, key, value)
        self.db.commit()
        self.db.refresh(row)
        return _item_from_row(row)

    def get_work_item(self, work_item_id: str) -> Optional[WorkItem]:
        self.db.expire_all()
        row = self.db.query(WorkItemRecord).filter(
            WorkItemRecord.work_item_id == work_item_id
        ).first()
        return _item_from_row(row) if row else None

    def get_work_items(self, work_item_ids: Iterable[str]) -> Dict[str, WorkItem]:
        ids = list(work_item_ids)
        if not ids:
            return {}
        rows = self.db.query(WorkItemRecord).filter(
            WorkItemRecord.work_item_id.in_(ids)
        ).all()
        return {row.work_item_id: _item_from_row(row) for row in rows}

    def fetch_pending_work_items(
        self,
        assignee_id: Optional[str] = None,
        statuses: Optional[Iterable[WorkItemStatus]] = None,
        exclude_priority: Optional[Priority] = None,
        category: Optional[WorkItemCategory] = None,
        unassigned_only: bool = False,
    ) -> List[WorkItem]:
        """
        Fetch work items matching the filters, lowest priority first.

        Items of equal priority keep creation order.
        """
        self.db.expire_all()
        query = self.db.query(WorkItemRecord)

        if assignee_id is not None:
            query = query.filter(WorkItemRecord.assignee_id == assignee_id)
        if unassigned_only:
            query = query.filter(WorkItemRecord.assignee_id.is_(None))
        if statuses:
            query = query.filter(WorkItemRecord.status.in_([s.value for s in statuses]))
        if exclude_priority is not None:
            query = query.filter(WorkItemRecord.priority != exclude_priority.value)
        if category is not None:
            query = query.filter(WorkItemRecord.category == category.value)

        items = [_item_from_row(row) for row in query.order_by(WorkItemRecord.id.asc()).all()]
        items.sort(key=lambda item: PRIORITY_ORDER[item.priority])
        return items

    def find_dependents(
        self,
        work_item_id: str,
        statuses: Iterable[WorkItemStatus] = WAITING_STATUSES,
    ) -> List[WorkItem]:
        """Items in the given statuses whose dependency list contains work_item_id."""
        self.db.expire_all()
        rows = self.db.query(WorkItemRecord).filter(
            WorkItemRecord.status.in_([s.value for s in statuses])
        ).order_by(WorkItemRecord.id.asc()).all()
        return [
            _item_from_row(row) for row in rows
            if work_item_id in (row.dependencies or [])
        ]

    def persist_work_item_assignment(self, item: WorkItem) -> WorkItem:
        """Write back status, assignee and assignment metadata."""
        row = self.db.query(WorkItemRecord).filter(
            WorkItemRecord.work_item_id == item.work_item_id
        ).first()
        if row is None:
            raise LookupError(f"Work item not found: {item.work_item_id}")

        row.status = item.status.value
        row.assignee_id = item.assignee_id
        row.backup_assignee_id = item.backup_assignee_id
        row.priority = item.priority.value
        row.assignment_method = item.assignment_method.value if item.assignment_method else None
        row.assigned_at = item.assigned_at
        row.escalation_reason = item.escalation_reason
        row.updated_at = datetime.now(timezone.utc)

        self.db.commit()
        self.db.refresh(row)
        return _item_from_row(row)

    def claim_work_item_assignment(self, item: WorkItem) -> bool:
        """
        Write an assignment only if nobody owns the item yet.

        Returns False when another caller assigned (or completed) it first;
        the row is left untouched in that case.
        """
        updated = self.db.query(WorkItemRecord).filter(
            WorkItemRecord.work_item_id == item.work_item_id,
            WorkItemRecord.assignee_id.is_(None),
            WorkItemRecord.status != WorkItemStatus.COMPLETED.value,
        ).update(
            {
                WorkItemRecord.status: item.status.value,
                WorkItemRecord.assignee_id: item.assignee_id,
                WorkItemRecord.backup_assignee_id: item.backup_assignee_id,
                WorkItemRecord.assignment_method: (
                    item.assignment_method.value if item.assignment_method else None
                ),
                WorkItemRecord.assigned_at: item.assigned_at,
                WorkItemRecord.updated_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
        self.db.commit()
        return updated == 1

    def transition_status(
        self,
        work_item_id: str,
        to_status: WorkItemStatus,
        from_statuses: Iterable[WorkItemStatus],
    ) -> bool:
        """
        Move an item to to_status in one conditional update.

        Returns False if the item is not currently in one of from_statuses
        (or does not exist), so only one caller ever wins a transition.
        """
        updated = self.db.query(WorkItemRecord).filter(
            WorkItemRecord.work_item_id == work_item_id,
            WorkItemRecord.status.in_([s.value for s in from_statuses]),
        ).update(
            {
                WorkItemRecord.status: to_status.value,
                WorkItemRecord.updated_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
        self.db.commit()
        return updated == 1

    def mark_completed(self, work_item_id: str) -> bool:
        """Returns False if the item was already completed or does not exist."""
        return self.transition_status(
            work_item_id,
            WorkItemStatus.COMPLETED,
            [s for s in WorkItemStatus if s != WorkItemStatus.COMPLETED],
        )

    # =============================================================================
    # Audit trail
    # =============================================================================

    def log_event(self, event_type: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """Record an audit event. Best-effort: failures are logged, not raised."""
        context = context or {}
        try:
            self.db.add(AssignmentEvent(
                event_type=event_type,
                work_item_id=context.get("work_item_id"),
                team_member_id=context.get("team_member_id"),
                context=context,
            ))
            self.db.commit()
            return True
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Failed to log {event_type} event: {e}", exc_info=True)
            return False

    def get_events(
        self,
        work_item_id: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 100,
    ) -> List[AssignmentEvent]:
        """Audit events, oldest first."""
        query = self.db.query(AssignmentEvent)
        if work_item_id:
            query = query.filter(AssignmentEvent.work_item_id == work_item_id)
        if event_type:
            query = query.filter(AssignmentEvent.event_type == event_type)
        return query.order_by(AssignmentEvent.id.asc()).limit(limit).all()
