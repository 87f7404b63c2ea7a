"""
Tests for the assignment service
"""
import pytest
from deliverease.assignment import selector
from deliverease.assignment.capacity import CapacityMutator
from deliverease.assignment.errors import CapacityConflict, MissingCandidate, WorkItemNotFound
from deliverease.assignment.models import (
    WorkItemStatus, WorkItemCategory, AssignmentMethod, Priority,
)
from deliverease.assignment.service import AssignmentService
from deliverease.db.repository import AssignmentRepository


class ConflictingMutator(CapacityMutator):
    """Raises CapacityConflict for the first `conflicts` commits."""

    def __init__(self, repository, conflicts):
        super().__init__(repository)
        self.conflicts = conflicts
        self.commit_calls = 0

    def commit(self, team_member_id, hours_delta):
        if hours_delta > 0:
            self.commit_calls += 1
            if self.commit_calls <= self.conflicts:
                raise CapacityConflict(team_member_id, 0, hours_delta, 40)
        return super().commit(team_member_id, hours_delta)


class FailingPersistRepository(AssignmentRepository):
    def claim_work_item_assignment(self, item):
        raise RuntimeError("database unavailable")

    def persist_work_item_assignment(self, item):
        raise RuntimeError("database unavailable")


def _event_types(repository):
    return [e.event_type for e in repository.get_events()]


@pytest.mark.integration
class TestAutoAssign:
    """Tests for automatic task assignment"""

    async def test_assigns_best_candidate(self, service, repository, notifier, add_member, add_item):
        add_member("generalist", committed=5)
        add_member("designer", committed=10, skills=["design"])
        add_item("t1", hours=4, skills=["design"])

        decision = await service.auto_assign("t1")

        assert decision.assignee_id == "designer"
        assert decision.method == AssignmentMethod.AI_OPTIMIZED
        assert decision.score > 0.5
        item = repository.get_work_item("t1")
        assert item.assignee_id == "designer"
        assert item.status == WorkItemStatus.ASSIGNED
        assert item.assignment_method == AssignmentMethod.AI_OPTIMIZED
        assert item.assigned_at is not None
        assert repository.get_member("designer").current_weekly_hours == 14
        assert notifier.calls == [("t1", "designer")]
        assert "task_assigned" in _event_types(repository)

    async def test_no_eligible_candidate_leaves_item_unassigned(
        self, service, repository, notifier, add_member, add_item
    ):
        add_member("m1", committed=32, skills=["copywriting"])
        add_item("t1", hours=4, skills=["design", "qa"])

        decision = await service.auto_assign("t1")

        assert decision.assigned is False
        item = repository.get_work_item("t1")
        assert item.assignee_id is None
        assert item.status == WorkItemStatus.UNASSIGNED
        assert repository.get_member("m1").current_weekly_hours == 32
        assert notifier.calls == []
        assert "no_eligible_candidate" in _event_types(repository)

    async def test_busy_members_not_considered_for_tasks(self, service, add_member, add_item):
        add_member("busy", committed=36, skills=["design"])
        add_item("t1", hours=2, skills=["design"])

        decision = await service.auto_assign("t1")

        assert decision.assignee_id is None

    async def test_capacity_conflict_retried_once(self, repository, notifier, add_member, add_item, monkeypatch):
        add_member("m1", committed=10)
        add_item("t1", hours=4)
        mutator = ConflictingMutator(repository, conflicts=1)
        service = AssignmentService(repository, mutator=mutator, notifier=notifier)

        decision = await service.auto_assign("t1")

        assert decision.assignee_id == "m1"
        assert mutator.commit_calls == 2

    async def test_repeated_conflict_falls_back_to_unassigned(self, repository, notifier, add_member, add_item):
        add_member("m1", committed=10)
        add_item("t1", hours=4)
        mutator = ConflictingMutator(repository, conflicts=5)
        service = AssignmentService(repository, mutator=mutator, notifier=notifier)

        decision = await service.auto_assign("t1")

        assert decision.assigned is False
        assert decision.reason == "Capacity conflict"
        assert mutator.commit_calls == 2
        assert repository.get_work_item("t1").assignee_id is None
        assert repository.get_member("m1").current_weekly_hours == 10

    async def test_notification_failure_keeps_assignment(self, repository, add_member, add_item):
        async def broken_notifier(item, member):
            raise RuntimeError("slack down")

        add_member("m1", committed=10)
        add_item("t1", hours=4)
        service = AssignmentService(repository, notifier=broken_notifier)

        decision = await service.auto_assign("t1")

        assert decision.assignee_id == "m1"
        assert repository.get_work_item("t1").assignee_id == "m1"

    async def test_persistence_failure_releases_hours(self, db, notifier, add_member, add_item):
        add_member("m1", committed=10)
        add_item("t1", hours=4)
        service = AssignmentService(FailingPersistRepository(db), notifier=notifier)

        with pytest.raises(RuntimeError):
            await service.auto_assign("t1")

        assert service.repository.get_member("m1").current_weekly_hours == 10

    async def test_stale_snapshot_assigned_only_once(self, service, repository, notifier, add_member, add_item):
        add_member("m1", committed=10)
        add_item("t1", hours=4)
        snapshot = repository.get_work_item("t1")

        first = await service.assign_item(snapshot)
        second = await service.assign_item(snapshot)

        assert first.assignee_id == "m1"
        assert second.assignee_id == "m1"
        assert second.reason == "Already assigned"
        assert repository.get_member("m1").current_weekly_hours == 14
        assert notifier.calls == [("t1", "m1")]

    async def test_lost_race_keeps_existing_assignee(self, service, repository, add_member, add_item):
        add_member("m1", committed=0)
        add_member("m2", committed=20)
        add_item("t1", hours=4)
        snapshot = repository.get_work_item("t1")
        await service.reassign(snapshot, "m2", AssignmentMethod.MANUAL_BULK)

        decision = await service.assign_item(snapshot)

        assert decision.assignee_id == "m2"
        assert repository.get_work_item("t1").assignee_id == "m2"
        assert repository.get_member("m1").current_weekly_hours == 0
        assert repository.get_member("m2").current_weekly_hours == 24

    async def test_unknown_item(self, service):
        with pytest.raises(WorkItemNotFound):
            await service.auto_assign("missing")

    async def test_waiting_item_not_assigned(self, service, add_member, add_item):
        add_member("m1")
        add_item("t1", status=WorkItemStatus.BLOCKED)

        decision = await service.auto_assign("t1")

        assert decision.assigned is False
        assert decision.reason == "Waiting on dependencies"

    async def test_already_assigned_item_untouched(self, service, repository, add_member, add_item):
        add_member("m1", committed=4)
        add_member("m2")
        add_item("t1", status=WorkItemStatus.ASSIGNED, assignee_id="m1")

        decision = await service.auto_assign("t1")

        assert decision.assignee_id == "m1"
        assert repository.get_member("m2").current_weekly_hours == 0

    async def test_selector_sees_fresh_capacity(self, service, repository, add_member, add_item, monkeypatch):
        add_member("m1", committed=10)
        add_item("t1", hours=4)
        seen = []
        original = selector.select

        def spy(item, candidates, min_score=None):
            seen.extend(c.current_weekly_hours for c in candidates)
            return original(item, candidates, min_score=min_score)

        monkeypatch.setattr(selector, "select", spy)
        await service.auto_assign("t1")

        assert seen == [10]


@pytest.mark.integration
class TestReviewerAssignment:
    """Tests for quality reviewer assignment"""

    async def test_primary_and_backup(self, service, repository, add_member, add_item):
        add_member("g", committed=0)
        add_member("qa", committed=10, skills=["quality_assurance"])
        add_member("expert", committed=20, skills=["review", "report"])
        add_item("r1", hours=2, category=WorkItemCategory.REVIEW, deliverable_type="report")

        decision = await service.auto_assign("r1")

        assert decision.assignee_id == "expert"
        assert decision.backup_assignee_id == "qa"
        item = repository.get_work_item("r1")
        assert item.backup_assignee_id == "qa"
        assert repository.get_member("expert").current_weekly_hours == 22
        assert repository.get_member("qa").current_weekly_hours == 10

    async def test_reviewers_over_85_percent_skipped(self, service, add_member, add_item):
        add_member("g", committed=0)
        add_member("busy_expert", committed=35, skills=["review", "report"])
        add_item("r1", hours=2, category=WorkItemCategory.REVIEW, deliverable_type="report")

        decision = await service.auto_assign("r1")

        assert decision.assigned is False


@pytest.mark.integration
class TestAutoAssignUnassigned:
    """Tests for assigning everything still open"""

    async def test_assigns_open_items_by_category(self, service, repository, add_member, add_item):
        add_member("m1", committed=0, maximum=40)
        add_item("t1", hours=4)
        add_item("t2", hours=4, priority=Priority.HIGH)
        add_item("t3", hours=4, status=WorkItemStatus.BLOCKED)
        add_item("r1", hours=2, category=WorkItemCategory.REVIEW)

        decisions = await service.auto_assign_unassigned(category=WorkItemCategory.TASK)

        assert [d.work_item_id for d in decisions] == ["t2", "t1"]
        assert repository.get_work_item("t3").assignee_id is None
        assert repository.get_work_item("r1").assignee_id is None
        assert repository.get_member("m1").current_weekly_hours == 8


@pytest.mark.integration
class TestBulkAssign:
    """Tests for manual bulk assignment"""

    async def test_assigns_what_fits_and_reports_the_rest(self, service, repository, add_member, add_item):
        add_member("x", committed=10)
        add_member("m", committed=0)
        add_item("i1", hours=10, status=WorkItemStatus.ASSIGNED, assignee_id="x")
        add_item("i2", hours=10)
        add_item("i3", hours=25)

        result = await service.bulk_assign(["i1", "i2", "i3", "nope"], "m")

        assert result.assigned == ["i1", "i2"]
        assert set(result.rejected) == {"i3", "nope"}
        assert repository.get_member("m").current_weekly_hours == 20
        assert repository.get_member("x").current_weekly_hours == 0
        assert repository.get_work_item("i2").assignment_method == AssignmentMethod.MANUAL_BULK
        assert repository.get_work_item("i2").status == WorkItemStatus.ASSIGNED
        assert repository.get_work_item("i3").assignee_id is None

    async def test_repeated_id_moves_hours_once(self, service, repository, add_member, add_item):
        add_member("old", committed=10)
        add_member("new", committed=0)
        add_item("x", hours=4, status=WorkItemStatus.ASSIGNED, assignee_id="old")

        result = await service.bulk_assign(["x", "x"], "new")

        assert result.assigned == ["x"]
        assert repository.get_member("new").current_weekly_hours == 4
        assert repository.get_member("old").current_weekly_hours == 6

    async def test_completed_items_rejected(self, service, add_member, add_item):
        add_member("m")
        add_item("i1", status=WorkItemStatus.COMPLETED)

        result = await service.bulk_assign(["i1"], "m")

        assert result.assigned == []
        assert "i1" in result.rejected

    async def test_unknown_member(self, service, add_item):
        add_item("i1")
        with pytest.raises(MissingCandidate):
            await service.bulk_assign(["i1"], "ghost")


@pytest.mark.integration
class TestEscalation:
    """Tests for escalation"""

    async def test_escalate_to_other_member(self, service, repository, notifier, add_member, add_item):
        add_member("a", committed=8)
        add_member("b", committed=0)
        add_item("t1", hours=8, status=WorkItemStatus.IN_PROGRESS, assignee_id="a")

        item = await service.escalate("t1", "Client deadline moved", escalate_to="b")

        assert item.priority == Priority.CRITICAL
        assert item.assignee_id == "b"
        assert item.status == WorkItemStatus.IN_PROGRESS
        assert item.assignment_method == AssignmentMethod.ESCALATED
        assert item.escalation_reason == "Client deadline moved"
        assert repository.get_member("a").current_weekly_hours == 0
        assert repository.get_member("b").current_weekly_hours == 8
        assert notifier.calls == [("t1", "b")]

    async def test_escalate_in_place(self, service, repository, add_member, add_item):
        add_member("a", committed=8)
        add_item("t1", hours=8, status=WorkItemStatus.ASSIGNED, assignee_id="a")

        item = await service.escalate("t1", "Blocked by client")

        assert item.priority == Priority.CRITICAL
        assert item.assignee_id == "a"
        assert repository.get_member("a").current_weekly_hours == 8

    async def test_escalate_to_full_member_raises(self, service, repository, add_member, add_item):
        add_member("a", committed=8)
        add_member("b", committed=38)
        add_item("t1", hours=8, status=WorkItemStatus.ASSIGNED, assignee_id="a")

        with pytest.raises(CapacityConflict):
            await service.escalate("t1", "Urgent", escalate_to="b")

        assert repository.get_work_item("t1").assignee_id == "a"
