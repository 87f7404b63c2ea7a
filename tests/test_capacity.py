"""
Tests for capacity bookkeeping
"""
import pytest
from deliverease.assignment.capacity import CapacityMutator, MemberLocks
from deliverease.assignment.errors import CapacityConflict
from deliverease.db.models import TeamCapacity
from deliverease.db.repository import AssignmentRepository


class ConcurrentWriterRepository(AssignmentRepository):
    """Simulates another process bumping the row right before our first write."""

    def __init__(self, db, bump_hours):
        super().__init__(db)
        self.bump_hours = bump_hours
        self.persist_calls = 0

    def persist_capacity_update(self, member, expected_version):
        self.persist_calls += 1
        if self.persist_calls == 1:
            self.db.query(TeamCapacity).filter(
                TeamCapacity.team_member_id == member.team_member_id
            ).update(
                {
                    TeamCapacity.current_weekly_hours: TeamCapacity.current_weekly_hours + self.bump_hours,
                    TeamCapacity.version: TeamCapacity.version + 1,
                },
                synchronize_session=False,
            )
            self.db.commit()
        return super().persist_capacity_update(member, expected_version)


class AlwaysStaleRepository(AssignmentRepository):
    def __init__(self, db):
        super().__init__(db)
        self.persist_calls = 0

    def persist_capacity_update(self, member, expected_version):
        self.persist_calls += 1
        return False


@pytest.mark.integration
class TestCommit:
    """Tests for committing and releasing hours"""

    def test_commit_adds_hours_and_bumps_version(self, repository, add_member):
        add_member("m1", committed=10)
        mutator = CapacityMutator(repository)

        updated = mutator.commit("m1", 4)

        assert updated.current_weekly_hours == 14
        stored = repository.get_member("m1")
        assert stored.current_weekly_hours == 14
        assert stored.version == 1

    def test_cached_columns_refreshed(self, repository, db, add_member):
        add_member("m1", committed=30)
        CapacityMutator(repository).commit("m1", 6)

        db.expire_all()
        row = db.query(TeamCapacity).filter(TeamCapacity.team_member_id == "m1").one()
        assert row.utilization_percentage == 90.0
        assert row.availability_status == "busy"

    def test_release_clamps_at_zero(self, repository, add_member):
        add_member("m1", committed=6)
        updated = CapacityMutator(repository).release("m1", 10)
        assert updated.current_weekly_hours == 0.0

    def test_commit_over_maximum_raises(self, repository, add_member):
        add_member("m1", committed=38)

        with pytest.raises(CapacityConflict) as exc_info:
            CapacityMutator(repository).commit("m1", 4)

        assert exc_info.value.member_id == "m1"
        assert repository.get_member("m1").current_weekly_hours == 38

    def test_commit_up_to_maximum_allowed(self, repository, add_member):
        add_member("m1", committed=36)
        assert CapacityMutator(repository).commit("m1", 4).current_weekly_hours == 40

    def test_missing_member_is_noop(self, repository):
        assert CapacityMutator(repository).commit("ghost", 4) is None

    def test_capacity_event_logged(self, repository, add_member):
        add_member("m1", committed=10)
        CapacityMutator(repository).commit("m1", 4)

        events = repository.get_events(event_type="capacity_updated")
        assert len(events) == 1
        assert events[0].team_member_id == "m1"
        assert events[0].context["hours_delta"] == 4


@pytest.mark.integration
class TestConcurrentWrites:
    """Tests for the compare-and-swap write path"""

    def test_lost_race_is_retried_against_fresh_record(self, db, add_member):
        add_member("m1", committed=10)
        repository = ConcurrentWriterRepository(db, bump_hours=10)

        updated = CapacityMutator(repository).commit("m1", 4)

        assert repository.persist_calls == 2
        assert updated.current_weekly_hours == 24
        assert repository.get_member("m1").version == 2

    def test_retry_revalidates_capacity(self, db, add_member):
        add_member("m1", committed=10)
        repository = ConcurrentWriterRepository(db, bump_hours=28)

        with pytest.raises(CapacityConflict):
            CapacityMutator(repository).commit("m1", 4)

        assert repository.get_member("m1").current_weekly_hours == 38

    def test_gives_up_after_retries(self, db, add_member):
        add_member("m1", committed=10)
        repository = AlwaysStaleRepository(db)

        with pytest.raises(CapacityConflict):
            CapacityMutator(repository, max_retries=2).commit("m1", 4)

        assert repository.persist_calls == 3

    def test_locks_are_per_member(self):
        locks = MemberLocks()
        assert locks.for_member("a") is locks.for_member("a")
        assert locks.for_member("a") is not locks.for_member("b")
