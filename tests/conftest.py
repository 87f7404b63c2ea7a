"""
Pytest configuration and shared fixtures
"""
import sys
import pytest
from pathlib import Path
from sqlalchemy.orm import sessionmaker

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from deliverease.assignment.cascade import CascadeTrigger
from deliverease.assignment.models import TeamMember, WorkItem, WorkItemStatus
from deliverease.assignment.rebalance import RebalanceOrchestrator
from deliverease.assignment.service import AssignmentService
from deliverease.db.database import make_engine, init_db
from deliverease.db.repository import AssignmentRepository


class RecordingNotifier:
    """Notifier stand-in that remembers who was told about what."""

    def __init__(self):
        self.calls = []

    async def __call__(self, item, member):
        self.calls.append((item.work_item_id, member.team_member_id))
        return True


@pytest.fixture
def engine():
    """Fresh in-memory database per test"""
    engine = make_engine("sqlite://", echo=False)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def repository(db):
    return AssignmentRepository(db)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(repository, notifier):
    return AssignmentService(repository, notifier=notifier)


@pytest.fixture
def cascade(repository, service):
    return CascadeTrigger(repository, service)


@pytest.fixture
def orchestrator(repository, service):
    return RebalanceOrchestrator(repository, service)


@pytest.fixture
def make_member():
    """Factory for TeamMember snapshots"""
    def _make(member_id, committed=0.0, maximum=40.0, skills=None, quality=None, **kwargs):
        return TeamMember(
            team_member_id=member_id,
            name=kwargs.pop("name", member_id.title()),
            skill_specializations=skills or [],
            current_weekly_hours=committed,
            max_weekly_hours=maximum,
            quality_score_average=quality,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_item():
    """Factory for WorkItem snapshots"""
    def _make(item_id, hours=4.0, skills=None, status=WorkItemStatus.UNASSIGNED, **kwargs):
        return WorkItem(
            work_item_id=item_id,
            title=kwargs.pop("title", f"Work item {item_id}"),
            required_skills=skills or [],
            estimated_hours=hours,
            status=status,
            **kwargs,
        )
    return _make


@pytest.fixture
def add_member(repository, make_member):
    """Persist a member and return the stored snapshot"""
    def _add(member_id, **kwargs):
        return repository.add_member(make_member(member_id, **kwargs))
    return _add


@pytest.fixture
def add_item(repository, make_item):
    """Persist a work item and return the stored snapshot"""
    def _add(item_id, **kwargs):
        return repository.add_work_item(make_item(item_id, **kwargs))
    return _add
