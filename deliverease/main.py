"""
DeliverEase API.

Thin HTTP surface over the assignment engine.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional, List
from fastapi import FastAPI, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from deliverease import __version__
from deliverease.assignment.cascade import CascadeTrigger
from deliverease.assignment.errors import (
    AssignmentError, CapacityConflict, MissingCandidate, WorkItemNotFound
)
from deliverease.assignment.models import WorkItemCategory
from deliverease.assignment.notifier import notify_assignment
from deliverease.assignment.rebalance import RebalanceOrchestrator
from deliverease.assignment.service import AssignmentService
from deliverease.db.database import get_db, init_db
from deliverease.db.repository import AssignmentRepository


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    init_db()
    try:
        from deliverease.assignment.scheduler import start_scheduler
        start_scheduler()
    except Exception as e:
        logger.warning(f"Could not start rebalance scheduler: {e}")

    yield

    try:
        from deliverease.assignment.scheduler import stop_scheduler
        stop_scheduler()
    except Exception as e:
        logger.warning(f"Error stopping rebalance scheduler: {e}")


app = FastAPI(
    title="DeliverEase",
    description="Task and quality-review assignment engine",
    version=__version__,
    lifespan=lifespan,
)


class AutoAssignRequest(BaseModel):
    category: Optional[WorkItemCategory] = None


class BulkAssignRequest(BaseModel):
    work_item_ids: List[str]
    team_member_id: str


class EscalateRequest(BaseModel):
    reason: str
    escalate_to: Optional[str] = None


def get_notifier():
    return notify_assignment


def get_repository(db: Session = Depends(get_db)) -> AssignmentRepository:
    return AssignmentRepository(db)


def get_service(
    repository: AssignmentRepository = Depends(get_repository),
    notifier=Depends(get_notifier),
) -> AssignmentService:
    return AssignmentService(repository, notifier=notifier)


def _http_error(e: AssignmentError) -> HTTPException:
    if isinstance(e, (WorkItemNotFound, MissingCandidate)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, CapacityConflict):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "deliverease"}


@app.get("/team/capacity")
async def team_capacity(repository: AssignmentRepository = Depends(get_repository)):
    """Current workload per team member."""
    members = repository.fetch_available_candidates(only_available=False)
    return {
        "team": [
            {
                **member.model_dump(),
                "utilization_percentage": round(member.utilization_percentage, 1),
                "availability_status": member.availability_status.value,
            }
            for member in members
        ]
    }


@app.post("/work-items/auto-assign")
async def auto_assign_all(
    request: AutoAssignRequest,
    service: AssignmentService = Depends(get_service),
):
    """Auto-assign every unassigned work item."""
    decisions = await service.auto_assign_unassigned(category=request.category)
    return {
        "assignments": [
            {"work_item_id": d.work_item_id, "assigned_to": d.assignee_id}
            for d in decisions
        ],
        "message": f"{len(decisions)} work items auto-assigned",
    }


@app.post("/work-items/bulk-assign")
async def bulk_assign(
    request: BulkAssignRequest,
    service: AssignmentService = Depends(get_service),
):
    """Manually assign several work items to one team member."""
    try:
        result = await service.bulk_assign(request.work_item_ids, request.team_member_id)
    except AssignmentError as e:
        raise _http_error(e)
    return {
        **result.model_dump(),
        "message": f"{len(result.assigned)} work items assigned",
    }


@app.post("/work-items/{work_item_id}/auto-assign")
async def auto_assign(work_item_id: str, service: AssignmentService = Depends(get_service)):
    """Auto-assign a single work item."""
    try:
        decision = await service.auto_assign(work_item_id)
    except AssignmentError as e:
        raise _http_error(e)
    return decision.model_dump()


@app.post("/work-items/{work_item_id}/complete")
async def complete(work_item_id: str, service: AssignmentService = Depends(get_service)):
    """Mark a work item completed and cascade to its dependents."""
    trigger = CascadeTrigger(service.repository, service)
    try:
        result = await trigger.on_completed(work_item_id)
    except AssignmentError as e:
        raise _http_error(e)
    return result.model_dump()


@app.post("/work-items/{work_item_id}/escalate")
async def escalate(
    work_item_id: str,
    request: EscalateRequest,
    service: AssignmentService = Depends(get_service),
):
    """Escalate a work item to critical priority."""
    try:
        item = await service.escalate(work_item_id, request.reason, request.escalate_to)
    except AssignmentError as e:
        raise _http_error(e)
    return {"work_item": item.model_dump(), "message": "Work item escalated"}


@app.post("/rebalance")
async def rebalance(service: AssignmentService = Depends(get_service)):
    """Run one workload rebalance pass."""
    orchestrator = RebalanceOrchestrator(service.repository, service)
    moves = await orchestrator.rebalance()
    return {
        "rebalanced_tasks": [move.model_dump(by_alias=True) for move in moves],
        "message": f"Rebalanced {len(moves)} tasks",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
