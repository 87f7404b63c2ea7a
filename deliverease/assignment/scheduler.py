"""
Periodic workload rebalancing.

Optional: runs a rebalance pass every REBALANCE_INTERVAL_MINUTES while
the API is up. A value of 0 leaves it off.
"""

import asyncio
import logging
from typing import Optional, List
from deliverease.assignment.models import Move
from deliverease.config import settings

logger = logging.getLogger(__name__)

_scheduler_running = False
_scheduler_task: Optional[asyncio.Task] = None


async def run_rebalance_pass() -> List[Move]:
    """One rebalance pass with its own database session."""
    from deliverease.db.database import get_session
    from deliverease.db.repository import AssignmentRepository
    from deliverease.assignment.service import AssignmentService
    from deliverease.assignment.rebalance import RebalanceOrchestrator

    db = get_session()
    try:
        repository = AssignmentRepository(db)
        orchestrator = RebalanceOrchestrator(repository, AssignmentService(repository))
        return await orchestrator.rebalance()
    finally:
        db.close()


async def _scheduler_loop(interval_minutes: int):
    """Main scheduler loop."""
    logger.info(f"Rebalance scheduler started (every {interval_minutes} min)")

    while _scheduler_running:
        try:
            moves = await run_rebalance_pass()
            if moves:
                logger.info(f"Scheduled rebalance moved {len(moves)} items")

            await asyncio.sleep(interval_minutes * 60)

        except asyncio.CancelledError:
            logger.info("Rebalance scheduler cancelled")
            break
        except Exception as e:
            logger.error(f"Rebalance scheduler error: {e}", exc_info=True)
            await asyncio.sleep(60)  # Wait 1 minute on error

    logger.info("Rebalance scheduler stopped")


def start_scheduler(interval_minutes: Optional[int] = None) -> bool:
    """Start the background scheduler on the running event loop. Returns False if disabled."""
    global _scheduler_running, _scheduler_task

    interval = settings.rebalance_interval_minutes if interval_minutes is None else interval_minutes
    if interval <= 0:
        logger.info("Rebalance scheduler disabled")
        return False

    if _scheduler_running:
        logger.warning("Rebalance scheduler already running")
        return True

    _scheduler_running = True
    _scheduler_task = asyncio.get_running_loop().create_task(_scheduler_loop(interval))
    return True


def stop_scheduler():
    """Stop the background scheduler."""
    global _scheduler_running, _scheduler_task

    if not _scheduler_running:
        return

    _scheduler_running = False
    if _scheduler_task:
        _scheduler_task.cancel()
        _scheduler_task = None
    logger.info("Rebalance scheduler stopped")


def is_running() -> bool:
    return _scheduler_running
