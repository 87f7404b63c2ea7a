"""
Workload rebalancing.

Moves pending, non-critical work from overloaded members (> 90%
utilization) to members with room (< 70%). Each pass looks at no more
than two items per overloaded member.

This is a greedy, single-pass heuristic, not an optimal packing. Running
it repeatedly evens workload out gradually.
"""

import logging
from typing import Optional, List
from deliverease.assignment import selector
from deliverease.assignment.errors import CapacityConflict, MissingCandidate
from deliverease.assignment.models import (
    TeamMember, Priority, AssignmentMethod, Move, PENDING_STATUSES,
)
from deliverease.assignment.service import AssignmentService
from deliverease.config import settings
from deliverease.db.repository import AssignmentRepository

logger = logging.getLogger(__name__)


class RebalanceOrchestrator:
    """Redistributes pending work away from overloaded members."""

    def __init__(self, repository: AssignmentRepository, service: AssignmentService):
        self.repository = repository
        self.service = service

    def _partition(self, candidates: List[TeamMember]):
        overloaded = [
            m for m in candidates
            if m.utilization_percentage > settings.rebalance_overload_threshold
        ]
        overloaded.sort(key=lambda m: m.utilization_percentage, reverse=True)
        available = [
            m for m in candidates
            if m.utilization_percentage < settings.rebalance_available_threshold
        ]
        return overloaded, available

    def _refresh_pool(self, pool: List[TeamMember]) -> List[TeamMember]:
        """Re-read pool members; drop anyone no longer under the available threshold."""
        fresh = self.repository.get_members([m.team_member_id for m in pool])
        return [
            m for m in fresh
            if m.utilization_percentage < settings.rebalance_available_threshold
        ]

    async def rebalance(self, candidates: Optional[List[TeamMember]] = None) -> List[Move]:
        """
        Run one rebalance pass.

        Args:
            candidates: Members to consider; defaults to the whole team

        Returns:
            The moves made in this pass
        """
        if candidates is None:
            candidates = self.repository.fetch_available_candidates(only_available=False)

        overloaded, pool = self._partition(candidates)
        logger.info(f"Rebalance: {len(overloaded)} overloaded, {len(pool)} available")

        moves: List[Move] = []
        if not overloaded or not pool:
            return moves

        for member in overloaded:
            items = self.repository.fetch_pending_work_items(
                assignee_id=member.team_member_id,
                statuses=PENDING_STATUSES,
                exclude_priority=Priority.CRITICAL,
            )

            for item in items[:settings.rebalance_max_moves_per_member]:
                if not pool:
                    break

                best = selector.select(item, pool)
                if best is None:
                    continue

                target = best.member.team_member_id
                try:
                    await self.service.reassign(item, target, AssignmentMethod.REBALANCED)
                except (CapacityConflict, MissingCandidate) as e:
                    logger.info(f"Skipping move of {item.work_item_id} to {target}: {e}")
                    pool = self._refresh_pool(pool)
                    continue

                moves.append(Move(
                    work_item_id=item.work_item_id,
                    from_member=member.team_member_id,
                    to_member=target,
                ))
                logger.info(f"Rebalanced {item.work_item_id}: {member.team_member_id} -> {target}")
                pool = self._refresh_pool(pool)

        self.repository.log_event("workload_rebalanced", {
            "moves": [move.model_dump(by_alias=True) for move in moves],
        })
        logger.info(f"Rebalanced {len(moves)} items")
        return moves
