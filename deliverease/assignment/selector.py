"""
Assignee selection.

Ranks candidates for a work item and picks the best one above a minimum
score. Selection never mutates state; committing hours is a separate step
(see capacity.py) so selections can be dry-run.

Rules:
- Candidates without room for the item (committed + estimate > maximum)
  are excluded outright, whatever their other factors.
- Ties go to the candidate encountered first in the input order.
- Tasks need a score above 0.5, reviews above 0.6 (configurable).
"""

import logging
from typing import Optional, List, Iterable
from deliverease.assignment.models import TeamMember, WorkItem, ScoredCandidate
from deliverease.assignment.scoring import score_breakdown
from deliverease.config import settings

logger = logging.getLogger(__name__)


def threshold_for(item: WorkItem) -> float:
    """Minimum acceptance score for the item's category."""
    if item.is_review:
        return settings.review_min_score
    return settings.task_min_score


def eligible_candidates(item: WorkItem, candidates: Iterable[TeamMember]) -> List[TeamMember]:
    """Drop candidates that cannot fit the item's hours."""
    eligible = []
    for member in candidates:
        if member.can_take(item.estimated_hours):
            eligible.append(member)
        else:
            logger.debug(
                f"Excluding {member.team_member_id} for {item.work_item_id}: "
                f"{member.current_weekly_hours:.1f}h + {item.estimated_hours:.1f}h > "
                f"{member.max_weekly_hours:.1f}h"
            )
    return eligible


def rank(item: WorkItem, candidates: Iterable[TeamMember]) -> List[ScoredCandidate]:
    """
    Score every eligible candidate, best first.

    The sort is stable, so equal scores keep their input order.
    """
    scored = []
    for member in eligible_candidates(item, candidates):
        breakdown = score_breakdown(item, member)
        scored.append(ScoredCandidate(
            member=member,
            total_score=breakdown["total_score"],
            reasoning=breakdown["reasoning"],
            factors=breakdown["factors"],
        ))

    scored.sort(key=lambda x: x.total_score, reverse=True)
    return scored


def select(
    item: WorkItem,
    candidates: Iterable[TeamMember],
    min_score: Optional[float] = None,
) -> Optional[ScoredCandidate]:
    """
    Select the best candidate for a work item.

    Args:
        item: Work item to place
        candidates: Candidate pool, in a deterministic order
        min_score: Override for the category threshold

    Returns:
        The winning ScoredCandidate, or None if nobody clears the threshold
    """
    threshold = threshold_for(item) if min_score is None else min_score
    ranked = rank(item, candidates)

    if not ranked:
        logger.info(f"No candidate has capacity for {item.work_item_id}")
        return None

    best = ranked[0]
    if best.total_score <= threshold:
        logger.info(
            f"Best candidate for {item.work_item_id} is {best.member.team_member_id} "
            f"(score: {best.total_score:.3f}) but below threshold {threshold:.2f}"
        )
        return None

    logger.info(
        f"Selected {best.member.team_member_id} for {item.work_item_id} "
        f"(score: {best.total_score:.3f})"
    )
    return best


def select_backup(
    item: WorkItem,
    candidates: Iterable[TeamMember],
    primary_id: str,
    min_score: Optional[float] = None,
) -> Optional[ScoredCandidate]:
    """Second pick: same algorithm over the pool minus the primary."""
    pool = [m for m in candidates if m.team_member_id != primary_id]
    return select(item, pool, min_score=min_score)
