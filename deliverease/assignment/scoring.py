"""
Scoring for assignment decisions.

Calculates how well a team member fits a work item, from 0 to 1:
- Skill match (40%)
- Capacity fit (30%)
- Performance history (20%)
- Workload balance (10%)

Quality reviews use the same base score plus a specialization bonus.
"""

from typing import Dict, Any
from deliverease.assignment.models import TeamMember, WorkItem

SKILL_WEIGHT = 0.4
CAPACITY_WEIGHT = 0.3
PERFORMANCE_WEIGHT = 0.2
WORKLOAD_WEIGHT = 0.1

NEUTRAL_SKILL_SCORE = 0.8  # Item has no skill requirements
NO_SKILLS_SCORE = 0.3  # Member has no recorded skills
DEFAULT_PERFORMANCE = 0.7  # No quality history

# Reviewer variant
REVIEW_SKILLS = ("quality_assurance", "review")
QUALITY_SPECIALIZATION_WEIGHT = 0.5
TYPE_EXPERTISE_WEIGHT = 0.3
REVIEW_BONUS_WEIGHT = 0.5


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def skill_match_score(item: WorkItem, member: TeamMember) -> float:
    if not item.required_skills:
        return NEUTRAL_SKILL_SCORE
    if not member.skill_specializations:
        return NO_SKILLS_SCORE

    skills = set(member.skill_specializations)
    matched = sum(1 for skill in item.required_skills if skill in skills)
    return matched / len(item.required_skills)


def capacity_fit_score(item: WorkItem, member: TeamMember) -> float:
    """0 when the item does not fit; otherwise higher for lower post-assignment utilization."""
    if not member.can_take(item.estimated_hours):
        return 0.0
    utilization_after = (member.current_weekly_hours + item.estimated_hours) / member.max_weekly_hours
    return _clamp(1 - utilization_after)


def performance_score(member: TeamMember) -> float:
    # A zero average is treated as "no history", same as None
    if not member.quality_score_average:
        return DEFAULT_PERFORMANCE
    return _clamp(member.quality_score_average / 10)


def workload_balance_score(member: TeamMember) -> float:
    return _clamp(1 - member.utilization_percentage / 100)


def specialization_bonus(item: WorkItem, member: TeamMember) -> float:
    """Reviewer bonus in [0, 1]: quality/review skills and deliverable-type expertise."""
    skills = set(member.skill_specializations)
    bonus = 0.0
    if any(skill in skills for skill in REVIEW_SKILLS):
        bonus += QUALITY_SPECIALIZATION_WEIGHT
    if item.deliverable_type and item.deliverable_type in skills:
        bonus += TYPE_EXPERTISE_WEIGHT
    return bonus / (QUALITY_SPECIALIZATION_WEIGHT + TYPE_EXPERTISE_WEIGHT)


def score_factors(item: WorkItem, member: TeamMember) -> Dict[str, float]:
    """Individual factor scores, each in [0, 1]."""
    factors = {
        "skill_match": skill_match_score(item, member),
        "capacity_fit": capacity_fit_score(item, member),
        "performance": performance_score(member),
        "workload_balance": workload_balance_score(member),
    }
    if item.is_review:
        factors["specialization_bonus"] = specialization_bonus(item, member)
    return factors


def _combine(factors: Dict[str, float], is_review: bool) -> float:
    base = (
        factors["skill_match"] * SKILL_WEIGHT +
        factors["capacity_fit"] * CAPACITY_WEIGHT +
        factors["performance"] * PERFORMANCE_WEIGHT +
        factors["workload_balance"] * WORKLOAD_WEIGHT
    )
    if not is_review:
        return _clamp(base)
    bonus = factors["specialization_bonus"] * REVIEW_BONUS_WEIGHT
    return _clamp((base + bonus) / (1 + REVIEW_BONUS_WEIGHT))


def score(item: WorkItem, member: TeamMember) -> float:
    """Base fitness score of a member for a work item (task formula)."""
    return _combine(score_factors(item, member), is_review=False)


def review_score(item: WorkItem, member: TeamMember) -> float:
    """Reviewer variant: base score plus weighted specialization bonus, renormalized."""
    factors = score_factors(item, member)
    factors.setdefault("specialization_bonus", specialization_bonus(item, member))
    return _combine(factors, is_review=True)


def score_breakdown(item: WorkItem, member: TeamMember) -> Dict[str, Any]:
    """
    Score a member for an item and explain it.

    Uses the reviewer variant for review items.
    """
    factors = score_factors(item, member)
    total = _combine(factors, is_review=item.is_review)

    reasoning_parts = []
    if factors["skill_match"] >= 0.8 and item.required_skills:
        reasoning_parts.append(f"Strong skill match ({factors['skill_match']:.2f})")
    if factors["capacity_fit"] == 0:
        reasoning_parts.append("No capacity")
    elif factors["capacity_fit"] >= 0.5:
        reasoning_parts.append(f"Plenty of capacity ({factors['capacity_fit']:.2f})")
    if factors["performance"] >= 0.8:
        reasoning_parts.append(f"High quality history ({factors['performance']:.2f})")
    if factors.get("specialization_bonus"):
        reasoning_parts.append("Review specialization")

    reasoning = ". ".join(reasoning_parts) if reasoning_parts else "General fit"

    return {
        "total_score": total,
        "factors": factors,
        "reasoning": reasoning,
    }
