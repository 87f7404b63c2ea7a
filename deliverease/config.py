"""
Runtime configuration for the assignment engine.

Values come from the environment (optionally a project-level .env file).
"""

import os
from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from dotenv import load_dotenv

project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")


class AssignmentSettings(BaseModel):
    """Tunable thresholds and connection settings."""
    database_url: str = f"sqlite:///{project_root / 'deliverease.db'}"
    db_echo: bool = False

    # Minimum acceptance scores. Tasks and reviews were tuned separately
    # and are kept apart until product confirms a single value.
    task_min_score: float = 0.5
    review_min_score: float = 0.6

    reviewer_max_utilization: float = 85.0

    rebalance_overload_threshold: float = 90.0
    rebalance_available_threshold: float = 70.0
    rebalance_max_moves_per_member: int = 2
    rebalance_interval_minutes: int = 0  # 0 disables the scheduler

    capacity_commit_retries: int = 3

    slack_bot_token: Optional[str] = None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def load_settings() -> AssignmentSettings:
    """Build settings from environment variables, falling back to defaults."""
    defaults = AssignmentSettings()
    return AssignmentSettings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        db_echo=os.getenv("DB_ECHO", "false").lower() == "true",
        task_min_score=_env_float("TASK_MIN_SCORE", defaults.task_min_score),
        review_min_score=_env_float("REVIEW_MIN_SCORE", defaults.review_min_score),
        reviewer_max_utilization=_env_float(
            "REVIEWER_MAX_UTILIZATION", defaults.reviewer_max_utilization
        ),
        rebalance_overload_threshold=_env_float(
            "REBALANCE_OVERLOAD_THRESHOLD", defaults.rebalance_overload_threshold
        ),
        rebalance_available_threshold=_env_float(
            "REBALANCE_AVAILABLE_THRESHOLD", defaults.rebalance_available_threshold
        ),
        rebalance_max_moves_per_member=_env_int(
            "REBALANCE_MAX_MOVES_PER_MEMBER", defaults.rebalance_max_moves_per_member
        ),
        rebalance_interval_minutes=_env_int(
            "REBALANCE_INTERVAL_MINUTES", defaults.rebalance_interval_minutes
        ),
        capacity_commit_retries=_env_int(
            "CAPACITY_COMMIT_RETRIES", defaults.capacity_commit_retries
        ),
        slack_bot_token=os.getenv("SLACK_BOT_TOKEN"),
    )


settings = load_settings()
