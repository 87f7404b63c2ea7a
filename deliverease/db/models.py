"""
Database models for capacity, work items and the assignment audit trail.
"""

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Float, JSON
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class TeamCapacity(Base):
    """Per-member workload record. The only contended row in the system."""
    __tablename__ = "team_capacity"

    id = Column(Integer, primary_key=True)
    team_member_id = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    skill_specializations = Column(JSON, nullable=False, default=list)
    current_weekly_hours = Column(Float, nullable=False, default=0.0)
    max_weekly_hours = Column(Float, nullable=False, default=40.0)
    quality_score_average = Column(Float, nullable=True)
    slack_user_id = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    # Cached on every write; recomputed before any decision
    utilization_percentage = Column(Float, nullable=False, default=0.0, index=True)
    availability_status = Column(String(50), nullable=False, default="available", index=True)
    version = Column(Integer, nullable=False, default=0)
    last_capacity_update = Column(DateTime, default=func.now(), nullable=False)
    created_at = Column(DateTime, default=func.now(), nullable=False)


class WorkItemRecord(Base):
    """Tasks and quality checkpoints."""
    __tablename__ = "work_items"

    id = Column(Integer, primary_key=True)
    work_item_id = Column(String(255), unique=True, nullable=False, index=True)
    title = Column(String(500), nullable=False, default="")
    category = Column(String(50), nullable=False, default="task", index=True)  # 'task', 'review'
    required_skills = Column(JSON, nullable=False, default=list)
    estimated_hours = Column(Float, nullable=False, default=8.0)
    status = Column(String(50), nullable=False, default="unassigned", index=True)
    assignee_id = Column(String(255), nullable=True, index=True)
    backup_assignee_id = Column(String(255), nullable=True)
    dependencies = Column(JSON, nullable=False, default=list)  # work_item_ids
    priority = Column(String(50), nullable=False, default="medium", index=True)
    deliverable_type = Column(String(100), nullable=True)
    assignment_method = Column(String(50), nullable=True)
    assigned_at = Column(DateTime, nullable=True)
    escalation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)


class AssignmentEvent(Base):
    """Audit trail of assignment activity."""
    __tablename__ = "assignment_events"

    id = Column(Integer, primary_key=True)
    event_type = Column(String(100), nullable=False, index=True)  # 'task_assigned', 'capacity_updated', ...
    work_item_id = Column(String(255), nullable=True, index=True)
    team_member_id = Column(String(255), nullable=True, index=True)
    context = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False, index=True)
