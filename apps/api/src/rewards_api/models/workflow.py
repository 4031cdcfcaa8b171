"""Durable state for asynchronously dispatched workflow runs."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base, utcnow


class WorkflowRunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class WorkflowRun(Base):
    """One delivery of a triggering event to one registered workflow function."""

    __tablename__ = "workflow_runs"
    __table_args__ = (
        Index("ix_workflow_runs_status_next_attempt", "status", "next_attempt_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    run_key = Column(String(255), nullable=False, unique=True)
    function_id = Column(String(128), nullable=False)
    trigger_name = Column(String(128), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(
        SqlEnum(
            WorkflowRunStatus,
            name="workflow_run_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=WorkflowRunStatus.QUEUED,
    )
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    max_attempts = Column(Integer, nullable=False, default=1, server_default="1")
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    result_payload = Column(JSON, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    steps = relationship("WorkflowStepResult", back_populates="run", cascade="all, delete-orphan")


class WorkflowStepResult(Base):
    """Memoized output of a named step; its presence means the step is done."""

    __tablename__ = "workflow_step_results"
    __table_args__ = (
        UniqueConstraint("run_id", "step_name", name="uq_workflow_step_results_run_step"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    run_id = Column(UUID(as_uuid=True), ForeignKey("workflow_runs.id", ondelete="CASCADE"), nullable=False)
    step_name = Column(String(128), nullable=False)
    output = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    run = relationship("WorkflowRun", back_populates="steps")


__all__ = ["WorkflowRun", "WorkflowRunStatus", "WorkflowStepResult"]
