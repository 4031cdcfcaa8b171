"""Reward request lifecycle and audit timeline models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Index, JSON, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base, utcnow


class RewardRequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {RewardRequestStatus.COMPLETED, RewardRequestStatus.REJECTED, RewardRequestStatus.FAILED}
)


class RewardRequestStateEventType(str, Enum):
    STATE_CHANGE = "STATE_CHANGE"
    NOTE = "NOTE"


class RewardRequestActorType(str, Enum):
    """Identity of whoever caused a timeline entry."""

    SYSTEM = "SYSTEM"
    USER = "USER"
    ADMIN = "ADMIN"
    WORKFLOW = "WORKFLOW"


class RewardRequest(Base):
    """A user's claim against an event's reward, keyed for idempotency."""

    __tablename__ = "reward_requests"
    __table_args__ = (
        Index("ix_reward_requests_user_event", "user_id", "event_id"),
        Index("ix_reward_requests_status", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(String(64), nullable=False)
    event_id = Column(UUID(as_uuid=True), nullable=False)
    reward_id = Column(UUID(as_uuid=True), nullable=True)
    status = Column(
        SqlEnum(
            RewardRequestStatus,
            name="reward_request_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=RewardRequestStatus.PENDING,
    )
    idempotency_key = Column(String(128), nullable=False, unique=True)
    message = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    processed_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    state_events = relationship(
        "RewardRequestStateEvent",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RewardRequestStateEvent.created_at",
    )


class RewardRequestStateEvent(Base):
    """Audit entry for every transition or annotation of a reward request."""

    __tablename__ = "reward_request_state_events"
    __table_args__ = (
        Index("ix_reward_request_state_events_request", "request_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    request_id = Column(
        UUID(as_uuid=True),
        ForeignKey("reward_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type = Column(
        SqlEnum(RewardRequestStateEventType, name="reward_request_state_event_type"),
        nullable=False,
    )
    actor_type = Column(
        SqlEnum(RewardRequestActorType, name="reward_request_actor_type"),
        nullable=False,
    )
    actor_id = Column(String(64), nullable=True)
    from_status = Column(String(32), nullable=True)
    to_status = Column(String(32), nullable=True)
    notes = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    request = relationship("RewardRequest", back_populates="state_events")


__all__ = [
    "RewardRequest",
    "RewardRequestActorType",
    "RewardRequestStateEvent",
    "RewardRequestStateEventType",
    "RewardRequestStatus",
]
