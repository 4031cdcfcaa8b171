"""Reward event definitions."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Enum as SqlEnum, Index, JSON, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from rewards_api.db.base import Base, utcnow


class EventType(str, Enum):
    """Kinds of user activity an event can be gated on."""

    DAILY_LOGIN = "DAILY_LOGIN"
    INVITE_FRIENDS = "INVITE_FRIENDS"
    QUEST_COMPLETE = "QUEST_COMPLETE"
    LEVEL_UP = "LEVEL_UP"
    PROFILE_COMPLETE = "PROFILE_COMPLETE"
    PURCHASE = "PURCHASE"
    ACHIEVEMENT = "ACHIEVEMENT"
    SOCIAL_SHARE = "SOCIAL_SHARE"
    CONTENT_CREATE = "CONTENT_CREATE"
    SPECIAL_EVENT = "SPECIAL_EVENT"


class EventStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ApprovalMode(str, Enum):
    """Whether eligible requests settle immediately or wait for an operator."""

    AUTO = "AUTO"
    MANUAL = "MANUAL"


class EventDefinition(Base):
    """Time-boxed campaign whose rewards users can request."""

    __tablename__ = "reward_events"
    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_reward_events_date_range"),
        Index("ix_reward_events_status_window", "status", "start_date", "end_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    event_type = Column(
        SqlEnum(EventType, name="reward_event_type", values_callable=lambda enum: [member.value for member in enum]),
        nullable=False,
        index=True,
    )
    condition = Column(JSON, nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        SqlEnum(EventStatus, name="reward_event_status", values_callable=lambda enum: [member.value for member in enum]),
        nullable=False,
        default=EventStatus.ACTIVE,
    )
    approval_mode = Column(
        SqlEnum(ApprovalMode, name="reward_approval_mode", values_callable=lambda enum: [member.value for member in enum]),
        nullable=False,
        default=ApprovalMode.AUTO,
    )
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )


__all__ = ["ApprovalMode", "EventDefinition", "EventStatus", "EventType"]
