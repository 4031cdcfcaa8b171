"""Append-only user activity log consumed by condition evaluation."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, JSON, String
from sqlalchemy.dialects.postgresql import UUID

from rewards_api.db.base import Base, utcnow


class EventLogEntry(Base):
    """One observed user activity. Rows are never updated or deleted."""

    __tablename__ = "event_logs"
    __table_args__ = (
        Index("ix_event_logs_user_type", "user_id", "event_type"),
        Index("ix_event_logs_timestamp", "timestamp"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(String(64), nullable=False)
    # Plain string, not limited to EventType members.
    event_type = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)


__all__ = ["EventLogEntry"]
