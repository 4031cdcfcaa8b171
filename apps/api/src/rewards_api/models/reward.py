"""Reward catalogue entries and their finite inventory."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Enum as SqlEnum, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from rewards_api.db.base import Base, utcnow


UNLIMITED_QUANTITY = -1


class RewardType(str, Enum):
    POINTS = "POINTS"
    ITEM = "ITEM"
    COUPON = "COUPON"
    CURRENCY = "CURRENCY"
    SUBSCRIPTION = "SUBSCRIPTION"
    BADGE = "BADGE"
    TITLE = "TITLE"


class Reward(Base):
    """A grantable reward attached to an event.

    ``quantity`` of -1 means unlimited; otherwise it is the remaining stock and
    only ever moves through the conditional decrement in the inventory service.
    """

    __tablename__ = "rewards"
    __table_args__ = (
        CheckConstraint("quantity >= -1", name="ck_rewards_quantity_floor"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    reward_type = Column(
        SqlEnum(RewardType, name="reward_type", values_callable=lambda enum: [member.value for member in enum]),
        nullable=False,
    )
    value = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=UNLIMITED_QUANTITY)
    event_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    @property
    def is_unlimited(self) -> bool:
        return self.quantity == UNLIMITED_QUANTITY


__all__ = ["Reward", "RewardType", "UNLIMITED_QUANTITY"]
