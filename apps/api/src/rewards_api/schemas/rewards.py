from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from rewards_api.models.reward import RewardType
from rewards_api.models.reward_request import (
    RewardRequestActorType,
    RewardRequestStateEventType,
    RewardRequestStatus,
)

# meta: schema: rewards


class RewardCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    reward_type: RewardType = Field(..., alias="rewardType")
    value: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(-1, ge=-1)
    event_id: UUID = Field(..., alias="eventId")


class RewardUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    reward_type: RewardType | None = Field(None, alias="rewardType")
    value: str | None = Field(None, min_length=1, max_length=255)
    quantity: int | None = Field(None, ge=-1)


class RewardResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    name: str
    description: str
    reward_type: RewardType = Field(..., alias="rewardType")
    value: str
    quantity: int
    event_id: UUID = Field(..., alias="eventId")
    created_at: datetime | None = Field(None, alias="createdAt")
    updated_at: datetime | None = Field(None, alias="updatedAt")


class RewardRequestCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: UUID = Field(..., alias="eventId")
    reward_id: UUID | None = Field(None, alias="rewardId")
    idempotency_key: str | None = Field(None, max_length=128, alias="idempotencyKey")


class RewardClaimRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str | None = Field(
        None,
        max_length=128,
        alias="transactionId",
        validation_alias=AliasChoices("transactionId", "gameTransactionId", "transaction_id"),
    )
    message: str | None = Field(None, max_length=1000)


class AdminStatusUpdate(BaseModel):
    status: Literal["APPROVED", "REJECTED"]
    message: str | None = Field(None, max_length=1000)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class RequestNoteCreate(BaseModel):
    note: str = Field(..., min_length=1, max_length=2000)


class RewardRequestRecord(BaseModel):
    """Wire representation of a reward request; round-trips through JSON."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    user_id: str = Field(..., alias="userId")
    event_id: UUID = Field(..., alias="eventId")
    reward_id: UUID | None = Field(None, alias="rewardId")
    status: RewardRequestStatus
    idempotency_key: str = Field(..., alias="idempotencyKey")
    message: str | None = None
    processed_at: datetime | None = Field(None, alias="processedAt")
    processed_by: str | None = Field(None, alias="processedBy")
    created_at: datetime | None = Field(None, alias="createdAt")
    updated_at: datetime | None = Field(None, alias="updatedAt")


class RewardRequestTimelineEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    event_type: RewardRequestStateEventType = Field(..., alias="eventType")
    actor_type: RewardRequestActorType = Field(..., alias="actorType")
    actor_id: str | None = Field(None, alias="actorId")
    from_status: str | None = Field(None, alias="fromStatus")
    to_status: str | None = Field(None, alias="toStatus")
    notes: str | None = None
    metadata: dict = Field(
        default_factory=dict,
        alias="metadata",
        validation_alias=AliasChoices("metadata_json", "metadata"),
    )
    created_at: datetime = Field(..., alias="createdAt")


class RewardRequestStatistics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    by_status: dict[str, int] = Field(default_factory=dict, alias="byStatus")


__all__ = [
    "AdminStatusUpdate",
    "RejectRequest",
    "RequestNoteCreate",
    "RewardClaimRequest",
    "RewardCreate",
    "RewardRequestCreate",
    "RewardRequestRecord",
    "RewardRequestStatistics",
    "RewardRequestTimelineEntry",
    "RewardResponse",
    "RewardUpdate",
]
