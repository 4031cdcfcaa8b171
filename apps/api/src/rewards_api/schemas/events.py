from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rewards_api.models.event import ApprovalMode, EventStatus, EventType

# meta: schema: reward-events


class EventCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    event_type: EventType = Field(..., alias="eventType")
    condition: dict[str, Any] | None = None
    start_date: datetime = Field(..., alias="startDate")
    end_date: datetime = Field(..., alias="endDate")
    status: EventStatus = EventStatus.ACTIVE
    approval_mode: ApprovalMode = Field(ApprovalMode.AUTO, alias="approvalMode")


class EventUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    condition: dict[str, Any] | None = None
    start_date: datetime | None = Field(None, alias="startDate")
    end_date: datetime | None = Field(None, alias="endDate")
    approval_mode: ApprovalMode | None = Field(None, alias="approvalMode")


class EventStatusUpdate(BaseModel):
    status: EventStatus


class EventResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    name: str
    description: str
    event_type: EventType = Field(..., alias="eventType")
    condition: dict[str, Any] | None = None
    start_date: datetime = Field(..., alias="startDate")
    end_date: datetime = Field(..., alias="endDate")
    status: EventStatus
    approval_mode: ApprovalMode = Field(..., alias="approvalMode")
    created_by: str | None = Field(None, alias="createdBy")
    created_at: datetime | None = Field(None, alias="createdAt")
    updated_at: datetime | None = Field(None, alias="updatedAt")


class EventActiveResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: UUID = Field(..., alias="eventId")
    active: bool
    event: EventResponse | None = None


class ConditionCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., min_length=1, alias="userId")
    event_id: UUID = Field(..., alias="eventId")


class ConditionCheckResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: UUID = Field(..., alias="eventId")
    user_id: str = Field(..., alias="userId")
    satisfied: bool
    supported: bool = True
    reason: str | None = None


class EventLogCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., min_length=1, alias="userId")
    event_type: str = Field(..., min_length=1, max_length=64, alias="eventType")
    data: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _normalise_event_type(self) -> "EventLogCreate":
        self.event_type = self.event_type.strip().upper()
        return self


class EventLogResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    user_id: str = Field(..., alias="userId")
    event_type: str = Field(..., alias="eventType")
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class UserEventTracked(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_name: str = Field(..., alias="eventName")
    run_ids: list[UUID] = Field(default_factory=list, alias="runIds")


__all__ = [
    "ConditionCheckRequest",
    "ConditionCheckResponse",
    "EventActiveResponse",
    "EventCreate",
    "EventLogCreate",
    "EventLogResponse",
    "EventResponse",
    "EventStatusUpdate",
    "EventUpdate",
    "UserEventTracked",
]
