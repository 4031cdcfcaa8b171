"""Event definitions, activity logging and condition checks."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.api.dependencies.rewards import get_request_processor, get_workflow_registry
from rewards_api.api.dependencies.identity import (
    Actor,
    Role,
    require_actor,
    require_auditor_or_operator,
    require_operator,
)
from rewards_api.api.errors import http_error
from rewards_api.core.settings import settings
from rewards_api.db.session import get_session
from rewards_api.models.event import EventStatus
from rewards_api.schemas.events import (
    ConditionCheckRequest,
    ConditionCheckResponse,
    EventActiveResponse,
    EventCreate,
    EventLogCreate,
    EventLogResponse,
    EventResponse,
    EventStatusUpdate,
    EventUpdate,
    UserEventTracked,
)
from rewards_api.schemas.rewards import RewardResponse
from rewards_api.services.dispatch import WorkflowRegistry
from rewards_api.services.dispatch.workflows import track_user_event, user_event_name
from rewards_api.services.errors import RewardServiceError
from rewards_api.services.events import EventLogService, EventService
from rewards_api.services.rewards import RewardRequestProcessor


router = APIRouter(prefix="/events", tags=["Events"])

_OPERATOR_ROLES = (Role.OPERATOR, Role.ADMIN)


class EventListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[EventResponse]
    total: int
    page: int
    limit: int


class EventLogListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[EventLogResponse]
    total: int
    page: int
    limit: int


class EventLogTrack(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_type: str = Field(..., min_length=1, max_length=64, alias="eventType")
    data: dict[str, Any] = Field(default_factory=dict)


@router.post(
    "",
    response_model=EventResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_event(
    payload: EventCreate,
    actor: Actor = Depends(require_operator),
    session: AsyncSession = Depends(get_session),
) -> EventResponse:
    try:
        event = await EventService(session).create_event(payload, created_by=actor.user_id)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return EventResponse.model_validate(event)


@router.get("", response_model=EventListResponse, response_model_by_alias=True)
async def list_events(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    status_filter: EventStatus | None = Query(None, alias="status"),
    _: Actor = Depends(require_actor),
    session: AsyncSession = Depends(get_session),
) -> EventListResponse:
    events, total = await EventService(session).list_events(page=page, limit=limit, status=status_filter)
    return EventListResponse(
        items=[EventResponse.model_validate(event) for event in events],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/active", response_model=list[EventResponse], response_model_by_alias=True)
async def list_active_events(
    _: Actor = Depends(require_actor),
    session: AsyncSession = Depends(get_session),
) -> list[EventResponse]:
    events = await EventService(session).list_active_events()
    return [EventResponse.model_validate(event) for event in events]


@router.post("/logs", response_model=EventLogResponse, response_model_by_alias=True, status_code=status.HTTP_201_CREATED)
async def append_event_log(
    payload: EventLogCreate,
    actor: Actor = Depends(require_actor),
    session: AsyncSession = Depends(get_session),
) -> EventLogResponse:
    """Synchronous append for the caller's own activity."""

    if payload.user_id != actor.user_id and not actor.has_any(*_OPERATOR_ROLES):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot log events for another user")
    try:
        entry = await EventLogService(session).create_log(payload.user_id, payload.event_type, payload.data)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return EventLogResponse.model_validate(entry)


@router.post(
    "/track",
    response_model=UserEventTracked,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def track_event(
    payload: EventLogTrack,
    actor: Actor = Depends(require_actor),
    session: AsyncSession = Depends(get_session),
    registry: WorkflowRegistry = Depends(get_workflow_registry),
) -> UserEventTracked:
    """Queue the user-event workflow; logging and progress happen in the background."""

    event_type = payload.event_type.strip().upper()
    try:
        runs = await track_user_event(
            session,
            registry,
            user_id=actor.user_id,
            event_type=event_type,
            data=payload.data,
        )
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return UserEventTracked(event_name=user_event_name(event_type), run_ids=[run.id for run in runs])


@router.get("/logs", response_model=EventLogListResponse, response_model_by_alias=True)
async def list_event_logs(
    user_id: str | None = Query(None, alias="userId"),
    event_type: str | None = Query(None, alias="eventType"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    _: Actor = Depends(require_auditor_or_operator),
    session: AsyncSession = Depends(get_session),
) -> EventLogListResponse:
    logs, total = await EventLogService(session).list_logs(
        user_id=user_id,
        event_type=event_type,
        page=page,
        limit=limit,
    )
    return EventLogListResponse(
        items=[EventLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/logs/me", response_model=EventLogListResponse, response_model_by_alias=True)
async def list_my_event_logs(
    event_type: str | None = Query(None, alias="eventType"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    actor: Actor = Depends(require_actor),
    session: AsyncSession = Depends(get_session),
) -> EventLogListResponse:
    logs, total = await EventLogService(session).list_logs(
        user_id=actor.user_id,
        event_type=event_type,
        page=page,
        limit=limit,
    )
    return EventLogListResponse(
        items=[EventLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("/check-condition", response_model=ConditionCheckResponse, response_model_by_alias=True)
async def check_condition(
    payload: ConditionCheckRequest,
    actor: Actor = Depends(require_actor),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> ConditionCheckResponse:
    if payload.user_id != actor.user_id and not actor.has_any(*_OPERATOR_ROLES):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot check conditions for another user")
    try:
        outcome = await processor.check_condition(payload.user_id, payload.event_id)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return ConditionCheckResponse(
        event_id=payload.event_id,
        user_id=payload.user_id,
        satisfied=outcome.satisfied,
        supported=outcome.supported,
        reason=outcome.reason,
    )


@router.get("/{event_id}", response_model=EventResponse, response_model_by_alias=True)
async def get_event(
    event_id: UUID,
    _: Actor = Depends(require_actor),
    session: AsyncSession = Depends(get_session),
) -> EventResponse:
    try:
        event = await EventService(session).get_event(event_id)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return EventResponse.model_validate(event)


@router.patch("/{event_id}", response_model=EventResponse, response_model_by_alias=True)
async def update_event(
    event_id: UUID,
    payload: EventUpdate,
    _: Actor = Depends(require_operator),
    session: AsyncSession = Depends(get_session),
) -> EventResponse:
    try:
        event = await EventService(session).update_event(event_id, payload)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return EventResponse.model_validate(event)


@router.post("/{event_id}/status", response_model=EventResponse, response_model_by_alias=True)
async def set_event_status(
    event_id: UUID,
    payload: EventStatusUpdate,
    _: Actor = Depends(require_operator),
    session: AsyncSession = Depends(get_session),
) -> EventResponse:
    try:
        event = await EventService(session).set_event_status(event_id, payload.status)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return EventResponse.model_validate(event)


@router.get("/{event_id}/active", response_model=EventActiveResponse, response_model_by_alias=True)
async def get_event_activity(
    event_id: UUID,
    _: Actor = Depends(require_actor),
    session: AsyncSession = Depends(get_session),
) -> EventActiveResponse:
    active, event = await EventService(session).is_event_active(event_id)
    return EventActiveResponse(
        event_id=event_id,
        active=active,
        event=EventResponse.model_validate(event) if event is not None else None,
    )


@router.get("/{event_id}/rewards", response_model=list[RewardResponse], response_model_by_alias=True)
async def list_event_rewards(
    event_id: UUID,
    _: Actor = Depends(require_actor),
    session: AsyncSession = Depends(get_session),
) -> list[RewardResponse]:
    service = EventService(session)
    try:
        await service.get_event(event_id)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    rewards = await service.find_rewards_for_event(event_id)
    return [RewardResponse.model_validate(reward) for reward in rewards]

