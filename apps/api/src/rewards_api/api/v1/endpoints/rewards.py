"""Reward catalogue and reward request endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.api.dependencies.rewards import get_request_processor
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
from rewards_api.models.reward_request import RewardRequestStatus
from rewards_api.schemas.rewards import (
    AdminStatusUpdate,
    RejectRequest,
    RequestNoteCreate,
    RewardClaimRequest,
    RewardCreate,
    RewardRequestCreate,
    RewardRequestRecord,
    RewardRequestStatistics,
    RewardRequestTimelineEntry,
    RewardResponse,
    RewardUpdate,
)
from rewards_api.services.errors import RewardServiceError
from rewards_api.services.rewards import RewardInventoryService, RewardRequestProcessor


router = APIRouter(prefix="/rewards", tags=["Rewards"])


class RewardListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[RewardResponse]
    total: int
    page: int
    limit: int


class RewardRequestListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[RewardRequestRecord]
    total: int
    page: int
    limit: int


@router.post("/requests", response_model=RewardRequestRecord, response_model_by_alias=True)
async def request_reward(
    payload: RewardRequestCreate,
    actor: Actor = Depends(require_actor),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> RewardRequestRecord:
    try:
        request = await processor.process_reward_request(actor.user_id, payload)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return RewardRequestRecord.model_validate(request)


@router.get("/requests/me", response_model=RewardRequestListResponse, response_model_by_alias=True)
async def list_my_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    actor: Actor = Depends(require_actor),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> RewardRequestListResponse:
    requests, total = await processor.list_user_requests(actor.user_id, page=page, limit=limit)
    return RewardRequestListResponse(
        items=[RewardRequestRecord.model_validate(request) for request in requests],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/requests/pending", response_model=list[RewardRequestRecord], response_model_by_alias=True)
async def list_my_pending_claims(
    actor: Actor = Depends(require_actor),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> list[RewardRequestRecord]:
    requests = await processor.list_pending_claims(actor.user_id)
    return [RewardRequestRecord.model_validate(request) for request in requests]


@router.get("/requests/statistics", response_model=RewardRequestStatistics, response_model_by_alias=True)
async def request_statistics(
    _: Actor = Depends(require_auditor_or_operator),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> RewardRequestStatistics:
    stats = await processor.request_statistics()
    return RewardRequestStatistics(total=stats["total"], by_status=stats["by_status"])


@router.get("/requests", response_model=RewardRequestListResponse, response_model_by_alias=True)
async def list_requests(
    status_filter: RewardRequestStatus | None = Query(None, alias="status"),
    event_id: UUID | None = Query(None, alias="eventId"),
    user_id: str | None = Query(None, alias="userId"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    _: Actor = Depends(require_auditor_or_operator),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> RewardRequestListResponse:
    requests, total = await processor.list_requests(
        status=status_filter,
        event_id=event_id,
        user_id=user_id,
        page=page,
        limit=limit,
    )
    return RewardRequestListResponse(
        items=[RewardRequestRecord.model_validate(request) for request in requests],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/requests/{request_id}", response_model=RewardRequestRecord, response_model_by_alias=True)
async def get_request_status(
    request_id: UUID,
    actor: Actor = Depends(require_actor),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> RewardRequestRecord:
    try:
        if actor.has_any(Role.AUDITOR, Role.OPERATOR, Role.ADMIN):
            request = await processor.get_request(request_id)
        else:
            request = await processor.get_request_status(request_id, actor.user_id)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return RewardRequestRecord.model_validate(request)


@router.post("/requests/{request_id}/claim", response_model=RewardRequestRecord, response_model_by_alias=True)
async def claim_reward(
    request_id: UUID,
    payload: RewardClaimRequest,
    actor: Actor = Depends(require_actor),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> RewardRequestRecord:
    try:
        request = await processor.claim_reward(
            request_id,
            actor.user_id,
            transaction_id=payload.transaction_id,
            message=payload.message,
        )
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return RewardRequestRecord.model_validate(request)


@router.post("/requests/{request_id}/status", response_model=RewardRequestRecord, response_model_by_alias=True)
async def admin_update_request_status(
    request_id: UUID,
    payload: AdminStatusUpdate,
    actor: Actor = Depends(require_operator),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> RewardRequestRecord:
    try:
        request = await processor.admin_update_request_status(
            request_id,
            payload.status,
            message=payload.message,
            admin_id=actor.user_id,
        )
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return RewardRequestRecord.model_validate(request)


@router.post("/requests/{request_id}/approve", response_model=RewardRequestRecord, response_model_by_alias=True)
async def approve_request(
    request_id: UUID,
    actor: Actor = Depends(require_operator),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> RewardRequestRecord:
    try:
        request = await processor.approve_reward_request(request_id, actor_id=actor.user_id)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return RewardRequestRecord.model_validate(request)


@router.post("/requests/{request_id}/reject", response_model=RewardRequestRecord, response_model_by_alias=True)
async def reject_request(
    request_id: UUID,
    payload: RejectRequest,
    actor: Actor = Depends(require_operator),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> RewardRequestRecord:
    try:
        request = await processor.reject_reward_request(request_id, payload.reason, actor_id=actor.user_id)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return RewardRequestRecord.model_validate(request)


@router.get(
    "/requests/{request_id}/timeline",
    response_model=list[RewardRequestTimelineEntry],
    response_model_by_alias=True,
)
async def request_timeline(
    request_id: UUID,
    actor: Actor = Depends(require_actor),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> list[RewardRequestTimelineEntry]:
    try:
        if not actor.has_any(Role.AUDITOR, Role.OPERATOR, Role.ADMIN):
            await processor.get_request_status(request_id, actor.user_id)
        events = await processor.timeline(request_id)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return [RewardRequestTimelineEntry.model_validate(event) for event in events]


@router.post(
    "/requests/{request_id}/notes",
    response_model=RewardRequestTimelineEntry,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def annotate_request(
    request_id: UUID,
    payload: RequestNoteCreate,
    actor: Actor = Depends(require_operator),
    processor: RewardRequestProcessor = Depends(get_request_processor),
) -> RewardRequestTimelineEntry:
    try:
        event = await processor.annotate(request_id, payload.note, actor_id=actor.user_id)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return RewardRequestTimelineEntry.model_validate(event)


@router.post("", response_model=RewardResponse, response_model_by_alias=True, status_code=status.HTTP_201_CREATED)
async def create_reward(
    payload: RewardCreate,
    actor: Actor = Depends(require_operator),
    session: AsyncSession = Depends(get_session),
) -> RewardResponse:
    try:
        reward = await RewardInventoryService(session).create_reward(payload, created_by=actor.user_id)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return RewardResponse.model_validate(reward)


@router.get("", response_model=RewardListResponse, response_model_by_alias=True)
async def list_rewards(
    event_id: UUID | None = Query(None, alias="eventId"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    _: Actor = Depends(require_actor),
    session: AsyncSession = Depends(get_session),
) -> RewardListResponse:
    rewards, total = await RewardInventoryService(session).list_rewards(page=page, limit=limit, event_id=event_id)
    return RewardListResponse(
        items=[RewardResponse.model_validate(reward) for reward in rewards],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{reward_id}", response_model=RewardResponse, response_model_by_alias=True)
async def get_reward(
    reward_id: UUID,
    _: Actor = Depends(require_actor),
    session: AsyncSession = Depends(get_session),
) -> RewardResponse:
    try:
        reward = await RewardInventoryService(session).find_by_id(reward_id)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return RewardResponse.model_validate(reward)


@router.patch("/{reward_id}", response_model=RewardResponse, response_model_by_alias=True)
async def update_reward(
    reward_id: UUID,
    payload: RewardUpdate,
    _: Actor = Depends(require_operator),
    session: AsyncSession = Depends(get_session),
) -> RewardResponse:
    try:
        reward = await RewardInventoryService(session).update_reward(reward_id, payload)
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return RewardResponse.model_validate(reward)
