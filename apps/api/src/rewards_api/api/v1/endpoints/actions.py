"""Message-style action transport used by the gateway.

Each action takes a JSON payload carrying the caller identity explicitly and
maps onto the same services as the REST routes.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.api.dependencies.rewards import get_workflow_registry
from rewards_api.api.dependencies.security import optional_internal_api_key_dependency
from rewards_api.api.errors import http_error
from rewards_api.core.settings import settings
from rewards_api.db.session import get_session
from rewards_api.schemas.events import ConditionCheckRequest, ConditionCheckResponse, EventLogCreate, EventLogResponse
from rewards_api.schemas.rewards import RewardClaimRequest, RewardRequestCreate, RewardRequestRecord
from rewards_api.services.dispatch import WorkflowRegistry
from rewards_api.services.dispatch.workflows import track_user_event, user_event_name
from rewards_api.services.errors import RewardServiceError
from rewards_api.services.events import EventLogService
from rewards_api.services.rewards import RewardRequestProcessor


router = APIRouter(
    prefix="/actions",
    tags=["Actions"],
    dependencies=[optional_internal_api_key_dependency()],
)


class _UserScoped(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., min_length=1, alias="userId")


class RewardRequestAction(RewardRequestCreate):
    user_id: str = Field(..., min_length=1, alias="userId")


class RequestLookupAction(_UserScoped):
    request_id: UUID = Field(..., alias="requestId")


class ClaimAction(RewardClaimRequest):
    request_id: UUID = Field(..., alias="requestId")
    user_id: str = Field(..., min_length=1, alias="userId")


class AdminStatusAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_id: UUID = Field(..., alias="requestId")
    status: str = Field(..., min_length=1)
    message: str | None = Field(None, max_length=1000)
    admin_id: str | None = Field(None, alias="adminId")


class ApproveAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_id: UUID = Field(..., alias="requestId")
    admin_id: str | None = Field(None, alias="adminId")


class RejectAction(ApproveAction):
    reason: str = Field(..., min_length=1, max_length=1000)


class UserRequestsAction(_UserScoped):
    page: int = Field(1, ge=1)
    limit: int = Field(settings.default_page_size, ge=1, le=settings.max_page_size)


def _record(request: Any) -> dict[str, Any]:
    return RewardRequestRecord.model_validate(request).model_dump(by_alias=True, mode="json")


ActionHandler = Callable[[dict[str, Any], AsyncSession, WorkflowRegistry], Awaitable[Any]]


async def _reward_request(body: dict[str, Any], session: AsyncSession, registry: WorkflowRegistry) -> Any:
    payload = RewardRequestAction.model_validate(body)
    processor = RewardRequestProcessor(session, registry=registry)
    return _record(await processor.process_reward_request(payload.user_id, payload))


async def _get_request_status(body: dict[str, Any], session: AsyncSession, registry: WorkflowRegistry) -> Any:
    payload = RequestLookupAction.model_validate(body)
    processor = RewardRequestProcessor(session, registry=registry)
    return _record(await processor.get_request_status(payload.request_id, payload.user_id))


async def _claim(body: dict[str, Any], session: AsyncSession, registry: WorkflowRegistry) -> Any:
    payload = ClaimAction.model_validate(body)
    processor = RewardRequestProcessor(session, registry=registry)
    request = await processor.claim_reward(
        payload.request_id,
        payload.user_id,
        transaction_id=payload.transaction_id,
        message=payload.message,
    )
    return _record(request)


async def _admin_update_status(body: dict[str, Any], session: AsyncSession, registry: WorkflowRegistry) -> Any:
    payload = AdminStatusAction.model_validate(body)
    processor = RewardRequestProcessor(session, registry=registry)
    request = await processor.admin_update_request_status(
        payload.request_id,
        payload.status,
        message=payload.message,
        admin_id=payload.admin_id,
    )
    return _record(request)


async def _approve(body: dict[str, Any], session: AsyncSession, registry: WorkflowRegistry) -> Any:
    payload = ApproveAction.model_validate(body)
    processor = RewardRequestProcessor(session, registry=registry)
    return _record(await processor.approve_reward_request(payload.request_id, actor_id=payload.admin_id))


async def _reject(body: dict[str, Any], session: AsyncSession, registry: WorkflowRegistry) -> Any:
    payload = RejectAction.model_validate(body)
    processor = RewardRequestProcessor(session, registry=registry)
    request = await processor.reject_reward_request(payload.request_id, payload.reason, actor_id=payload.admin_id)
    return _record(request)


async def _user_requests(body: dict[str, Any], session: AsyncSession, registry: WorkflowRegistry) -> Any:
    payload = UserRequestsAction.model_validate(body)
    processor = RewardRequestProcessor(session, registry=registry)
    requests, total = await processor.list_user_requests(payload.user_id, page=payload.page, limit=payload.limit)
    return {
        "items": [_record(request) for request in requests],
        "total": total,
        "page": payload.page,
        "limit": payload.limit,
    }


async def _pending_claims(body: dict[str, Any], session: AsyncSession, registry: WorkflowRegistry) -> Any:
    payload = _UserScoped.model_validate(body)
    processor = RewardRequestProcessor(session, registry=registry)
    return [_record(request) for request in await processor.list_pending_claims(payload.user_id)]


async def _check_condition(body: dict[str, Any], session: AsyncSession, registry: WorkflowRegistry) -> Any:
    payload = ConditionCheckRequest.model_validate(body)
    processor = RewardRequestProcessor(session, registry=registry)
    outcome = await processor.check_condition(payload.user_id, payload.event_id)
    response = ConditionCheckResponse(
        event_id=payload.event_id,
        user_id=payload.user_id,
        satisfied=outcome.satisfied,
        supported=outcome.supported,
        reason=outcome.reason,
    )
    return response.model_dump(by_alias=True, mode="json")


async def _log_event(body: dict[str, Any], session: AsyncSession, registry: WorkflowRegistry) -> Any:
    payload = EventLogCreate.model_validate(body)
    entry = await EventLogService(session).create_log(payload.user_id, payload.event_type, payload.data)
    return EventLogResponse.model_validate(entry).model_dump(by_alias=True, mode="json")


async def _track_event(body: dict[str, Any], session: AsyncSession, registry: WorkflowRegistry) -> Any:
    payload = EventLogCreate.model_validate(body)
    runs = await track_user_event(
        session,
        registry,
        user_id=payload.user_id,
        event_type=payload.event_type,
        data=payload.data,
    )
    return {"eventName": user_event_name(payload.event_type), "runIds": [str(run.id) for run in runs]}


ACTIONS: dict[str, ActionHandler] = {
    "reward.request": _reward_request,
    "reward.getRequestStatus": _get_request_status,
    "reward.claim": _claim,
    "reward.adminUpdateRequestStatus": _admin_update_status,
    "reward.approve": _approve,
    "reward.reject": _reject,
    "reward.getUserRequests": _user_requests,
    "reward.getPending": _pending_claims,
    "event.checkCondition": _check_condition,
    "event.log": _log_event,
    "event.track": _track_event,
}


@router.post("/{action}")
async def handle_action(
    action: str,
    body: dict[str, Any] = Body(...),
    session: AsyncSession = Depends(get_session),
    registry: WorkflowRegistry = Depends(get_workflow_registry),
) -> Any:
    handler = ACTIONS.get(action)
    if handler is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown action {action}")
    try:
        result = await handler(body, session, registry)
    except PydanticValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc
    except RewardServiceError as exc:
        raise http_error(exc) from exc
    return {"action": action, "data": result}
