"""Workflow handlers for user activity and queued reward requests."""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.models.workflow import WorkflowRun
from rewards_api.services.conditions import ConditionEvaluator, build_condition_evaluator
from rewards_api.services.errors import NotFoundError, ValidationError
from rewards_api.services.events import EventLogService, EventService
from rewards_api.services.rewards.processor import REWARD_PROCESS_EVENT, RewardRequestProcessor

from .dispatcher import AsyncDispatcher, StepRunner, WorkflowEvent, WorkflowRegistry

USER_EVENT_PREFIX = "user/"


class RewardWorkflows:
    """Handlers bound to one evaluator and the registry they are registered in."""

    def __init__(self, registry: WorkflowRegistry, evaluator: ConditionEvaluator) -> None:
        self.registry = registry
        self.evaluator = evaluator

    async def process_user_event(self, event: WorkflowEvent, step: StepRunner) -> dict[str, Any]:
        event_type = event.name.split("/", 1)[1].upper()
        user_id = str(event.data.get("userId") or "")
        if not user_id:
            raise ValidationError("userId is required for user events")
        data = {key: value for key, value in event.data.items() if key != "userId"}

        async def _create_log() -> dict[str, Any]:
            entry = await EventLogService(step.session).create_log(user_id, event_type, data, commit=False)
            return {"logId": str(entry.id)}

        logged = await step.run("create-event-log", _create_log)

        strategy = self.evaluator.strategy_for(event_type)
        if strategy is None:
            logger.warning("No processor found for user event", event_type=event_type, user_id=user_id)
            return {"success": False, "reason": "No processor found", "logId": logged["logId"]}

        async def _process() -> dict[str, Any]:
            return await strategy.summarize(user_id, data, EventLogService(step.session))

        result = await step.run("process-event", _process)
        logger.info("User event processed", event_type=event_type, user_id=user_id)
        return {"success": True, "result": result, "logId": logged["logId"]}

    async def process_reward_request(self, event: WorkflowEvent, step: StepRunner) -> dict[str, Any]:
        request_id = _request_id(event)

        async def _fetch() -> dict[str, Any]:
            processor = self._processor(step.session)
            request = await processor.get_request(request_id)
            definition = await EventService(step.session).get_event(request.event_id)
            return {
                "requestId": str(request.id),
                "userId": request.user_id,
                "status": request.status.value,
                "eventId": str(definition.id),
                "rewardId": str(request.reward_id) if request.reward_id else None,
                "eventType": definition.event_type.value,
                "condition": definition.condition,
                "approvalMode": definition.approval_mode.value,
            }

        context = await step.run("fetch-event-reward", _fetch)
        if context["status"] != "PENDING":
            logger.info("Queued reward request already settled", request_id=str(request_id), status=context["status"])
            return {"requestId": context["requestId"], "status": context["status"], "skipped": True}

        async def _check() -> dict[str, Any]:
            if context["condition"] is None:
                return {"satisfied": True, "supported": True, "reason": "no condition configured"}
            outcome = await self.evaluator.evaluate_condition(
                context["userId"],
                context["eventType"],
                context["condition"],
                EventLogService(step.session),
            )
            return outcome.as_dict()

        eligibility = await step.run("check-eligibility", _check)

        async def _settle() -> dict[str, Any]:
            return await self._processor(step.session).settle_queued_request(
                request_id,
                eligibility,
                approval_mode=context["approvalMode"],
            )

        return await step.run("settle-request", _settle)

    async def fail_reward_request(self, session: AsyncSession, event: WorkflowEvent, error: str) -> None:
        try:
            await self._processor(session).mark_failed(_request_id(event), error)
        except (NotFoundError, ValidationError) as exc:
            logger.warning("Could not mark reward request failed", run_id=str(event.run_id), error=str(exc))

    def _processor(self, session: AsyncSession) -> RewardRequestProcessor:
        return RewardRequestProcessor(session, registry=self.registry, evaluator=self.evaluator)


def build_workflow_registry(*, evaluator: ConditionEvaluator | None = None) -> WorkflowRegistry:
    registry = WorkflowRegistry()
    workflows = RewardWorkflows(registry, evaluator or build_condition_evaluator())
    registry.register(
        "process-user-event",
        trigger=f"{USER_EVENT_PREFIX}*",
        handler=workflows.process_user_event,
    )
    registry.register(
        "process-reward-request",
        trigger=REWARD_PROCESS_EVENT,
        handler=workflows.process_reward_request,
        on_failure=workflows.fail_reward_request,
    )
    return registry


def user_event_name(event_type: str) -> str:
    return f"{USER_EVENT_PREFIX}{event_type.strip().upper()}"


async def track_user_event(
    session: AsyncSession,
    registry: WorkflowRegistry,
    *,
    user_id: str,
    event_type: str,
    data: Mapping[str, Any] | None = None,
) -> list[WorkflowRun]:
    """Queue ``user/<EVENT_TYPE>`` and publish it once committed."""

    if not user_id:
        raise ValidationError("user_id is required")
    if not event_type or not event_type.strip():
        raise ValidationError("event_type is required")
    dispatcher = AsyncDispatcher(session, registry)
    runs = await dispatcher.send(
        user_event_name(event_type),
        {**dict(data or {}), "userId": user_id},
    )
    await session.commit()
    dispatcher.publish(runs)
    return runs


def _request_id(event: WorkflowEvent) -> UUID:
    raw = event.data.get("requestId")
    try:
        return UUID(str(raw))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid requestId {raw!r}") from exc


__all__ = ["RewardWorkflows", "USER_EVENT_PREFIX", "build_workflow_registry", "track_user_event", "user_event_name"]
