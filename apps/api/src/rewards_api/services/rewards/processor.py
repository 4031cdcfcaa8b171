"""Reward request processing: idempotent intake, gating and settlement."""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.settings import settings
from rewards_api.db.unit_of_work import unit_of_work
from rewards_api.models.event import ApprovalMode, EventDefinition
from rewards_api.models.reward import Reward
from rewards_api.models.reward_request import (
    RewardRequest,
    RewardRequestActorType,
    RewardRequestStateEvent,
    RewardRequestStatus,
)
from rewards_api.observability.rewards import get_reward_store
from rewards_api.schemas.rewards import RewardRequestCreate
from rewards_api.services.conditions import ConditionEvaluator, ConditionOutcome, build_condition_evaluator
from rewards_api.services.dispatch.dispatcher import AsyncDispatcher, WorkflowRegistry
from rewards_api.services.errors import (
    AccessDeniedError,
    ConflictError,
    InvalidStateTransitionError,
    OutOfStockError,
    TransientInfraError,
    ValidationError,
)
from rewards_api.services.events import EventLogService, EventService, event_is_active
from rewards_api.services.idempotency import derive_key, normalize_key

from .inventory import RewardInventoryService
from .requests import RewardRequestStore


REWARD_PROCESS_EVENT = "reward/process"
REQUEST_ACTION = "reward_request"


class RewardRequestProcessor:
    """Drives reward requests through PENDING/APPROVED to a terminal status.

    Every claim attempt ends in a persisted ``RewardRequest``: ineligible or
    depleted claims are recorded as REJECTED, settlement errors as FAILED.
    Decrement and status write share one unit of work, and a lost race on the
    idempotency key rolls the loser back (decrement included) and returns the
    winner's row.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        registry: WorkflowRegistry,
        evaluator: ConditionEvaluator | None = None,
        processing_mode: str | None = None,
        inventory_timeout_seconds: float | None = None,
        log_read_timeout_seconds: float | None = None,
    ) -> None:
        self._session = session
        self._events = EventService(session)
        self._inventory = RewardInventoryService(session, timeout_seconds=inventory_timeout_seconds)
        self._logs = EventLogService(session, read_timeout_seconds=log_read_timeout_seconds)
        self._store = RewardRequestStore(session)
        self._dispatcher = AsyncDispatcher(session, registry)
        self._evaluator = evaluator or build_condition_evaluator()
        self._mode = processing_mode or settings.reward_processing_mode

    @property
    def store(self) -> RewardRequestStore:
        return self._store

    async def process_reward_request(self, user_id: str, payload: RewardRequestCreate) -> RewardRequest:
        if not user_id:
            raise ValidationError("user_id is required")
        key = (
            normalize_key(payload.idempotency_key)
            if payload.idempotency_key is not None
            else derive_key(user_id, REQUEST_ACTION, {"eventId": str(payload.event_id)})
        )

        existing = await self._store.find_by_key(key)
        if existing is not None:
            get_reward_store().record_idempotent_replay()
            logger.info(
                "Reward request replayed from idempotency key",
                request_id=str(existing.id),
                status=existing.status.value,
            )
            return existing

        event = await self._events.get_event(payload.event_id)
        base = {"user_id": user_id, "event_id": event.id, "idempotency_key": key}

        if not event_is_active(event):
            return await self._persist(**base, reward_id=None, status=RewardRequestStatus.REJECTED,
                                       message="Event is not active")

        reward = await self._resolve_reward(event, payload.reward_id)
        if reward is None:
            return await self._persist(**base, reward_id=None, status=RewardRequestStatus.REJECTED,
                                       message="No reward configured for this event")
        base["reward_id"] = reward.id

        if not reward.is_unlimited and reward.quantity <= 0:
            return await self._persist(**base, status=RewardRequestStatus.REJECTED, message="Reward is out of stock")

        duplicate = await self._store.find_active_duplicate(
            user_id=user_id,
            event_id=event.id,
            reward_id=reward.id,
            exclude_key=key,
        )
        if duplicate is not None:
            raise ConflictError(
                f"Request {duplicate.id} for this reward is already {duplicate.status.value.lower()}"
            )

        if self._mode == "deferred":
            return await self._persist(**base, status=RewardRequestStatus.PENDING,
                                       message="Queued for processing", dispatch=True)

        if event.condition is not None:
            try:
                outcome = await self._evaluator.evaluate(user_id, event, self._logs)
            except TransientInfraError as exc:
                logger.warning(
                    "Eligibility check deferred after transient failure",
                    event_id=str(base["event_id"]),
                    user_id=user_id,
                    error=str(exc),
                )
                # A cancelled log read leaves the transaction unusable.
                await self._session.rollback()
                return await self._persist(**base, status=RewardRequestStatus.PENDING,
                                           message="Eligibility check deferred", dispatch=True)
            if not outcome.satisfied:
                return await self._persist(**base, status=RewardRequestStatus.REJECTED,
                                           message=_rejection_message(outcome))

        if event.approval_mode == ApprovalMode.MANUAL:
            return await self._persist(**base, status=RewardRequestStatus.PENDING, message="Awaiting admin approval")

        return await self._grant(**base)

    async def approve_reward_request(self, request_id: UUID, *, actor_id: str | None = None) -> RewardRequest:
        """Admin approval of a PENDING request: decrement and complete in one step."""

        request = await self._store.get(request_id, refresh=True)
        if request.status != RewardRequestStatus.PENDING:
            raise InvalidStateTransitionError(request.status, RewardRequestStatus.COMPLETED)
        completed, error = await self._settle(
            request,
            from_status=RewardRequestStatus.PENDING,
            actor_type=RewardRequestActorType.ADMIN,
            actor_id=actor_id,
            message="Approved by admin",
        )
        if error is not None:
            raise error
        return completed

    async def reject_reward_request(
        self,
        request_id: UUID,
        reason: str,
        *,
        actor_id: str | None = None,
    ) -> RewardRequest:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        async with unit_of_work(self._session, label="reward_request.reject"):
            request = await self._store.state_machine.transition(
                request_id,
                RewardRequestStatus.REJECTED,
                expected_status=RewardRequestStatus.PENDING,
                actor_type=RewardRequestActorType.ADMIN,
                actor_id=actor_id,
                message=reason.strip(),
            )
        get_reward_store().record_request_outcome(RewardRequestStatus.REJECTED.value, source="admin")
        return request

    async def admin_update_request_status(
        self,
        request_id: UUID,
        status: RewardRequestStatus | str,
        *,
        message: str | None = None,
        admin_id: str | None = None,
    ) -> RewardRequest:
        """Operator decision on a PENDING request: APPROVED (claimable) or REJECTED."""

        try:
            target = RewardRequestStatus(str(getattr(status, "value", status)).upper())
        except ValueError as exc:
            raise ValidationError(f"Unknown status {status}") from exc

        if target == RewardRequestStatus.REJECTED:
            return await self.reject_reward_request(request_id, message or "Rejected by admin", actor_id=admin_id)
        if target != RewardRequestStatus.APPROVED:
            raise ValidationError("Admins may only set APPROVED or REJECTED")

        async with unit_of_work(self._session, label="reward_request.admin_approve"):
            request = await self._store.state_machine.transition(
                request_id,
                RewardRequestStatus.APPROVED,
                expected_status=RewardRequestStatus.PENDING,
                actor_type=RewardRequestActorType.ADMIN,
                actor_id=admin_id,
                message=message or "Approved by admin",
            )
        get_reward_store().record_request_outcome(RewardRequestStatus.APPROVED.value, source="admin")
        return request

    async def claim_reward(
        self,
        request_id: UUID,
        user_id: str,
        *,
        transaction_id: str | None = None,
        message: str | None = None,
    ) -> RewardRequest:
        """Owner redeems an APPROVED request. Stock exhaustion leaves it FAILED."""

        request = await self._store.get(request_id, refresh=True)
        if request.user_id != user_id:
            raise AccessDeniedError("Reward request belongs to another user")
        if request.status != RewardRequestStatus.APPROVED:
            raise InvalidStateTransitionError(request.status, RewardRequestStatus.COMPLETED)
        settled, _ = await self._settle(
            request,
            from_status=RewardRequestStatus.APPROVED,
            actor_type=RewardRequestActorType.USER,
            actor_id=user_id,
            message=message or "Reward claimed",
            metadata={"transactionId": transaction_id} if transaction_id else None,
        )
        return settled

    async def get_request_status(self, request_id: UUID, user_id: str) -> RewardRequest:
        request = await self._store.get(request_id)
        if request.user_id != user_id:
            raise AccessDeniedError("Reward request belongs to another user")
        return request

    async def get_request(self, request_id: UUID) -> RewardRequest:
        return await self._store.get(request_id)

    async def list_user_requests(
        self,
        user_id: str,
        *,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[RewardRequest], int]:
        return await self._store.list_for_user(user_id, page=page, limit=limit)

    async def list_pending_claims(self, user_id: str) -> list[RewardRequest]:
        """APPROVED requests the user can claim."""

        requests, _ = await self._store.list_for_user(
            user_id,
            status=RewardRequestStatus.APPROVED,
            limit=settings.max_page_size,
        )
        return requests

    async def list_requests(self, **filters: Any) -> tuple[list[RewardRequest], int]:
        return await self._store.list_requests(**filters)

    async def request_statistics(self) -> dict[str, Any]:
        counts = await self._store.count_by_status()
        return {
            "total": sum(counts.values()),
            "by_status": {status.value: count for status, count in counts.items()},
        }

    async def timeline(self, request_id: UUID) -> list[RewardRequestStateEvent]:
        await self._store.get(request_id)
        return await self._store.state_machine.list_events(request_id)

    async def annotate(self, request_id: UUID, note: str, *, actor_id: str | None = None) -> RewardRequestStateEvent:
        async with unit_of_work(self._session, label="reward_request.annotate"):
            return await self._store.state_machine.annotate(
                request_id,
                notes=note,
                actor_type=RewardRequestActorType.ADMIN,
                actor_id=actor_id,
            )

    async def check_condition(self, user_id: str, event_id: UUID) -> ConditionOutcome:
        event = await self._events.get_event(event_id)
        return await self._evaluator.evaluate(user_id, event, self._logs)

    async def settle_queued_request(
        self,
        request_id: UUID,
        eligibility: Mapping[str, Any],
        *,
        approval_mode: ApprovalMode | str,
    ) -> dict[str, Any]:
        """Final step of the background workflow; writes but does not commit."""

        request = await self._store.get(request_id, refresh=True)
        if request.status != RewardRequestStatus.PENDING:
            return {"requestId": str(request.id), "status": request.status.value, "skipped": True}

        machine = self._store.state_machine
        if not eligibility.get("satisfied"):
            outcome = ConditionOutcome(
                satisfied=False,
                supported=bool(eligibility.get("supported", True)),
                reason=eligibility.get("reason"),
            )
            updated = await machine.transition(
                request.id,
                RewardRequestStatus.REJECTED,
                expected_status=RewardRequestStatus.PENDING,
                actor_type=RewardRequestActorType.WORKFLOW,
                message=_rejection_message(outcome),
            )
        elif ApprovalMode(getattr(approval_mode, "value", approval_mode)) == ApprovalMode.MANUAL:
            if request.message != "Awaiting admin approval":
                request.message = "Awaiting admin approval"
                await self._session.flush()
            return {"requestId": str(request.id), "status": request.status.value, "awaitingApproval": True}
        else:
            try:
                await self._inventory.decrement_if_available(request.reward_id)
            except OutOfStockError as exc:
                updated = await machine.transition(
                    request.id,
                    RewardRequestStatus.FAILED,
                    expected_status=RewardRequestStatus.PENDING,
                    actor_type=RewardRequestActorType.WORKFLOW,
                    message=str(exc),
                )
            else:
                updated = await machine.transition(
                    request.id,
                    RewardRequestStatus.COMPLETED,
                    expected_status=RewardRequestStatus.PENDING,
                    actor_type=RewardRequestActorType.WORKFLOW,
                    message="Reward granted",
                )
        get_reward_store().record_request_outcome(updated.status.value, source="workflow")
        return {"requestId": str(updated.id), "status": updated.status.value}

    async def mark_failed(self, request_id: UUID, error: str) -> RewardRequest:
        """Move a non-terminal request to FAILED; writes but does not commit."""

        request = await self._store.get(request_id, refresh=True)
        if request.status.is_terminal:
            return request
        updated = await self._store.state_machine.transition(
            request.id,
            RewardRequestStatus.FAILED,
            expected_status=request.status,
            actor_type=RewardRequestActorType.WORKFLOW,
            message=f"Processing failed: {error}",
        )
        get_reward_store().record_request_outcome(updated.status.value, source="workflow")
        return updated

    async def _resolve_reward(self, event: EventDefinition, reward_id: UUID | None) -> Reward | None:
        if reward_id is not None:
            reward = await self._inventory.find_by_id(reward_id)
            if reward.event_id != event.id:
                raise ValidationError(f"Reward {reward_id} does not belong to event {event.id}")
            return reward
        rewards = await self._inventory.find_for_event(event.id)
        return rewards[0] if rewards else None

    async def _persist(
        self,
        *,
        user_id: str,
        event_id: UUID,
        reward_id: UUID | None,
        idempotency_key: str,
        status: RewardRequestStatus,
        message: str,
        dispatch: bool = False,
    ) -> RewardRequest:
        runs = []
        try:
            async with unit_of_work(self._session, label=f"reward_request.{status.value.lower()}"):
                request = await self._store.insert(
                    user_id=user_id,
                    event_id=event_id,
                    reward_id=reward_id,
                    status=status,
                    idempotency_key=idempotency_key,
                    message=message,
                )
                if dispatch:
                    runs = await self._dispatcher.send(
                        REWARD_PROCESS_EVENT,
                        {"requestId": str(request.id)},
                        dedupe_key=str(request.id),
                    )
        except IntegrityError:
            return await self._resolve_key_race(idempotency_key)

        self._dispatcher.publish(runs)
        get_reward_store().record_request_outcome(status.value)
        logger.info(
            "Reward request recorded",
            request_id=str(request.id),
            user_id=user_id,
            event_id=str(event_id),
            status=status.value,
            reason=message,
            dispatched=bool(runs),
        )
        return request

    async def _grant(
        self,
        *,
        user_id: str,
        event_id: UUID,
        reward_id: UUID,
        idempotency_key: str,
    ) -> RewardRequest:
        try:
            async with unit_of_work(self._session, label="reward_request.grant"):
                await self._inventory.decrement_if_available(reward_id)
                request = await self._store.insert(
                    user_id=user_id,
                    event_id=event_id,
                    reward_id=reward_id,
                    status=RewardRequestStatus.COMPLETED,
                    idempotency_key=idempotency_key,
                    message="Reward granted",
                )
        except IntegrityError:
            return await self._resolve_key_race(idempotency_key)
        except OutOfStockError as exc:
            return await self._persist(
                user_id=user_id,
                event_id=event_id,
                reward_id=reward_id,
                idempotency_key=idempotency_key,
                status=RewardRequestStatus.FAILED,
                message=str(exc),
            )
        except Exception as exc:
            logger.exception(
                "Reward settlement failed; recording FAILED",
                user_id=user_id,
                event_id=str(event_id),
                reward_id=str(reward_id),
                reconciliation_required=True,
            )
            return await self._persist(
                user_id=user_id,
                event_id=event_id,
                reward_id=reward_id,
                idempotency_key=idempotency_key,
                status=RewardRequestStatus.FAILED,
                message=f"Processing failed: {exc}",
            )

        get_reward_store().record_request_outcome(request.status.value)
        logger.info(
            "Reward request completed",
            request_id=str(request.id),
            user_id=user_id,
            reward_id=str(reward_id),
        )
        return request

    async def _settle(
        self,
        request: RewardRequest,
        *,
        from_status: RewardRequestStatus,
        actor_type: RewardRequestActorType,
        actor_id: str | None,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[RewardRequest, Exception | None]:
        """Decrement and complete together; any decrement failure leaves the request FAILED."""

        if request.reward_id is None:
            raise ValidationError("Reward request has no reward to settle")
        request_id = request.id
        reward_id = request.reward_id
        decrement_error: Exception | None = None
        try:
            async with unit_of_work(self._session, label="reward_request.settle"):
                try:
                    await self._inventory.decrement_if_available(reward_id)
                except Exception as exc:
                    decrement_error = exc
                    raise
                completed = await self._store.state_machine.transition(
                    request_id,
                    RewardRequestStatus.COMPLETED,
                    expected_status=from_status,
                    actor_type=actor_type,
                    actor_id=actor_id,
                    message=message,
                    metadata=metadata,
                )
        except Exception as exc:
            if exc is not decrement_error:
                raise
            failure = str(exc) if isinstance(exc, OutOfStockError) else f"Processing failed: {exc}"
            logger.warning(
                "Reward settlement failed",
                request_id=str(request_id),
                reward_id=str(reward_id),
                error=str(exc),
            )
            async with unit_of_work(self._session, label="reward_request.settle_failed"):
                failed = await self._store.state_machine.transition(
                    request_id,
                    RewardRequestStatus.FAILED,
                    expected_status=from_status,
                    actor_type=actor_type,
                    actor_id=actor_id,
                    message=failure,
                    metadata=metadata,
                )
            get_reward_store().record_request_outcome(failed.status.value, source=actor_type.value.lower())
            return failed, exc

        get_reward_store().record_request_outcome(completed.status.value, source=actor_type.value.lower())
        return completed, None

    async def _resolve_key_race(self, idempotency_key: str) -> RewardRequest:
        winner = await self._store.find_by_key(idempotency_key)
        if winner is None:
            raise ConflictError("Concurrent reward request could not be resolved")
        get_reward_store().record_idempotent_replay()
        logger.info(
            "Reward request key race resolved to existing row",
            request_id=str(winner.id),
            status=winner.status.value,
        )
        return winner


def _rejection_message(outcome: ConditionOutcome) -> str:
    if not outcome.supported:
        return "Unsupported event type"
    if outcome.reason and outcome.reason != "condition not met":
        return f"Condition not satisfied: {outcome.reason}"
    return "Condition not satisfied"


__all__ = ["REWARD_PROCESS_EVENT", "RewardRequestProcessor"]
