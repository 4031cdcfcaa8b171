"""Reward request state machine orchestration and audit logging."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.db.base import utcnow
from rewards_api.models.reward_request import (
    RewardRequest,
    RewardRequestActorType,
    RewardRequestStateEvent,
    RewardRequestStateEventType,
    RewardRequestStatus,
)
from rewards_api.services.errors import InvalidStateTransitionError, NotFoundError


class RewardRequestStateMachine:
    """Compare-and-swap transitions with an audit row per change.

    Methods flush but never commit; the caller's unit of work decides.
    """

    _ALLOWED_TRANSITIONS: dict[RewardRequestStatus, set[RewardRequestStatus]] = {
        RewardRequestStatus.PENDING: {
            RewardRequestStatus.APPROVED,
            RewardRequestStatus.COMPLETED,
            RewardRequestStatus.REJECTED,
            RewardRequestStatus.FAILED,
        },
        RewardRequestStatus.APPROVED: {
            RewardRequestStatus.COMPLETED,
            RewardRequestStatus.FAILED,
        },
        RewardRequestStatus.COMPLETED: set(),
        RewardRequestStatus.REJECTED: set(),
        RewardRequestStatus.FAILED: set(),
    }

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @classmethod
    def sources_for(cls, target_status: RewardRequestStatus) -> set[RewardRequestStatus]:
        return {source for source, targets in cls._ALLOWED_TRANSITIONS.items() if target_status in targets}

    async def transition(
        self,
        request_id: UUID,
        target_status: RewardRequestStatus,
        *,
        expected_status: RewardRequestStatus | set[RewardRequestStatus] | None = None,
        actor_type: RewardRequestActorType,
        actor_id: str | None = None,
        message: str | None = None,
        processed_by: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> RewardRequest:
        """Move ``request_id`` to ``target_status`` if its current status allows it.

        ``expected_status`` narrows the permitted sources further (e.g. claim
        only from APPROVED). The status guard lives in the UPDATE's WHERE
        clause, so two racing transitions cannot both win.
        """

        sources = self.sources_for(target_status)
        if expected_status is not None:
            expected = {expected_status} if isinstance(expected_status, RewardRequestStatus) else set(expected_status)
            sources &= expected
        if not sources:
            current = await self.get(request_id)
            raise InvalidStateTransitionError(current.status, target_status)

        before = await self.get(request_id, refresh=True)
        from_status = before.status
        if from_status not in sources:
            raise InvalidStateTransitionError(from_status, target_status)

        now = utcnow()
        values: dict[str, Any] = {"status": target_status, "updated_at": now}
        if message is not None:
            values["message"] = message
        if target_status.is_terminal or target_status == RewardRequestStatus.APPROVED:
            values["processed_at"] = now
            values["processed_by"] = processed_by or actor_id
        stmt = (
            update(RewardRequest)
            .where(RewardRequest.id == request_id, RewardRequest.status.in_(sources))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        request = await self.get(request_id, refresh=True)
        if result.rowcount != 1:
            raise InvalidStateTransitionError(request.status, target_status)

        self._session.add(
            RewardRequestStateEvent(
                request_id=request.id,
                event_type=RewardRequestStateEventType.STATE_CHANGE,
                actor_type=actor_type,
                actor_id=actor_id,
                from_status=from_status.value,
                to_status=target_status.value,
                notes=message,
                metadata_json=metadata or {},
            )
        )
        await self._session.flush()
        logger.info(
            "Reward request status transitioned",
            request_id=str(request.id),
            from_status=from_status.value,
            to_status=target_status.value,
            actor_type=actor_type.value,
        )
        return request

    def record_initial_state(
        self,
        request: RewardRequest,
        *,
        actor_type: RewardRequestActorType,
        actor_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._session.add(
            RewardRequestStateEvent(
                request_id=request.id,
                event_type=RewardRequestStateEventType.STATE_CHANGE,
                actor_type=actor_type,
                actor_id=actor_id,
                from_status=None,
                to_status=request.status.value,
                notes=request.message,
                metadata_json=metadata or {},
            )
        )

    async def annotate(
        self,
        request_id: UUID,
        *,
        notes: str,
        actor_type: RewardRequestActorType,
        actor_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> RewardRequestStateEvent:
        """Attach a note without touching state; allowed on terminal requests too."""

        request = await self.get(request_id)
        event = RewardRequestStateEvent(
            request_id=request.id,
            event_type=RewardRequestStateEventType.NOTE,
            actor_type=actor_type,
            actor_id=actor_id,
            notes=notes,
            metadata_json=metadata or {},
        )
        self._session.add(event)
        await self._session.flush()
        logger.info(
            "Reward request annotated",
            request_id=str(request.id),
            actor_type=actor_type.value,
        )
        return event

    async def list_events(self, request_id: UUID) -> list[RewardRequestStateEvent]:
        """Return the request timeline, oldest first."""

        stmt = (
            select(RewardRequestStateEvent)
            .where(RewardRequestStateEvent.request_id == request_id)
            .order_by(RewardRequestStateEvent.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def get(self, request_id: UUID, *, refresh: bool = False) -> RewardRequest:
        request = await self._session.get(RewardRequest, request_id, populate_existing=refresh)
        if request is None:
            raise NotFoundError(f"Reward request {request_id} not found")
        return request


__all__ = ["RewardRequestStateMachine"]
