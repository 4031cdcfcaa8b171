"""Reward request persistence and queries."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.db.base import utcnow
from rewards_api.models.reward_request import RewardRequest, RewardRequestActorType, RewardRequestStatus

from .state_machine import RewardRequestStateMachine


ACTIVE_STATUSES = (RewardRequestStatus.PENDING, RewardRequestStatus.APPROVED)


class RewardRequestStore:
    """Keyed storage for reward requests.

    ``insert`` flushes immediately so a duplicate ``idempotency_key`` surfaces
    as ``IntegrityError`` at the call site, where the caller rolls back and
    reads the winning row with ``find_by_key``.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.state_machine = RewardRequestStateMachine(session)

    async def find_by_key(self, idempotency_key: str) -> RewardRequest | None:
        stmt = select(RewardRequest).where(RewardRequest.idempotency_key == idempotency_key)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, request_id: UUID, *, refresh: bool = False) -> RewardRequest:
        return await self.state_machine.get(request_id, refresh=refresh)

    async def find_active_duplicate(
        self,
        *,
        user_id: str,
        event_id: UUID,
        reward_id: UUID | None,
        exclude_key: str | None = None,
    ) -> RewardRequest | None:
        stmt = select(RewardRequest).where(
            RewardRequest.user_id == user_id,
            RewardRequest.event_id == event_id,
            RewardRequest.status.in_(ACTIVE_STATUSES),
        )
        if reward_id is not None:
            stmt = stmt.where(RewardRequest.reward_id == reward_id)
        if exclude_key is not None:
            stmt = stmt.where(RewardRequest.idempotency_key != exclude_key)
        result = await self._session.execute(stmt.limit(1))
        return result.scalars().first()

    async def insert(
        self,
        *,
        user_id: str,
        event_id: UUID,
        reward_id: UUID | None,
        status: RewardRequestStatus,
        idempotency_key: str,
        message: str | None = None,
        processed_by: str | None = None,
        actor_type: RewardRequestActorType = RewardRequestActorType.SYSTEM,
        actor_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> RewardRequest:
        request = RewardRequest(
            user_id=user_id,
            event_id=event_id,
            reward_id=reward_id,
            status=status,
            idempotency_key=idempotency_key,
            message=message,
        )
        if status.is_terminal:
            request.processed_at = utcnow()
            request.processed_by = processed_by or "system"
        self._session.add(request)
        await self._session.flush()
        self.state_machine.record_initial_state(
            request,
            actor_type=actor_type,
            actor_id=actor_id,
            metadata=metadata,
        )
        await self._session.flush()
        return request

    async def list_for_user(
        self,
        user_id: str,
        *,
        status: RewardRequestStatus | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[RewardRequest], int]:
        return await self.list_requests(user_id=user_id, status=status, page=page, limit=limit)

    async def list_requests(
        self,
        *,
        status: RewardRequestStatus | None = None,
        event_id: UUID | None = None,
        user_id: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[RewardRequest], int]:
        filters = []
        if status is not None:
            filters.append(RewardRequest.status == status)
        if event_id is not None:
            filters.append(RewardRequest.event_id == event_id)
        if user_id is not None:
            filters.append(RewardRequest.user_id == user_id)

        stmt = (
            select(RewardRequest)
            .where(*filters)
            .order_by(RewardRequest.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(RewardRequest).where(*filters)
        result = await self._session.execute(stmt)
        total = (await self._session.execute(count_stmt)).scalar_one()
        return list(result.scalars()), int(total)

    async def count_by_status(self) -> dict[RewardRequestStatus, int]:
        stmt = select(RewardRequest.status, func.count()).group_by(RewardRequest.status)
        result = await self._session.execute(stmt)
        counts = {status: 0 for status in RewardRequestStatus}
        for status, count in result.all():
            counts[RewardRequestStatus(status)] = int(count)
        return counts


__all__ = ["ACTIVE_STATUSES", "RewardRequestStore"]
