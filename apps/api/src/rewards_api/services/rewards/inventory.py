"""Reward catalogue and the atomic inventory decrement."""

from __future__ import annotations

from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.settings import settings
from rewards_api.db.base import utcnow
from rewards_api.models.event import EventDefinition
from rewards_api.models.reward import UNLIMITED_QUANTITY, Reward
from rewards_api.observability.rewards import get_reward_store
from rewards_api.schemas.rewards import RewardCreate, RewardUpdate
from rewards_api.services.errors import NotFoundError, OutOfStockError, ValidationError, bounded


class RewardInventoryService:
    """Owns reward rows. Stock only moves through ``decrement_if_available``."""

    def __init__(self, session: AsyncSession, *, timeout_seconds: float | None = None) -> None:
        self._session = session
        self._timeout = timeout_seconds or settings.inventory_timeout_seconds

    async def find_by_id(self, reward_id: UUID, *, refresh: bool = False) -> Reward:
        reward = await self._session.get(Reward, reward_id, populate_existing=refresh)
        if reward is None:
            raise NotFoundError(f"Reward {reward_id} not found")
        return reward

    async def find_for_event(self, event_id: UUID) -> list[Reward]:
        stmt = select(Reward).where(Reward.event_id == event_id).order_by(Reward.created_at.asc())
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def list_rewards(
        self,
        *,
        page: int = 1,
        limit: int = 10,
        event_id: UUID | None = None,
    ) -> tuple[list[Reward], int]:
        stmt = select(Reward)
        count_stmt = select(func.count()).select_from(Reward)
        if event_id is not None:
            stmt = stmt.where(Reward.event_id == event_id)
            count_stmt = count_stmt.where(Reward.event_id == event_id)
        stmt = stmt.order_by(Reward.created_at.desc()).offset((page - 1) * limit).limit(limit)
        result = await self._session.execute(stmt)
        total = (await self._session.execute(count_stmt)).scalar_one()
        return list(result.scalars()), int(total)

    async def create_reward(self, payload: RewardCreate, *, created_by: str | None = None) -> Reward:
        if payload.quantity < UNLIMITED_QUANTITY:
            raise ValidationError("Reward quantity must be -1 (unlimited) or non-negative")
        event = await self._session.get(EventDefinition, payload.event_id)
        if event is None:
            raise NotFoundError(f"Event {payload.event_id} not found")

        reward = Reward(
            name=payload.name,
            description=payload.description,
            reward_type=payload.reward_type,
            value=payload.value,
            quantity=payload.quantity,
            event_id=payload.event_id,
            created_by=created_by,
        )
        self._session.add(reward)
        await self._session.commit()
        logger.info(
            "Reward created",
            reward_id=str(reward.id),
            event_id=str(reward.event_id),
            quantity=reward.quantity,
        )
        return reward

    async def update_reward(self, reward_id: UUID, payload: RewardUpdate) -> Reward:
        """Explicit admin update; the only path besides the decrement that touches quantity."""

        reward = await self.find_by_id(reward_id)
        updates = payload.model_dump(exclude_unset=True)
        if updates.get("quantity") is not None and updates["quantity"] < UNLIMITED_QUANTITY:
            raise ValidationError("Reward quantity must be -1 (unlimited) or non-negative")
        for field, value in updates.items():
            if value is None:
                continue
            setattr(reward, field, value)
        await self._session.commit()
        logger.info("Reward updated", reward_id=str(reward.id), fields=sorted(updates))
        return reward

    async def decrement_if_available(self, reward_id: UUID) -> Reward:
        """Take one unit of stock, atomically.

        Runs a single conditional ``UPDATE ... WHERE quantity > 0`` inside the
        caller's transaction and never commits. Unlimited rewards are returned
        untouched. Raises ``OutOfStockError`` when no unit is left and
        ``TransientInfraError`` when the statement times out.
        """

        stmt = (
            update(Reward)
            .where(Reward.id == reward_id, Reward.quantity > 0)
            .values(quantity=Reward.quantity - 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await bounded(
            self._session.execute(stmt),
            timeout=self._timeout,
            operation="inventory decrement",
        )
        store = get_reward_store()
        reward = await self.find_by_id(reward_id, refresh=True)
        if result.rowcount == 1:
            store.record_inventory("decremented")
            logger.info("Reward inventory decremented", reward_id=str(reward_id), remaining=reward.quantity)
            return reward
        if reward.quantity == UNLIMITED_QUANTITY:
            store.record_inventory("unlimited")
            return reward
        store.record_inventory("out_of_stock")
        logger.info("Reward inventory exhausted", reward_id=str(reward_id))
        raise OutOfStockError(reward_id)


__all__ = ["RewardInventoryService"]
