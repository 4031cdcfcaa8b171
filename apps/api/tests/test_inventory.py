from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest
from pydantic import ValidationError as PydanticValidationError

from rewards_api.db.unit_of_work import unit_of_work
from rewards_api.models.reward import UNLIMITED_QUANTITY, Reward, RewardType
from rewards_api.schemas.rewards import RewardCreate, RewardUpdate
from rewards_api.services.errors import NotFoundError, OutOfStockError
from rewards_api.services.rewards import RewardInventoryService


@pytest.mark.asyncio
async def test_decrement_takes_one_unit(session_factory, seed_event, reset_reward_store):
    async with session_factory() as session:
        _, reward = await seed_event(session, quantity=2)
        reward_id = reward.id
        service = RewardInventoryService(session)

        async with unit_of_work(session, label="test.decrement"):
            updated = await service.decrement_if_available(reward_id)

        assert updated.quantity == 1
        assert (await service.find_by_id(reward_id, refresh=True)).quantity == 1
    assert reset_reward_store.snapshot().inventory == {"decremented": 1}


@pytest.mark.asyncio
async def test_unlimited_reward_is_never_decremented(session_factory, seed_event):
    async with session_factory() as session:
        _, reward = await seed_event(session, quantity=UNLIMITED_QUANTITY)
        service = RewardInventoryService(session)

        for _ in range(3):
            updated = await service.decrement_if_available(reward.id)
            assert updated.quantity == UNLIMITED_QUANTITY
        await session.commit()


@pytest.mark.asyncio
async def test_depleted_reward_raises_out_of_stock(session_factory, seed_event):
    async with session_factory() as session:
        _, reward = await seed_event(session, quantity=0)
        reward_id = reward.id
        service = RewardInventoryService(session)

        with pytest.raises(OutOfStockError) as excinfo:
            async with unit_of_work(session, label="test.decrement"):
                await service.decrement_if_available(reward_id)

        assert excinfo.value.reward_id == reward_id
        assert (await service.find_by_id(reward_id, refresh=True)).quantity == 0


@pytest.mark.asyncio
async def test_decrement_unknown_reward_raises_not_found(session_factory):
    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await RewardInventoryService(session).decrement_if_available(uuid4())


@pytest.mark.asyncio
async def test_create_and_update_reward(session_factory, seed_event):
    async with session_factory() as session:
        event, _ = await seed_event(session, with_reward=False)
        service = RewardInventoryService(session)

        with pytest.raises(NotFoundError):
            await service.create_reward(
                RewardCreate(name="Gem", reward_type=RewardType.ITEM, value="gem", quantity=1, event_id=uuid4())
            )

        reward = await service.create_reward(
            RewardCreate(name="Gem", reward_type=RewardType.ITEM, value="gem", quantity=3, event_id=event.id),
            created_by="operator-1",
        )
        assert reward.created_by == "operator-1"

        updated = await service.update_reward(reward.id, RewardUpdate(quantity=10, name="Shiny gem"))
        assert updated.quantity == 10
        assert updated.name == "Shiny gem"

        rewards = await service.find_for_event(event.id)
        assert [item.id for item in rewards] == [reward.id]


def test_reward_quantity_below_unlimited_is_rejected_by_schema():
    with pytest.raises(PydanticValidationError):
        RewardCreate(name="Gem", reward_type=RewardType.ITEM, value="gem", quantity=-2, event_id=uuid4())


@pytest.mark.asyncio
async def test_concurrent_claims_on_last_unit_grant_exactly_once(file_session_factory, seed_event):
    async with file_session_factory() as session:
        _, reward = await seed_event(session, quantity=1)
        reward_id = reward.id

    async def attempt() -> bool:
        async with file_session_factory() as session:
            try:
                async with unit_of_work(session, label="test.concurrent"):
                    await RewardInventoryService(session).decrement_if_available(reward_id)
            except OutOfStockError:
                return False
            return True

    results = await asyncio.gather(*(attempt() for _ in range(4)))

    assert results.count(True) == 1
    async with file_session_factory() as session:
        remaining = await session.get(Reward, reward_id)
        assert remaining.quantity == 0
