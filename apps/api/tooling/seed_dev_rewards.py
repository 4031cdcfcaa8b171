"""Seed development reward events and their rewards into the API database."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import os
from typing import Any, TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rewards_api.core.settings import settings
from rewards_api.models.event import ApprovalMode, EventDefinition, EventStatus, EventType
from rewards_api.models.reward import Reward, RewardType


class SeedReward(TypedDict):
    name: str
    reward_type: RewardType
    value: str
    quantity: int


class SeedEvent(TypedDict):
    name: str
    description: str
    event_type: EventType
    condition: dict[str, Any] | None
    approval_mode: ApprovalMode
    rewards: list[SeedReward]


SEED_OPERATOR = os.getenv("DEV_REWARDS_OPERATOR_ID", "dev-operator")
SEED_WINDOW_DAYS = int(os.getenv("DEV_REWARDS_WINDOW_DAYS", "30"))

DEV_EVENTS: list[SeedEvent] = [
    {
        "name": "Seven Day Login Streak",
        "description": "Log in seven days in a row.",
        "event_type": EventType.DAILY_LOGIN,
        "condition": {"consecutiveDays": 7},
        "approval_mode": ApprovalMode.AUTO,
        "rewards": [{"name": "Streak Points", "reward_type": RewardType.POINTS, "value": "500", "quantity": -1}],
    },
    {
        "name": "Bring Three Friends",
        "description": "Invite three friends who join.",
        "event_type": EventType.INVITE_FRIENDS,
        "condition": {"friendCount": 3},
        "approval_mode": ApprovalMode.AUTO,
        "rewards": [{"name": "Friend Coupon", "reward_type": RewardType.COUPON, "value": "FRIENDS-10", "quantity": 100}],
    },
    {
        "name": "Dragon Slayer",
        "description": "Complete the dragon quest.",
        "event_type": EventType.QUEST_COMPLETE,
        "condition": {"questId": "quest-dragon"},
        "approval_mode": ApprovalMode.MANUAL,
        "rewards": [{"name": "Dragon Blade", "reward_type": RewardType.ITEM, "value": "item-dragon-blade", "quantity": 10}],
    },
    {
        "name": "Level Twenty",
        "description": "Reach level twenty.",
        "event_type": EventType.LEVEL_UP,
        "condition": {"targetLevel": 20},
        "approval_mode": ApprovalMode.AUTO,
        "rewards": [{"name": "Veteran Title", "reward_type": RewardType.TITLE, "value": "Veteran", "quantity": -1}],
    },
    {
        "name": "Complete Your Profile",
        "description": "Fill in nickname, avatar and bio.",
        "event_type": EventType.PROFILE_COMPLETE,
        "condition": {"requiredFields": ["nickname", "avatar", "bio"]},
        "approval_mode": ApprovalMode.AUTO,
        "rewards": [{"name": "Profile Gems", "reward_type": RewardType.CURRENCY, "value": "50", "quantity": 1000}],
    },
]


async def seed_events(session: AsyncSession) -> None:
    now = datetime.now(timezone.utc)
    for seed in DEV_EVENTS:
        with session.no_autoflush:
            existing = await session.execute(select(EventDefinition).where(EventDefinition.name == seed["name"]))
        event = existing.scalar_one_or_none()

        if event:
            event.description = seed["description"]
            event.condition = seed["condition"]
            event.approval_mode = seed["approval_mode"]
            event.status = EventStatus.ACTIVE
            event.end_date = now + timedelta(days=SEED_WINDOW_DAYS)
        else:
            event = EventDefinition(
                name=seed["name"],
                description=seed["description"],
                event_type=seed["event_type"],
                condition=seed["condition"],
                start_date=now - timedelta(days=1),
                end_date=now + timedelta(days=SEED_WINDOW_DAYS),
                status=EventStatus.ACTIVE,
                approval_mode=seed["approval_mode"],
                created_by=SEED_OPERATOR,
            )
            session.add(event)
            await session.flush()

        for reward_seed in seed["rewards"]:
            with session.no_autoflush:
                existing_reward = await session.execute(
                    select(Reward).where(Reward.event_id == event.id, Reward.name == reward_seed["name"])
                )
            if existing_reward.scalar_one_or_none() is not None:
                continue
            session.add(
                Reward(
                    name=reward_seed["name"],
                    reward_type=reward_seed["reward_type"],
                    value=reward_seed["value"],
                    quantity=reward_seed["quantity"],
                    event_id=event.id,
                    created_by=SEED_OPERATOR,
                )
            )
    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed_events(session)
        print(f"Development reward events ready ({len(DEV_EVENTS)} events)")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
