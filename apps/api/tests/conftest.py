import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from rewards_api.app import create_app  # noqa: E402
from rewards_api.db.base import Base  # noqa: E402
from rewards_api.db.session import get_session  # noqa: E402
from rewards_api.models.event import ApprovalMode, EventDefinition, EventStatus, EventType  # noqa: E402
from rewards_api.models.reward import UNLIMITED_QUANTITY, Reward, RewardType  # noqa: E402
from rewards_api.observability.rewards import get_reward_store  # noqa: E402


@pytest.fixture(autouse=True)
def reset_reward_store():
    store = get_reward_store()
    store.reset()
    yield store
    store.reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database so concurrent sessions get separate connections."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'rewards.db'}",
        future=True,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def seed_event():
    """Insert an event (and by default one reward) and return both."""

    async def _seed(
        session,
        *,
        event_type=EventType.DAILY_LOGIN,
        condition=None,
        approval_mode=ApprovalMode.AUTO,
        status=EventStatus.ACTIVE,
        quantity=UNLIMITED_QUANTITY,
        with_reward=True,
        start=None,
        end=None,
    ):
        now = datetime.now(timezone.utc)
        event = EventDefinition(
            name=f"{event_type.value.title()} campaign",
            description="",
            event_type=event_type,
            condition=condition,
            start_date=start or now - timedelta(days=1),
            end_date=end or now + timedelta(days=7),
            status=status,
            approval_mode=approval_mode,
            created_by="operator-1",
        )
        session.add(event)
        await session.flush()
        reward = None
        if with_reward:
            reward = Reward(
                name="Campaign points",
                reward_type=RewardType.POINTS,
                value="100",
                quantity=quantity,
                event_id=event.id,
            )
            session.add(reward)
        await session.commit()
        return event, reward

    return _seed
