from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from rewards_api.models.event import ApprovalMode, EventStatus, EventType
from rewards_api.schemas.events import EventCreate, EventUpdate
from rewards_api.services.errors import NotFoundError, TransientInfraError, ValidationError, bounded
from rewards_api.services.events import EventLogService, EventService, event_is_active


def _event_payload(**overrides) -> EventCreate:
    now = datetime.now(timezone.utc)
    payload = {
        "name": "Login streak",
        "eventType": EventType.DAILY_LOGIN,
        "condition": {"consecutiveDays": 3},
        "startDate": now - timedelta(days=1),
        "endDate": now + timedelta(days=5),
    }
    payload.update(overrides)
    return EventCreate.model_validate(payload)


@pytest.mark.asyncio
async def test_create_event_validates_window_and_condition(session_factory):
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        service = EventService(session)

        with pytest.raises(ValidationError):
            await service.create_event(_event_payload(startDate=now, endDate=now - timedelta(hours=1)))
        with pytest.raises(ValidationError):
            await service.create_event(_event_payload(condition={"consecutiveDays": 0}))

        event = await service.create_event(_event_payload(), created_by="operator-1")
        assert event.approval_mode == ApprovalMode.AUTO
        assert event.created_by == "operator-1"

        fetched = await service.get_event(event.id)
        assert fetched.name == "Login streak"


@pytest.mark.asyncio
async def test_opaque_conditions_are_accepted_for_types_without_a_strategy(session_factory):
    async with session_factory() as session:
        event = await EventService(session).create_event(
            _event_payload(eventType=EventType.PURCHASE, condition={"minimumSpend": 50})
        )
        assert event.condition == {"minimumSpend": 50}


@pytest.mark.asyncio
async def test_update_event_rejects_inverted_window(session_factory):
    async with session_factory() as session:
        service = EventService(session)
        event = await service.create_event(_event_payload())
        event_id = event.id
        start = event.start_date

        with pytest.raises(ValidationError):
            await service.update_event(event_id, EventUpdate(end_date=start - timedelta(days=1)))

        updated = await service.update_event(event_id, EventUpdate(name="Longer streak", approval_mode=ApprovalMode.MANUAL))
        assert updated.name == "Longer streak"
        assert updated.approval_mode == ApprovalMode.MANUAL


@pytest.mark.asyncio
async def test_activity_requires_status_and_window(session_factory, seed_event):
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        live, _ = await seed_event(session)
        expired, _ = await seed_event(session, start=now - timedelta(days=10), end=now - timedelta(days=1))
        paused, _ = await seed_event(session, status=EventStatus.INACTIVE)
        service = EventService(session)

        assert (await service.is_event_active(live.id))[0] is True
        assert (await service.is_event_active(expired.id))[0] is False
        assert (await service.is_event_active(paused.id))[0] is False
        assert await service.is_event_active(uuid4()) == (False, None)

        active_ids = {event.id for event in await service.list_active_events()}
        assert active_ids == {live.id}

        paused = await service.set_event_status(paused.id, EventStatus.ACTIVE)
        assert event_is_active(paused) is True


def test_event_is_active_checks_boundaries_inclusively():
    start = datetime(2026, 10, 1, tzinfo=timezone.utc)
    end = datetime(2026, 10, 8, tzinfo=timezone.utc)
    event = SimpleNamespace(status=EventStatus.ACTIVE, start_date=start, end_date=end)

    assert event_is_active(event, now=start) is True
    assert event_is_active(event, now=end) is True
    assert event_is_active(event, now=end + timedelta(seconds=1)) is False


@pytest.mark.asyncio
async def test_get_missing_event_raises(session_factory):
    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await EventService(session).get_event(uuid4())


@pytest.mark.asyncio
async def test_event_log_append_and_queries(session_factory):
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        logs = EventLogService(session)
        for days_ago in (2, 1, 0):
            await logs.create_log("user-1", "daily_login", {"source": "app"}, timestamp=now - timedelta(days=days_ago))
        await logs.create_log("user-1", "LEVEL_UP", {"newLevel": 3})
        await logs.create_log("user-2", "DAILY_LOGIN")

        entries = await logs.get_user_event_logs("user-1", "DAILY_LOGIN")
        assert [entry.event_type for entry in entries] == ["DAILY_LOGIN"] * 3
        assert entries[0].timestamp >= entries[-1].timestamp

        windowed = await logs.get_user_event_logs(
            "user-1",
            "DAILY_LOGIN",
            start=now - timedelta(days=1, hours=1),
        )
        assert len(windowed) == 2

        assert await logs.count_user_event_logs("user-1") == 4
        assert await logs.calculate_consecutive_events("user-1", "DAILY_LOGIN") == 3

        page, total = await logs.list_logs(event_type="daily_login", page=1, limit=2)
        assert total == 4
        assert len(page) == 2

        with pytest.raises(ValidationError):
            await logs.create_log("", "DAILY_LOGIN")


@pytest.mark.asyncio
async def test_bounded_translates_timeouts_and_operational_errors():
    with pytest.raises(TransientInfraError):
        await bounded(asyncio.sleep(1), timeout=0.01, operation="slow read")

    async def broken():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    with pytest.raises(TransientInfraError):
        await bounded(broken(), timeout=1, operation="log read")

    assert await bounded(asyncio.sleep(0, result="ok"), timeout=1, operation="fast read") == "ok"
