from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from rewards_api.models.event import EventType
from rewards_api.services.conditions import (
    DailyLoginStrategy,
    InviteFriendsStrategy,
    LevelUpStrategy,
    ProfileCompleteStrategy,
    QuestCompleteStrategy,
    build_condition_evaluator,
)
from rewards_api.services.errors import TransientInfraError
from rewards_api.services.events import count_consecutive_days

DAY_ZERO = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class FakeLogReader:
    """In-memory reader returning entries newest first, like the real service."""

    def __init__(self, entries=None, *, error: Exception | None = None) -> None:
        self._entries = entries or []
        self._error = error

    async def get_user_event_logs(self, user_id, event_type=None, *, start=None, end=None):
        if self._error is not None:
            raise self._error
        matched = [
            entry
            for entry in self._entries
            if entry.user_id == user_id and (event_type is None or entry.event_type == event_type)
        ]
        return sorted(matched, key=lambda entry: entry.timestamp, reverse=True)


def _entry(event_type: str, *, days: int = 0, user_id: str = "user-1", **data):
    return SimpleNamespace(
        user_id=user_id,
        event_type=event_type,
        timestamp=DAY_ZERO + timedelta(days=days),
        data=data,
    )


def test_consecutive_days_counts_unbroken_streak():
    stamps = [DAY_ZERO, DAY_ZERO + timedelta(days=1), DAY_ZERO + timedelta(days=2)]
    assert count_consecutive_days(stamps) == 3


def test_consecutive_days_stops_at_gap():
    assert count_consecutive_days([DAY_ZERO, DAY_ZERO + timedelta(days=5)]) == 1


def test_consecutive_days_collapses_same_day_entries():
    stamps = [
        DAY_ZERO,
        DAY_ZERO + timedelta(hours=3),
        DAY_ZERO + timedelta(days=1),
        DAY_ZERO + timedelta(days=1, hours=5),
    ]
    assert count_consecutive_days(stamps) == 2


def test_consecutive_days_handles_empty_and_wider_gap():
    assert count_consecutive_days([]) == 0
    assert count_consecutive_days([DAY_ZERO, DAY_ZERO + timedelta(days=2)], max_day_gap=2) == 2


def test_consecutive_days_treats_naive_timestamps_as_utc():
    naive = [DAY_ZERO.replace(tzinfo=None), (DAY_ZERO + timedelta(days=1)).replace(tzinfo=None)]
    assert count_consecutive_days(naive) == 2


@pytest.mark.asyncio
async def test_daily_login_strategy_requires_streak():
    reader = FakeLogReader([_entry("DAILY_LOGIN", days=day) for day in range(3)])
    strategy = DailyLoginStrategy()

    assert await strategy.evaluate("user-1", {"consecutiveDays": 3}, reader) is True
    assert await strategy.evaluate("user-1", {"consecutiveDays": 4}, reader) is False
    assert await strategy.summarize("user-1", {}, reader) == {"success": True, "consecutiveDays": 3}


@pytest.mark.asyncio
async def test_invite_friends_counts_distinct_invitees():
    reader = FakeLogReader(
        [
            _entry("INVITE_FRIENDS", invitedUserId="friend-a"),
            _entry("INVITE_FRIENDS", days=1, invitedUserId="friend-a"),
            _entry("INVITE_FRIENDS", days=2, invitedUserId="friend-b"),
            _entry("INVITE_FRIENDS", days=3),
        ]
    )
    strategy = InviteFriendsStrategy()

    assert await strategy.evaluate("user-1", {"friendCount": 2}, reader) is True
    assert await strategy.evaluate("user-1", {"friendCount": 3}, reader) is False
    assert (await strategy.summarize("user-1", {}, reader))["invitedCount"] == 2


@pytest.mark.asyncio
async def test_quest_complete_matches_quest_id():
    reader = FakeLogReader([_entry("QUEST_COMPLETE", questId="quest-dragon")])
    strategy = QuestCompleteStrategy()

    assert await strategy.evaluate("user-1", {"questId": "quest-dragon"}, reader) is True
    assert await strategy.evaluate("user-1", {"questId": "quest-hydra"}, reader) is False
    summary = await strategy.summarize("user-1", {"questId": "quest-dragon"}, reader)
    assert summary["completed"] is True
    assert summary["completedQuests"] == 1


@pytest.mark.asyncio
async def test_level_up_uses_latest_entry():
    reader = FakeLogReader(
        [
            _entry("LEVEL_UP", days=0, newLevel=18),
            _entry("LEVEL_UP", days=1, newLevel=21),
        ]
    )
    strategy = LevelUpStrategy()

    assert await strategy.evaluate("user-1", {"targetLevel": 20}, reader) is True
    assert await strategy.evaluate("user-1", {"targetLevel": 22}, reader) is False
    assert await strategy.summarize("user-1", {}, reader) == {"success": True, "currentLevel": 21}


@pytest.mark.asyncio
async def test_profile_complete_requires_every_field():
    reader = FakeLogReader([_entry("PROFILE_COMPLETE", completedFields=["nickname", "avatar"])])
    strategy = ProfileCompleteStrategy()

    assert await strategy.evaluate("user-1", {"requiredFields": ["nickname"]}, reader) is True
    assert await strategy.evaluate("user-1", {"requiredFields": ["nickname", "bio"]}, reader) is False


@pytest.mark.asyncio
async def test_strategies_only_see_the_callers_logs():
    reader = FakeLogReader([_entry("QUEST_COMPLETE", user_id="user-2", questId="quest-dragon")])

    assert await QuestCompleteStrategy().evaluate("user-1", {"questId": "quest-dragon"}, reader) is False


@pytest.mark.asyncio
async def test_evaluator_reports_unsupported_event_type():
    evaluator = build_condition_evaluator()
    outcome = await evaluator.evaluate_condition("user-1", EventType.PURCHASE, {"amount": 10}, FakeLogReader())

    assert outcome.satisfied is False
    assert outcome.supported is False


@pytest.mark.asyncio
async def test_evaluator_treats_malformed_parameters_as_unsatisfied():
    evaluator = build_condition_evaluator()
    outcome = await evaluator.evaluate_condition(
        "user-1",
        EventType.DAILY_LOGIN,
        {"consecutiveDays": "several"},
        FakeLogReader(),
    )

    assert outcome.satisfied is False
    assert outcome.supported is True
    assert outcome.reason == "malformed condition parameters"


@pytest.mark.asyncio
async def test_evaluator_without_condition_is_satisfied():
    evaluator = build_condition_evaluator()
    event = SimpleNamespace(event_type=EventType.DAILY_LOGIN, condition=None)

    outcome = await evaluator.evaluate("user-1", event, FakeLogReader())

    assert outcome.satisfied is True


@pytest.mark.asyncio
async def test_evaluator_propagates_transient_read_failures():
    evaluator = build_condition_evaluator()
    event = SimpleNamespace(event_type=EventType.DAILY_LOGIN, condition={"consecutiveDays": 1})

    with pytest.raises(TransientInfraError):
        await evaluator.evaluate("user-1", event, FakeLogReader(error=TransientInfraError("event log read timed out")))


def test_strategy_lookup_accepts_lowercase_names():
    evaluator = build_condition_evaluator()

    assert evaluator.strategy_for("daily_login") is not None
    assert evaluator.strategy_for("not-a-type") is None
    assert EventType.PURCHASE not in evaluator.supported_types
    assert len(evaluator.supported_types) == 5
