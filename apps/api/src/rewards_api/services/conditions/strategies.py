"""Per-event-type condition strategies.

Each strategy replays the user's log entries for its type. ``evaluate`` answers
the eligibility question for an event's condition; ``summarize`` reports raw
progress for the user-event workflow. Neither mutates state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from rewards_api.models.event import EventType
from rewards_api.schemas.conditions import (
    DailyLoginCondition,
    InviteFriendsCondition,
    LevelUpCondition,
    ProfileCompleteCondition,
    QuestCompleteCondition,
)
from rewards_api.services.events.event_log import EventLogReader, count_consecutive_days


class ConditionStrategy(Protocol):
    event_type: EventType

    async def evaluate(self, user_id: str, condition: Mapping[str, Any], log_reader: EventLogReader) -> bool:
        ...

    async def summarize(
        self,
        user_id: str,
        payload: Mapping[str, Any],
        log_reader: EventLogReader,
    ) -> dict[str, Any]:
        ...


@dataclass(slots=True)
class DailyLoginStrategy:
    max_day_gap: int = 1
    event_type: EventType = EventType.DAILY_LOGIN

    async def _streak(self, user_id: str, log_reader: EventLogReader) -> int:
        logs = await log_reader.get_user_event_logs(user_id, self.event_type.value)
        return count_consecutive_days((entry.timestamp for entry in logs), max_day_gap=self.max_day_gap)

    async def evaluate(self, user_id: str, condition: Mapping[str, Any], log_reader: EventLogReader) -> bool:
        params = DailyLoginCondition.model_validate(condition)
        return await self._streak(user_id, log_reader) >= params.consecutive_days

    async def summarize(self, user_id: str, payload: Mapping[str, Any], log_reader: EventLogReader) -> dict[str, Any]:
        return {"success": True, "consecutiveDays": await self._streak(user_id, log_reader)}


@dataclass(slots=True)
class InviteFriendsStrategy:
    event_type: EventType = EventType.INVITE_FRIENDS

    async def _invited(self, user_id: str, log_reader: EventLogReader) -> set[str]:
        logs = await log_reader.get_user_event_logs(user_id, self.event_type.value)
        return {
            str(entry.data["invitedUserId"])
            for entry in logs
            if isinstance(entry.data, Mapping) and entry.data.get("invitedUserId")
        }

    async def evaluate(self, user_id: str, condition: Mapping[str, Any], log_reader: EventLogReader) -> bool:
        params = InviteFriendsCondition.model_validate(condition)
        return len(await self._invited(user_id, log_reader)) >= params.friend_count

    async def summarize(self, user_id: str, payload: Mapping[str, Any], log_reader: EventLogReader) -> dict[str, Any]:
        return {"success": True, "invitedCount": len(await self._invited(user_id, log_reader))}


@dataclass(slots=True)
class QuestCompleteStrategy:
    event_type: EventType = EventType.QUEST_COMPLETE

    async def _completed(self, user_id: str, log_reader: EventLogReader) -> list[str]:
        logs = await log_reader.get_user_event_logs(user_id, self.event_type.value)
        return [
            str(entry.data["questId"])
            for entry in logs
            if isinstance(entry.data, Mapping) and entry.data.get("questId") is not None
        ]

    async def evaluate(self, user_id: str, condition: Mapping[str, Any], log_reader: EventLogReader) -> bool:
        params = QuestCompleteCondition.model_validate(condition)
        return params.quest_id in await self._completed(user_id, log_reader)

    async def summarize(self, user_id: str, payload: Mapping[str, Any], log_reader: EventLogReader) -> dict[str, Any]:
        quest_id = payload.get("questId")
        completed = await self._completed(user_id, log_reader)
        return {
            "success": True,
            "questId": quest_id,
            "completed": quest_id is not None and str(quest_id) in completed,
            "completedQuests": len(set(completed)),
        }


@dataclass(slots=True)
class LevelUpStrategy:
    event_type: EventType = EventType.LEVEL_UP

    async def _current_level(self, user_id: str, log_reader: EventLogReader) -> int:
        logs = await log_reader.get_user_event_logs(user_id, self.event_type.value)
        if not logs:
            return 0
        latest = logs[0].data if isinstance(logs[0].data, Mapping) else {}
        try:
            return int(latest.get("newLevel", 0))
        except (TypeError, ValueError):
            return 0

    async def evaluate(self, user_id: str, condition: Mapping[str, Any], log_reader: EventLogReader) -> bool:
        params = LevelUpCondition.model_validate(condition)
        return await self._current_level(user_id, log_reader) >= params.target_level

    async def summarize(self, user_id: str, payload: Mapping[str, Any], log_reader: EventLogReader) -> dict[str, Any]:
        return {"success": True, "currentLevel": await self._current_level(user_id, log_reader)}


@dataclass(slots=True)
class ProfileCompleteStrategy:
    event_type: EventType = EventType.PROFILE_COMPLETE

    async def _completed_fields(self, user_id: str, log_reader: EventLogReader) -> set[str]:
        logs = await log_reader.get_user_event_logs(user_id, self.event_type.value)
        if not logs:
            return set()
        latest = logs[0].data if isinstance(logs[0].data, Mapping) else {}
        fields = latest.get("completedFields") or []
        if not isinstance(fields, (list, tuple, set)):
            return set()
        return {str(field) for field in fields}

    async def evaluate(self, user_id: str, condition: Mapping[str, Any], log_reader: EventLogReader) -> bool:
        params = ProfileCompleteCondition.model_validate(condition)
        return set(params.required_fields).issubset(await self._completed_fields(user_id, log_reader))

    async def summarize(self, user_id: str, payload: Mapping[str, Any], log_reader: EventLogReader) -> dict[str, Any]:
        return {"success": True, "completedFields": sorted(await self._completed_fields(user_id, log_reader))}


__all__ = [
    "ConditionStrategy",
    "DailyLoginStrategy",
    "InviteFriendsStrategy",
    "LevelUpStrategy",
    "ProfileCompleteStrategy",
    "QuestCompleteStrategy",
]
