from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rewards_api.models.event import EventType

# meta: schema: event-conditions


class _ConditionModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class DailyLoginCondition(_ConditionModel):
    consecutive_days: int = Field(..., ge=1, alias="consecutiveDays")


class InviteFriendsCondition(_ConditionModel):
    friend_count: int = Field(..., ge=1, alias="friendCount")


class QuestCompleteCondition(_ConditionModel):
    quest_id: str = Field(..., min_length=1, alias="questId")


class LevelUpCondition(_ConditionModel):
    target_level: int = Field(..., ge=1, alias="targetLevel")


class ProfileCompleteCondition(_ConditionModel):
    required_fields: list[str] = Field(..., min_length=1, alias="requiredFields")


CONDITION_MODELS: dict[EventType, type[_ConditionModel]] = {
    EventType.DAILY_LOGIN: DailyLoginCondition,
    EventType.INVITE_FRIENDS: InviteFriendsCondition,
    EventType.QUEST_COMPLETE: QuestCompleteCondition,
    EventType.LEVEL_UP: LevelUpCondition,
    EventType.PROFILE_COMPLETE: ProfileCompleteCondition,
}


def parse_condition(event_type: EventType, condition: dict[str, Any] | None) -> _ConditionModel | None:
    """Parse the typed parameters for ``event_type``.

    Types without a model have opaque conditions and return ``None``. Raises
    pydantic's ``ValidationError`` when a known type has malformed parameters.
    """

    model = CONDITION_MODELS.get(event_type)
    if model is None or condition is None:
        return None
    return model.model_validate(condition)


__all__ = [
    "CONDITION_MODELS",
    "DailyLoginCondition",
    "InviteFriendsCondition",
    "LevelUpCondition",
    "ProfileCompleteCondition",
    "QuestCompleteCondition",
    "parse_condition",
]
