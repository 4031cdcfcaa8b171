"""Strategy-map condition evaluator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from rewards_api.core.settings import settings
from rewards_api.models.event import EventDefinition, EventType
from rewards_api.services.events.event_log import EventLogReader

from .strategies import (
    ConditionStrategy,
    DailyLoginStrategy,
    InviteFriendsStrategy,
    LevelUpStrategy,
    ProfileCompleteStrategy,
    QuestCompleteStrategy,
)


@dataclass(frozen=True, slots=True)
class ConditionOutcome:
    satisfied: bool
    supported: bool = True
    reason: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"satisfied": self.satisfied, "supported": self.supported, "reason": self.reason}


class ConditionEvaluator:
    """Looks up the strategy for an event type and evaluates it.

    Unknown types yield ``supported=False`` instead of raising. Malformed
    condition parameters yield ``satisfied=False`` with the reason attached.
    Log-read failures (``TransientInfraError``) propagate to the caller.
    """

    def __init__(self, strategies: Iterable[ConditionStrategy]) -> None:
        self._strategies: dict[EventType, ConditionStrategy] = {}
        for strategy in strategies:
            self._strategies[strategy.event_type] = strategy

    @property
    def supported_types(self) -> list[EventType]:
        return sorted(self._strategies, key=lambda event_type: event_type.value)

    def strategy_for(self, event_type: EventType | str) -> ConditionStrategy | None:
        try:
            resolved = EventType(str(getattr(event_type, "value", event_type)).upper())
        except ValueError:
            return None
        return self._strategies.get(resolved)

    async def evaluate(
        self,
        user_id: str,
        event: EventDefinition,
        log_reader: EventLogReader,
    ) -> ConditionOutcome:
        if event.condition is None:
            return ConditionOutcome(satisfied=True, reason="no condition configured")
        return await self.evaluate_condition(user_id, event.event_type, event.condition, log_reader)

    async def evaluate_condition(
        self,
        user_id: str,
        event_type: EventType | str,
        condition: Mapping[str, Any],
        log_reader: EventLogReader,
    ) -> ConditionOutcome:
        strategy = self.strategy_for(event_type)
        type_label = str(getattr(event_type, "value", event_type))
        if strategy is None:
            logger.info("No condition strategy registered", event_type=type_label, user_id=user_id)
            return ConditionOutcome(satisfied=False, supported=False, reason=f"unsupported event type {type_label}")
        try:
            satisfied = await strategy.evaluate(user_id, condition, log_reader)
        except PydanticValidationError as exc:
            logger.warning(
                "Malformed condition parameters",
                event_type=type_label,
                user_id=user_id,
                error=str(exc.errors()[0]["msg"]),
            )
            return ConditionOutcome(satisfied=False, reason="malformed condition parameters")
        return ConditionOutcome(
            satisfied=satisfied,
            reason=None if satisfied else "condition not met",
        )


def build_condition_evaluator(*, max_day_gap: int | None = None) -> ConditionEvaluator:
    """Construct the evaluator with every built-in strategy registered."""

    return ConditionEvaluator(
        [
            DailyLoginStrategy(max_day_gap=max_day_gap or settings.condition_daily_login_max_day_gap),
            InviteFriendsStrategy(),
            QuestCompleteStrategy(),
            LevelUpStrategy(),
            ProfileCompleteStrategy(),
        ]
    )


__all__ = ["ConditionEvaluator", "ConditionOutcome", "build_condition_evaluator"]
