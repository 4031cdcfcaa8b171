"""Event condition evaluation."""

from .evaluator import ConditionEvaluator, ConditionOutcome, build_condition_evaluator  # noqa: F401
from .strategies import (  # noqa: F401
    ConditionStrategy,
    DailyLoginStrategy,
    InviteFriendsStrategy,
    LevelUpStrategy,
    ProfileCompleteStrategy,
    QuestCompleteStrategy,
)
