"""Background workers supporting async processing."""

from .reward_dispatch import RewardDispatchWorker

__all__ = ["RewardDispatchWorker"]
