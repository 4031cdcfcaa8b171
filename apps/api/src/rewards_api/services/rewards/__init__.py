"""Reward inventory, request storage and processing services."""

from .inventory import RewardInventoryService  # noqa: F401
from .processor import REWARD_PROCESS_EVENT, RewardRequestProcessor  # noqa: F401
from .requests import ACTIVE_STATUSES, RewardRequestStore  # noqa: F401
from .state_machine import RewardRequestStateMachine  # noqa: F401
