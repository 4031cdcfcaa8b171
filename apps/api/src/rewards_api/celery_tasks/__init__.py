"""Celery task modules for the rewards API."""

# Import submodules so Celery autodiscovery registers tasks.
from . import reward_workflows as _reward_workflows  # noqa: F401

__all__ = ["_reward_workflows"]
