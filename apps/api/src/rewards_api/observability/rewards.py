from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class RewardPipelineSnapshot:
    requests: Dict[str, int]
    inventory: Dict[str, int]
    workflows: Dict[str, Dict[str, int]]

    def as_dict(self) -> Dict[str, object]:
        return {
            "requests": dict(self.requests),
            "inventory": dict(self.inventory),
            "workflows": {key: dict(value) for key, value in self.workflows.items()},
        }


class RewardObservabilityStore:
    """Counters for request outcomes, inventory decrements and workflow runs."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._requests: Dict[str, int] = defaultdict(int)
        self._inventory: Dict[str, int] = defaultdict(int)
        self._workflows: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))

    def record_request_outcome(self, status: str, *, source: str = "sync") -> None:
        with self._lock:
            self._requests[status.lower()] += 1
            self._requests[f"source:{source}"] += 1

    def record_idempotent_replay(self) -> None:
        with self._lock:
            self._requests["idempotent_replays"] += 1

    def record_inventory(self, outcome: str) -> None:
        with self._lock:
            self._inventory[outcome] += 1

    def record_workflow(self, function_id: str, outcome: str) -> None:
        with self._lock:
            self._workflows[function_id][outcome] += 1

    def snapshot(self) -> RewardPipelineSnapshot:
        with self._lock:
            requests = dict(self._requests)
            inventory = dict(self._inventory)
            workflows = {key: dict(value) for key, value in self._workflows.items()}
        return RewardPipelineSnapshot(requests=requests, inventory=inventory, workflows=workflows)

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()
            self._inventory.clear()
            self._workflows.clear()


_STORE = RewardObservabilityStore()


def get_reward_store() -> RewardObservabilityStore:
    return _STORE


__all__ = ["get_reward_store", "RewardObservabilityStore", "RewardPipelineSnapshot"]
