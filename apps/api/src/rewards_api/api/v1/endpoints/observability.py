"""Observability endpoints for the reward pipeline."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from rewards_api.api.dependencies.identity import Actor, require_auditor_or_operator
from rewards_api.observability.rewards import get_reward_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get("/rewards", summary="Reward pipeline counters")
async def get_reward_snapshot(_: Actor = Depends(require_auditor_or_operator)) -> dict[str, object]:
    """Request outcomes by status, inventory results and workflow outcomes."""

    return get_reward_store().snapshot().as_dict()
