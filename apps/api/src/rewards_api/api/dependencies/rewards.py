"""Service wiring for reward endpoints."""

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.db.session import get_session
from rewards_api.services.dispatch import WorkflowRegistry
from rewards_api.services.rewards import RewardRequestProcessor
from rewards_api.tasks.reward_workflows import default_registry


def get_workflow_registry(request: Request) -> WorkflowRegistry:
    registry = getattr(request.app.state, "workflow_registry", None)
    if registry is None:
        return default_registry()
    return registry


async def get_request_processor(
    session: AsyncSession = Depends(get_session),
    registry: WorkflowRegistry = Depends(get_workflow_registry),
) -> RewardRequestProcessor:
    return RewardRequestProcessor(session, registry=registry)
