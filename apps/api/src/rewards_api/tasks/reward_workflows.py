"""Workflow run execution helpers.

Celery tasks, the in-process dispatch worker and CLI runners all execute
workflow runs through these helpers so they share one executor setup.
"""

from __future__ import annotations

import asyncio
from functools import lru_cache
from typing import Any, Callable
from uuid import UUID

from rewards_api.db.session import async_session
from rewards_api.services.dispatch import WorkflowExecutor, WorkflowRegistry
from rewards_api.services.dispatch.workflows import build_workflow_registry

SessionFactory = Callable[[], Any]


@lru_cache
def default_registry() -> WorkflowRegistry:
    return build_workflow_registry()


async def process_workflow_run(
    run_id: UUID,
    *,
    session_factory: SessionFactory | None = None,
    registry: WorkflowRegistry | None = None,
) -> dict[str, Any]:
    """Execute a workflow run once and return the summary payload."""

    executor = WorkflowExecutor(
        registry if registry is not None else default_registry(),
        session_factory=session_factory or async_session,
    )
    return await executor.execute(run_id)


def process_workflow_run_sync(
    run_id: str | UUID,
    *,
    session_factory: SessionFactory | None = None,
    registry: WorkflowRegistry | None = None,
) -> dict[str, Any]:
    """Convenience wrapper so Celery/cron integrations can call the async executor."""

    run_uuid = UUID(str(run_id))
    return asyncio.run(process_workflow_run(run_uuid, session_factory=session_factory, registry=registry))


__all__ = ["default_registry", "process_workflow_run", "process_workflow_run_sync"]
