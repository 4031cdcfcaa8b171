"""In-process worker for queued workflow runs."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.settings import settings
from rewards_api.models.workflow import WorkflowRunStatus
from rewards_api.services.dispatch import AsyncDispatcher, WorkflowRegistry
from rewards_api.tasks.reward_workflows import default_registry, process_workflow_run

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


class RewardDispatchWorker:
    """Sequentially executes due workflow runs without Celery."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        registry: WorkflowRegistry | None = None,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
        stale_after_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry if registry is not None else default_registry()
        self.interval_seconds = interval_seconds or settings.reward_dispatch_poll_interval_seconds
        self._batch_size = batch_size or settings.reward_dispatch_batch_size
        self._stale_after_seconds = stale_after_seconds or settings.reward_workflow_stale_after_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Reward dispatch worker started",
            interval_seconds=self.interval_seconds,
            batch_size=self._batch_size,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Reward dispatch worker stopped")

    async def run_once(self) -> dict[str, int]:
        """Execute a batch of due runs immediately."""

        run_ids = await self._collect_run_ids()
        summary = {"processed": 0, "succeeded": 0, "failed": 0, "requeued": 0}
        for run_id in run_ids:
            summary["processed"] += 1
            try:
                result = await process_workflow_run(
                    run_id,
                    session_factory=self._session_factory,
                    registry=self._registry,
                )
            except Exception as exc:  # pragma: no cover - logged, next poll retries
                summary["failed"] += 1
                logger.exception("Reward dispatch worker processing failed", run_id=str(run_id), error=str(exc))
                continue
            status_value = str(result.get("status") or "")
            if status_value == WorkflowRunStatus.SUCCEEDED.value:
                summary["succeeded"] += 1
            elif status_value == WorkflowRunStatus.QUEUED.value:
                summary["requeued"] += 1
            else:
                summary["failed"] += 1
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                summary = await self.run_once()
                if summary["processed"]:
                    logger.info("Reward dispatch worker iteration", summary=summary)
            except Exception as exc:  # pragma: no cover - logged, loop continues
                logger.exception("Reward dispatch worker iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _collect_run_ids(self) -> list[UUID]:
        session = await self._ensure_session()
        async with session as db:
            dispatcher = AsyncDispatcher(db, self._registry)
            await dispatcher.requeue_stale_runs(stale_after_seconds=self._stale_after_seconds)
            return await dispatcher.list_due_run_ids(limit=self._batch_size)

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["RewardDispatchWorker"]
