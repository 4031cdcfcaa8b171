"""Durable workflow dispatch with memoized steps.

A triggering event is stored as one ``WorkflowRun`` per matching registration,
inside the caller's transaction. Runs are executed later by Celery or the
in-process worker. Delivery is at-least-once, so handlers express their side
effects as named steps: a step's output row commits in the same transaction as
its writes, and a re-executed run skips every step that already has a row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from fnmatch import fnmatchcase
from itertools import islice
from typing import Any, Awaitable, Callable, Iterable, Iterator, TypeVar
from uuid import UUID, uuid4

import backoff
from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.celery_app import celery_app
from rewards_api.core.settings import settings
from rewards_api.db.base import utcnow
from rewards_api.models.workflow import WorkflowRun, WorkflowRunStatus, WorkflowStepResult
from rewards_api.observability.rewards import get_reward_store
from rewards_api.observability.tracing import get_tracer
from rewards_api.services.errors import NotFoundError, TransientInfraError

T = TypeVar("T")

SessionFactory = Callable[[], Any]

EXECUTE_RUN_TASK = "reward_workflows.execute_run"


@dataclass(slots=True)
class WorkflowEvent:
    name: str
    data: dict[str, Any]
    run_id: UUID
    attempt: int


WorkflowHandler = Callable[[WorkflowEvent, "StepRunner"], Awaitable[dict[str, Any]]]
FailureHandler = Callable[[AsyncSession, WorkflowEvent, str], Awaitable[None]]


@dataclass(slots=True)
class WorkflowRegistration:
    function_id: str
    trigger: str
    handler: WorkflowHandler
    on_failure: FailureHandler | None = None

    def matches(self, event_name: str) -> bool:
        return fnmatchcase(event_name, self.trigger)


@dataclass
class WorkflowRegistry:
    """Explicit lookup table from function ids and trigger patterns to handlers."""

    _registrations: dict[str, WorkflowRegistration] = field(default_factory=dict)

    def register(
        self,
        function_id: str,
        *,
        trigger: str,
        handler: WorkflowHandler,
        on_failure: FailureHandler | None = None,
    ) -> WorkflowRegistration:
        if function_id in self._registrations:
            raise ValueError(f"Workflow {function_id} already registered")
        registration = WorkflowRegistration(
            function_id=function_id,
            trigger=trigger,
            handler=handler,
            on_failure=on_failure,
        )
        self._registrations[function_id] = registration
        return registration

    def get(self, function_id: str) -> WorkflowRegistration | None:
        return self._registrations.get(function_id)

    def matching(self, event_name: str) -> list[WorkflowRegistration]:
        return [registration for registration in self._registrations.values() if registration.matches(event_name)]

    def __iter__(self) -> Iterator[WorkflowRegistration]:
        return iter(self._registrations.values())

    def __len__(self) -> int:
        return len(self._registrations)


def retry_delay_seconds(attempt: int, *, factor: float, max_value: float) -> float:
    """Exponential delay before run attempt ``attempt + 1``."""

    waits = backoff.expo(factor=factor, max_value=max_value)
    next(waits)  # wait generators are primed with an initial send(None)
    delays = list(islice(waits, max(attempt, 1)))
    return float(delays[-1])


class AsyncDispatcher:
    """Session-bound producer side: create runs, publish them, find due work."""

    def __init__(
        self,
        session: AsyncSession,
        registry: WorkflowRegistry,
        *,
        max_attempts: int | None = None,
    ) -> None:
        self._session = session
        self._registry = registry
        self._max_attempts = max_attempts or settings.reward_workflow_max_attempts

    async def send(
        self,
        name: str,
        data: dict[str, Any],
        *,
        dedupe_key: str | None = None,
    ) -> list[WorkflowRun]:
        """Queue ``name`` for every matching registration without committing.

        Call ``publish`` with the returned runs after the surrounding
        transaction commits.
        """

        registrations = self._registry.matching(name)
        if not registrations:
            logger.warning("No workflow registered for event", event_name=name)
            return []

        runs: list[WorkflowRun] = []
        for registration in registrations:
            run_key = f"{registration.function_id}:{dedupe_key or uuid4().hex}"
            existing = await self._find_by_key(run_key)
            if existing is not None:
                runs.append(existing)
                continue
            run = WorkflowRun(
                run_key=run_key,
                function_id=registration.function_id,
                trigger_name=name,
                payload=dict(data),
                status=WorkflowRunStatus.QUEUED,
                attempts=0,
                max_attempts=self._max_attempts,
                next_attempt_at=utcnow(),
            )
            self._session.add(run)
            runs.append(run)
        await self._session.flush()
        logger.info(
            "Workflow event queued",
            event_name=name,
            functions=[run.function_id for run in runs],
            run_ids=[str(run.id) for run in runs],
        )
        return runs

    def publish(self, runs: Iterable[WorkflowRun], *, countdown: float | None = None) -> None:
        publish_runs(runs, countdown=countdown)

    async def list_due_run_ids(self, *, limit: int) -> list[UUID]:
        now = utcnow()
        stmt = (
            select(WorkflowRun.id)
            .where(
                WorkflowRun.status == WorkflowRunStatus.QUEUED,
                or_(WorkflowRun.next_attempt_at.is_(None), WorkflowRun.next_attempt_at <= now),
            )
            .order_by(WorkflowRun.created_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def requeue_stale_runs(self, *, stale_after_seconds: float) -> int:
        """Return runs stuck in RUNNING (worker died mid-run) to the queue."""

        cutoff = utcnow() - timedelta(seconds=stale_after_seconds)
        stmt = (
            update(WorkflowRun)
            .where(WorkflowRun.status == WorkflowRunStatus.RUNNING, WorkflowRun.updated_at < cutoff)
            .values(status=WorkflowRunStatus.QUEUED, next_attempt_at=utcnow(), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.commit()
        if result.rowcount:
            logger.warning("Requeued stale workflow runs", count=result.rowcount)
        return int(result.rowcount or 0)

    async def get_run(self, run_id: UUID) -> WorkflowRun:
        run = await self._session.get(WorkflowRun, run_id, populate_existing=True)
        if run is None:
            raise NotFoundError(f"Workflow run {run_id} not found")
        return run

    async def list_step_results(self, run_id: UUID) -> list[WorkflowStepResult]:
        stmt = (
            select(WorkflowStepResult)
            .where(WorkflowStepResult.run_id == run_id)
            .order_by(WorkflowStepResult.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def _find_by_key(self, run_key: str) -> WorkflowRun | None:
        stmt = select(WorkflowRun).where(WorkflowRun.run_key == run_key)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


def publish_runs(runs: Iterable[WorkflowRun], *, countdown: float | None = None) -> None:
    """Hand committed runs to Celery; without a broker the local worker polls for them."""

    run_list = list(runs)
    if not run_list:
        return
    if not settings.celery_broker_url:
        logger.info(
            "Workflow Celery broker not configured; relying on local worker",
            run_ids=[str(run.id) for run in run_list],
        )
        return
    for run in run_list:
        try:
            celery_app.send_task(
                EXECUTE_RUN_TASK,
                args=[str(run.id)],
                queue=settings.reward_workflow_task_queue,
                countdown=countdown,
            )
        except Exception as exc:  # pragma: no cover - best effort enqueue, worker poll is the fallback
            logger.warning("Failed to enqueue workflow run", run_id=str(run.id), error=str(exc))


class StepRunner:
    """Runs named steps at most once per workflow run."""

    def __init__(
        self,
        session: AsyncSession,
        run_id: UUID,
        *,
        max_tries: int | None = None,
        backoff_factor: float | None = None,
        backoff_max: float | None = None,
    ) -> None:
        self._session = session
        self._run_id = run_id
        self._max_tries = max_tries or settings.reward_workflow_step_max_tries
        self._backoff_factor = (
            settings.reward_workflow_backoff_factor_seconds if backoff_factor is None else backoff_factor
        )
        self._backoff_max = backoff_max or settings.reward_workflow_backoff_max_seconds
        self.executed: list[str] = []
        self.replayed: list[str] = []

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def run(self, name: str, fn: Callable[[], Awaitable[T]]) -> T:
        memo = await self._load(name)
        if memo is not None:
            self.replayed.append(name)
            return memo.output  # type: ignore[return-value]

        @backoff.on_exception(
            backoff.expo,
            TransientInfraError,
            max_tries=self._max_tries,
            factor=self._backoff_factor,
            max_value=self._backoff_max,
            on_backoff=self._log_backoff(name),
        )
        async def _attempt() -> T:
            try:
                output = await fn()
                self._session.add(WorkflowStepResult(run_id=self._run_id, step_name=name, output=output))
                await self._session.commit()
            except BaseException:
                await self._session.rollback()
                raise
            return output

        output = await _attempt()
        self.executed.append(name)
        logger.debug("Workflow step completed", run_id=str(self._run_id), step=name)
        return output

    async def _load(self, name: str) -> WorkflowStepResult | None:
        stmt = select(WorkflowStepResult).where(
            WorkflowStepResult.run_id == self._run_id,
            WorkflowStepResult.step_name == name,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    def _log_backoff(self, name: str) -> Callable[[dict[str, Any]], None]:
        def _handler(details: dict[str, Any]) -> None:
            logger.warning(
                "Retrying workflow step after transient failure",
                run_id=str(self._run_id),
                step=name,
                tries=details.get("tries"),
                wait=details.get("wait"),
            )

        return _handler


class WorkflowExecutor:
    """Consumer side: claim a run, drive its handler, record the outcome."""

    def __init__(
        self,
        registry: WorkflowRegistry,
        *,
        session_factory: SessionFactory,
        step_max_tries: int | None = None,
        step_backoff_factor: float | None = None,
        retry_backoff_factor: float | None = None,
        retry_backoff_max: float | None = None,
    ) -> None:
        self._registry = registry
        self._session_factory = session_factory
        self._step_max_tries = step_max_tries
        self._step_backoff_factor = step_backoff_factor
        self._retry_backoff_factor = (
            settings.reward_workflow_backoff_factor_seconds if retry_backoff_factor is None else retry_backoff_factor
        )
        self._retry_backoff_max = retry_backoff_max or settings.reward_workflow_backoff_max_seconds

    async def execute(self, run_id: UUID) -> dict[str, Any]:
        """Execute a run once and return the summary payload."""

        session = await self._ensure_session()
        async with session as db:
            run = await db.get(WorkflowRun, run_id)
            if run is None:
                raise NotFoundError(f"Workflow run {run_id} not found")
            if run.status in (WorkflowRunStatus.SUCCEEDED, WorkflowRunStatus.FAILED):
                logger.info("Workflow run already finished; skipping redelivery", run_id=str(run_id))
                return _summary(run, skipped=True)
            if not await self._claim(db, run_id):
                run = await db.get(WorkflowRun, run_id, populate_existing=True)
                logger.info("Workflow run not claimable", run_id=str(run_id), status=run.status.value)
                return _summary(run, skipped=True)

            run = await db.get(WorkflowRun, run_id, populate_existing=True)
            function_id = run.function_id
            event = WorkflowEvent(
                name=run.trigger_name,
                data=dict(run.payload or {}),
                run_id=run.id,
                attempt=run.attempts,
            )
            registration = self._registry.get(function_id)
            if registration is None:
                return await self._fail(db, run_id, None, event, f"No workflow registered for {function_id}")

            logger.info(
                "Workflow run started",
                run_id=str(run_id),
                function_id=run.function_id,
                event_name=run.trigger_name,
                attempt=run.attempts,
            )
            step = StepRunner(
                db,
                run.id,
                max_tries=self._step_max_tries,
                backoff_factor=self._step_backoff_factor,
            )
            try:
                with get_tracer().start_as_current_span(
                    f"workflow.{function_id}",
                    attributes={"workflow.run_id": str(run_id), "workflow.attempt": event.attempt},
                ):
                    result = await registration.handler(event, step)
            except TransientInfraError as exc:
                await db.rollback()
                return await self._retry_or_fail(db, run_id, registration, event, exc)
            except Exception as exc:
                await db.rollback()
                logger.exception("Workflow run failed", run_id=str(run_id), function_id=function_id)
                return await self._fail(db, run_id, registration, event, str(exc) or type(exc).__name__)

            run = await db.get(WorkflowRun, run_id, populate_existing=True)
            run.status = WorkflowRunStatus.SUCCEEDED
            run.result_payload = result
            run.error_message = None
            run.completed_at = utcnow()
            await db.commit()
            get_reward_store().record_workflow(run.function_id, "succeeded")
            logger.info(
                "Workflow run succeeded",
                run_id=str(run_id),
                function_id=run.function_id,
                steps_executed=step.executed,
                steps_replayed=step.replayed,
            )
            return _summary(run)

    async def _claim(self, db: AsyncSession, run_id: UUID) -> bool:
        now = utcnow()
        stmt = (
            update(WorkflowRun)
            .where(WorkflowRun.id == run_id, WorkflowRun.status == WorkflowRunStatus.QUEUED)
            .values(
                status=WorkflowRunStatus.RUNNING,
                attempts=WorkflowRun.attempts + 1,
                started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount == 1

    async def _retry_or_fail(
        self,
        db: AsyncSession,
        run_id: UUID,
        registration: WorkflowRegistration,
        event: WorkflowEvent,
        exc: TransientInfraError,
    ) -> dict[str, Any]:
        run = await db.get(WorkflowRun, run_id, populate_existing=True)
        if run.attempts >= run.max_attempts:
            return await self._fail(
                db,
                run_id,
                registration,
                event,
                f"Retries exhausted after {run.attempts} attempts: {exc}",
            )
        delay = retry_delay_seconds(
            run.attempts,
            factor=self._retry_backoff_factor,
            max_value=self._retry_backoff_max,
        )
        run.status = WorkflowRunStatus.QUEUED
        run.error_message = str(exc)
        run.next_attempt_at = utcnow() + timedelta(seconds=delay)
        await db.commit()
        get_reward_store().record_workflow(run.function_id, "retried")
        logger.warning(
            "Workflow run requeued after transient failure",
            run_id=str(run_id),
            function_id=run.function_id,
            attempt=run.attempts,
            delay_seconds=delay,
            error=str(exc),
        )
        publish_runs([run], countdown=delay)
        return _summary(run)

    async def _fail(
        self,
        db: AsyncSession,
        run_id: UUID,
        registration: WorkflowRegistration | None,
        event: WorkflowEvent,
        error: str,
    ) -> dict[str, Any]:
        if registration is not None and registration.on_failure is not None:
            await registration.on_failure(db, event, error)
        run = await db.get(WorkflowRun, run_id, populate_existing=True)
        run.status = WorkflowRunStatus.FAILED
        run.error_message = error
        run.completed_at = utcnow()
        await db.commit()
        get_reward_store().record_workflow(run.function_id, "failed")
        logger.error(
            "Workflow run failed permanently",
            run_id=str(run_id),
            function_id=run.function_id,
            attempts=run.attempts,
            error=error,
        )
        return _summary(run)

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


def _summary(run: WorkflowRun, *, skipped: bool = False) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "runId": str(run.id),
        "functionId": run.function_id,
        "status": run.status.value,
        "attempts": run.attempts,
        "error": run.error_message,
        "result": run.result_payload,
    }
    if skipped:
        payload["skipped"] = True
    return payload


__all__ = [
    "AsyncDispatcher",
    "EXECUTE_RUN_TASK",
    "StepRunner",
    "WorkflowEvent",
    "WorkflowExecutor",
    "WorkflowRegistration",
    "WorkflowRegistry",
    "publish_runs",
    "retry_delay_seconds",
]
