from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import pytest
from sqlalchemy import select

from rewards_api.core.settings import settings
from rewards_api.models.event import ApprovalMode, EventType
from rewards_api.models.reward import Reward
from rewards_api.models.reward_request import RewardRequest, RewardRequestStatus
from rewards_api.models.workflow import WorkflowRun, WorkflowRunStatus, WorkflowStepResult
from rewards_api.schemas.rewards import RewardRequestCreate
from rewards_api.services.conditions import DailyLoginStrategy, build_condition_evaluator
from rewards_api.services.dispatch import AsyncDispatcher, WorkflowExecutor
from rewards_api.services.dispatch.workflows import build_workflow_registry, track_user_event
from rewards_api.services.errors import TransientInfraError
from rewards_api.services.events import EventLogService
from rewards_api.services.rewards import RewardRequestProcessor


def _executor(registry, session_factory) -> WorkflowExecutor:
    return WorkflowExecutor(
        registry,
        session_factory=session_factory,
        step_max_tries=1,
        step_backoff_factor=0,
        retry_backoff_factor=0,
    )


async def _queue_request(session_factory, seed_event, registry, **event_kwargs) -> tuple[UUID, UUID, UUID | None]:
    async with session_factory() as session:
        event, reward = await seed_event(session, **event_kwargs)
        processor = RewardRequestProcessor(session, registry=registry, processing_mode="deferred")
        request = await processor.process_reward_request("user-1", RewardRequestCreate(event_id=event.id))
        run = (await session.execute(select(WorkflowRun))).scalar_one()
        return request.id, run.id, reward.id if reward is not None else None


async def _load_request(session_factory, request_id: UUID) -> RewardRequest:
    async with session_factory() as session:
        return await session.get(RewardRequest, request_id)


@pytest.mark.asyncio
async def test_queued_request_is_granted_by_workflow(session_factory, seed_event):
    registry = build_workflow_registry()
    request_id, run_id, reward_id = await _queue_request(session_factory, seed_event, registry, quantity=2)

    summary = await _executor(registry, session_factory).execute(run_id)

    assert summary["status"] == WorkflowRunStatus.SUCCEEDED.value
    assert summary["result"] == {"requestId": str(request_id), "status": "COMPLETED"}
    request = await _load_request(session_factory, request_id)
    assert request.status == RewardRequestStatus.COMPLETED
    assert request.message == "Reward granted"
    async with session_factory() as session:
        assert (await session.get(Reward, reward_id)).quantity == 1
        steps = (await session.execute(select(WorkflowStepResult.step_name))).scalars().all()
        assert sorted(steps) == ["check-eligibility", "fetch-event-reward", "settle-request"]


@pytest.mark.asyncio
async def test_workflow_rejects_when_condition_unmet(session_factory, seed_event):
    registry = build_workflow_registry()
    request_id, run_id, reward_id = await _queue_request(
        session_factory,
        seed_event,
        registry,
        condition={"consecutiveDays": 2},
        quantity=1,
    )

    summary = await _executor(registry, session_factory).execute(run_id)

    assert summary["result"]["status"] == "REJECTED"
    request = await _load_request(session_factory, request_id)
    assert request.message == "Condition not satisfied"
    async with session_factory() as session:
        assert (await session.get(Reward, reward_id)).quantity == 1


@pytest.mark.asyncio
async def test_manual_events_stay_pending_after_workflow(session_factory, seed_event):
    registry = build_workflow_registry()
    request_id, run_id, _ = await _queue_request(
        session_factory,
        seed_event,
        registry,
        approval_mode=ApprovalMode.MANUAL,
    )

    summary = await _executor(registry, session_factory).execute(run_id)

    assert summary["result"]["awaitingApproval"] is True
    request = await _load_request(session_factory, request_id)
    assert request.status == RewardRequestStatus.PENDING
    assert request.message == "Awaiting admin approval"


@pytest.mark.asyncio
async def test_workflow_skips_requests_settled_elsewhere(session_factory, seed_event):
    registry = build_workflow_registry()
    request_id, run_id, _ = await _queue_request(session_factory, seed_event, registry)
    async with session_factory() as session:
        processor = RewardRequestProcessor(session, registry=registry)
        await processor.reject_reward_request(request_id, "Fraud review", actor_id="admin-1")

    summary = await _executor(registry, session_factory).execute(run_id)

    assert summary["status"] == WorkflowRunStatus.SUCCEEDED.value
    assert summary["result"]["skipped"] is True
    assert summary["result"]["status"] == "REJECTED"


@pytest.mark.asyncio
async def test_completed_steps_are_not_repeated_on_retry(session_factory, seed_event, monkeypatch):
    evaluator = build_condition_evaluator()
    evaluations = []
    original_evaluate = evaluator.evaluate_condition

    async def counting_evaluate(*args, **kwargs):
        evaluations.append(args[0])
        return await original_evaluate(*args, **kwargs)

    monkeypatch.setattr(evaluator, "evaluate_condition", counting_evaluate)

    settle_calls = {"count": 0}
    original_settle = RewardRequestProcessor.settle_queued_request

    async def flaky_settle(self, request_id, eligibility, *, approval_mode):
        settle_calls["count"] += 1
        if settle_calls["count"] == 1:
            raise TransientInfraError("inventory decrement timed out")
        return await original_settle(self, request_id, eligibility, approval_mode=approval_mode)

    monkeypatch.setattr(RewardRequestProcessor, "settle_queued_request", flaky_settle)

    registry = build_workflow_registry(evaluator=evaluator)
    async with session_factory() as session:
        await EventLogService(session).create_log("user-1", "DAILY_LOGIN", timestamp=datetime.now(timezone.utc))
    request_id, run_id, reward_id = await _queue_request(
        session_factory,
        seed_event,
        registry,
        condition={"consecutiveDays": 1},
        quantity=3,
    )
    executor = _executor(registry, session_factory)

    first = await executor.execute(run_id)
    assert first["status"] == WorkflowRunStatus.QUEUED.value
    assert first["attempts"] == 1
    assert "timed out" in first["error"]

    second = await executor.execute(run_id)
    assert second["status"] == WorkflowRunStatus.SUCCEEDED.value
    assert second["attempts"] == 2
    assert second["result"]["status"] == "COMPLETED"

    assert evaluations == ["user-1"]
    assert settle_calls["count"] == 2
    async with session_factory() as session:
        assert (await session.get(Reward, reward_id)).quantity == 2

    redelivered = await executor.execute(run_id)
    assert redelivered["skipped"] is True
    assert redelivered["status"] == WorkflowRunStatus.SUCCEEDED.value
    assert settle_calls["count"] == 2


@pytest.mark.asyncio
async def test_exhausted_retries_mark_request_failed(session_factory, seed_event, monkeypatch):
    monkeypatch.setattr(settings, "reward_workflow_max_attempts", 2)

    async def always_timing_out(self, request_id, eligibility, *, approval_mode):
        raise TransientInfraError("inventory decrement timed out")

    monkeypatch.setattr(RewardRequestProcessor, "settle_queued_request", always_timing_out)

    registry = build_workflow_registry()
    request_id, run_id, _ = await _queue_request(session_factory, seed_event, registry, quantity=1)
    executor = _executor(registry, session_factory)

    assert (await executor.execute(run_id))["status"] == WorkflowRunStatus.QUEUED.value
    final = await executor.execute(run_id)

    assert final["status"] == WorkflowRunStatus.FAILED.value
    assert final["error"].startswith("Retries exhausted after 2 attempts")
    request = await _load_request(session_factory, request_id)
    assert request.status == RewardRequestStatus.FAILED
    assert request.message.startswith("Processing failed: Retries exhausted")


@pytest.mark.asyncio
async def test_malformed_reward_payload_fails_run_permanently(session_factory):
    registry = build_workflow_registry()
    async with session_factory() as session:
        dispatcher = AsyncDispatcher(session, registry)
        runs = await dispatcher.send("reward/process", {"requestId": "not-a-uuid"})
        await session.commit()
        run_id = runs[0].id

    summary = await _executor(registry, session_factory).execute(run_id)

    assert summary["status"] == WorkflowRunStatus.FAILED.value
    assert "Invalid requestId" in summary["error"]


@pytest.mark.asyncio
async def test_user_event_is_logged_and_summarized(session_factory):
    registry = build_workflow_registry()
    async with session_factory() as session:
        runs = await track_user_event(
            session,
            registry,
            user_id="user-1",
            event_type="daily_login",
            data={"source": "app"},
        )
        assert [run.trigger_name for run in runs] == ["user/DAILY_LOGIN"]
        run_id = runs[0].id

    summary = await _executor(registry, session_factory).execute(run_id)

    result = summary["result"]
    assert result["success"] is True
    assert result["result"] == {"success": True, "consecutiveDays": 1}
    async with session_factory() as session:
        entries = await EventLogService(session).get_user_event_logs("user-1", "DAILY_LOGIN")
        assert [str(entry.id) for entry in entries] == [result["logId"]]
        assert entries[0].data == {"source": "app"}


@pytest.mark.asyncio
async def test_user_event_without_strategy_is_logged_only(session_factory):
    registry = build_workflow_registry()
    async with session_factory() as session:
        runs = await track_user_event(session, registry, user_id="user-1", event_type=EventType.PURCHASE.value)
        run_id = runs[0].id

    summary = await _executor(registry, session_factory).execute(run_id)

    assert summary["status"] == WorkflowRunStatus.SUCCEEDED.value
    assert summary["result"]["success"] is False
    assert summary["result"]["reason"] == "No processor found"
    async with session_factory() as session:
        assert await EventLogService(session).count_user_event_logs("user-1", "PURCHASE") == 1


@pytest.mark.asyncio
async def test_user_event_log_is_written_once_across_retries(session_factory, monkeypatch):
    calls = {"count": 0}
    original_summarize = DailyLoginStrategy.summarize

    async def flaky_summarize(self, user_id, payload, log_reader):
        calls["count"] += 1
        if calls["count"] == 1:
            raise TransientInfraError("event log read timed out")
        return await original_summarize(self, user_id, payload, log_reader)

    monkeypatch.setattr(DailyLoginStrategy, "summarize", flaky_summarize)
    registry = build_workflow_registry()
    async with session_factory() as session:
        runs = await track_user_event(session, registry, user_id="user-1", event_type="DAILY_LOGIN")
        run_id = runs[0].id
    executor = _executor(registry, session_factory)

    assert (await executor.execute(run_id))["status"] == WorkflowRunStatus.QUEUED.value
    assert (await executor.execute(run_id))["status"] == WorkflowRunStatus.SUCCEEDED.value

    async with session_factory() as session:
        assert await EventLogService(session).count_user_event_logs("user-1", "DAILY_LOGIN") == 1
