from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from rewards_api.tasks.reward_workflows import process_workflow_run

OPERATOR = {"X-User-Id": "operator-1", "X-User-Roles": "OPERATOR"}
AUDITOR = {"X-User-Id": "auditor-1", "X-User-Roles": "AUDITOR"}
PLAYER = {"X-User-Id": "player-1"}
OTHER_PLAYER = {"X-User-Id": "player-2", "X-User-Roles": "USER"}


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _create_event(client: AsyncClient, **overrides) -> dict:
    now = datetime.now(timezone.utc)
    payload = {
        "name": "Launch week",
        "description": "Log in during launch week.",
        "eventType": "DAILY_LOGIN",
        "startDate": (now - timedelta(days=1)).isoformat(),
        "endDate": (now + timedelta(days=6)).isoformat(),
    }
    payload.update(overrides)
    response = await client.post("/api/v1/events", json=payload, headers=OPERATOR)
    assert response.status_code == 201, response.text
    return response.json()


async def _create_reward(client: AsyncClient, event_id: str, quantity: int = 5) -> dict:
    response = await client.post(
        "/api/v1/rewards",
        json={
            "name": "Launch points",
            "rewardType": "POINTS",
            "value": "250",
            "quantity": quantity,
            "eventId": event_id,
        },
        headers=OPERATOR,
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_reward_request_flow_is_idempotent(app_with_db):
    app, _ = app_with_db
    async with _client(app) as client:
        event = await _create_event(client)
        reward = await _create_reward(client, event["id"], quantity=2)

        first = await client.post("/api/v1/rewards/requests", json={"eventId": event["id"]}, headers=PLAYER)
        second = await client.post("/api/v1/rewards/requests", json={"eventId": event["id"]}, headers=PLAYER)

        assert first.status_code == 200, first.text
        body = first.json()
        assert body["status"] == "COMPLETED"
        assert body["rewardId"] == reward["id"]
        assert body["userId"] == "player-1"
        assert second.json()["id"] == body["id"]

        reward_after = await client.get(f"/api/v1/rewards/{reward['id']}", headers=PLAYER)
        assert reward_after.json()["quantity"] == 1

        mine = await client.get("/api/v1/rewards/requests/me", headers=PLAYER)
        assert mine.json()["total"] == 1

        own = await client.get(f"/api/v1/rewards/requests/{body['id']}", headers=PLAYER)
        assert own.status_code == 200
        foreign = await client.get(f"/api/v1/rewards/requests/{body['id']}", headers=OTHER_PLAYER)
        assert foreign.status_code == 403
        assert foreign.json()["detail"]["code"] == "access_denied"
        audited = await client.get(f"/api/v1/rewards/requests/{body['id']}", headers=AUDITOR)
        assert audited.status_code == 200


@pytest.mark.asyncio
async def test_identity_headers_are_required(app_with_db):
    app, _ = app_with_db
    async with _client(app) as client:
        missing = await client.get("/api/v1/rewards/requests/me")
        unknown_role = await client.get(
            "/api/v1/rewards/requests/me",
            headers={"X-User-Id": "player-1", "X-User-Roles": "WIZARD"},
        )
        not_operator = await client.post(
            "/api/v1/events",
            json={"name": "x", "eventType": "DAILY_LOGIN", "startDate": "2026-10-01T00:00:00Z", "endDate": "2026-10-02T00:00:00Z"},
            headers=PLAYER,
        )

    assert missing.status_code == 401
    assert unknown_role.status_code == 400
    assert not_operator.status_code == 403


@pytest.mark.asyncio
async def test_request_errors_map_to_status_codes(app_with_db):
    app, _ = app_with_db
    async with _client(app) as client:
        unknown = await client.post("/api/v1/rewards/requests", json={"eventId": str(uuid4())}, headers=PLAYER)
        assert unknown.status_code == 404
        assert unknown.json()["detail"]["code"] == "not_found"

        manual = await _create_event(client, approvalMode="MANUAL")
        await _create_reward(client, manual["id"])
        pending = await client.post("/api/v1/rewards/requests", json={"eventId": manual["id"]}, headers=PLAYER)
        assert pending.json()["status"] == "PENDING"

        conflict = await client.post(
            "/api/v1/rewards/requests",
            json={"eventId": manual["id"], "idempotencyKey": "second-try"},
            headers=PLAYER,
        )
        assert conflict.status_code == 409
        assert conflict.json()["detail"]["code"] == "conflict"

        bad_window = await client.post(
            "/api/v1/events",
            json={
                "name": "Backwards",
                "eventType": "DAILY_LOGIN",
                "startDate": "2026-10-05T00:00:00Z",
                "endDate": "2026-10-01T00:00:00Z",
            },
            headers=OPERATOR,
        )
        assert bad_window.status_code == 400


@pytest.mark.asyncio
async def test_operator_approval_and_rejection(app_with_db):
    app, _ = app_with_db
    async with _client(app) as client:
        event = await _create_event(client, approvalMode="MANUAL")
        await _create_reward(client, event["id"], quantity=3)
        first = (
            await client.post("/api/v1/rewards/requests", json={"eventId": event["id"]}, headers=PLAYER)
        ).json()
        second = (
            await client.post("/api/v1/rewards/requests", json={"eventId": event["id"]}, headers=OTHER_PLAYER)
        ).json()

        forbidden = await client.post(f"/api/v1/rewards/requests/{first['id']}/approve", headers=PLAYER)
        assert forbidden.status_code == 403

        approved = await client.post(f"/api/v1/rewards/requests/{first['id']}/approve", headers=OPERATOR)
        assert approved.status_code == 200
        assert approved.json()["status"] == "COMPLETED"
        assert approved.json()["processedBy"] == "operator-1"

        again = await client.post(f"/api/v1/rewards/requests/{first['id']}/approve", headers=OPERATOR)
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "invalid_state_transition"

        rejected = await client.post(
            f"/api/v1/rewards/requests/{second['id']}/reject",
            json={"reason": "Account under review"},
            headers=OPERATOR,
        )
        assert rejected.json()["status"] == "REJECTED"
        assert rejected.json()["message"] == "Account under review"

        stats = await client.get("/api/v1/rewards/requests/statistics", headers=AUDITOR)
        assert stats.json()["total"] == 2
        assert stats.json()["byStatus"]["COMPLETED"] == 1
        assert stats.json()["byStatus"]["REJECTED"] == 1

        listing = await client.get("/api/v1/rewards/requests", params={"status": "REJECTED"}, headers=AUDITOR)
        assert [item["id"] for item in listing.json()["items"]] == [second["id"]]
        hidden = await client.get("/api/v1/rewards/requests", headers=PLAYER)
        assert hidden.status_code == 403


@pytest.mark.asyncio
async def test_admin_status_update_then_claim(app_with_db):
    app, _ = app_with_db
    async with _client(app) as client:
        event = await _create_event(client, approvalMode="MANUAL")
        reward = await _create_reward(client, event["id"], quantity=1)
        request = (
            await client.post("/api/v1/rewards/requests", json={"eventId": event["id"]}, headers=PLAYER)
        ).json()

        invalid = await client.post(
            f"/api/v1/rewards/requests/{request['id']}/status",
            json={"status": "COMPLETED"},
            headers=OPERATOR,
        )
        assert invalid.status_code == 422

        approved = await client.post(
            f"/api/v1/rewards/requests/{request['id']}/status",
            json={"status": "APPROVED", "message": "Verified"},
            headers=OPERATOR,
        )
        assert approved.json()["status"] == "APPROVED"

        pending = await client.get("/api/v1/rewards/requests/pending", headers=PLAYER)
        assert [item["id"] for item in pending.json()] == [request["id"]]

        stolen = await client.post(
            f"/api/v1/rewards/requests/{request['id']}/claim",
            json={"transactionId": "txn-1"},
            headers=OTHER_PLAYER,
        )
        assert stolen.status_code == 403

        claimed = await client.post(
            f"/api/v1/rewards/requests/{request['id']}/claim",
            json={"gameTransactionId": "txn-1"},
            headers=PLAYER,
        )
        assert claimed.status_code == 200
        assert claimed.json()["status"] == "COMPLETED"

        stock = await client.get(f"/api/v1/rewards/{reward['id']}", headers=PLAYER)
        assert stock.json()["quantity"] == 0

        timeline = await client.get(f"/api/v1/rewards/requests/{request['id']}/timeline", headers=PLAYER)
        entries = timeline.json()
        assert [entry["toStatus"] for entry in entries] == ["PENDING", "APPROVED", "COMPLETED"]
        assert entries[-1]["metadata"] == {"transactionId": "txn-1"}

        foreign_timeline = await client.get(
            f"/api/v1/rewards/requests/{request['id']}/timeline",
            headers=OTHER_PLAYER,
        )
        assert foreign_timeline.status_code == 403

        note = await client.post(
            f"/api/v1/rewards/requests/{request['id']}/notes",
            json={"note": "Delivered in game"},
            headers=OPERATOR,
        )
        assert note.status_code == 201
        assert note.json()["eventType"] == "NOTE"


@pytest.mark.asyncio
async def test_event_endpoints(app_with_db):
    app, _ = app_with_db
    async with _client(app) as client:
        event = await _create_event(client, condition={"consecutiveDays": 1})
        await _create_reward(client, event["id"])

        listed = await client.get("/api/v1/events", headers=PLAYER)
        assert listed.json()["total"] == 1
        active = await client.get("/api/v1/events/active", headers=PLAYER)
        assert [item["id"] for item in active.json()] == [event["id"]]
        activity = await client.get(f"/api/v1/events/{event['id']}/active", headers=PLAYER)
        assert activity.json()["active"] is True
        rewards = await client.get(f"/api/v1/events/{event['id']}/rewards", headers=PLAYER)
        assert len(rewards.json()) == 1

        before = await client.post(
            "/api/v1/events/check-condition",
            json={"userId": "player-1", "eventId": event["id"]},
            headers=PLAYER,
        )
        assert before.json()["satisfied"] is False

        logged = await client.post(
            "/api/v1/events/logs",
            json={"userId": "player-1", "eventType": "daily_login", "data": {"device": "ios"}},
            headers=PLAYER,
        )
        assert logged.status_code == 201
        assert logged.json()["eventType"] == "DAILY_LOGIN"

        after = await client.post(
            "/api/v1/events/check-condition",
            json={"userId": "player-1", "eventId": event["id"]},
            headers=PLAYER,
        )
        assert after.json()["satisfied"] is True

        impersonation = await client.post(
            "/api/v1/events/logs",
            json={"userId": "player-2", "eventType": "DAILY_LOGIN"},
            headers=PLAYER,
        )
        assert impersonation.status_code == 403

        my_logs = await client.get("/api/v1/events/logs/me", headers=PLAYER)
        assert my_logs.json()["total"] == 1
        all_logs = await client.get("/api/v1/events/logs", params={"eventType": "DAILY_LOGIN"}, headers=AUDITOR)
        assert all_logs.json()["total"] == 1

        paused = await client.post(
            f"/api/v1/events/{event['id']}/status",
            json={"status": "INACTIVE"},
            headers=OPERATOR,
        )
        assert paused.json()["status"] == "INACTIVE"
        request = await client.post("/api/v1/rewards/requests", json={"eventId": event["id"]}, headers=PLAYER)
        assert request.json()["status"] == "REJECTED"
        assert request.json()["message"] == "Event is not active"

        renamed = await client.patch(f"/api/v1/events/{event['id']}", json={"name": "Launch month"}, headers=OPERATOR)
        assert renamed.json()["name"] == "Launch month"


@pytest.mark.asyncio
async def test_track_queues_user_event_workflow(app_with_db):
    app, session_factory = app_with_db
    async with _client(app) as client:
        response = await client.post(
            "/api/v1/events/track",
            json={"eventType": "level_up", "data": {"newLevel": 12}},
            headers=PLAYER,
        )

    assert response.status_code == 202
    body = response.json()
    assert body["eventName"] == "user/LEVEL_UP"
    assert len(body["runIds"]) == 1

    summary = await process_workflow_run(UUID(body["runIds"][0]), session_factory=session_factory)
    assert summary["status"] == "succeeded"
    assert summary["result"]["result"] == {"success": True, "currentLevel": 12}


@pytest.mark.asyncio
async def test_observability_snapshot_reports_counters(app_with_db):
    app, _ = app_with_db
    async with _client(app) as client:
        event = await _create_event(client)
        await _create_reward(client, event["id"], quantity=1)
        await client.post("/api/v1/rewards/requests", json={"eventId": event["id"]}, headers=PLAYER)

        denied = await client.get("/api/v1/observability/rewards", headers=PLAYER)
        snapshot = await client.get("/api/v1/observability/rewards", headers=AUDITOR)

    assert denied.status_code == 403
    body = snapshot.json()
    assert body["requests"]["completed"] == 1
    assert body["inventory"]["decremented"] == 1
