"""HTTP-level tests: auth, status-code mapping and request validation."""
import uuid
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import APP_ID, T0, auth_header, make_inquiry, make_policy
from app.main import app
from app.services import sla_monitor

POLICY_BODY = {
    "app_id": str(APP_ID),
    "priority": "urgent",
    "response_target_hours": 1,
    "resolution_target_hours": 24,
    "escalation_target_hours": 4,
}


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


# ─── Auth ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_missing_token_returns_401(api_db):
    async with _client() as client:
        response = await client.get("/api/v1/sla/policies")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_garbage_token_returns_401(api_db):
    async with _client() as client:
        response = await client.get("/api/v1/sla/policies", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_agent_cannot_create_policy(api_db):
    async with _client() as client:
        response = await client.post("/api/v1/sla/policies", json=POLICY_BODY, headers=auth_header("AGENT"))
    assert response.status_code == 403


# ─── SLA policies ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_policy_then_duplicate_conflicts(api_db):
    async with _client() as client:
        created = await client.post("/api/v1/sla/policies", json=POLICY_BODY, headers=auth_header())
        duplicate = await client.post("/api/v1/sla/policies", json=POLICY_BODY, headers=auth_header())
        listed = await client.get("/api/v1/sla/policies", headers=auth_header("AGENT"))

    assert created.status_code == 201
    assert created.json()["priority"] == "urgent"
    assert duplicate.status_code == 409
    assert listed.json()["total"] == 1


@pytest.mark.asyncio
async def test_create_policy_rejects_nonpositive_target(api_db):
    body = {**POLICY_BODY, "response_target_hours": 0}
    async with _client() as client:
        response = await client.post("/api/v1/sla/policies", json=body, headers=auth_header())
    assert response.status_code == 422


# ─── Violations ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_and_resolve_violation(api_db):
    make_policy(api_db)
    inquiry = make_inquiry(api_db)
    sla_monitor.run_sweep(api_db, now=T0 + timedelta(hours=2), emit=lambda e: None)

    async with _client() as client:
        listed = await client.get(
            "/api/v1/sla/violations", params={"resolved": "false"}, headers=auth_header("AGENT"),
        )
        [item] = listed.json()["items"]
        resolved = await client.post(
            f"/api/v1/sla/violations/{item['id']}/resolve",
            json={"comment": "Handled by phone"},
            headers=auth_header("SUPERVISOR"),
        )
        stats = await client.get("/api/v1/sla/violations/stats", headers=auth_header())

    assert item["inquiry_id"] == str(inquiry.id)
    assert item["kind"] == "response_time"
    assert resolved.status_code == 200
    assert resolved.json()["resolved"] is True
    assert stats.json()["resolved"] == 1


@pytest.mark.asyncio
async def test_resolve_unknown_violation_404(api_db):
    async with _client() as client:
        response = await client.post(
            f"/api/v1/sla/violations/{uuid.uuid4()}/resolve", json={}, headers=auth_header(),
        )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_manual_sweep(api_db):
    make_policy(api_db)
    make_inquiry(api_db)

    with patch("app.services.events.publish"):
        async with _client() as client:
            response = await client.post("/api/v1/sla/violations/check", headers=auth_header())

    assert response.status_code == 200
    assert response.json()["checked"] == 1


# ─── Escalations ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_escalate_and_history(api_db):
    inquiry = make_inquiry(api_db)
    supervisor = uuid.uuid4()

    with patch("app.services.events.publish"):
        async with _client() as client:
            first = await client.post(
                f"/api/v1/escalations/inquiries/{inquiry.id}",
                json={"to_assignee": str(supervisor), "reason": "complexity", "comment": "Needs billing"},
                headers=auth_header("AGENT"),
            )
            history = await client.get(
                f"/api/v1/escalations/inquiries/{inquiry.id}/history", headers=auth_header("AGENT"),
            )

    assert first.status_code == 201
    assert first.json()["level"] == 1
    assert history.json()["current_level"] == 1
    assert [e["to_assignee"] for e in history.json()["items"]] == [str(supervisor)]


@pytest.mark.asyncio
async def test_escalate_closed_inquiry_409(api_db):
    inquiry = make_inquiry(api_db, status="closed")

    async with _client() as client:
        response = await client.post(
            f"/api/v1/escalations/inquiries/{inquiry.id}",
            json={"to_assignee": str(uuid.uuid4()), "reason": "manual"},
            headers=auth_header(),
        )

    assert response.status_code == 409


# ─── Notification rules ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_rule_and_dry_run(api_db):
    body = {
        "name": "Critical breaches to ops",
        "trigger": "sla_violation",
        "conditions": [{"field": "severity", "operator": "equals", "value": "critical"}],
        "actions": [{"channel": "webhook", "recipients": ["ops-hook"]}],
    }
    sample = {"trigger": "sla_violation", "payload": {"severity": "critical", "inquiry": {"title": "Outage"}}}

    async with _client() as client:
        created = await client.post("/api/v1/notifications/rules", json=body, headers=auth_header())
        rule_id = created.json()["id"]
        dry_run = await client.post(f"/api/v1/notifications/rules/{rule_id}/test", json=sample, headers=auth_header())

    assert created.status_code == 201
    assert dry_run.status_code == 200
    [instruction] = dry_run.json()
    assert instruction["recipients"] == ["ops-hook"]
    assert instruction["subject"] == "SLA violation alert - Outage"


@pytest.mark.asyncio
async def test_create_rule_rejects_unknown_channel(api_db):
    body = {
        "name": "Carrier pigeon",
        "trigger": "escalation",
        "actions": [{"channel": "pigeon", "recipients": ["loft-3"]}],
    }
    async with _client() as client:
        response = await client.post("/api/v1/notifications/rules", json=body, headers=auth_header())
    assert response.status_code == 422


# ─── Events ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
@patch("app.workers.notification_tasks.process_domain_event")
async def test_ingest_event_enqueued(mock_task, api_db):
    mock_task.delay.return_value = MagicMock(id="task-123")
    inquiry_id = uuid.uuid4()

    async with _client() as client:
        response = await client.post(
            "/api/v1/events",
            json={"trigger": "response_added", "inquiry_id": str(inquiry_id)},
            headers=auth_header("SERVICE"),
        )

    assert response.status_code == 202
    assert response.json()["task_id"] == "task-123"
    [payload] = mock_task.delay.call_args.args
    assert payload["inquiry_id"] == str(inquiry_id)
    assert payload["triggered_by"] is not None


@pytest.mark.asyncio
@patch("app.workers.notification_tasks.process_domain_event")
async def test_ingest_event_broker_down_503(mock_task, api_db):
    mock_task.delay.side_effect = ConnectionError("redis down")

    async with _client() as client:
        response = await client.post(
            "/api/v1/events", json={"trigger": "inquiry_created"}, headers=auth_header("SERVICE"),
        )

    assert response.status_code == 503


# ─── Notifications ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_adhoc_send_and_confirm(api_db, monkeypatch):
    from app.services import channels
    from app.services.channels import DeliveryOutcome

    webhook = MagicMock()
    webhook.deliver.return_value = DeliveryOutcome.accepted()
    monkeypatch.setitem(channels._channels, "webhook", webhook)
    body = {
        "channel": "webhook",
        "recipients": ["ops-hook"],
        "subject": "Maintenance tonight",
        "content": "Ticket intake paused 22:00-23:00 UTC",
        "metadata": {"source": "ops"},
    }

    async with _client() as client:
        sent = await client.post("/api/v1/notifications/send", json=body, headers=auth_header("SUPERVISOR"))
        [log] = sent.json()["items"]
        confirmed = await client.post(f"/api/v1/notifications/logs/{log['id']}/delivered", headers=auth_header("SERVICE"))
        again = await client.post(f"/api/v1/notifications/logs/{log['id']}/delivered", headers=auth_header("SERVICE"))
        listed = await client.get("/api/v1/notifications/logs", params={"status": "delivered"}, headers=auth_header())

    assert sent.status_code == 202
    assert log["status"] == "sent"
    assert log["rule_id"] is None
    assert log["metadata"] == {"source": "ops"}
    assert confirmed.json()["status"] == "delivered"
    assert again.status_code == 200
    assert listed.json()["total"] == 1


@pytest.mark.asyncio
async def test_confirm_unknown_log_404(api_db):
    async with _client() as client:
        response = await client.post(f"/api/v1/notifications/logs/{uuid.uuid4()}/delivered", headers=auth_header())
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_confirm_restricted_to_own_realtime_logs(api_db, monkeypatch):
    from app.schemas.notification import DispatchInstruction
    from app.services import channels, dispatcher
    from app.services.channels import DeliveryOutcome

    transport = MagicMock()
    transport.deliver.return_value = DeliveryOutcome.accepted()
    monkeypatch.setitem(channels._channels, "webhook", transport)
    monkeypatch.setitem(channels._channels, "realtime", transport)
    agent, other = uuid.uuid4(), uuid.uuid4()

    def _send(channel, recipient):
        [log] = dispatcher.dispatch(
            api_db,
            DispatchInstruction(channel=channel, recipients=[recipient], subject="Escalated", content="Level 1"),
        )
        return log.id

    webhook_log = _send("webhook", "ops-hook")
    realtime_log = _send("realtime", str(agent))

    async with _client() as client:
        foreign_channel = await client.post(
            f"/api/v1/notifications/logs/{webhook_log}/delivered", headers=auth_header("AGENT", agent),
        )
        foreign_recipient = await client.post(
            f"/api/v1/notifications/logs/{realtime_log}/delivered", headers=auth_header("AGENT", other),
        )
        own = await client.post(
            f"/api/v1/notifications/logs/{realtime_log}/delivered", headers=auth_header("AGENT", agent),
        )

    assert foreign_channel.status_code == 403
    assert foreign_recipient.status_code == 403
    assert own.status_code == 200
    assert own.json()["status"] == "delivered"
