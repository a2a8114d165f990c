"""Tests for channel transports (HTTP webhooks, email, realtime)."""
import json
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import redis

from app.core.config import settings
from app.core.exceptions import ChannelTransportError
from app.services import channels
from app.services.channels import (
    ChannelMessage,
    EmailChannel,
    RealtimeChannel,
    SlackChannel,
    TeamsChannel,
    WebhookChannel,
    resolve_endpoint,
)
from app.services.realtime import ConnectionRegistry, RedisRealtimeBridge


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _message(recipient: str = "ops-hook") -> ChannelMessage:
    return ChannelMessage(
        log_id=uuid.uuid4(),
        recipient=recipient,
        subject="SLA violation alert - Refund not received",
        content="Delay: 2.5 hours\nSeverity: critical",
        metadata={"trigger": "sla_violation"},
    )


def _client(status_code: int = 200, seen: list | None = None) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, text="ok" if status_code < 400 else "nope")

    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def endpoints(monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_ENDPOINTS", json.dumps({"ops-hook": "https://hooks.example.com/ops"}))


# ─── Endpoint resolution ──────────────────────────────────────────────────────

def test_resolve_literal_url():
    assert resolve_endpoint("https://hooks.slack.com/services/T/B/X") == "https://hooks.slack.com/services/T/B/X"


def test_resolve_named_endpoint(endpoints):
    assert resolve_endpoint("ops-hook") == "https://hooks.example.com/ops"


def test_resolve_unknown_name_raises(endpoints):
    with pytest.raises(ChannelTransportError):
        resolve_endpoint("nobody")


# ─── HTTP channels ────────────────────────────────────────────────────────────

def test_webhook_posts_json_payload(endpoints):
    seen = []
    outcome = WebhookChannel(client=_client(seen=seen)).deliver(_message())

    assert outcome.sent is True
    [request] = seen
    assert str(request.url) == "https://hooks.example.com/ops"
    body = json.loads(request.content)
    assert body["subject"] == "SLA violation alert - Refund not received"
    assert body["metadata"] == {"trigger": "sla_violation"}


def test_slack_payload_has_blocks():
    seen = []
    SlackChannel(client=_client(seen=seen)).deliver(_message("https://hooks.slack.com/services/T/B/X"))

    body = json.loads(seen[0].content)
    assert body["text"] == "SLA violation alert - Refund not received"
    assert body["blocks"][1]["text"]["text"].startswith("Delay: 2.5 hours")


def test_teams_payload_is_message_card():
    seen = []
    TeamsChannel(client=_client(seen=seen)).deliver(_message("https://outlook.office.com/webhook/x"))

    body = json.loads(seen[0].content)
    assert body["@type"] == "MessageCard"
    assert "<br>" in body["text"]


def test_http_error_status_is_failure(endpoints):
    outcome = WebhookChannel(client=_client(status_code=503)).deliver(_message())

    assert outcome.sent is False
    assert "503" in outcome.error


def test_unknown_endpoint_is_failure_not_exception():
    outcome = WebhookChannel(client=_client()).deliver(_message("not-configured"))

    assert outcome.sent is False
    assert "not-configured" in outcome.error


# ─── Email ────────────────────────────────────────────────────────────────────

def test_email_console_mode_accepts():
    assert EmailChannel().deliver(_message("oncall@example.com")).sent is True


@patch("app.services.email.smtplib.SMTP")
def test_email_smtp_failure_is_failure(mock_smtp, monkeypatch):
    monkeypatch.setattr(settings, "MAIL_ENABLED", True)
    mock_smtp.side_effect = OSError("connection refused")

    outcome = EmailChannel().deliver(_message("oncall@example.com"))

    assert outcome.sent is False
    assert "connection refused" in outcome.error


# ─── Realtime ─────────────────────────────────────────────────────────────────

def test_realtime_without_connection_fails():
    outcome = RealtimeChannel(ConnectionRegistry()).deliver(_message("agent-7"))

    assert outcome.sent is False
    assert "No active realtime connection" in outcome.error


def test_realtime_push_uses_registry():
    connections = MagicMock()
    outcome = RealtimeChannel(connections).deliver(_message("agent-7"))

    assert outcome.sent is True
    user_id, payload = connections.push.call_args.args
    assert user_id == "agent-7"
    assert payload["type"] == "notification"


def _bridge(publish_result=1, connections=None):
    client = MagicMock()
    if isinstance(publish_result, Exception):
        client.publish.side_effect = publish_result
    else:
        client.publish.return_value = publish_result
    return RedisRealtimeBridge(connections or ConnectionRegistry(), client=client), client


def test_realtime_bridge_publishes_to_user_channel(monkeypatch):
    monkeypatch.setattr(settings, "REALTIME_BRIDGE_ENABLED", True)
    bridge, client = _bridge(publish_result=1)

    outcome = RealtimeChannel(ConnectionRegistry(), bridge).deliver(_message("agent-7"))

    assert outcome.sent is True
    channel, data = client.publish.call_args.args
    assert channel == "realtime:user:agent-7"
    assert json.loads(data)["subject"] == "SLA violation alert - Refund not received"


@pytest.mark.parametrize(
    "publish_result, error",
    [
        (0, "No active realtime connection"),
        (redis.ConnectionError("refused"), "Realtime bridge unavailable"),
    ],
)
def test_realtime_bridge_failures(monkeypatch, publish_result, error):
    monkeypatch.setattr(settings, "REALTIME_BRIDGE_ENABLED", True)
    bridge, _ = _bridge(publish_result=publish_result)

    outcome = RealtimeChannel(ConnectionRegistry(), bridge).deliver(_message("agent-7"))

    assert outcome.sent is False
    assert error in outcome.error


def test_worker_realtime_push_reaches_api_and_ack_delivers(db, monkeypatch):
    """A rule-fired realtime log sent from the worker is published, then acked by its recipient."""
    from app.schemas.notification import DispatchInstruction
    from app.services import dispatcher

    monkeypatch.setattr(settings, "REALTIME_BRIDGE_ENABLED", True)
    bridge, client = _bridge(publish_result=1)
    monkeypatch.setitem(channels._channels, "realtime", RealtimeChannel(ConnectionRegistry(), bridge))

    [log] = dispatcher.dispatch(
        db,
        DispatchInstruction(channel="realtime", recipients=["agent-7"], subject="Escalated", content="Level 1"),
    )
    assert log.status == "sent"
    assert json.loads(client.publish.call_args.args[1])["id"] == str(log.id)

    assert dispatcher.mark_delivered(db, log.id, recipient="agent-7").status == "delivered"


@pytest.mark.asyncio
async def test_bridge_forwards_to_local_sockets():
    connections = ConnectionRegistry()
    bridge, _ = _bridge(connections=connections)
    healthy, broken = AsyncMock(), AsyncMock()
    broken.send_json.side_effect = RuntimeError("socket closed")
    connections.connect("agent-7", healthy)
    connections.connect("agent-7", broken)

    reached = await bridge.forward("realtime:user:agent-7", json.dumps({"type": "notification", "id": "n-1"}))

    assert reached == 1
    healthy.send_json.assert_awaited_once_with({"type": "notification", "id": "n-1"})
    assert connections.connection_count("agent-7") == 1


@pytest.mark.asyncio
async def test_bridge_subscribes_while_user_connected():
    connections = ConnectionRegistry()
    bridge, _ = _bridge(connections=connections)
    bridge._pubsub = AsyncMock()
    socket = AsyncMock()

    connections.connect("agent-7", socket)
    await bridge.watch("agent-7")
    await bridge.unwatch("agent-7")
    bridge._pubsub.unsubscribe.assert_not_awaited()

    connections.disconnect("agent-7", socket)
    await bridge.unwatch("agent-7")

    bridge._pubsub.subscribe.assert_awaited_once_with("realtime:user:agent-7")
    bridge._pubsub.unsubscribe.assert_awaited_once_with("realtime:user:agent-7")


# ─── Registry ─────────────────────────────────────────────────────────────────

def test_registry_defaults_and_custom_channel(monkeypatch):
    monkeypatch.setattr(channels, "_channels", {})

    assert isinstance(channels.get_channel("slack"), SlackChannel)
    custom = MagicMock()
    channels.register_channel("pager", custom)
    assert channels.get_channel("pager") is custom
    with pytest.raises(ChannelTransportError):
        channels.get_channel("carrier-pigeon")
