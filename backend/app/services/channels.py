"""Notification channels.

Every channel exposes one capability, ``deliver(message) -> DeliveryOutcome``.
Adding a channel means writing a class with that method and registering it
under its name with register_channel().
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from app.core.config import settings
from app.core.exceptions import ChannelTransportError
from app.db.base import utcnow
from app.models.notification import NotificationChannel
from app.services import email as email_svc
from app.services.realtime import ConnectionRegistry, RedisRealtimeBridge
from app.services.realtime import bridge as default_bridge
from app.services.realtime import registry as default_registry

logger = logging.getLogger(__name__)


@dataclass
class ChannelMessage:
    log_id: uuid.UUID
    recipient: str
    subject: str
    content: str
    metadata: dict = field(default_factory=dict)


@dataclass
class DeliveryOutcome:
    """Result of one transport attempt. ``sent`` means the transport accepted it."""

    sent: bool
    error: str | None = None

    @classmethod
    def accepted(cls) -> "DeliveryOutcome":
        return cls(sent=True)

    @classmethod
    def failed(cls, error: str) -> "DeliveryOutcome":
        return cls(sent=False, error=error)


class Channel(Protocol):
    name: str

    def deliver(self, message: ChannelMessage) -> DeliveryOutcome:
        ...


class _BaseChannel:
    name = ""

    def deliver(self, message: ChannelMessage) -> DeliveryOutcome:
        try:
            self._send(message)
        except ChannelTransportError as exc:
            logger.warning("%s delivery of %s to %s failed: %s", self.name, message.log_id, message.recipient, exc.message)
            return DeliveryOutcome.failed(exc.message)
        return DeliveryOutcome.accepted()

    def _send(self, message: ChannelMessage) -> None:
        raise NotImplementedError


# ─── Email ───

class EmailChannel(_BaseChannel):
    name = NotificationChannel.email.value

    def _send(self, message: ChannelMessage) -> None:
        email_svc.send_email(message.recipient, message.subject, message.content)


# ─── HTTP webhooks (Slack, Teams, generic) ───

def resolve_endpoint(recipient: str) -> str:
    """A recipient is either a literal http(s) URL or a name in WEBHOOK_ENDPOINTS."""
    if recipient.startswith(("http://", "https://")):
        return recipient
    url = settings.webhook_endpoints_map.get(recipient)
    if not url:
        raise ChannelTransportError(f"Unknown webhook endpoint '{recipient}'")
    return url


class _HttpChannel(_BaseChannel):
    def __init__(self, client: httpx.Client | None = None):
        self._client = client

    def _payload(self, message: ChannelMessage) -> dict:
        raise NotImplementedError

    def _send(self, message: ChannelMessage) -> None:
        url = resolve_endpoint(message.recipient)
        timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
        try:
            if self._client is not None:
                response = self._client.post(url, json=self._payload(message), timeout=timeout)
            else:
                response = httpx.post(url, json=self._payload(message), timeout=timeout)
        except httpx.TimeoutException as exc:
            raise ChannelTransportError(f"{self.name} webhook timed out after {timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ChannelTransportError(f"{self.name} webhook request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ChannelTransportError(
                f"{self.name} webhook returned HTTP {response.status_code}",
                {"body": response.text[:500]},
            )


class SlackChannel(_HttpChannel):
    name = NotificationChannel.slack.value

    def _payload(self, message: ChannelMessage) -> dict:
        return {
            "text": message.subject,
            "blocks": [
                {"type": "header", "text": {"type": "plain_text", "text": message.subject[:150]}},
                {"type": "section", "text": {"type": "mrkdwn", "text": message.content}},
            ],
        }


class TeamsChannel(_HttpChannel):
    name = NotificationChannel.teams.value

    def _payload(self, message: ChannelMessage) -> dict:
        return {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "summary": message.subject,
            "title": message.subject,
            "text": message.content.replace("\n", "<br>"),
        }


class WebhookChannel(_HttpChannel):
    name = NotificationChannel.webhook.value

    def _payload(self, message: ChannelMessage) -> dict:
        return {
            "notification_id": str(message.log_id),
            "subject": message.subject,
            "content": message.content,
            "metadata": message.metadata,
            "sent_at": utcnow().isoformat(),
        }


# ─── Realtime push ───

class RealtimeChannel(_BaseChannel):
    """Pushes to connected WebSocket clients; the client ack marks the log delivered.

    With REALTIME_BRIDGE_ENABLED the push goes through Redis so it reaches
    sockets held by any API process; otherwise only this process's sockets.
    """

    name = NotificationChannel.realtime.value

    def __init__(
        self,
        connections: ConnectionRegistry | None = None,
        bridge: RedisRealtimeBridge | None = None,
    ):
        self._connections = connections or default_registry
        self._bridge = bridge or default_bridge

    def _send(self, message: ChannelMessage) -> None:
        payload = {
            "type": "notification",
            "id": str(message.log_id),
            "subject": message.subject,
            "content": message.content,
            "metadata": message.metadata,
        }
        timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
        if settings.REALTIME_BRIDGE_ENABLED:
            self._bridge.publish(message.recipient, payload, timeout=timeout)
        else:
            self._connections.push(message.recipient, payload, timeout=timeout)


# ─── Registry ───

_channels: dict[str, Channel] = {}


def register_channel(name: str, channel: Channel) -> None:
    _channels[name] = channel


def _register_defaults() -> None:
    for channel in (EmailChannel(), SlackChannel(), TeamsChannel(), WebhookChannel(), RealtimeChannel()):
        _channels.setdefault(channel.name, channel)


def get_channel(name: str) -> Channel:
    if name not in _channels:
        _register_defaults()
    try:
        return _channels[name]
    except KeyError:
        raise ChannelTransportError(f"No channel registered for '{name}'")
