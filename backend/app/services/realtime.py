"""Realtime (WebSocket) delivery.

ConnectionRegistry holds the sockets of this API process, keyed by user id.
Sockets live on the API event loop; push() is called from worker threads and
hands each send to that loop.

Notifications are usually delivered from a Celery worker, which holds no
sockets. RedisRealtimeBridge carries those pushes over Redis pub/sub: every
API process subscribes to ``<prefix><user_id>`` while that user has a socket
open, and the sending side publishes to the same channel. PUBLISH returns the
number of subscribed processes, so zero means nobody is listening.
"""
import asyncio
import concurrent.futures
import json
import logging
import threading
from typing import Any

import redis
import redis.asyncio as aioredis

from app.core.config import settings
from app.core.exceptions import ChannelTransportError

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._connections: dict[str, dict[Any, asyncio.AbstractEventLoop]] = {}
        self._lock = threading.Lock()

    def connect(self, user_id: str, websocket: Any) -> None:
        """Register an accepted socket. Must be called from the socket's event loop."""
        loop = asyncio.get_running_loop()
        with self._lock:
            self._connections.setdefault(user_id, {})[websocket] = loop
        logger.info("Realtime: user %s connected (%d sockets)", user_id, self.connection_count(user_id))

    def disconnect(self, user_id: str, websocket: Any) -> None:
        with self._lock:
            sockets = self._connections.get(user_id)
            if sockets is not None:
                sockets.pop(websocket, None)
                if not sockets:
                    del self._connections[user_id]
        logger.info("Realtime: user %s disconnected", user_id)

    def connection_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._connections.get(user_id, {}))

    def push(self, user_id: str, message: dict, timeout: float) -> int:
        """Send message to every socket of user_id. Returns the number of sockets reached.

        Raises:
            ChannelTransportError: no socket accepted the message within timeout.
        """
        with self._lock:
            targets = list(self._connections.get(user_id, {}).items())
        if not targets:
            raise ChannelTransportError(f"No active realtime connection for user {user_id}")

        reached = 0
        errors: list[str] = []
        for websocket, loop in targets:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                raise ChannelTransportError("Realtime push must not run on the socket's event loop")

            future = asyncio.run_coroutine_threadsafe(websocket.send_json(message), loop)
            try:
                future.result(timeout=timeout)
                reached += 1
            except concurrent.futures.TimeoutError:
                future.cancel()
                errors.append(f"timed out after {timeout}s")
            except Exception as exc:
                errors.append(str(exc))
                self.disconnect(user_id, websocket)

        if reached == 0:
            raise ChannelTransportError(f"Realtime push to user {user_id} failed: {'; '.join(errors)}")
        return reached

    async def send_local(self, user_id: str, message: dict, timeout: float) -> int:
        """Send from the sockets' own event loop. Broken sockets are dropped."""
        with self._lock:
            targets = list(self._connections.get(user_id, {}))

        reached = 0
        for websocket in targets:
            try:
                await asyncio.wait_for(websocket.send_json(message), timeout)
                reached += 1
            except asyncio.TimeoutError:
                logger.warning("Realtime: send to user %s timed out after %ss", user_id, timeout)
            except Exception as exc:
                logger.warning("Realtime: dropping socket of user %s: %s", user_id, exc)
                self.disconnect(user_id, websocket)
        return reached


def user_channel(user_id: str) -> str:
    return f"{settings.REALTIME_CHANNEL_PREFIX}{user_id}"


class RedisRealtimeBridge:
    """Publishes pushes from any process; forwards them to local sockets in the API process."""

    def __init__(
        self,
        connections: ConnectionRegistry,
        url: str | None = None,
        client: redis.Redis | None = None,
    ):
        self._connections = connections
        self._url = url or settings.REDIS_URL
        self._client = client
        self._subscriber: aioredis.Redis | None = None
        self._pubsub = None
        self._task: asyncio.Task | None = None

    # ─── Sending side (sync; Celery worker or API threadpool) ───

    def _publisher(self, timeout: float) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self._url, socket_timeout=timeout, socket_connect_timeout=timeout,
            )
        return self._client

    def publish(self, user_id: str, message: dict, timeout: float) -> int:
        """Hand message to every API process holding a socket for user_id.

        Raises:
            ChannelTransportError: Redis is unreachable or no process is listening.
        """
        try:
            receivers = self._publisher(timeout).publish(user_channel(user_id), json.dumps(message))
        except redis.RedisError as exc:
            raise ChannelTransportError(f"Realtime bridge unavailable: {exc}") from exc
        if not receivers:
            raise ChannelTransportError(f"No active realtime connection for user {user_id}")
        return receivers

    # ─── Receiving side (async; API event loop) ───

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        self._subscriber = aioredis.Redis.from_url(self._url, decode_responses=True)
        self._pubsub = self._subscriber.pubsub(ignore_subscribe_messages=True)
        self._task = asyncio.create_task(self._listen())
        logger.info("Realtime bridge listening on %s*", settings.REALTIME_CHANNEL_PREFIX)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._subscriber is not None:
            await self._subscriber.aclose()
            self._subscriber = None

    async def watch(self, user_id: str) -> None:
        if self._pubsub is not None:
            await self._pubsub.subscribe(user_channel(user_id))

    async def unwatch(self, user_id: str) -> None:
        if self._pubsub is not None and self._connections.connection_count(user_id) == 0:
            await self._pubsub.unsubscribe(user_channel(user_id))

    async def forward(self, channel: str, data: str) -> int:
        """Deliver one bridged message to this process's sockets for the channel's user."""
        user_id = channel[len(settings.REALTIME_CHANNEL_PREFIX):]
        try:
            message = json.loads(data)
        except ValueError:
            logger.warning("Realtime bridge: undecodable message on %s", channel)
            return 0
        return await self._connections.send_local(user_id, message, settings.NOTIFICATION_TIMEOUT_SECONDS)

    async def _listen(self) -> None:
        while True:
            if not self._pubsub.subscribed:
                await asyncio.sleep(0.5)
                continue
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except redis.RedisError:
                logger.exception("Realtime bridge: Redis read failed; retrying")
                await asyncio.sleep(1.0)
                continue
            if message and message.get("type") == "message":
                await self.forward(message["channel"], message["data"])


registry = ConnectionRegistry()
bridge = RedisRealtimeBridge(registry)
