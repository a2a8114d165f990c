"""Realtime notification WebSocket.

  WS /ws/notifications?token=<jwt>

Server → client: {"type": "notification", "id", "subject", "content", "metadata"}
Client → server: {"type": "ack", "id": "<notification id>"} marks the log delivered
(only realtime logs addressed to the connected user).

While a user is connected this process subscribes to their bridge channel, so
pushes published by Celery workers reach the socket.
"""
import logging
import uuid

import redis
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from jose import JWTError

from app.core.deps import actor_from_token
from app.core.exceptions import EngineError
from app.db.session import SessionLocal
from app.services import dispatcher
from app.services.realtime import bridge, registry

logger = logging.getLogger(__name__)

router = APIRouter()


def _acknowledge(log_id: uuid.UUID, recipient: str) -> str:
    with SessionLocal() as db:
        return dispatcher.mark_delivered(db, log_id, recipient=recipient).status


@router.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket, token: str = ""):
    try:
        actor = actor_from_token(token)
    except (JWTError, ValueError):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    user_key = str(actor.id)
    registry.connect(user_key, websocket)
    try:
        await bridge.watch(user_key)
    except redis.RedisError as exc:
        logger.warning("Realtime bridge subscribe failed for %s; bridged pushes will not reach this socket: %s", user_key, exc)
    try:
        while True:
            message = await websocket.receive_json()
            if message.get("type") != "ack":
                continue
            try:
                log_id = uuid.UUID(str(message.get("id")))
                await run_in_threadpool(_acknowledge, log_id, user_key)
            except (ValueError, EngineError) as exc:
                logger.warning("Realtime ack from %s rejected: %s", user_key, exc)
                await websocket.send_json({"type": "error", "detail": str(exc)})
    except WebSocketDisconnect:
        pass
    finally:
        registry.disconnect(user_key, websocket)
        try:
            await bridge.unwatch(user_key)
        except redis.RedisError as exc:
            logger.warning("Realtime bridge unsubscribe failed for %s: %s", user_key, exc)
