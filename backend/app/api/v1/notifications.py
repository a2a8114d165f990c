"""Notification sending and log API.

Endpoints:
  POST /notifications/send                  (ADMIN, SUPERVISOR) - ad-hoc send, no rule
  GET  /notifications/logs                  - delivery log with filters
  POST /notifications/logs/{id}/delivered   - recipient confirmation (own realtime logs; ADMIN, SERVICE any)
"""
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.deps import Actor, get_current_actor, require_role
from app.db.session import get_session
from app.models.notification import NotificationChannel, NotificationStatus
from app.schemas.notification import (
    AdhocNotificationRequest,
    DispatchResult,
    NotificationLogListResponse,
    NotificationLogOut,
)
from app.services import dispatcher

router = APIRouter()

CONFIRM_ANY_ROLES = ("ADMIN", "SERVICE")


@router.post(
    "/send",
    response_model=DispatchResult,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Send an ad-hoc notification",
)
def send_notification(
    body: AdhocNotificationRequest,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(require_role("ADMIN", "SUPERVISOR")),
):
    logs = dispatcher.send_adhoc(db, actor.id, body)
    return DispatchResult(items=[NotificationLogOut.model_validate(log) for log in logs])


@router.get("/logs", response_model=NotificationLogListResponse, summary="List notification logs")
def list_logs(
    db: Annotated[Session, Depends(get_session)],
    status_filter: NotificationStatus | None = Query(None, alias="status"),
    channel: NotificationChannel | None = Query(None),
    rule_id: uuid.UUID | None = Query(None),
    recipient: str | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
):
    items, total = dispatcher.list_logs(
        db,
        status=status_filter.value if status_filter else None,
        channel=channel.value if channel else None,
        rule_id=rule_id,
        recipient=recipient,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    return NotificationLogListResponse(items=[NotificationLogOut.model_validate(log) for log in items], total=total)


@router.post(
    "/logs/{log_id}/delivered",
    response_model=NotificationLogOut,
    summary="Confirm delivery of a notification",
)
def mark_delivered(
    log_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(get_current_actor),
):
    # operators and integrations confirm any log; everyone else only their own realtime pushes
    recipient = None if actor.role in CONFIRM_ANY_ROLES else str(actor.id)
    return NotificationLogOut.model_validate(dispatcher.mark_delivered(db, log_id, recipient=recipient))
