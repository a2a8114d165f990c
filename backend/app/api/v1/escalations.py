"""Escalation API.

Endpoints:
  POST /escalations/inquiries/{id}          - manual escalation
  GET  /escalations/inquiries/{id}/history  - escalation trail + current level
  GET  /escalations/stats                   - aggregate statistics
  GET  /escalations/users/{id}/stats        - escalated from / to a user
"""
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.deps import Actor, get_current_actor, require_role
from app.db.session import get_session
from app.schemas.escalation import (
    EscalationCreate,
    EscalationHistoryResponse,
    EscalationOut,
    EscalationStats,
    UserEscalationStats,
)
from app.services import escalation as escalation_svc

router = APIRouter()


@router.post(
    "/inquiries/{inquiry_id}",
    response_model=EscalationOut,
    status_code=status.HTTP_201_CREATED,
    summary="Escalate an inquiry to the next level",
)
def escalate_inquiry(
    inquiry_id: uuid.UUID,
    body: EscalationCreate,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(require_role("AGENT", "SUPERVISOR", "ADMIN")),
):
    return escalation_svc.escalate(
        db,
        inquiry_id,
        body.to_assignee,
        body.reason,
        actor_id=actor.id,
        comment=body.comment,
    )


@router.get(
    "/inquiries/{inquiry_id}/history",
    response_model=EscalationHistoryResponse,
    summary="Escalation history for an inquiry",
)
def escalation_history(
    inquiry_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(get_current_actor),
):
    items = escalation_svc.get_history(db, inquiry_id)
    return EscalationHistoryResponse(
        inquiry_id=inquiry_id,
        current_level=items[-1].level if items else 0,
        items=[EscalationOut.model_validate(e) for e in items],
    )


@router.get("/stats", response_model=EscalationStats, summary="Escalation statistics")
def escalation_stats(
    db: Annotated[Session, Depends(get_session)],
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    actor: Actor = Depends(require_role("SUPERVISOR", "ADMIN")),
):
    return escalation_svc.get_stats(db, start=start, end=end)


@router.get("/users/{user_id}/stats", response_model=UserEscalationStats, summary="Escalations involving a user")
def user_escalation_stats(
    user_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(get_current_actor),
):
    return escalation_svc.get_user_stats(db, user_id)
