"""Notification rule management API.

Endpoints:
  POST   /notifications/rules            (ADMIN, SUPERVISOR) - create rule
  GET    /notifications/rules            - list rules
  GET    /notifications/rules/{id}       - rule detail
  PATCH  /notifications/rules/{id}       (ADMIN, SUPERVISOR)
  DELETE /notifications/rules/{id}       (ADMIN, SUPERVISOR) - hard delete
  POST   /notifications/rules/{id}/test  - dry run against a sample event
"""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.core.deps import Actor, get_current_actor, require_role
from app.db.session import get_session
from app.models.notification import NotificationTrigger
from app.schemas.events import DomainEvent
from app.schemas.notification import (
    DispatchInstruction,
    NotificationRuleCreate,
    NotificationRuleListResponse,
    NotificationRuleOut,
    NotificationRuleUpdate,
)
from app.services import rule_engine

router = APIRouter()


@router.post(
    "",
    response_model=NotificationRuleOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a notification rule",
)
def create_rule(
    body: NotificationRuleCreate,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(require_role("ADMIN", "SUPERVISOR")),
):
    return rule_engine.create_rule(db, actor.id, body)


@router.get("", response_model=NotificationRuleListResponse, summary="List notification rules")
def list_rules(
    db: Annotated[Session, Depends(get_session)],
    trigger: NotificationTrigger | None = Query(None),
    active_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
):
    items, total = rule_engine.list_rules(
        db, trigger=trigger.value if trigger else None, active_only=active_only, limit=limit, offset=offset,
    )
    return NotificationRuleListResponse(items=[NotificationRuleOut.model_validate(r) for r in items], total=total)


@router.get("/{rule_id}", response_model=NotificationRuleOut, summary="Get a notification rule")
def get_rule(
    rule_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(get_current_actor),
):
    return rule_engine.get_rule(db, rule_id)


@router.patch("/{rule_id}", response_model=NotificationRuleOut, summary="Update a notification rule")
def update_rule(
    rule_id: uuid.UUID,
    body: NotificationRuleUpdate,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(require_role("ADMIN", "SUPERVISOR")),
):
    return rule_engine.update_rule(db, rule_id, actor.id, body)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a notification rule")
def delete_rule(
    rule_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(require_role("ADMIN", "SUPERVISOR")),
):
    rule_engine.delete_rule(db, rule_id, actor.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{rule_id}/test",
    response_model=list[DispatchInstruction],
    summary="Dry-run a rule against a sample event (nothing is sent)",
)
def dry_run_rule(
    rule_id: uuid.UUID,
    event: DomainEvent,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(get_current_actor),
):
    return rule_engine.dry_run_rule(db, rule_id, event)
