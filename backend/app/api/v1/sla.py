"""SLA policy and violation API.

Endpoints:
  POST /sla/policies                      (ADMIN) - create policy
  GET  /sla/policies                      - list policies
  PATCH /sla/policies/{id}                (ADMIN) - update targets / activation
  POST /sla/policies/{id}/deactivate      (ADMIN)
  GET  /sla/violations                    - list violations (filters)
  POST /sla/violations/check              (ADMIN, SUPERVISOR) - run detector now (rate limited)
  GET  /sla/violations/stats              - totals by kind / severity
  POST /sla/violations/{id}/resolve       (ADMIN, SUPERVISOR) - manual resolution
"""
import logging
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.deps import Actor, get_current_actor, require_role
from app.core.limiter import SWEEP_TRIGGER_LIMIT, limiter
from app.db.session import get_session
from app.models.sla import Severity, ViolationKind
from app.schemas.sla import (
    SlaPolicyCreate,
    SlaPolicyListResponse,
    SlaPolicyOut,
    SlaPolicyUpdate,
    SlaViolationListResponse,
    SlaViolationOut,
    SweepResult,
    ViolationResolveRequest,
    ViolationStats,
)
from app.services import sla_monitor, sla_policy

logger = logging.getLogger(__name__)

router = APIRouter()


class SweepRequest(BaseModel):
    inquiry_id: uuid.UUID | None = None  # omit to sweep every open inquiry


# ─── Policies ───

@router.post(
    "/policies",
    response_model=SlaPolicyOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an SLA policy (ADMIN only)",
)
def create_policy(
    body: SlaPolicyCreate,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(require_role("ADMIN")),
):
    return sla_policy.create_policy(db, actor.id, body)


@router.get("/policies", response_model=SlaPolicyListResponse, summary="List SLA policies")
def list_policies(
    db: Annotated[Session, Depends(get_session)],
    app_id: uuid.UUID | None = Query(None),
    active_only: bool = Query(True),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
):
    items, total = sla_policy.list_policies(db, app_id=app_id, active_only=active_only, limit=limit, offset=offset)
    return SlaPolicyListResponse(items=[SlaPolicyOut.model_validate(p) for p in items], total=total)


@router.patch("/policies/{policy_id}", response_model=SlaPolicyOut, summary="Update an SLA policy (ADMIN only)")
def update_policy(
    policy_id: uuid.UUID,
    body: SlaPolicyUpdate,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(require_role("ADMIN")),
):
    return sla_policy.update_policy(db, policy_id, actor.id, body)


@router.post(
    "/policies/{policy_id}/deactivate",
    response_model=SlaPolicyOut,
    summary="Deactivate an SLA policy (ADMIN only)",
)
def deactivate_policy(
    policy_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(require_role("ADMIN")),
):
    return sla_policy.deactivate_policy(db, policy_id, actor.id)


# ─── Violations ───

@router.get("/violations", response_model=SlaViolationListResponse, summary="List SLA violations")
def list_violations(
    db: Annotated[Session, Depends(get_session)],
    inquiry_id: uuid.UUID | None = Query(None),
    kind: ViolationKind | None = Query(None),
    severity: Severity | None = Query(None),
    resolved: bool | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
):
    items, total = sla_monitor.list_violations(
        db,
        inquiry_id=inquiry_id,
        kind=kind.value if kind else None,
        severity=severity.value if severity else None,
        resolved=resolved,
        limit=limit,
        offset=offset,
    )
    return SlaViolationListResponse(items=[SlaViolationOut.model_validate(v) for v in items], total=total)


@router.post("/violations/check", response_model=SweepResult, summary="Run SLA detection now")
@limiter.limit(SWEEP_TRIGGER_LIMIT)
def trigger_check(
    request: Request,
    db: Annotated[Session, Depends(get_session)],
    body: SweepRequest | None = None,
    actor: Actor = Depends(require_role("ADMIN", "SUPERVISOR")),
):
    """Sweep every open inquiry, or just one when inquiry_id is given."""
    if body is not None and body.inquiry_id is not None:
        created = sla_monitor.check_inquiry(db, body.inquiry_id)
        return SweepResult(checked=1, created=len(created))
    logger.info("Manual SLA sweep triggered by %s", actor.id)
    return sla_monitor.run_sweep(db)


@router.get("/violations/stats", response_model=ViolationStats, summary="SLA violation statistics")
def violation_stats(
    db: Annotated[Session, Depends(get_session)],
    app_id: uuid.UUID | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    actor: Actor = Depends(get_current_actor),
):
    return sla_monitor.get_violation_stats(db, app_id=app_id, start=start, end=end)


@router.post(
    "/violations/{violation_id}/resolve",
    response_model=SlaViolationOut,
    summary="Resolve an SLA violation manually",
)
def resolve_violation(
    violation_id: uuid.UUID,
    body: ViolationResolveRequest,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(require_role("ADMIN", "SUPERVISOR")),
):
    return sla_monitor.resolve_violation(db, violation_id, actor.id, body.comment)
