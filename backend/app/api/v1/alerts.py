"""Alert dashboard API.

Endpoints:
  GET /alerts/overview                     - live SLA / escalation / notification picture
  GET /alerts/notification-effectiveness   - outcome counts per channel
  GET /alerts/violation-trends             - violations per day and kind
  GET /alerts/escalation-analysis          - reasons, levels, hours and top targets
  GET /alerts/live                         - last 30 minutes plus open urgent inquiries
"""
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.deps import Actor, require_role
from app.db.session import get_session
from app.services import alert_dashboard
from app.services.alert_dashboard import (
    AlertOverview,
    ChannelEffectiveness,
    EscalationAnalysis,
    LiveAlerts,
    ViolationTrendPoint,
)

router = APIRouter()


@router.get("/overview", response_model=AlertOverview, summary="Alert overview")
def overview(
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(require_role("SUPERVISOR", "ADMIN")),
):
    return alert_dashboard.get_overview(db)


@router.get(
    "/notification-effectiveness",
    response_model=list[ChannelEffectiveness],
    summary="Notification outcome counts per channel",
)
def notification_effectiveness(
    db: Annotated[Session, Depends(get_session)],
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    actor: Actor = Depends(require_role("SUPERVISOR", "ADMIN")),
):
    return alert_dashboard.get_notification_effectiveness(db, start=start, end=end)


@router.get("/violation-trends", response_model=list[ViolationTrendPoint], summary="SLA violations per day")
def violation_trends(
    db: Annotated[Session, Depends(get_session)],
    days: int = Query(30, ge=1, le=366),
    app_id: uuid.UUID | None = Query(None),
    actor: Actor = Depends(require_role("SUPERVISOR", "ADMIN")),
):
    return alert_dashboard.get_violation_trends(db, days=days, app_id=app_id)


@router.get("/escalation-analysis", response_model=EscalationAnalysis, summary="Escalation breakdown")
def escalation_analysis(
    db: Annotated[Session, Depends(get_session)],
    days: int = Query(30, ge=1, le=366),
    app_id: uuid.UUID | None = Query(None),
    actor: Actor = Depends(require_role("SUPERVISOR", "ADMIN")),
):
    return alert_dashboard.get_escalation_analysis(db, days=days, app_id=app_id)


@router.get("/live", response_model=LiveAlerts, summary="Live alerts")
def live_alerts(
    db: Annotated[Session, Depends(get_session)],
    app_id: uuid.UUID | None = Query(None),
    window_minutes: int = Query(30, ge=1, le=24 * 60),
    actor: Actor = Depends(require_role("SUPERVISOR", "ADMIN")),
):
    return alert_dashboard.get_live_alerts(db, app_id=app_id, window_minutes=window_minutes)
