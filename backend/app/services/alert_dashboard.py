"""Read-only aggregation over violations, escalations and notification logs."""
import logging
import uuid
from collections import Counter
from datetime import date, datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.db.base import utcnow
from app.models.escalation import Escalation
from app.models.inquiry import Inquiry, InquiryPriority, InquiryStatus
from app.models.notification import NotificationLog, NotificationStatus
from app.models.sla import Severity, SlaViolation, ViolationKind
from app.schemas.escalation import EscalationOut
from app.schemas.sla import SlaViolationOut

logger = logging.getLogger(__name__)


class AlertOverview(BaseModel):
    active_violations: int
    violations_last_24h: int
    active_by_severity: dict[str, int]
    escalations_last_24h: int
    automatic_escalation_rate_7d: float  # percent
    notifications_by_status: dict[str, int]


class ChannelEffectiveness(BaseModel):
    channel: str
    total: int
    by_status: dict[str, int]
    success_rate: float  # percent of logs that reached sent or delivered


def get_overview(db: Session, now: datetime | None = None) -> AlertOverview:
    now = now or utcnow()
    day_ago = now - timedelta(hours=24)
    week_ago = now - timedelta(days=7)

    active = db.execute(
        select(func.count(SlaViolation.id)).where(SlaViolation.resolved.is_(False))
    ).scalar() or 0
    recent = db.execute(
        select(func.count(SlaViolation.id)).where(SlaViolation.detected_at >= day_ago)
    ).scalar() or 0
    by_severity = dict(
        db.execute(
            select(SlaViolation.severity, func.count(SlaViolation.id))
            .where(SlaViolation.resolved.is_(False))
            .group_by(SlaViolation.severity)
        ).all()
    )

    escalations_24h = db.execute(
        select(func.count(Escalation.id)).where(Escalation.escalated_at >= day_ago)
    ).scalar() or 0
    week_total, week_auto = db.execute(
        select(
            func.count(Escalation.id),
            func.count(Escalation.id).filter(Escalation.automatic.is_(True)),
        ).where(Escalation.escalated_at >= week_ago)
    ).one()

    notif_status = dict(
        db.execute(
            select(NotificationLog.status, func.count(NotificationLog.id))
            .where(NotificationLog.created_at >= day_ago)
            .group_by(NotificationLog.status)
        ).all()
    )

    return AlertOverview(
        active_violations=active,
        violations_last_24h=recent,
        active_by_severity={s.value: by_severity.get(s.value, 0) for s in Severity},
        escalations_last_24h=escalations_24h,
        automatic_escalation_rate_7d=round(100.0 * (week_auto or 0) / week_total, 1) if week_total else 0.0,
        notifications_by_status={s.value: notif_status.get(s.value, 0) for s in NotificationStatus},
    )


def get_notification_effectiveness(
    db: Session,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[ChannelEffectiveness]:
    filters = []
    if start is not None:
        filters.append(NotificationLog.created_at >= start)
    if end is not None:
        filters.append(NotificationLog.created_at <= end)

    rows = db.execute(
        select(NotificationLog.channel, NotificationLog.status, func.count(NotificationLog.id))
        .where(*filters)
        .group_by(NotificationLog.channel, NotificationLog.status)
    ).all()

    per_channel: dict[str, dict[str, int]] = {}
    for channel, status, count in rows:
        per_channel.setdefault(channel, {})[status] = count

    result = []
    for channel in sorted(per_channel):
        counts = {s.value: per_channel[channel].get(s.value, 0) for s in NotificationStatus}
        total = sum(counts.values())
        reached = counts[NotificationStatus.sent.value] + counts[NotificationStatus.delivered.value]
        result.append(
            ChannelEffectiveness(
                channel=channel,
                total=total,
                by_status=counts,
                success_rate=round(100.0 * reached / total, 1) if total else 0.0,
            )
        )
    return result


# ─── Trends and analysis ───

class ViolationTrendPoint(BaseModel):
    day: date
    response_time: int = 0
    resolution_time: int = 0
    escalation_time: int = 0


class EscalationTarget(BaseModel):
    user_id: uuid.UUID
    count: int


class EscalationAnalysis(BaseModel):
    total: int
    by_reason: dict[str, int]
    by_level: dict[int, int]
    hourly_distribution: list[int]  # 24 buckets, UTC hour of escalated_at
    top_targets: list[EscalationTarget]
    automatic_rate: float  # percent


class InquirySummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    app_id: uuid.UUID
    title: str
    priority: str
    status: str
    assigned_to: uuid.UUID | None
    created_at: datetime


class LiveAlerts(BaseModel):
    recent_violations: list[SlaViolationOut]
    recent_escalations: list[EscalationOut]
    urgent_inquiries: list[InquirySummary]
    generated_at: datetime


_TREND_KINDS = {k.value for k in ViolationKind}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_violation_trends(
    db: Session,
    days: int = 30,
    app_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> list[ViolationTrendPoint]:
    """Violations detected per UTC day and kind, one point per day, oldest first."""
    now = now or utcnow()
    first_day = _as_utc(now).date() - timedelta(days=days - 1)
    since = datetime.combine(first_day, datetime.min.time(), tzinfo=timezone.utc)

    stmt = select(SlaViolation.detected_at, SlaViolation.kind).where(
        SlaViolation.detected_at >= since,
        SlaViolation.detected_at <= now,
    )
    if app_id is not None:
        stmt = stmt.join(Inquiry, Inquiry.id == SlaViolation.inquiry_id).where(Inquiry.app_id == app_id)

    points = {first_day + timedelta(days=i): ViolationTrendPoint(day=first_day + timedelta(days=i)) for i in range(days)}
    for detected_at, kind in db.execute(stmt).all():
        point = points.get(_as_utc(detected_at).date())
        if point is not None and kind in _TREND_KINDS:
            setattr(point, kind, getattr(point, kind) + 1)
    return list(points.values())


def get_escalation_analysis(
    db: Session,
    days: int = 30,
    app_id: uuid.UUID | None = None,
    now: datetime | None = None,
    top: int = 10,
) -> EscalationAnalysis:
    now = now or utcnow()
    stmt = select(
        Escalation.escalated_at, Escalation.reason, Escalation.level, Escalation.automatic, Escalation.to_assignee,
    ).where(
        Escalation.escalated_at >= now - timedelta(days=days),
        Escalation.escalated_at <= now,
    )
    if app_id is not None:
        stmt = stmt.join(Inquiry, Inquiry.id == Escalation.inquiry_id).where(Inquiry.app_id == app_id)
    rows = db.execute(stmt).all()

    hourly = [0] * 24
    automatic = 0
    for escalated_at, _, _, is_automatic, _ in rows:
        hourly[_as_utc(escalated_at).hour] += 1
        automatic += 1 if is_automatic else 0

    return EscalationAnalysis(
        total=len(rows),
        by_reason=dict(Counter(row.reason for row in rows)),
        by_level=dict(sorted(Counter(row.level for row in rows).items())),
        hourly_distribution=hourly,
        top_targets=[
            EscalationTarget(user_id=user_id, count=count)
            for user_id, count in Counter(row.to_assignee for row in rows).most_common(top)
        ],
        automatic_rate=round(100.0 * automatic / len(rows), 1) if rows else 0.0,
    )


def get_live_alerts(
    db: Session,
    app_id: uuid.UUID | None = None,
    now: datetime | None = None,
    window_minutes: int = 30,
) -> LiveAlerts:
    """Violations and escalations from the last window_minutes plus open urgent inquiries."""
    now = now or utcnow()
    since = now - timedelta(minutes=window_minutes)

    violations = select(SlaViolation).where(SlaViolation.detected_at >= since)
    escalations = select(Escalation).where(Escalation.escalated_at >= since)
    urgent = select(Inquiry).where(
        Inquiry.priority == InquiryPriority.urgent.value,
        Inquiry.status.in_([InquiryStatus.new.value, InquiryStatus.in_progress.value]),
    )
    if app_id is not None:
        violations = violations.join(Inquiry, Inquiry.id == SlaViolation.inquiry_id).where(Inquiry.app_id == app_id)
        escalations = escalations.join(Inquiry, Inquiry.id == Escalation.inquiry_id).where(Inquiry.app_id == app_id)
        urgent = urgent.where(Inquiry.app_id == app_id)

    return LiveAlerts(
        recent_violations=[
            SlaViolationOut.model_validate(v)
            for v in db.execute(violations.order_by(SlaViolation.detected_at.desc())).scalars().all()
        ],
        recent_escalations=[
            EscalationOut.model_validate(e)
            for e in db.execute(escalations.order_by(Escalation.escalated_at.desc())).scalars().all()
        ],
        urgent_inquiries=[
            InquirySummary.model_validate(i)
            for i in db.execute(urgent.order_by(Inquiry.created_at)).scalars().all()
        ],
        generated_at=now,
    )
