"""SLA violation detector.

Compares each open inquiry's elapsed time against the targets of its policy
and records violations. Detection is check-then-insert backed by the partial
unique index on (inquiry_id, kind) WHERE NOT resolved, so repeated or racing
sweeps never produce a second open violation of the same kind.

While a violation stays open, later passes refresh its delay_hours and
severity. A violation closes implicitly once the ticket satisfies the target
(first response, resolution, or an escalation), or manually via
resolve_violation().
"""
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import DetectorItemError, EngineError, InquiryNotFound, ViolationNotFound
from app.db.base import utcnow
from app.models.escalation import Escalation
from app.models.inquiry import OPEN_STATUSES, Inquiry
from app.models.sla import Severity, SlaPolicy, SlaViolation, ViolationKind
from app.schemas.events import DomainEvent
from app.schemas.sla import SweepResult, ViolationStats
from app.services import audit as audit_svc
from app.services import escalation as escalation_svc
from app.services import sla_policy
from app.services.events import violation_event

logger = logging.getLogger(__name__)

EventSink = Callable[[DomainEvent], None]


# ─── Helpers ───

def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _hours(start: datetime, end: datetime) -> float:
    return (_as_utc(end) - _as_utc(start)).total_seconds() / 3600


def classify_severity(delay_hours: float, target_hours: float) -> Severity:
    """Map delay relative to target onto minor / major / critical.

    Total for every input and monotonic in delay_hours for a fixed target.
    """
    if delay_hours <= 0:
        return Severity.minor
    ratio = delay_hours / target_hours if target_hours > 0 else float("inf")
    if ratio < settings.SLA_MAJOR_DELAY_RATIO:
        return Severity.minor
    if ratio < settings.SLA_CRITICAL_DELAY_RATIO:
        return Severity.major
    return Severity.critical


def _open_violations(db: Session, inquiry_id: uuid.UUID) -> dict[str, SlaViolation]:
    rows = db.execute(
        select(SlaViolation).where(
            SlaViolation.inquiry_id == inquiry_id,
            SlaViolation.resolved.is_(False),
        )
    ).scalars().all()
    return {v.kind: v for v in rows}


def _latest_escalation_at(db: Session, inquiry_id: uuid.UUID) -> datetime | None:
    return db.execute(
        select(func.max(Escalation.escalated_at)).where(Escalation.inquiry_id == inquiry_id)
    ).scalar()


def close_violation(violation: SlaViolation, actual_at: datetime, comment: str) -> None:
    """Mark a violation satisfied by the system. Caller commits.

    The final delay is actual minus expected, and severity is reclassified
    from it so a closed row never carries the severity of a later refresh.
    """
    violation.actual_at = actual_at
    violation.delay_hours = max(0.0, _hours(violation.expected_at, actual_at))
    violation.severity = classify_severity(
        violation.delay_hours, violation.policy.target_hours(violation.kind)
    ).value
    violation.resolved = True
    violation.resolved_by = None
    violation.resolved_at = utcnow()
    violation.resolution_comment = comment


def close_satisfied_violations(
    db: Session,
    inquiry: Inquiry,
    now: datetime | None = None,
) -> list[SlaViolation]:
    """Close open violations the inquiry has since satisfied. Caller commits."""
    now = now or utcnow()
    closed: list[SlaViolation] = []
    latest_escalation = None

    for violation in _open_violations(db, inquiry.id).values():
        actual_at = None
        comment = None
        if violation.kind == ViolationKind.response_time.value and inquiry.first_response_at:
            actual_at, comment = inquiry.first_response_at, "First response recorded"
        elif violation.kind == ViolationKind.resolution_time.value and (
            inquiry.resolved_at or inquiry.status not in OPEN_STATUSES
        ):
            actual_at, comment = inquiry.resolved_at or now, f"Inquiry {inquiry.status}"
        elif violation.kind == ViolationKind.escalation_time.value:
            if latest_escalation is None:
                latest_escalation = _latest_escalation_at(db, inquiry.id)
            if latest_escalation and _as_utc(latest_escalation) > _as_utc(violation.detected_at):
                actual_at, comment = latest_escalation, "Escalation recorded"

        if actual_at is None:
            continue
        close_violation(violation, actual_at, comment)
        closed.append(violation)
        logger.info(
            "SLA violation %s (%s) closed for inquiry %s: %s",
            violation.id, violation.kind, inquiry.id, comment,
        )
    return closed


# ─── Detection ───

def _detect_kind(
    db: Session,
    inquiry: Inquiry,
    policy: SlaPolicy,
    kind: ViolationKind,
    start: datetime,
    now: datetime,
    existing: SlaViolation | None,
    result: SweepResult,
) -> SlaViolation | None:
    """Create or refresh one kind of violation. Returns the violation only when newly created."""
    target = policy.target_hours(kind.value)
    expected_at = _as_utc(start) + timedelta(hours=target)
    if now <= expected_at:
        return None

    if existing is not None:
        delay = _hours(existing.expected_at, now)
        existing.delay_hours = delay
        existing.severity = classify_severity(delay, target).value
        db.commit()
        result.refreshed += 1
        return None

    delay = _hours(expected_at, now)
    violation = SlaViolation(
        inquiry_id=inquiry.id,
        policy_id=policy.id,
        kind=kind.value,
        expected_at=expected_at,
        delay_hours=delay,
        severity=classify_severity(delay, target).value,
        detected_at=now,
        resolved=False,
    )
    db.add(violation)
    try:
        db.flush()
    except IntegrityError:
        # a concurrent sweep inserted the open violation first
        db.rollback()
        logger.info("SLA %s violation for inquiry %s already recorded concurrently", kind.value, inquiry.id)
        return None

    db.commit()
    result.created += 1
    logger.warning(
        "SLA %s violation for inquiry %s: delay=%.2fh severity=%s",
        kind.value, inquiry.id, delay, violation.severity,
    )
    return violation


def _check(
    db: Session,
    inquiry: Inquiry,
    now: datetime,
    result: SweepResult,
    emit: EventSink,
    strategy: "escalation_svc.AssignmentStrategy | None",
) -> list[SlaViolation]:
    policy = sla_policy.resolve(db, inquiry.app_id, inquiry.priority)
    if policy is None:
        logger.debug("Inquiry %s has no active SLA policy; not monitored", inquiry.id)
        return []

    closed = close_satisfied_violations(db, inquiry, now)
    if closed:
        db.commit()
        result.closed += len(closed)

    if inquiry.status not in OPEN_STATUSES:
        return []

    open_by_kind = _open_violations(db, inquiry.id)
    created_at = _as_utc(inquiry.created_at)
    created: list[SlaViolation] = []

    if inquiry.first_response_at is None:
        v = _detect_kind(
            db, inquiry, policy, ViolationKind.response_time, created_at, now,
            open_by_kind.get(ViolationKind.response_time.value), result,
        )
        if v is not None:
            created.append(v)

    if inquiry.resolved_at is None:
        v = _detect_kind(
            db, inquiry, policy, ViolationKind.resolution_time, created_at, now,
            open_by_kind.get(ViolationKind.resolution_time.value), result,
        )
        if v is not None:
            created.append(v)

    escalation_start = _latest_escalation_at(db, inquiry.id) or created_at
    existing_escalation = open_by_kind.get(ViolationKind.escalation_time.value)
    escalation_violation = _detect_kind(
        db, inquiry, policy, ViolationKind.escalation_time, escalation_start, now,
        existing_escalation, result,
    )
    if escalation_violation is not None:
        created.append(escalation_violation)

    for violation in created:
        emit(violation_event(inquiry, violation, policy))

    # New breach, or an earlier one whose auto-escalation found no target yet
    pending = escalation_violation
    if pending is None and existing_escalation is not None and existing_escalation.escalation_id is None:
        pending = existing_escalation
    if pending is not None:
        try:
            escalation = escalation_svc.auto_escalate(
                db, inquiry.id, pending.id, strategy=strategy, emit=emit,
            )
        except EngineError as exc:
            logger.warning("Auto-escalation for violation %s failed: %s", pending.id, exc.message)
        else:
            if escalation is not None:
                result.escalated += 1

    return created


def _default_emit() -> EventSink:
    from app.services.events import publish

    return publish


def check_inquiry(
    db: Session,
    inquiry_id: uuid.UUID,
    now: datetime | None = None,
    emit: EventSink | None = None,
    strategy: "escalation_svc.AssignmentStrategy | None" = None,
) -> list[SlaViolation]:
    """Run detection for a single inquiry. Returns newly created violations."""
    inquiry = db.get(Inquiry, inquiry_id)
    if inquiry is None:
        raise InquiryNotFound(inquiry_id)
    return _check(db, inquiry, _as_utc(now or utcnow()), SweepResult(), emit or _default_emit(), strategy)


def run_sweep(
    db: Session,
    now: datetime | None = None,
    emit: EventSink | None = None,
    strategy: "escalation_svc.AssignmentStrategy | None" = None,
) -> SweepResult:
    """Check every open inquiry. Each inquiry commits independently; one failure never stops the sweep."""
    now = _as_utc(now or utcnow())
    emit = emit or _default_emit()
    result = SweepResult()

    inquiry_ids = db.execute(
        select(Inquiry.id).where(Inquiry.status.in_(OPEN_STATUSES)).order_by(Inquiry.created_at)
    ).scalars().all()

    for inquiry_id in inquiry_ids:
        result.checked += 1
        try:
            inquiry = db.get(Inquiry, inquiry_id)
            if inquiry is None:
                continue
            _check(db, inquiry, now, result, emit, strategy)
        except Exception as exc:
            db.rollback()
            result.errors += 1
            err = DetectorItemError(inquiry_id, exc)
            logger.exception("%s", err.message)

    logger.info(
        "SLA sweep complete - checked=%d created=%d refreshed=%d closed=%d escalated=%d errors=%d",
        result.checked, result.created, result.refreshed, result.closed, result.escalated, result.errors,
    )
    return result


# ─── Queries & manual resolution ───

def get_violation(db: Session, violation_id: uuid.UUID) -> SlaViolation:
    violation = db.get(SlaViolation, violation_id)
    if violation is None:
        raise ViolationNotFound(violation_id)
    return violation


def list_violations(
    db: Session,
    inquiry_id: uuid.UUID | None = None,
    kind: str | None = None,
    severity: str | None = None,
    resolved: bool | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[SlaViolation], int]:
    stmt = select(SlaViolation)
    if inquiry_id is not None:
        stmt = stmt.where(SlaViolation.inquiry_id == inquiry_id)
    if kind is not None:
        stmt = stmt.where(SlaViolation.kind == kind)
    if severity is not None:
        stmt = stmt.where(SlaViolation.severity == severity)
    if resolved is not None:
        stmt = stmt.where(SlaViolation.resolved.is_(resolved))

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0
    items = db.execute(
        stmt.order_by(SlaViolation.detected_at.desc()).limit(limit).offset(offset)
    ).scalars().all()
    return list(items), total


def resolve_violation(
    db: Session,
    violation_id: uuid.UUID,
    actor_id: uuid.UUID,
    comment: str | None = None,
) -> SlaViolation:
    """Manually resolve a violation. Resolving an already resolved one is a no-op."""
    violation = get_violation(db, violation_id)
    if violation.resolved:
        logger.info("resolve_violation: %s already resolved", violation_id)
        return violation

    violation.resolved = True
    violation.resolved_by = actor_id
    violation.resolved_at = utcnow()
    violation.resolution_comment = comment
    audit_svc.log(
        db,
        action="sla_violation.resolved",
        entity_type="sla_violation",
        entity_id=violation.id,
        actor_id=actor_id,
        before={"resolved": False},
        after={"resolved": True, "comment": comment},
    )
    db.commit()
    return violation


def get_violation_stats(
    db: Session,
    app_id: uuid.UUID | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> ViolationStats:
    filters = []
    if app_id is not None:
        filters.append(
            SlaViolation.inquiry_id.in_(select(Inquiry.id).where(Inquiry.app_id == app_id))
        )
    if start is not None:
        filters.append(SlaViolation.detected_at >= start)
    if end is not None:
        filters.append(SlaViolation.detected_at <= end)

    total, resolved, avg_delay = db.execute(
        select(
            func.count(SlaViolation.id),
            func.count(SlaViolation.id).filter(SlaViolation.resolved.is_(True)),
            func.avg(SlaViolation.delay_hours),
        ).where(*filters)
    ).one()

    by_kind = dict(
        db.execute(
            select(SlaViolation.kind, func.count(SlaViolation.id)).where(*filters).group_by(SlaViolation.kind)
        ).all()
    )
    by_severity = dict(
        db.execute(
            select(SlaViolation.severity, func.count(SlaViolation.id))
            .where(*filters)
            .group_by(SlaViolation.severity)
        ).all()
    )

    total = total or 0
    resolved = resolved or 0
    return ViolationStats(
        total=total,
        resolved=resolved,
        unresolved=total - resolved,
        by_kind={k.value: by_kind.get(k.value, 0) for k in ViolationKind},
        by_severity={s.value: by_severity.get(s.value, 0) for s in Severity},
        average_delay_hours=round(float(avg_delay or 0.0), 2),
    )
