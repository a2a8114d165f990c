"""Escalation coordinator.

Levels per inquiry run 0 → 1 → 2 → … and are never skipped or reused. The
inquiry row is locked while the next level is computed and
(inquiry_id, level) is unique, so a racing writer either waits or hits an
IntegrityError; the loser rolls back and retries with a fresh level read.

escalate() owns its transaction: on success everything (escalation row,
new assignee, closed escalation_time violations, audit entry) is committed
together.
"""
import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    ConcurrentEscalationConflict,
    EscalationNotAllowed,
    InquiryNotFound,
    ViolationAlreadyEscalated,
    ViolationNotFound,
)
from app.db.base import utcnow
from app.models.escalation import Escalation, EscalationReason
from app.models.inquiry import OPEN_STATUSES, Inquiry
from app.models.sla import SlaViolation, ViolationKind
from app.schemas.escalation import EscalationStats, UserEscalationStats
from app.schemas.events import DomainEvent
from app.services import audit as audit_svc

logger = logging.getLogger(__name__)


# ─── Assignment strategies ───

class AssignmentStrategy(Protocol):
    """Chooses who receives an automatic escalation at a given level."""

    def select_target(self, db: Session, inquiry: Inquiry, level: int) -> uuid.UUID | None:
        ...


class TieredAssignmentStrategy:
    """Level N goes to chain[N-1]; levels past the end stay with the last entry."""

    def __init__(self, chain: list[uuid.UUID] | None = None):
        self.chain = list(chain) if chain is not None else settings.escalation_chain_list

    def select_target(self, db: Session, inquiry: Inquiry, level: int) -> uuid.UUID | None:
        if not self.chain or level < 1:
            return None
        return self.chain[min(level, len(self.chain)) - 1]


# ─── Queries ───

def _current_level(db: Session, inquiry_id: uuid.UUID) -> int:
    return db.execute(
        select(func.coalesce(func.max(Escalation.level), 0)).where(Escalation.inquiry_id == inquiry_id)
    ).scalar() or 0


def current_level(db: Session, inquiry_id: uuid.UUID) -> int:
    """0 when the inquiry was never escalated."""
    return _current_level(db, inquiry_id)


def get_history(db: Session, inquiry_id: uuid.UUID) -> list[Escalation]:
    return list(
        db.execute(
            select(Escalation).where(Escalation.inquiry_id == inquiry_id).order_by(Escalation.level)
        ).scalars().all()
    )


def get_latest(db: Session, inquiry_id: uuid.UUID) -> Escalation | None:
    return db.execute(
        select(Escalation)
        .where(Escalation.inquiry_id == inquiry_id)
        .order_by(Escalation.level.desc())
        .limit(1)
    ).scalars().first()


# ─── Escalate ───

def _close_escalation_violations(
    db: Session,
    inquiry_id: uuid.UUID,
    escalation: Escalation,
    violation_id: uuid.UUID | None,
) -> None:
    from app.services.sla_monitor import close_violation

    open_rows = db.execute(
        select(SlaViolation).where(
            SlaViolation.inquiry_id == inquiry_id,
            SlaViolation.kind == ViolationKind.escalation_time.value,
            SlaViolation.resolved.is_(False),
        )
    ).scalars().all()
    for violation in open_rows:
        close_violation(violation, escalation.escalated_at, f"Escalated to level {escalation.level}")

    if violation_id is not None:
        triggering = db.get(SlaViolation, violation_id)
        if triggering is not None:
            triggering.escalation_id = escalation.id


def escalate(
    db: Session,
    inquiry_id: uuid.UUID,
    to_assignee: uuid.UUID,
    reason: EscalationReason | str,
    actor_id: uuid.UUID | None = None,
    comment: str | None = None,
    automatic: bool = False,
    violation_id: uuid.UUID | None = None,
    emit: Callable[[DomainEvent], None] | None = None,
) -> Escalation:
    """Append the next escalation level for an open inquiry and hand it to to_assignee.

    Raises:
        InquiryNotFound: the inquiry does not exist.
        EscalationNotAllowed: the inquiry is resolved or closed.
        ViolationAlreadyEscalated: violation_id already triggered an escalation.
        ConcurrentEscalationConflict: every retry lost the level to another writer.
    """
    reason_value = EscalationReason(reason).value

    for attempt in range(1, settings.ESCALATION_MAX_RETRIES + 1):
        inquiry = db.execute(
            select(Inquiry).where(Inquiry.id == inquiry_id).with_for_update()
        ).scalars().first()
        if inquiry is None:
            db.rollback()
            raise InquiryNotFound(inquiry_id)
        if inquiry.status not in OPEN_STATUSES:
            db.rollback()
            raise EscalationNotAllowed(
                f"Inquiry {inquiry_id} is {inquiry.status} and cannot be escalated.",
                {"status": inquiry.status},
            )
        if violation_id is not None:
            # re-read under the inquiry lock; a racing sweep may have escalated it
            triggering = db.execute(
                select(SlaViolation)
                .where(SlaViolation.id == violation_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars().first()
            if triggering is None:
                db.rollback()
                raise ViolationNotFound(violation_id)
            if triggering.escalation_id is not None:
                db.rollback()
                raise ViolationAlreadyEscalated(
                    f"SLA violation {violation_id} already triggered escalation {triggering.escalation_id}.",
                    {"escalation_id": str(triggering.escalation_id)},
                )

        level = _current_level(db, inquiry_id) + 1
        from_assignee = inquiry.assigned_to
        escalation = Escalation(
            inquiry_id=inquiry_id,
            from_assignee=from_assignee,
            to_assignee=to_assignee,
            reason=reason_value,
            level=level,
            automatic=automatic,
            escalated_by=None if automatic else actor_id,
            comment=comment,
            escalated_at=utcnow(),
        )
        db.add(escalation)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.warning(
                "escalate: level %d for inquiry %s taken concurrently (attempt %d/%d)",
                level, inquiry_id, attempt, settings.ESCALATION_MAX_RETRIES,
            )
            continue

        inquiry.assigned_to = to_assignee
        _close_escalation_violations(db, inquiry_id, escalation, violation_id)
        audit_svc.log(
            db,
            action="escalation.recorded",
            entity_type="inquiry",
            entity_id=inquiry_id,
            actor_id=escalation.escalated_by,
            before={"assigned_to": from_assignee, "level": level - 1},
            after={"assigned_to": to_assignee, "level": level, "reason": reason_value},
            notes="automatic" if automatic else comment,
        )
        db.commit()
        logger.info(
            "Inquiry %s escalated to level %d → %s (reason=%s automatic=%s)",
            inquiry_id, level, to_assignee, reason_value, automatic,
        )

        from app.services.events import escalation_event, publish

        (emit or publish)(escalation_event(inquiry, escalation))
        return escalation

    raise ConcurrentEscalationConflict(
        f"Could not record escalation for inquiry {inquiry_id} after "
        f"{settings.ESCALATION_MAX_RETRIES} attempts.",
        {"inquiry_id": str(inquiry_id)},
    )


def auto_escalate(
    db: Session,
    inquiry_id: uuid.UUID,
    violation_id: uuid.UUID,
    strategy: AssignmentStrategy | None = None,
    emit: Callable[[DomainEvent], None] | None = None,
) -> Escalation | None:
    """Escalate on behalf of an SLA violation, at most once per violation.

    Returns None (and leaves the violation eligible for a later sweep) when the
    strategy has no target or the level ceiling is reached.
    """
    violation = db.get(SlaViolation, violation_id)
    if violation is None:
        raise ViolationNotFound(violation_id)
    if violation.escalation_id is not None:
        logger.debug("auto_escalate: violation %s already escalated", violation_id)
        return None

    inquiry = db.get(Inquiry, inquiry_id)
    if inquiry is None:
        raise InquiryNotFound(inquiry_id)

    level = _current_level(db, inquiry_id) + 1
    if level > settings.ESCALATION_MAX_LEVEL:
        logger.warning(
            "auto_escalate: inquiry %s already at max level %d",
            inquiry_id, settings.ESCALATION_MAX_LEVEL,
        )
        return None

    strategy = strategy or TieredAssignmentStrategy()
    target = strategy.select_target(db, inquiry, level)
    if target is None:
        logger.warning("auto_escalate: no escalation target for inquiry %s level %d", inquiry_id, level)
        return None

    try:
        return escalate(
            db,
            inquiry_id,
            target,
            EscalationReason.sla_violation,
            actor_id=None,
            comment=f"Automatic escalation: {violation.kind} exceeded by {violation.delay_hours:.2f}h",
            automatic=True,
            violation_id=violation_id,
            emit=emit,
        )
    except ViolationAlreadyEscalated as exc:
        logger.info("auto_escalate: %s", exc.message)
        return None


# ─── Statistics ───

def get_stats(
    db: Session,
    start: datetime | None = None,
    end: datetime | None = None,
) -> EscalationStats:
    filters = []
    if start is not None:
        filters.append(Escalation.escalated_at >= start)
    if end is not None:
        filters.append(Escalation.escalated_at <= end)

    total, automatic, avg_level = db.execute(
        select(
            func.count(Escalation.id),
            func.count(Escalation.id).filter(Escalation.automatic.is_(True)),
            func.avg(Escalation.level),
        ).where(*filters)
    ).one()

    by_reason = dict(
        db.execute(
            select(Escalation.reason, func.count(Escalation.id)).where(*filters).group_by(Escalation.reason)
        ).all()
    )
    by_level = dict(
        db.execute(
            select(Escalation.level, func.count(Escalation.id))
            .where(*filters)
            .group_by(Escalation.level)
            .order_by(Escalation.level)
        ).all()
    )

    total = total or 0
    automatic = automatic or 0
    return EscalationStats(
        total=total,
        automatic=automatic,
        manual=total - automatic,
        by_reason={r.value: by_reason.get(r.value, 0) for r in EscalationReason},
        by_level=by_level,
        average_level=round(float(avg_level or 0.0), 2),
    )


def get_user_stats(db: Session, user_id: uuid.UUID) -> UserEscalationStats:
    escalated_from = db.execute(
        select(func.count(Escalation.id)).where(Escalation.from_assignee == user_id)
    ).scalar() or 0
    escalated_to = db.execute(
        select(func.count(Escalation.id)).where(Escalation.to_assignee == user_id)
    ).scalar() or 0
    return UserEscalationStats(user_id=user_id, escalated_from=escalated_from, escalated_to=escalated_to)
