"""Notification dispatcher.

dispatch() turns one instruction into one NotificationLog per recipient.
Immediate logs are delivered in-line; delayed logs are scheduled on Celery
with an ETA, and the periodic deliver_due_notifications task picks up any
due row the broker lost.

Each log is attempted at most once: delivery first claims the row with a
conditional UPDATE that sets attempted_at only while it is still pending and
unclaimed. Final states are written the same way, so a realtime ack that
lands before the transport result is never overwritten.
"""
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    ChannelTransportError,
    InvalidNotificationState,
    NotificationAccessDenied,
    NotificationLogNotFound,
)
from app.db.base import utcnow
from app.models.notification import NotificationChannel, NotificationLog, NotificationStatus
from app.schemas.notification import AdhocNotificationRequest, DispatchInstruction
from app.services.channels import ChannelMessage, DeliveryOutcome, get_channel

logger = logging.getLogger(__name__)

PENDING = NotificationStatus.pending.value
SENT = NotificationStatus.sent.value
FAILED = NotificationStatus.failed.value
DELIVERED = NotificationStatus.delivered.value
REALTIME = NotificationChannel.realtime.value


def _schedule(log: NotificationLog) -> None:
    """Enqueue delivery at scheduled_at. Broker failures are left to the recovery task."""
    from app.workers.notification_tasks import deliver_notification

    try:
        deliver_notification.apply_async(args=[str(log.id)], eta=log.scheduled_at)
    except Exception:
        logger.exception("Could not schedule notification %s; recovery sweep will deliver it", log.id)


# ─── Dispatch ───

def dispatch(db: Session, instruction: DispatchInstruction) -> list[NotificationLog]:
    """Record one pending log per recipient, then deliver now or schedule for later."""
    now = utcnow()
    delay = instruction.delay_minutes or 0
    scheduled_at = now + timedelta(minutes=delay)

    logs: list[NotificationLog] = []
    for recipient in instruction.recipients:
        log = NotificationLog(
            rule_id=instruction.rule_id,
            channel=instruction.channel.value,
            recipient=recipient,
            subject=instruction.subject,
            content=instruction.content,
            status=PENDING,
            scheduled_at=scheduled_at,
            triggered_by=instruction.triggered_by,
            meta=instruction.metadata or None,
        )
        db.add(log)
        logs.append(log)
    db.commit()

    if delay > 0:
        for log in logs:
            _schedule(log)
        logger.info(
            "dispatch: %d %s notifications scheduled for %s",
            len(logs), instruction.channel.value, scheduled_at.isoformat(),
        )
        return logs

    return [deliver(db, log.id, now=now) for log in logs]


def send_adhoc(db: Session, actor_id: uuid.UUID, request: AdhocNotificationRequest) -> list[NotificationLog]:
    """Send without a rule; the log rows carry rule_id=None and the sender as triggered_by."""
    return dispatch(
        db,
        DispatchInstruction(
            rule_id=None,
            channel=request.channel,
            recipients=request.recipients,
            subject=request.subject,
            content=request.content,
            delay_minutes=request.delay_minutes,
            triggered_by=actor_id,
            metadata=request.metadata,
        ),
    )


# ─── Delivery ───

def _claim(db: Session, log_id: uuid.UUID, now: datetime) -> bool:
    result = db.execute(
        update(NotificationLog)
        .where(
            NotificationLog.id == log_id,
            NotificationLog.status == PENDING,
            NotificationLog.attempted_at.is_(None),
            NotificationLog.scheduled_at <= now,
        )
        .values(attempted_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def _finish(db: Session, log_id: uuid.UUID, outcome: DeliveryOutcome) -> None:
    values = (
        {"status": SENT, "sent_at": utcnow()}
        if outcome.sent
        else {"status": FAILED, "error_message": (outcome.error or "delivery failed")[:2000]}
    )
    db.execute(
        update(NotificationLog)
        .where(NotificationLog.id == log_id, NotificationLog.status == PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def deliver(db: Session, log_id: uuid.UUID, now: datetime | None = None) -> NotificationLog:
    """Attempt delivery of one log if it is due and unclaimed; otherwise return it untouched."""
    now = now or utcnow()
    claimed = _claim(db, log_id, now)
    log = db.get(NotificationLog, log_id, populate_existing=True)
    if log is None:
        raise NotificationLogNotFound(log_id)
    if not claimed:
        logger.debug("deliver: notification %s not claimable (status=%s)", log_id, log.status)
        return log

    message = ChannelMessage(
        log_id=log.id,
        recipient=log.recipient,
        subject=log.subject,
        content=log.content,
        metadata=log.meta or {},
    )
    try:
        outcome = get_channel(log.channel).deliver(message)
    except ChannelTransportError as exc:
        outcome = DeliveryOutcome.failed(exc.message)
    except Exception as exc:
        logger.exception("deliver: unexpected error on %s channel for notification %s", log.channel, log.id)
        outcome = DeliveryOutcome.failed(f"unexpected error: {exc}")

    _finish(db, log.id, outcome)
    log = db.get(NotificationLog, log_id, populate_existing=True)
    logger.info("Notification %s via %s to %s: %s", log.id, log.channel, log.recipient, log.status)
    return log


def deliver_due(db: Session, now: datetime | None = None, limit: int = 500) -> int:
    """Deliver pending, unclaimed logs whose scheduled_at has passed. Returns the number attempted."""
    now = now or utcnow()
    due_ids = db.execute(
        select(NotificationLog.id)
        .where(
            NotificationLog.status == PENDING,
            NotificationLog.attempted_at.is_(None),
            NotificationLog.scheduled_at <= now,
        )
        .order_by(NotificationLog.scheduled_at)
        .limit(limit)
    ).scalars().all()

    attempted = 0
    for log_id in due_ids:
        try:
            log = deliver(db, log_id, now=now)
        except Exception:
            db.rollback()
            logger.exception("deliver_due: notification %s failed", log_id)
            continue
        if log.attempted_at is not None:
            attempted += 1
    return attempted


def fail_stale(db: Session, now: datetime | None = None) -> int:
    """Fail logs claimed longer than NOTIFICATION_STALE_AFTER_MINUTES ago that never finished."""
    now = now or utcnow()
    cutoff = now - timedelta(minutes=settings.NOTIFICATION_STALE_AFTER_MINUTES)
    result = db.execute(
        update(NotificationLog)
        .where(
            NotificationLog.status == PENDING,
            NotificationLog.attempted_at.is_not(None),
            NotificationLog.attempted_at < cutoff,
        )
        .values(status=FAILED, error_message="Delivery attempt did not complete")
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.warning("fail_stale: %d notifications marked failed", result.rowcount)
    return result.rowcount


def mark_delivered(db: Session, log_id: uuid.UUID, recipient: str | None = None) -> NotificationLog:
    """Record recipient confirmation. Valid once the log has been sent (or claimed and pushed).

    With recipient set, only a realtime log addressed to that recipient may be
    confirmed; other channels have no client that could acknowledge them.
    """
    if recipient is not None:
        log = db.get(NotificationLog, log_id)
        if log is None:
            raise NotificationLogNotFound(log_id)
        if log.channel != REALTIME or log.recipient != recipient:
            raise NotificationAccessDenied(
                f"Notification {log_id} cannot be confirmed by {recipient}.",
                {"channel": log.channel},
            )
    result = db.execute(
        update(NotificationLog)
        .where(
            NotificationLog.id == log_id,
            (NotificationLog.status == SENT)
            | ((NotificationLog.status == PENDING) & NotificationLog.attempted_at.is_not(None)),
        )
        .values(status=DELIVERED, delivered_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    log = db.get(NotificationLog, log_id, populate_existing=True)
    if log is None:
        raise NotificationLogNotFound(log_id)
    if result.rowcount == 0 and log.status != DELIVERED:
        raise InvalidNotificationState(
            f"Notification {log_id} is {log.status} and cannot be marked delivered.",
            {"status": log.status},
        )
    return log


# ─── Queries ───

def list_logs(
    db: Session,
    status: str | None = None,
    channel: str | None = None,
    rule_id: uuid.UUID | None = None,
    recipient: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[NotificationLog], int]:
    stmt = select(NotificationLog)
    if status is not None:
        stmt = stmt.where(NotificationLog.status == status)
    if channel is not None:
        stmt = stmt.where(NotificationLog.channel == channel)
    if rule_id is not None:
        stmt = stmt.where(NotificationLog.rule_id == rule_id)
    if recipient is not None:
        stmt = stmt.where(NotificationLog.recipient == recipient)
    if start is not None:
        stmt = stmt.where(NotificationLog.created_at >= start)
    if end is not None:
        stmt = stmt.where(NotificationLog.created_at <= end)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0
    items = db.execute(
        stmt.order_by(NotificationLog.created_at.desc()).limit(limit).offset(offset)
    ).scalars().all()
    return list(items), total
