"""Domain event glue: payload snapshots, publication and handling.

Events are published to Celery (``process_domain_event``) and handled in the
worker: rules are evaluated and every resulting instruction is dispatched.
"""
import logging

from sqlalchemy.orm import Session

from app.models.escalation import Escalation
from app.models.inquiry import Inquiry
from app.models.notification import NotificationLog, NotificationTrigger
from app.models.sla import SlaPolicy, SlaViolation
from app.schemas.events import DomainEvent

logger = logging.getLogger(__name__)

# Ticket-store events after which open violations may have been satisfied
_CLOSURE_TRIGGERS = {NotificationTrigger.response_added, NotificationTrigger.status_changed}


# ─── Payload snapshots ───

def _iso(value):
    return value.isoformat() if value is not None else None


def inquiry_snapshot(inquiry: Inquiry) -> dict:
    return {
        "id": str(inquiry.id),
        "app_id": str(inquiry.app_id),
        "title": inquiry.title,
        "priority": inquiry.priority,
        "status": inquiry.status,
        "assigned_to": str(inquiry.assigned_to) if inquiry.assigned_to else None,
        "created_at": _iso(inquiry.created_at),
        "first_response_at": _iso(inquiry.first_response_at),
        "resolved_at": _iso(inquiry.resolved_at),
    }


def violation_event(inquiry: Inquiry, violation: SlaViolation, policy: SlaPolicy) -> DomainEvent:
    delay = round(violation.delay_hours, 2)
    return DomainEvent(
        trigger=NotificationTrigger.sla_violation,
        inquiry_id=inquiry.id,
        payload={
            "inquiry": inquiry_snapshot(inquiry),
            "violation": {
                "id": str(violation.id),
                "kind": violation.kind,
                "severity": violation.severity,
                "delay_hours": delay,
                "expected_at": _iso(violation.expected_at),
                "target_hours": policy.target_hours(violation.kind),
            },
            "kind": violation.kind,
            "severity": violation.severity,
            "delay_hours": delay,
        },
    )


def escalation_event(inquiry: Inquiry, escalation: Escalation) -> DomainEvent:
    return DomainEvent(
        trigger=NotificationTrigger.escalation,
        inquiry_id=inquiry.id,
        triggered_by=escalation.escalated_by,
        payload={
            "inquiry": inquiry_snapshot(inquiry),
            "escalation": {
                "id": str(escalation.id),
                "level": escalation.level,
                "reason": escalation.reason,
                "automatic": escalation.automatic,
                "from_assignee": str(escalation.from_assignee) if escalation.from_assignee else None,
                "to_assignee": str(escalation.to_assignee),
                "comment": escalation.comment,
            },
            "level": escalation.level,
            "reason": escalation.reason,
            "automatic": escalation.automatic,
        },
    )


# ─── Publication ───

def publish(event: DomainEvent) -> None:
    """Enqueue an event for asynchronous handling. Broker errors are logged, not raised."""
    from app.workers.notification_tasks import process_domain_event

    try:
        process_domain_event.delay(event.model_dump(mode="json"))
    except Exception:
        logger.exception("Failed to publish %s event for inquiry %s", event.trigger.value, event.inquiry_id)


# ─── Handling ───

def handle_event(db: Session, event: DomainEvent) -> list[NotificationLog]:
    """Evaluate rules for the event and dispatch every instruction.

    Recipients are filtered through their notification settings first;
    a failing instruction is logged and does not stop the others.
    """
    from app.services import dispatcher, notification_settings, rule_engine, sla_monitor

    if event.trigger in _CLOSURE_TRIGGERS and event.inquiry_id is not None:
        inquiry = db.get(Inquiry, event.inquiry_id)
        if inquiry is not None:
            closed = sla_monitor.close_satisfied_violations(db, inquiry)
            db.commit()
            if closed:
                logger.info("handle_event: closed %d violations for inquiry %s", len(closed), inquiry.id)

    payload = dict(event.payload)
    if event.inquiry_id is not None and "inquiry" not in payload:
        inquiry = db.get(Inquiry, event.inquiry_id)
        if inquiry is not None:
            payload["inquiry"] = inquiry_snapshot(inquiry)
    event = event.model_copy(update={"payload": payload})

    instructions = rule_engine.evaluate(db, event)
    logs: list[NotificationLog] = []
    for instruction in instructions:
        recipients = notification_settings.apply_user_preferences(
            db, event.trigger.value, instruction.channel, instruction.recipients,
        )
        if not recipients:
            logger.info(
                "handle_event: every %s recipient of rule %s opted out",
                instruction.channel.value, instruction.rule_id,
            )
            continue
        instruction = instruction.model_copy(update={"recipients": recipients})
        try:
            logs.extend(dispatcher.dispatch(db, instruction))
        except Exception:
            db.rollback()
            logger.exception(
                "handle_event: dispatch failed for rule %s channel %s",
                instruction.rule_id, instruction.channel.value,
            )
    logger.info(
        "handle_event: trigger=%s inquiry=%s instructions=%d logs=%d",
        event.trigger.value, event.inquiry_id, len(instructions), len(logs),
    )
    return logs
