"""Celery tasks for domain-event handling and notification delivery."""
import logging

from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.notification_tasks.process_domain_event")
def process_domain_event(event_data: dict):
    """Evaluate notification rules for one domain event and dispatch the results."""
    from app.db.session import SessionLocal
    from app.schemas.events import DomainEvent
    from app.services.events import handle_event

    event = DomainEvent.model_validate(event_data)
    try:
        with SessionLocal() as db:
            logs = handle_event(db, event)
        return {"trigger": event.trigger.value, "notifications": len(logs)}
    except Exception as exc:
        logger.exception("process_domain_event failed for %s: %s", event.trigger.value, exc)
        return {"status": "error", "error": str(exc)}


@celery_app.task(name="app.workers.notification_tasks.deliver_notification")
def deliver_notification(log_id: str):
    """Deliver one delayed notification once its ETA arrives."""
    import uuid

    from app.db.session import SessionLocal
    from app.services.dispatcher import deliver

    try:
        with SessionLocal() as db:
            log = deliver(db, uuid.UUID(log_id))
            return {"id": log_id, "status": log.status}
    except Exception as exc:
        logger.exception("deliver_notification %s failed: %s", log_id, exc)
        return {"status": "error", "error": str(exc)}


@celery_app.task(name="app.workers.notification_tasks.deliver_due_notifications")
def deliver_due_notifications():
    """Recovery sweep: deliver due pending rows and fail stale claims.

    Runs every minute so delayed notifications survive broker or worker
    restarts.
    """
    try:
        from app.db.session import SessionLocal
        from app.services.dispatcher import deliver_due, fail_stale

        with SessionLocal() as db:
            stats = {"stale_failed": fail_stale(db), "delivered": deliver_due(db)}
        if stats["stale_failed"] or stats["delivered"]:
            logger.info(
                "deliver_due_notifications: complete - delivered=%d, stale_failed=%d",
                stats["delivered"], stats["stale_failed"],
            )
        return stats

    except Exception as exc:
        logger.exception("deliver_due_notifications failed: %s", exc)
        return {"status": "error", "error": str(exc)}
