"""Domain event ingestion.

The ticket store posts inquiry_created / status_changed / response_added
events here; they are handled asynchronously by the Celery worker.

Endpoints:
  POST /events   (SERVICE, ADMIN) - enqueue a domain event
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.deps import Actor, require_role
from app.schemas.events import DomainEvent, EventAccepted

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest a domain event",
)
def ingest_event(
    event: DomainEvent,
    actor: Actor = Depends(require_role("SERVICE", "ADMIN")),
):
    from app.workers.notification_tasks import process_domain_event

    if event.triggered_by is None:
        event = event.model_copy(update={"triggered_by": actor.id})
    try:
        result = process_domain_event.delay(event.model_dump(mode="json"))
    except Exception as exc:
        logger.error("Failed to enqueue %s event: %s", event.trigger.value, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event queue unavailable. Please retry.",
        )
    return EventAccepted(trigger=event.trigger.value, task_id=result.id)
