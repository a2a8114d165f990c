"""Domain events emitted by the ticket store and by the engine itself."""
import uuid
from typing import Any

from pydantic import BaseModel, Field

from app.models.notification import NotificationTrigger


class DomainEvent(BaseModel):
    trigger: NotificationTrigger
    inquiry_id: uuid.UUID | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    triggered_by: uuid.UUID | None = None


class EventAccepted(BaseModel):
    trigger: str
    task_id: str | None = None
    queued: bool = True
