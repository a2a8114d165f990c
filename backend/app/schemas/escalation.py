"""Pydantic schemas for escalation endpoints."""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.escalation import EscalationReason


class EscalationCreate(BaseModel):
    to_assignee: uuid.UUID
    reason: EscalationReason = EscalationReason.manual
    comment: str | None = Field(default=None, max_length=2000)


class EscalationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    inquiry_id: uuid.UUID
    from_assignee: uuid.UUID | None
    to_assignee: uuid.UUID
    reason: str
    level: int
    automatic: bool
    escalated_by: uuid.UUID | None
    comment: str | None
    escalated_at: datetime


class EscalationHistoryResponse(BaseModel):
    inquiry_id: uuid.UUID
    current_level: int
    items: list[EscalationOut]


class EscalationStats(BaseModel):
    total: int
    automatic: int
    manual: int
    by_reason: dict[str, int]
    by_level: dict[int, int]
    average_level: float


class UserEscalationStats(BaseModel):
    user_id: uuid.UUID
    escalated_from: int
    escalated_to: int
