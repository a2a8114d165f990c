"""Pydantic schemas for SLA policies, violations and sweeps."""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.inquiry import InquiryPriority


# ─── Policies ───

class SlaPolicyCreate(BaseModel):
    app_id: uuid.UUID
    priority: InquiryPriority
    response_target_hours: float = Field(gt=0)
    resolution_target_hours: float = Field(gt=0)
    escalation_target_hours: float = Field(gt=0)
    is_active: bool = True


class SlaPolicyUpdate(BaseModel):
    response_target_hours: float | None = Field(default=None, gt=0)
    resolution_target_hours: float | None = Field(default=None, gt=0)
    escalation_target_hours: float | None = Field(default=None, gt=0)
    is_active: bool | None = None


class SlaPolicyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    app_id: uuid.UUID
    priority: str
    response_target_hours: float
    resolution_target_hours: float
    escalation_target_hours: float
    is_active: bool
    created_by: uuid.UUID | None
    created_at: datetime
    updated_at: datetime


class SlaPolicyListResponse(BaseModel):
    items: list[SlaPolicyOut]
    total: int


# ─── Violations ───

class SlaViolationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    inquiry_id: uuid.UUID
    policy_id: uuid.UUID
    kind: str
    expected_at: datetime
    actual_at: datetime | None
    delay_hours: float
    severity: str
    detected_at: datetime
    resolved: bool
    resolved_by: uuid.UUID | None
    resolved_at: datetime | None
    resolution_comment: str | None
    escalation_id: uuid.UUID | None


class SlaViolationListResponse(BaseModel):
    items: list[SlaViolationOut]
    total: int


class ViolationResolveRequest(BaseModel):
    comment: str | None = Field(default=None, max_length=2000)


class SweepResult(BaseModel):
    checked: int = 0
    created: int = 0
    refreshed: int = 0
    closed: int = 0
    escalated: int = 0
    errors: int = 0


class ViolationStats(BaseModel):
    total: int
    resolved: int
    unresolved: int
    by_kind: dict[str, int]
    by_severity: dict[str, int]
    average_delay_hours: float
