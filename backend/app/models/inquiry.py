"""Read model of the ticket store.

Inquiry CRUD lives in the ticketing service; the SLA engine reads these rows
and writes only ``assigned_to`` when an escalation changes ownership.
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, UUIDMixin


class InquiryStatus(str, enum.Enum):
    new = "new"
    in_progress = "in_progress"
    pending = "pending"
    resolved = "resolved"
    closed = "closed"


class InquiryPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


OPEN_STATUSES = (InquiryStatus.new.value, InquiryStatus.in_progress.value, InquiryStatus.pending.value)


class Inquiry(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "inquiries"

    app_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")  # low, medium, high, urgent
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="new", index=True
    )  # new, in_progress, pending, resolved, closed
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    first_response_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES
