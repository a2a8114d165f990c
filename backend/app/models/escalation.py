"""Append-only escalation audit trail."""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, UUIDMixin, utcnow


class EscalationReason(str, enum.Enum):
    sla_violation = "sla_violation"
    complexity = "complexity"
    manual = "manual"
    priority_change = "priority_change"


class Escalation(Base, UUIDMixin, TimestampMixin):
    """One ownership hand-off. The Nth row for an inquiry has level N."""

    __tablename__ = "escalations"
    __table_args__ = (
        UniqueConstraint("inquiry_id", "level", name="uq_escalations_inquiry_level"),
    )

    inquiry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("inquiries.id"), nullable=False, index=True
    )
    from_assignee: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    to_assignee: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)  # sla_violation, complexity, manual, priority_change
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    automatic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalated_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)  # null = system
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
