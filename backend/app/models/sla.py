"""SLA policy and violation models."""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin, UUIDMixin, utcnow


class ViolationKind(str, enum.Enum):
    response_time = "response_time"
    resolution_time = "resolution_time"
    escalation_time = "escalation_time"


class Severity(str, enum.Enum):
    minor = "minor"
    major = "major"
    critical = "critical"


class SlaPolicy(Base, UUIDMixin, TimestampMixin):
    """Target hours per (application, priority). Deactivated, never deleted."""

    __tablename__ = "sla_policies"
    __table_args__ = (
        Index(
            "uq_sla_policies_active_app_priority",
            "app_id",
            "priority",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    app_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    response_target_hours: Mapped[float] = mapped_column(Float, nullable=False)
    resolution_target_hours: Mapped[float] = mapped_column(Float, nullable=False)
    escalation_target_hours: Mapped[float] = mapped_column(Float, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    def target_hours(self, kind: str) -> float:
        return {
            ViolationKind.response_time.value: self.response_target_hours,
            ViolationKind.resolution_time.value: self.resolution_target_hours,
            ViolationKind.escalation_time.value: self.escalation_target_hours,
        }[kind]


class SlaViolation(Base, UUIDMixin, TimestampMixin):
    """A detected breach of one SLA target for one inquiry.

    At most one unresolved row per (inquiry_id, kind); the partial unique
    index makes concurrent sweeps safe.
    """

    __tablename__ = "sla_violations"
    __table_args__ = (
        Index(
            "uq_sla_violations_open_inquiry_kind",
            "inquiry_id",
            "kind",
            unique=True,
            postgresql_where=text("NOT resolved"),
            sqlite_where=text("resolved = 0"),
        ),
    )

    inquiry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("inquiries.id"), nullable=False, index=True
    )
    policy_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("sla_policies.id"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(30), nullable=False)  # response_time, resolution_time, escalation_time
    expected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actual_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delay_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)  # minor, major, critical
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("escalations.id"), nullable=True
    )  # automatic escalation this violation triggered

    policy: Mapped["SlaPolicy"] = relationship("SlaPolicy")
