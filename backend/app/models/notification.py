import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, UUIDMixin

_JSON = JSON().with_variant(JSONB(), "postgresql")


class NotificationTrigger(str, enum.Enum):
    inquiry_created = "inquiry_created"
    status_changed = "status_changed"
    response_added = "response_added"
    sla_violation = "sla_violation"
    escalation = "escalation"


class NotificationChannel(str, enum.Enum):
    email = "email"
    slack = "slack"
    teams = "teams"
    webhook = "webhook"
    realtime = "realtime"


class NotificationStatus(str, enum.Enum):
    pending = "pending"
    sent = "sent"
    failed = "failed"
    delivered = "delivered"


TERMINAL_STATUSES = (NotificationStatus.failed.value, NotificationStatus.delivered.value)


class NotificationRule(Base, UUIDMixin, TimestampMixin):
    """Trigger + AND-ed conditions + actions.

    ``conditions`` and ``actions`` are validated against the tagged unions in
    app.schemas.notification before they are stored.
    """

    __tablename__ = "notification_rules"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    trigger: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    conditions: Mapped[list] = mapped_column(_JSON, nullable=False, default=list)
    actions: Mapped[list] = mapped_column(_JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)


class NotificationLog(Base, UUIDMixin, TimestampMixin):
    """One delivery attempt to one recipient. Lifecycle: pending → sent → delivered, or pending → failed."""

    __tablename__ = "notification_logs"

    rule_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), nullable=True, index=True
    )  # no FK: logs outlive deleted rules
    channel: Mapped[str] = mapped_column(String(50), nullable=False)
    recipient: Mapped[str] = mapped_column(String(500), nullable=False)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )  # pending, sent, failed, delivered
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    attempted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    triggered_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    meta: Mapped[dict | None] = mapped_column("metadata", _JSON, nullable=True)


class UserNotificationSetting(Base, UUIDMixin, TimestampMixin):
    """A user's preference for one (trigger, channel) pair.

    ``destination`` overrides where that user receives the channel (an email
    address or webhook URL); realtime always targets the user id.
    """

    __tablename__ = "user_notification_settings"
    __table_args__ = (
        UniqueConstraint("user_id", "trigger", "channel", name="uq_user_notification_settings_user_trigger_channel"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    trigger: Mapped[str] = mapped_column(String(50), nullable=False)
    channel: Mapped[str] = mapped_column(String(50), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    destination: Mapped[str | None] = mapped_column(String(500), nullable=True)
