from app.models.inquiry import Inquiry, InquiryPriority, InquiryStatus, OPEN_STATUSES
from app.models.sla import SlaPolicy, SlaViolation, Severity, ViolationKind
from app.models.escalation import Escalation, EscalationReason
from app.models.notification import (
    NotificationChannel,
    NotificationLog,
    NotificationRule,
    NotificationStatus,
    NotificationTrigger,
    UserNotificationSetting,
)
from app.models.audit import AuditLog

__all__ = [
    "Inquiry", "InquiryPriority", "InquiryStatus", "OPEN_STATUSES",
    "SlaPolicy", "SlaViolation", "Severity", "ViolationKind",
    "Escalation", "EscalationReason",
    "NotificationChannel", "NotificationLog", "NotificationRule", "NotificationStatus", "NotificationTrigger",
    "UserNotificationSetting",
    "AuditLog",
]
