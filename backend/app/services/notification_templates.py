"""Default subject/body per trigger, used when a rule action carries no template."""
from app.core.config import settings
from app.models.notification import NotificationTrigger

_DEFAULTS: dict[str, tuple[str, str]] = {
    NotificationTrigger.inquiry_created.value: (
        "New inquiry registered - {{inquiry.title}}",
        "A new inquiry has been registered.\n\n"
        "Inquiry ID: {{inquiry.id}}\n"
        "Title: {{inquiry.title}}\n"
        "Priority: {{inquiry.priority}}\n\n"
        "Please take a look.\n\n"
        "Open: {{base_url}}/inquiries/{{inquiry.id}}",
    ),
    NotificationTrigger.status_changed.value: (
        "Inquiry status changed - {{inquiry.title}}",
        "The status of an inquiry has changed.\n\n"
        "Inquiry ID: {{inquiry.id}}\n"
        "Title: {{inquiry.title}}\n"
        "Before: {{old_status}}\n"
        "After: {{new_status}}\n\n"
        "Open: {{base_url}}/inquiries/{{inquiry.id}}",
    ),
    NotificationTrigger.response_added.value: (
        "New response on inquiry - {{inquiry.title}}",
        "A response was added to inquiry {{inquiry.id}} ({{inquiry.title}}).\n\n"
        "Open: {{base_url}}/inquiries/{{inquiry.id}}",
    ),
    NotificationTrigger.sla_violation.value: (
        "SLA violation alert - {{inquiry.title}}",
        "An SLA violation was detected.\n\n"
        "Inquiry ID: {{inquiry.id}}\n"
        "Title: {{inquiry.title}}\n"
        "Violation type: {{violation.kind}}\n"
        "Target: {{violation.target_hours}} hours\n"
        "Delay: {{violation.delay_hours}} hours\n"
        "Severity: {{violation.severity}}\n\n"
        "Please respond urgently.\n\n"
        "Open: {{base_url}}/inquiries/{{inquiry.id}}",
    ),
    NotificationTrigger.escalation.value: (
        "Inquiry escalated to level {{escalation.level}} - {{inquiry.title}}",
        "Inquiry {{inquiry.id}} ({{inquiry.title}}) was escalated.\n\n"
        "Level: {{escalation.level}}\n"
        "Reason: {{escalation.reason}}\n"
        "New assignee: {{escalation.to_assignee}}\n\n"
        "Open: {{base_url}}/inquiries/{{inquiry.id}}",
    ),
}


def default_template(trigger: str) -> tuple[str, str]:
    """Return (subject, body) for a trigger."""
    return _DEFAULTS.get(trigger, ("Notification - {{inquiry.title}}", "{{inquiry.title}}"))


def base_context() -> dict:
    return {"base_url": settings.FRONTEND_URL.rstrip("/")}
