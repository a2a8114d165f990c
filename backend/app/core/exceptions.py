"""Engine error kinds.

Loops in the engine (sweeps, rule sets, multi-recipient dispatch) catch these
per item and log them; only the HTTP layer turns them into responses.
"""


class EngineError(Exception):
    """Base class for SLA / escalation / notification engine errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(EngineError):
    """A referenced record does not exist."""

    def __init__(self, resource_type: str, resource_id=None):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = resource_type
        if resource_id is not None:
            message += f" {resource_id}"
        super().__init__(f"{message} not found.")


class PolicyNotFound(NotFoundError):
    """No active SLA policy for (app_id, priority). Means "not monitored"."""

    def __init__(self, app_id, priority: str):
        self.app_id = app_id
        self.priority = priority
        super().__init__("SLA policy", f"for app={app_id} priority={priority}")


class InquiryNotFound(NotFoundError):
    def __init__(self, inquiry_id):
        super().__init__("Inquiry", inquiry_id)


class ViolationNotFound(NotFoundError):
    def __init__(self, violation_id):
        super().__init__("SLA violation", violation_id)


class RuleNotFound(NotFoundError):
    def __init__(self, rule_id):
        super().__init__("Notification rule", rule_id)


class NotificationLogNotFound(NotFoundError):
    def __init__(self, log_id):
        super().__init__("Notification log", log_id)


class PolicyConflict(EngineError):
    """A second active policy for the same (app_id, priority) was requested."""


class EscalationNotAllowed(EngineError):
    """The inquiry is not in an escalatable state."""


class ConcurrentEscalationConflict(EngineError):
    """Another escalation took the level we computed; retry with a fresh read."""


class ChannelTransportError(EngineError):
    """The channel transport rejected the message or timed out."""


class RuleEvaluationError(EngineError):
    """A stored condition or template could not be evaluated."""


class DetectorItemError(EngineError):
    """A single inquiry failed during an SLA sweep."""

    def __init__(self, inquiry_id, cause: Exception):
        self.inquiry_id = inquiry_id
        self.cause = cause
        super().__init__(f"SLA check failed for inquiry {inquiry_id}: {cause}")


class InvalidNotificationState(EngineError):
    """The notification log is not in a state that allows the requested transition."""


class ViolationAlreadyEscalated(EscalationNotAllowed):
    """The violation already triggered its automatic escalation."""


class NotificationAccessDenied(EngineError):
    """The caller may not confirm delivery of this notification."""
