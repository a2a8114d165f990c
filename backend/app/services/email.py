"""Email transport - console mock when MAIL_ENABLED=False, SMTP otherwise.

When MAIL_ENABLED is False, email content is printed to logs instead of
being sent via SMTP.
"""
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from app.core.config import settings
from app.core.exceptions import ChannelTransportError

logger = logging.getLogger(__name__)


def send_email(to: str, subject: str, body: str) -> None:
    """Send (or mock-log) a plain-text email.

    Raises:
        ChannelTransportError: SMTP refused the message, or the connection
            failed or exceeded NOTIFICATION_TIMEOUT_SECONDS.
    """
    if not settings.MAIL_ENABLED:
        logger.info(
            "\n"
            "=== NOTIFICATION EMAIL ===\n"
            "To: %s\n"
            "Subject: %s\n"
            "%s\n"
            "==========================",
            to,
            subject,
            body,
        )
        return

    msg = EmailMessage()
    msg["From"] = formataddr((settings.MAIL_FROM_NAME, settings.MAIL_FROM))
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(
            settings.SMTP_HOST,
            settings.SMTP_PORT,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        ) as server:
            if settings.SMTP_USE_TLS:
                server.starttls()
            if settings.SMTP_USERNAME:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise ChannelTransportError(f"SMTP delivery to {to} failed: {exc}") from exc

    logger.info("Email sent to %s: %s", to, subject)
