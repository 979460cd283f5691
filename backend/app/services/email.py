"""Email notification service: console mock for MVP (MAIL_ENABLED=False).

When MAIL_ENABLED is False, email content is printed to logs instead of
being sent via SMTP. Set MAIL_ENABLED=True to wire a real transport.
"""
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)


def send_email(recipient_id: str, subject: str, body: str, link: str | None = None) -> None:
    """Send (or mock-log) one approval workflow email.

    Args:
        recipient_id: User id of the recipient; the mailer resolves the address.
        subject: Subject line.
        body: Plain-text body.
        link: Optional deep link into the approvals UI.
    """
    if not settings.MAIL_ENABLED:
        logger.info(
            "\n"
            "=== APPROVAL EMAIL ===\n"
            "From: %s <%s>\n"
            "To: user:%s\n"
            "Subject: %s\n"
            "%s\n"
            "Link: %s\n"
            "======================",
            settings.MAIL_FROM_NAME,
            settings.MAIL_FROM,
            recipient_id,
            subject,
            body,
            link or "-",
        )
        return

    # Real SMTP path (not implemented in MVP)
    logger.warning(
        "MAIL_ENABLED=True but SMTP transport is not configured. "
        "Falling back to console log for recipient %s.",
        recipient_id,
    )
    logger.info("APPROVAL EMAIL (unsent): to=%s subject=%s link=%s", recipient_id, subject, link)
