"""Approval notification sinks.

EmailNotificationSink renders and sends immediately; CeleryNotificationSink
enqueues the same work on the worker so API calls return without waiting
on the mailer.
"""
import logging
from collections.abc import Sequence

from app.core.config import settings
from app.rules.types import ApprovalDelegation, ApprovalRequest
from app.services import email as email_svc

logger = logging.getLogger(__name__)

_SUBJECTS = {
    "submitted": "New Approval Request",
    "escalated": "Escalated Approval Request",
    "reminder": "Overdue Approval Request",
    "approved": "Receipt Approved",
    "rejected": "Receipt Rejected",
    "request_info": "More Information Requested",
}


def _amount(value) -> str:
    return f"${float(value):,.2f}"


def render(event: str, amount, category: str, comments: str | None = None) -> tuple[str, str]:
    """Return (subject, body) for an approval workflow event."""
    subject = _SUBJECTS.get(event, "Approval Update")
    amt = _amount(amount)
    bodies = {
        "submitted": f"A new receipt approval request for {amt} ({category}) requires your attention.",
        "escalated": f"An approval request for {amt} ({category}) has been escalated to you.",
        "reminder": f"Reminder: an approval request for {amt} ({category}) is overdue.",
        "approved": f"Your receipt for {amt} has been approved.",
        "rejected": f"Your receipt for {amt} has been rejected.",
        "request_info": f"An approver needs more information about your receipt for {amt}.",
    }
    body = bodies.get(event, f"Your approval request for {amt} was updated.")
    if comments:
        body = f"{body}\n\nComments: {comments}"
    return subject, body


def request_link(request_id) -> str:
    return f"{settings.APP_BASE_URL.rstrip('/')}/api/v1/approvals/requests/{request_id}"


def deliver(recipient_ids: Sequence[str], event: str, request_id: str, amount, category: str,
            comments: str | None = None) -> int:
    subject, body = render(event, amount, category, comments)
    link = request_link(request_id)
    for recipient_id in recipient_ids:
        email_svc.send_email(recipient_id, subject, body, link)
    return len(recipient_ids)


def deliver_delegation(delegate_to_id: str, delegator_id: str, start: str, end: str) -> None:
    email_svc.send_email(
        delegate_to_id,
        "Approval Authority Delegated",
        f"User {delegator_id} has delegated their approval authority to you from {start} to {end}.",
    )


class EmailNotificationSink:
    def notify_submitter(self, request: ApprovalRequest, action: str, comments: str | None) -> None:
        deliver([request.submitter_id], action, str(request.id), request.amount, request.category, comments)

    def notify_approvers(self, request: ApprovalRequest, approver_ids: Sequence[str], event: str) -> None:
        if not approver_ids:
            logger.warning("No approvers to notify for request %s (%s)", request.id, event)
            return
        deliver(list(approver_ids), event, str(request.id), request.amount, request.category)

    def notify_delegation(self, delegation: ApprovalDelegation) -> None:
        deliver_delegation(
            delegation.delegate_to_id,
            delegation.delegator_id,
            delegation.start_date.isoformat(),
            delegation.end_date.isoformat(),
        )


class CeleryNotificationSink:
    """Fire-and-forget: enqueue and return."""

    def notify_submitter(self, request: ApprovalRequest, action: str, comments: str | None) -> None:
        from app.workers.approval_tasks import send_approval_notification

        send_approval_notification.delay(
            [request.submitter_id], action, str(request.id), str(request.amount), request.category, comments
        )

    def notify_approvers(self, request: ApprovalRequest, approver_ids: Sequence[str], event: str) -> None:
        from app.workers.approval_tasks import send_approval_notification

        if not approver_ids:
            logger.warning("No approvers to notify for request %s (%s)", request.id, event)
            return
        send_approval_notification.delay(
            list(approver_ids), event, str(request.id), str(request.amount), request.category, None
        )

    def notify_delegation(self, delegation: ApprovalDelegation) -> None:
        from app.workers.approval_tasks import send_delegation_notification

        send_delegation_notification.delay(
            delegation.delegate_to_id,
            delegation.delegator_id,
            delegation.start_date.isoformat(),
            delegation.end_date.isoformat(),
        )


def get_notification_sink():
    if settings.APPROVAL_NOTIFICATIONS_ASYNC:
        return CeleryNotificationSink()
    return EmailNotificationSink()
