"""Celery tasks for the approval workflow: overdue sweep and notification fan-out."""
import logging

from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.approval_tasks.process_overdue_approvals")
def process_overdue_approvals():
    """Remind approvers of overdue requests and escalate where a chain exists.

    Runs every APPROVAL_OVERDUE_SWEEP_MINUTES. Requests whose due_at has
    passed get a reminder when their rule sets a reminder interval, and are
    escalated one tier while the escalation chain has tiers left.
    """
    logger.info("process_overdue_approvals: starting sweep")
    from app.db.session import SessionLocal
    from app.services.stores import build_workflow_service

    with SessionLocal() as db:
        result = build_workflow_service(db).process_overdue_approvals()

    stats = {"reminded": result.reminded, "escalated": result.escalated, "exhausted": result.exhausted}
    logger.info("process_overdue_approvals: done %s", stats)
    return stats


@celery_app.task(
    name="app.workers.approval_tasks.send_approval_notification",
    autoretry_for=(ConnectionError,),
    retry_backoff=True,
    max_retries=3,
)
def send_approval_notification(
    recipient_ids: list[str],
    event: str,
    request_id: str,
    amount: str,
    category: str,
    comments: str | None = None,
):
    from app.services.notifications import deliver

    deliver(recipient_ids, event, request_id, amount, category, comments)
    return {"event": event, "request_id": request_id, "recipients": len(recipient_ids)}


@celery_app.task(name="app.workers.approval_tasks.send_delegation_notification")
def send_delegation_notification(delegate_to_id: str, delegator_id: str, start: str, end: str):
    from app.services.notifications import deliver_delegation

    deliver_delegation(delegate_to_id, delegator_id, start, end)
    return {"delegate_to_id": delegate_to_id}
