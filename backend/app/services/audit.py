"""Audit log helper: append-only writes to audit_logs table."""
import json
import logging
import uuid
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from app.models.audit import AuditLog

logger = logging.getLogger(__name__)


def log(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID | str | None = None,
    actor_id: str | None = None,
    details: Any | None = None,
) -> AuditLog:
    """Write a single audit log entry.

    Args:
        db: Sync SQLAlchemy session. The caller controls the transaction.
        action: Dotted verb, e.g. 'approval_request.approve'.
        entity_type: Domain name, e.g. 'approval_request', 'approval_delegation'.
        entity_id: PK of the affected record.
        actor_id: User who performed the action ("system" for workflow actions).
        details: JSON-serialisable snapshot (before/after status, comments, ...).
    """
    entry = AuditLog(
        actor_id=str(actor_id) if actor_id else None,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id else None,
        details=json.dumps(details, default=str) if details is not None else None,
    )
    db.add(entry)
    db.flush()  # get id without committing
    logger.debug("Audit: %s %s/%s", action, entity_type, entity_id)
    return entry


class DatabaseAuditSink:
    """AuditSink writing each entry in its own short transaction.

    A separate session keeps audit writes from sharing fate with the
    workflow's own unit of work.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def log_action(
        self,
        actor_id: str | None,
        action: str,
        resource_type: str,
        resource_id: uuid.UUID | str | None,
        details: dict | None = None,
    ) -> None:
        with self._session_factory() as db:
            log(
                db,
                action=action,
                entity_type=resource_type,
                entity_id=resource_id,
                actor_id=actor_id,
                details=details,
            )
            db.commit()
