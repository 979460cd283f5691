"""SQLAlchemy adapters for the approval workflow ports.

All stores share one sync Session per unit of work. Mutating calls commit
immediately: the workflow treats each insert / compare-and-swap as its own
atomic step.
"""
import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import DuplicateApprovalRequest
from app.models.approval import ApprovalAction as ApprovalActionRow
from app.models.approval import ApprovalRequest as ApprovalRequestRow
from app.models.approval_delegation import ApprovalDelegation as ApprovalDelegationRow
from app.models.approval_rule import ApprovalRule as ApprovalRuleRow
from app.models.company import Company
from app.rules.types import (
    NON_TERMINAL_STATUSES,
    ApprovalActionRecord,
    ApprovalActionType,
    ApprovalDelegation,
    ApprovalRequest,
    ApprovalRule,
    ApprovalStatus,
    HistoryFilters,
    NotificationSettings,
    RuleActions,
    RuleConditions,
)
from app.services.ports import StatusConflict

logger = logging.getLogger(__name__)

_LIVE = [s.value for s in NON_TERMINAL_STATUSES]
LIVE_RECEIPT_CONSTRAINT = "uq_approval_requests_receipt_live"


# ─── Row <-> domain mapping ───

def rule_from_row(row: ApprovalRuleRow) -> ApprovalRule:
    return ApprovalRule(
        id=row.id,
        company_id=row.company_id,
        name=row.name,
        description=row.description,
        is_active=row.is_active,
        priority=row.priority,
        created_by=row.created_by,
        created_at=row.created_at,
        conditions=RuleConditions(
            amount_threshold=Decimal(str(row.amount_threshold)) if row.amount_threshold is not None else None,
            categories=frozenset(row.categories or ()),
            vendors=frozenset(row.vendors or ()),
            time_window_minutes=row.time_window_minutes,
            user_roles=frozenset(row.user_roles or ()),
        ),
        actions=RuleActions(
            requires_approval=row.requires_approval,
            auto_approve=row.auto_approve,
            approvers=list(row.approvers or []),
            escalation_chain=list(row.escalation_chain or []),
            notifications=NotificationSettings(
                on_submission=row.notify_on_submission,
                on_approval=row.notify_on_approval,
                on_rejection=row.notify_on_rejection,
                reminder_interval_minutes=row.reminder_interval_minutes,
            ),
        ),
    )


def request_from_row(row: ApprovalRequestRow) -> ApprovalRequest:
    return ApprovalRequest(
        id=row.id,
        receipt_id=row.receipt_id,
        submitter_id=row.submitter_id,
        company_id=row.company_id,
        rule_id=row.rule_id,
        amount=Decimal(str(row.amount)),
        category=row.category,
        vendor=row.vendor,
        reason=row.reason,
        status=ApprovalStatus(row.status),
        approver_id=row.approver_id,
        comments=row.comments,
        created_at=row.created_at,
        decided_at=row.decided_at,
        escalated_at=row.escalated_at,
        escalation_tier=row.escalation_tier,
        due_at=row.due_at,
    )


def delegation_from_row(row: ApprovalDelegationRow) -> ApprovalDelegation:
    return ApprovalDelegation(
        id=row.id,
        delegator_id=row.delegator_id,
        delegate_to_id=row.delegate_to_id,
        company_id=row.company_id,
        start_date=row.start_date,
        end_date=row.end_date,
        max_amount=Decimal(str(row.max_amount)) if row.max_amount is not None else None,
        categories=frozenset(row.categories) if row.categories else None,
        reason=row.reason,
        created_at=row.created_at,
    )


def action_from_row(row: ApprovalActionRow) -> ApprovalActionRecord:
    return ApprovalActionRecord(
        id=row.id,
        request_id=row.request_id,
        actor_id=row.actor_id,
        action=ApprovalActionType(row.action),
        comments=row.comments,
        delegated_from=row.delegated_from,
        created_at=row.created_at,
    )


def _action_row(record: ApprovalActionRecord) -> ApprovalActionRow:
    return ApprovalActionRow(
        id=record.id,
        request_id=record.request_id,
        actor_id=record.actor_id,
        action=record.action.value,
        comments=record.comments,
        delegated_from=record.delegated_from,
        created_at=record.created_at,
        updated_at=record.created_at,
    )


def _violated_constraint(exc: IntegrityError) -> str | None:
    diag = getattr(exc.orig, "diag", None)
    return getattr(diag, "constraint_name", None)


# ─── Stores ───

class SqlCompanyDirectory:
    def __init__(self, db: Session):
        self._db = db

    def exists(self, company_id: uuid.UUID) -> bool:
        found = self._db.execute(
            select(Company.id).where(Company.id == company_id, Company.is_active.is_(True))
        ).scalars().first()
        return found is not None


class SqlRuleStore:
    def __init__(self, db: Session):
        self._db = db

    def list_active_rules(self, company_id: uuid.UUID) -> list[ApprovalRule]:
        stmt = (
            select(ApprovalRuleRow)
            .where(
                ApprovalRuleRow.company_id == company_id,
                ApprovalRuleRow.is_active.is_(True),
            )
            .order_by(ApprovalRuleRow.priority.asc(), ApprovalRuleRow.created_at.desc())
        )
        return [rule_from_row(r) for r in self._db.execute(stmt).scalars().all()]

    def get_rule(self, rule_id: uuid.UUID) -> ApprovalRule | None:
        row = self._db.execute(
            select(ApprovalRuleRow).where(ApprovalRuleRow.id == rule_id)
        ).scalars().first()
        return rule_from_row(row) if row is not None else None


class SqlRequestStore:
    def __init__(self, db: Session):
        self._db = db

    def get(self, request_id: uuid.UUID) -> ApprovalRequest | None:
        row = self._db.execute(
            select(ApprovalRequestRow).where(ApprovalRequestRow.id == request_id)
        ).scalars().first()
        return request_from_row(row) if row is not None else None

    def find_non_terminal_by_receipt(self, receipt_id: uuid.UUID) -> ApprovalRequest | None:
        row = self._db.execute(
            select(ApprovalRequestRow).where(
                ApprovalRequestRow.receipt_id == receipt_id,
                ApprovalRequestRow.status.in_(_LIVE),
            )
        ).scalars().first()
        return request_from_row(row) if row is not None else None

    def insert(self, request: ApprovalRequest) -> ApprovalRequest:
        row = ApprovalRequestRow(
            id=request.id,
            receipt_id=request.receipt_id,
            submitter_id=request.submitter_id,
            company_id=request.company_id,
            rule_id=request.rule_id,
            amount=request.amount,
            category=request.category,
            vendor=request.vendor,
            reason=request.reason,
            status=request.status.value,
            approver_id=request.approver_id,
            comments=request.comments,
            escalation_tier=request.escalation_tier,
            due_at=request.due_at,
            created_at=request.created_at,
            updated_at=request.created_at,
        )
        self._db.add(row)
        try:
            self._db.commit()
        except IntegrityError as exc:
            self._db.rollback()
            if _violated_constraint(exc) != LIVE_RECEIPT_CONSTRAINT:
                raise
            # A concurrent submission won
            logger.info("insert: live request already exists for receipt %s (%s)", request.receipt_id, exc.orig)
            raise DuplicateApprovalRequest(
                f"Receipt {request.receipt_id} already has a pending or escalated approval request."
            )
        return request_from_row(row)

    def compare_and_swap_status(
        self,
        request_id: uuid.UUID,
        expected_status: ApprovalStatus,
        *,
        append_comment: str | None = None,
        action: ApprovalActionRecord | None = None,
        **fields: Any,
    ) -> ApprovalRequest:
        values = {
            k: (v.value if isinstance(v, ApprovalStatus) else v)
            for k, v in fields.items()
        }
        values.setdefault("updated_at", datetime.now(timezone.utc))
        if append_comment:
            # Appended in SQL so a concurrent comment is never lost
            values["comments"] = case(
                (ApprovalRequestRow.comments.is_(None), append_comment),
                else_=ApprovalRequestRow.comments + "\n" + append_comment,
            )
        stmt = (
            update(ApprovalRequestRow)
            .where(
                ApprovalRequestRow.id == request_id,
                ApprovalRequestRow.status == expected_status.value,
            )
            .values(**values)
            .returning(ApprovalRequestRow)
            .execution_options(synchronize_session="fetch")
        )
        try:
            row = self._db.execute(stmt).scalars().first()
            if row is None:
                raise StatusConflict(request_id, expected_status)
            if action is not None:
                self._db.add(_action_row(action))
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise
        return request_from_row(row)

    def list_by_status(
        self, company_id: uuid.UUID, statuses: Iterable[ApprovalStatus]
    ) -> list[ApprovalRequest]:
        stmt = (
            select(ApprovalRequestRow)
            .where(
                ApprovalRequestRow.company_id == company_id,
                ApprovalRequestRow.status.in_([s.value for s in statuses]),
            )
            .order_by(ApprovalRequestRow.created_at.asc())
        )
        return [request_from_row(r) for r in self._db.execute(stmt).scalars().all()]

    def list_overdue(self, at: datetime) -> list[ApprovalRequest]:
        stmt = (
            select(ApprovalRequestRow)
            .where(
                ApprovalRequestRow.status.in_(_LIVE),
                ApprovalRequestRow.due_at.isnot(None),
                ApprovalRequestRow.due_at < at,
            )
            .order_by(ApprovalRequestRow.due_at.asc())
        )
        return [request_from_row(r) for r in self._db.execute(stmt).scalars().all()]

    def list_actions(self, request_id: uuid.UUID) -> list[ApprovalActionRecord]:
        stmt = (
            select(ApprovalActionRow)
            .where(ApprovalActionRow.request_id == request_id)
            .order_by(ApprovalActionRow.created_at.asc())
        )
        return [action_from_row(r) for r in self._db.execute(stmt).scalars().all()]

    def list_history(
        self,
        company_id: uuid.UUID,
        filters: HistoryFilters,
        offset: int,
        limit: int,
    ) -> tuple[list[ApprovalRequest], int]:
        conditions = [ApprovalRequestRow.company_id == company_id]
        if filters.status is not None:
            conditions.append(ApprovalRequestRow.status == filters.status.value)
        if filters.submitter_id:
            conditions.append(ApprovalRequestRow.submitter_id == filters.submitter_id)
        if filters.approver_id:
            conditions.append(ApprovalRequestRow.approver_id == filters.approver_id)
        if filters.start is not None:
            conditions.append(ApprovalRequestRow.created_at >= filters.start)
        if filters.end is not None:
            conditions.append(ApprovalRequestRow.created_at <= filters.end)

        total = self._db.execute(
            select(func.count(ApprovalRequestRow.id)).where(*conditions)
        ).scalar() or 0

        stmt = (
            select(ApprovalRequestRow)
            .where(*conditions)
            .order_by(ApprovalRequestRow.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        items = [request_from_row(r) for r in self._db.execute(stmt).scalars().all()]
        return items, total


class SqlDelegationStore:
    def __init__(self, db: Session):
        self._db = db

    def list_active_delegations(
        self, delegator_id: str, company_id: uuid.UUID, at: datetime
    ) -> list[ApprovalDelegation]:
        stmt = (
            select(ApprovalDelegationRow)
            .where(
                ApprovalDelegationRow.delegator_id == delegator_id,
                ApprovalDelegationRow.company_id == company_id,
                ApprovalDelegationRow.start_date <= at,
                ApprovalDelegationRow.end_date >= at,
            )
            .order_by(ApprovalDelegationRow.created_at.desc())
        )
        return [delegation_from_row(r) for r in self._db.execute(stmt).scalars().all()]

    def list_delegators_to(self, delegate_id: str, company_id: uuid.UUID, at: datetime) -> set[str]:
        stmt = select(ApprovalDelegationRow.delegator_id).where(
            ApprovalDelegationRow.delegate_to_id == delegate_id,
            ApprovalDelegationRow.company_id == company_id,
            ApprovalDelegationRow.start_date <= at,
            ApprovalDelegationRow.end_date >= at,
        )
        return set(self._db.execute(stmt).scalars().all())

    def insert(self, delegation: ApprovalDelegation) -> ApprovalDelegation:
        row = ApprovalDelegationRow(
            id=delegation.id,
            delegator_id=delegation.delegator_id,
            delegate_to_id=delegation.delegate_to_id,
            company_id=delegation.company_id,
            start_date=delegation.start_date,
            end_date=delegation.end_date,
            max_amount=delegation.max_amount,
            categories=sorted(delegation.categories) if delegation.categories else None,
            reason=delegation.reason,
            created_at=delegation.created_at,
            updated_at=delegation.created_at,
        )
        self._db.add(row)
        self._db.commit()
        return delegation_from_row(row)

    def list_for_user(self, user_id: str, company_id: uuid.UUID) -> list[ApprovalDelegation]:
        stmt = (
            select(ApprovalDelegationRow)
            .where(
                ApprovalDelegationRow.company_id == company_id,
                or_(
                    ApprovalDelegationRow.delegator_id == user_id,
                    ApprovalDelegationRow.delegate_to_id == user_id,
                ),
            )
            .order_by(ApprovalDelegationRow.created_at.desc())
        )
        return [delegation_from_row(r) for r in self._db.execute(stmt).scalars().all()]


# ─── Wiring ───

def build_workflow_service(db: Session, notifications=None):
    """ApprovalWorkflowService backed by ``db`` and the configured sinks."""
    from app.core.config import settings
    from app.db.session import SessionLocal
    from app.services.approval import ApprovalWorkflowService
    from app.services.audit import DatabaseAuditSink
    from app.services.notifications import get_notification_sink

    return ApprovalWorkflowService(
        rules=SqlRuleStore(db),
        requests=SqlRequestStore(db),
        delegations=SqlDelegationStore(db),
        companies=SqlCompanyDirectory(db),
        notifications=notifications or get_notification_sink(),
        audit=DatabaseAuditSink(SessionLocal),
        system_actor_id=settings.APPROVAL_SYSTEM_ACTOR_ID,
    )
