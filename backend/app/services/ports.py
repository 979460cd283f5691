"""Collaborator interfaces consumed by the approval workflow.

The workflow never touches the database, the mailer or the audit table
directly; it is handed implementations of these protocols. SQLAlchemy
adapters live in app.services.stores, sinks in app.services.notifications
and app.services.audit.
"""
import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, Protocol

from app.rules.types import (
    ApprovalActionRecord,
    ApprovalDelegation,
    ApprovalRequest,
    ApprovalRule,
    ApprovalStatus,
    HistoryFilters,
)


class StatusConflict(Exception):
    """Raised by compare_and_swap_status when the stored status no longer matches."""

    def __init__(self, request_id: uuid.UUID, expected: ApprovalStatus):
        super().__init__(f"Request {request_id} is no longer {expected.value}.")
        self.request_id = request_id
        self.expected = expected


class RuleStore(Protocol):
    def list_active_rules(self, company_id: uuid.UUID) -> Sequence[ApprovalRule]: ...

    def get_rule(self, rule_id: uuid.UUID) -> ApprovalRule | None: ...


class RequestStore(Protocol):
    def get(self, request_id: uuid.UUID) -> ApprovalRequest | None: ...

    def find_non_terminal_by_receipt(self, receipt_id: uuid.UUID) -> ApprovalRequest | None: ...

    def insert(self, request: ApprovalRequest) -> ApprovalRequest:
        """Persist a new request.

        Must raise DuplicateApprovalRequest if another non-terminal request
        for the same receipt exists at commit time.
        """
        ...

    def compare_and_swap_status(
        self,
        request_id: uuid.UUID,
        expected_status: ApprovalStatus,
        *,
        append_comment: str | None = None,
        action: ApprovalActionRecord | None = None,
        **fields: Any,
    ) -> ApprovalRequest:
        """Apply ``fields`` only if the stored status is still ``expected_status``.

        ``append_comment`` is appended to the stored comments as part of the
        same update, never to a previously read copy. ``action`` is written
        in the same transaction; if it cannot be stored the update is rolled
        back and the error propagates.

        Raises StatusConflict if the status no longer matches.
        """
        ...

    def list_by_status(
        self, company_id: uuid.UUID, statuses: Iterable[ApprovalStatus]
    ) -> Sequence[ApprovalRequest]: ...

    def list_overdue(self, at: datetime) -> Sequence[ApprovalRequest]: ...

    def list_actions(self, request_id: uuid.UUID) -> Sequence[ApprovalActionRecord]: ...

    def list_history(
        self,
        company_id: uuid.UUID,
        filters: HistoryFilters,
        offset: int,
        limit: int,
    ) -> tuple[list[ApprovalRequest], int]: ...


class DelegationStore(Protocol):
    def list_active_delegations(
        self, delegator_id: str, company_id: uuid.UUID, at: datetime
    ) -> Sequence[ApprovalDelegation]: ...

    def list_delegators_to(
        self, delegate_id: str, company_id: uuid.UUID, at: datetime
    ) -> set[str]:
        """Ids of users with a delegation to ``delegate_id`` active at ``at``."""
        ...

    def insert(self, delegation: ApprovalDelegation) -> ApprovalDelegation: ...

    def list_for_user(self, user_id: str, company_id: uuid.UUID) -> Sequence[ApprovalDelegation]: ...


class CompanyDirectory(Protocol):
    def exists(self, company_id: uuid.UUID) -> bool: ...


class NotificationSink(Protocol):
    def notify_submitter(
        self, request: ApprovalRequest, action: str, comments: str | None
    ) -> None: ...

    def notify_approvers(
        self, request: ApprovalRequest, approver_ids: Sequence[str], event: str
    ) -> None: ...

    def notify_delegation(self, delegation: ApprovalDelegation) -> None: ...


class AuditSink(Protocol):
    def log_action(
        self,
        actor_id: str | None,
        action: str,
        resource_type: str,
        resource_id: uuid.UUID | str | None,
        details: dict | None = None,
    ) -> None: ...
