"""Approval workflow domain types.

Plain dataclasses shared by the rule engine, the delegation resolver and the
approval service. Persistence adapters map ORM rows to and from these.
"""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


class ApprovalStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    escalated = "escalated"


NON_TERMINAL_STATUSES = frozenset({ApprovalStatus.pending, ApprovalStatus.escalated})
TERMINAL_STATUSES = frozenset({ApprovalStatus.approved, ApprovalStatus.rejected})


class ApprovalActionType(str, enum.Enum):
    approve = "approve"
    reject = "reject"
    request_info = "request_info"
    # Recorded by the workflow itself, never accepted from a user
    escalate = "escalate"
    auto_approve = "auto_approve"


USER_ACTIONS = frozenset({
    ApprovalActionType.approve,
    ApprovalActionType.reject,
    ApprovalActionType.request_info,
})


# ─── Caller identity ───

@dataclass(frozen=True)
class AuthenticatedPrincipal:
    id: str
    company_id: uuid.UUID
    role: str


# ─── Rules ───

@dataclass
class RuleConditions:
    amount_threshold: Decimal | None = None
    categories: frozenset[str] = frozenset()
    vendors: frozenset[str] = frozenset()
    time_window_minutes: int | None = None
    user_roles: frozenset[str] = frozenset()


@dataclass
class NotificationSettings:
    on_submission: bool = True
    on_approval: bool = True
    on_rejection: bool = True
    reminder_interval_minutes: int | None = None


@dataclass
class RuleActions:
    requires_approval: bool = True
    auto_approve: bool = False
    approvers: list[str] = field(default_factory=list)
    escalation_chain: list[str] = field(default_factory=list)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)


@dataclass
class ApprovalRule:
    id: uuid.UUID
    company_id: uuid.UUID
    name: str
    priority: int
    conditions: RuleConditions = field(default_factory=RuleConditions)
    actions: RuleActions = field(default_factory=RuleActions)
    description: str | None = None
    is_active: bool = True
    created_by: str | None = None
    created_at: datetime | None = None

    def approvers_for_tier(self, tier: int) -> list[str]:
        """Tier 0 is the rule's approvers; tier k is escalation_chain[k - 1]."""
        if tier <= 0:
            return list(self.actions.approvers)
        if tier <= len(self.actions.escalation_chain):
            return [self.actions.escalation_chain[tier - 1]]
        return []


# ─── Evaluation ───

@dataclass(frozen=True)
class Submission:
    amount: Decimal
    category: str
    submitter_role: str
    vendor: str | None = None


@dataclass(frozen=True)
class Requirement:
    requires_approval: bool
    rule: ApprovalRule | None = None
    auto_approve: bool = False


# ─── Requests ───

@dataclass
class ApprovalRequest:
    id: uuid.UUID
    receipt_id: uuid.UUID
    submitter_id: str
    company_id: uuid.UUID
    rule_id: uuid.UUID
    amount: Decimal
    category: str
    created_at: datetime
    vendor: str | None = None
    reason: str | None = None
    status: ApprovalStatus = ApprovalStatus.pending
    approver_id: str | None = None
    comments: str | None = None
    decided_at: datetime | None = None
    escalated_at: datetime | None = None
    escalation_tier: int = 0
    due_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class ApprovalActionRecord:
    request_id: uuid.UUID
    actor_id: str
    action: ApprovalActionType
    created_at: datetime
    comments: str | None = None
    delegated_from: str | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class HistoryFilters:
    status: ApprovalStatus | None = None
    submitter_id: str | None = None
    approver_id: str | None = None
    start: datetime | None = None
    end: datetime | None = None


# ─── Delegation ───

@dataclass
class ApprovalDelegation:
    delegator_id: str
    delegate_to_id: str
    company_id: uuid.UUID
    start_date: datetime
    end_date: datetime
    created_at: datetime
    max_amount: Decimal | None = None
    categories: frozenset[str] | None = None
    reason: str | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def is_active_at(self, at: datetime) -> bool:
        return self.start_date <= at <= self.end_date

    def covers(self, amount: Decimal, category: str) -> bool:
        if self.max_amount is not None and amount > self.max_amount:
            return False
        if self.categories and category not in self.categories:
            return False
        return True
