"""In-memory collaborators for approval workflow tests.

Each store guards its state with a lock so concurrency tests exercise the
same compare-and-swap contract the SQL adapters provide.
"""
import dataclasses
import threading
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.core.errors import DuplicateApprovalRequest
from app.rules.types import (
    NON_TERMINAL_STATUSES,
    ApprovalRule,
    ApprovalStatus,
    AuthenticatedPrincipal,
    NotificationSettings,
    RuleActions,
    RuleConditions,
)
from app.services.approval import ApprovalWorkflowService
from app.services.ports import StatusConflict

COMPANY_ID = uuid.UUID("0b7f7a52-3c1e-4f0e-9d1a-6a2f1c9e0001")
OTHER_COMPANY_ID = uuid.UUID("0b7f7a52-3c1e-4f0e-9d1a-6a2f1c9e0002")
T0 = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)


def make_rule(
    name: str = "Rule",
    priority: int = 100,
    company_id: uuid.UUID = COMPANY_ID,
    amount_threshold=None,
    categories=(),
    vendors=(),
    user_roles=(),
    time_window_minutes=None,
    requires_approval: bool = True,
    auto_approve: bool = False,
    approvers=("mgr-1",),
    escalation_chain=(),
    reminder_interval_minutes=None,
    on_approval: bool = True,
    created_at: datetime = T0,
    is_active: bool = True,
) -> ApprovalRule:
    return ApprovalRule(
        id=uuid.uuid4(),
        company_id=company_id,
        name=name,
        priority=priority,
        conditions=RuleConditions(
            amount_threshold=Decimal(str(amount_threshold)) if amount_threshold is not None else None,
            categories=frozenset(categories),
            vendors=frozenset(vendors),
            user_roles=frozenset(user_roles),
            time_window_minutes=time_window_minutes,
        ),
        actions=RuleActions(
            requires_approval=requires_approval,
            auto_approve=auto_approve,
            approvers=list(approvers),
            escalation_chain=list(escalation_chain),
            notifications=NotificationSettings(
                on_approval=on_approval,
                reminder_interval_minutes=reminder_interval_minutes,
            ),
        ),
        is_active=is_active,
        created_at=created_at,
    )


def principal(user_id: str, role: str = "APPROVER", company_id: uuid.UUID = COMPANY_ID):
    return AuthenticatedPrincipal(id=user_id, company_id=company_id, role=role)


# ─── Stores ───────────────────────────────────────────────────────────────────

class InMemoryRuleStore:
    def __init__(self, rules=()):
        self.rules = {r.id: r for r in rules}

    def add(self, rule: ApprovalRule) -> ApprovalRule:
        self.rules[rule.id] = rule
        return rule

    def list_active_rules(self, company_id):
        return [r for r in self.rules.values() if r.company_id == company_id and r.is_active]

    def get_rule(self, rule_id):
        return self.rules.get(rule_id)


class InMemoryRequestStore:
    def __init__(self):
        self._lock = threading.Lock()
        self.requests = {}
        self.actions = []
        self.fail_action_writes = False

    def get(self, request_id):
        with self._lock:
            r = self.requests.get(request_id)
            return dataclasses.replace(r) if r else None

    def find_non_terminal_by_receipt(self, receipt_id):
        with self._lock:
            for r in self.requests.values():
                if r.receipt_id == receipt_id and r.status in NON_TERMINAL_STATUSES:
                    return dataclasses.replace(r)
        return None

    def insert(self, request):
        with self._lock:
            for r in self.requests.values():
                if r.receipt_id == request.receipt_id and r.status in NON_TERMINAL_STATUSES:
                    raise DuplicateApprovalRequest()
            self.requests[request.id] = dataclasses.replace(request)
            return dataclasses.replace(request)

    def compare_and_swap_status(self, request_id, expected_status, *, append_comment=None,
                                action=None, **fields):
        with self._lock:
            current = self.requests.get(request_id)
            if current is None or current.status != expected_status:
                raise StatusConflict(request_id, expected_status)
            if action is not None and self.fail_action_writes:
                # Nothing is applied when the action row cannot be written
                raise ConnectionError("approval_actions insert failed")
            if append_comment:
                fields["comments"] = (
                    f"{current.comments}\n{append_comment}" if current.comments else append_comment
                )
            updated = dataclasses.replace(current, **fields)
            self.requests[request_id] = updated
            if action is not None:
                self.actions.append(action)
            return dataclasses.replace(updated)

    def list_by_status(self, company_id, statuses):
        statuses = set(statuses)
        with self._lock:
            return [
                dataclasses.replace(r) for r in self.requests.values()
                if r.company_id == company_id and r.status in statuses
            ]

    def list_overdue(self, at):
        with self._lock:
            return [
                dataclasses.replace(r) for r in self.requests.values()
                if r.status in NON_TERMINAL_STATUSES and r.due_at is not None and r.due_at < at
            ]

    def list_actions(self, request_id):
        with self._lock:
            return [a for a in self.actions if a.request_id == request_id]

    def list_history(self, company_id, filters, offset, limit):
        with self._lock:
            rows = [r for r in self.requests.values() if r.company_id == company_id]
        if filters.status is not None:
            rows = [r for r in rows if r.status == filters.status]
        if filters.submitter_id:
            rows = [r for r in rows if r.submitter_id == filters.submitter_id]
        if filters.approver_id:
            rows = [r for r in rows if r.approver_id == filters.approver_id]
        if filters.start is not None:
            rows = [r for r in rows if r.created_at >= filters.start]
        if filters.end is not None:
            rows = [r for r in rows if r.created_at <= filters.end]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows[offset:offset + limit], len(rows)


class InMemoryDelegationStore:
    def __init__(self, delegations=()):
        self.delegations = list(delegations)
        self.delegator_lookups = 0
        self.active_lookups = 0

    def list_active_delegations(self, delegator_id, company_id, at):
        self.active_lookups += 1
        return [
            d for d in self.delegations
            if d.delegator_id == delegator_id and d.company_id == company_id and d.is_active_at(at)
        ]

    def list_delegators_to(self, delegate_id, company_id, at):
        self.delegator_lookups += 1
        return {
            d.delegator_id for d in self.delegations
            if d.delegate_to_id == delegate_id and d.company_id == company_id and d.is_active_at(at)
        }

    def insert(self, delegation):
        self.delegations.append(delegation)
        return delegation

    def list_for_user(self, user_id, company_id):
        return [
            d for d in self.delegations
            if d.company_id == company_id and user_id in (d.delegator_id, d.delegate_to_id)
        ]


class InMemoryCompanyDirectory:
    def __init__(self, company_ids=(COMPANY_ID, OTHER_COMPANY_ID)):
        self.company_ids = set(company_ids)

    def exists(self, company_id):
        return company_id in self.company_ids


# ─── Sinks ────────────────────────────────────────────────────────────────────

class RecordingNotificationSink:
    def __init__(self):
        self.submitter = []
        self.approvers = []
        self.delegations = []

    def notify_submitter(self, request, action, comments):
        self.submitter.append((request.id, request.submitter_id, action, comments))

    def notify_approvers(self, request, approver_ids, event):
        self.approvers.append((request.id, list(approver_ids), event))

    def notify_delegation(self, delegation):
        self.delegations.append(delegation)


class RecordingAuditSink:
    def __init__(self):
        self.entries = []

    def log_action(self, actor_id, action, resource_type, resource_id, details=None):
        self.entries.append(
            {
                "actor_id": actor_id,
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "details": details,
            }
        )

    def actions(self):
        return [e["action"] for e in self.entries]


class FailingSink:
    """Every notification and audit call raises."""

    def notify_submitter(self, *args):
        raise ConnectionError("mail relay down")

    def notify_approvers(self, *args):
        raise ConnectionError("mail relay down")

    def notify_delegation(self, *args):
        raise ConnectionError("mail relay down")

    def log_action(self, *args, **kwargs):
        raise ConnectionError("audit db down")


class Clock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ─── Harness ──────────────────────────────────────────────────────────────────

class Harness:
    """An ApprovalWorkflowService wired to in-memory collaborators."""

    def __init__(self, rules=(), delegations=(), notifications=None, audit=None, clock=None):
        self.rules = InMemoryRuleStore(rules)
        self.requests = InMemoryRequestStore()
        self.delegations = InMemoryDelegationStore(delegations)
        self.companies = InMemoryCompanyDirectory()
        self.notifications = notifications or RecordingNotificationSink()
        self.audit = audit or RecordingAuditSink()
        self.clock = clock or Clock()
        self.service = ApprovalWorkflowService(
            rules=self.rules,
            requests=self.requests,
            delegations=self.delegations,
            companies=self.companies,
            notifications=self.notifications,
            audit=self.audit,
            clock=self.clock,
        )

    def open_request(self, rule: ApprovalRule, amount="250.00", category="travel",
                     submitter_id="emp-1", receipt_id=None):
        return self.service.create_request(
            receipt_id=receipt_id or uuid.uuid4(),
            submitter_id=submitter_id,
            company_id=rule.company_id,
            rule_id=rule.id,
            amount=Decimal(amount),
            category=category,
        )
