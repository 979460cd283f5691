"""Approval request lifecycle service.

Drives an ApprovalRequest through pending -> approved / rejected / escalated.
Storage, notification and audit are injected collaborators (see
app.services.ports); nothing is cached between calls.

Status changes are compare-and-swap updates against the status that was
read, so two approvers racing on the same request cannot both win. The
action log entry is written in the same transaction as the swap.
Notification and audit side effects are best-effort: a failing sink is
logged and never undoes a committed transition.
"""
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.core.errors import (
    ApprovalWorkflowError,
    DuplicateApprovalRequest,
    InsufficientApprovalAuthority,
    InvalidStateTransition,
    InvalidSubmission,
    NoEscalationPath,
    RequestNotFound,
    RuleNotFound,
)
from app.rules.approval_engine import ApprovalRuleEngine, validate_submission
from app.rules.delegation import DelegationResolver
from app.rules.types import (
    NON_TERMINAL_STATUSES,
    USER_ACTIONS,
    ApprovalActionRecord,
    ApprovalActionType,
    ApprovalDelegation,
    ApprovalRequest,
    ApprovalRule,
    ApprovalStatus,
    AuthenticatedPrincipal,
    HistoryFilters,
    Requirement,
    Submission,
)
from app.services.ports import (
    AuditSink,
    CompanyDirectory,
    DelegationStore,
    NotificationSink,
    RequestStore,
    RuleStore,
    StatusConflict,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR_ID = "system"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BulkActionResult:
    successful: list[uuid.UUID] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)


@dataclass
class OverdueSweepResult:
    reminded: int = 0
    escalated: int = 0
    exhausted: int = 0


@dataclass
class ApprovalStatistics:
    pending: int = 0
    escalated: int = 0
    approved_this_month: int = 0
    rejected_this_month: int = 0
    active_rules: int = 0


class ApprovalWorkflowService:
    def __init__(
        self,
        rules: RuleStore,
        requests: RequestStore,
        delegations: DelegationStore,
        companies: CompanyDirectory,
        notifications: NotificationSink,
        audit: AuditSink,
        system_actor_id: str = SYSTEM_ACTOR_ID,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._rules = rules
        self._requests = requests
        self._delegations = delegations
        self._notifications = notifications
        self._audit = audit
        self._system_actor_id = system_actor_id
        self._clock = clock
        self.engine = ApprovalRuleEngine(rules, companies)
        self.resolver = DelegationResolver(delegations)

    # ─── Evaluation ───

    def evaluate(self, company_id: uuid.UUID, submission: Submission) -> Requirement:
        return self.engine.evaluate(company_id, submission)

    def submit_for_approval(
        self,
        principal: AuthenticatedPrincipal,
        receipt_id: uuid.UUID,
        amount: Decimal,
        category: str,
        vendor: str | None = None,
        reason: str | None = None,
    ) -> tuple[Requirement, ApprovalRequest | None]:
        """Evaluate the receipt and open a request when a rule demands one."""
        requirement = self.engine.evaluate(
            principal.company_id,
            Submission(
                amount=amount,
                category=category,
                submitter_role=principal.role,
                vendor=vendor,
            ),
        )
        if not requirement.requires_approval:
            return requirement, None

        request = self.create_request(
            receipt_id=receipt_id,
            submitter_id=principal.id,
            company_id=principal.company_id,
            rule_id=requirement.rule.id,
            amount=amount,
            category=category,
            vendor=vendor,
            reason=reason,
        )
        return requirement, request

    # ─── Create ───

    def create_request(
        self,
        receipt_id: uuid.UUID,
        submitter_id: str,
        company_id: uuid.UUID,
        rule_id: uuid.UUID,
        amount: Decimal,
        category: str,
        vendor: str | None = None,
        reason: str | None = None,
    ) -> ApprovalRequest:
        """Open a pending approval request for a receipt.

        Raises:
            InvalidSubmission: bad amount/category, or the rule does not
                require approval.
            RuleNotFound: unknown rule, or a rule of another company.
            DuplicateApprovalRequest: the receipt already has a live request.
        """
        amount = validate_submission(amount, category)

        rule = self._rules.get_rule(rule_id)
        if rule is None or rule.company_id != company_id:
            raise RuleNotFound(f"Approval rule {rule_id} not found.")
        if not rule.actions.requires_approval:
            raise InvalidSubmission(f"Rule '{rule.name}' does not require approval.")

        existing = self._requests.find_non_terminal_by_receipt(receipt_id)
        if existing is not None:
            raise DuplicateApprovalRequest(
                f"Receipt {receipt_id} already has approval request {existing.id} "
                f"({existing.status.value})."
            )

        now = self._clock()
        request = ApprovalRequest(
            id=uuid.uuid4(),
            receipt_id=receipt_id,
            submitter_id=submitter_id,
            company_id=company_id,
            rule_id=rule.id,
            amount=amount,
            category=category,
            vendor=vendor,
            reason=reason,
            status=ApprovalStatus.pending,
            created_at=now,
            escalation_tier=0,
            due_at=self._due_at(rule, now),
        )
        # The store's uniqueness guard is authoritative; the lookup above only
        # gives a friendlier message in the common case.
        request = self._requests.insert(request)

        logger.info(
            "Approval request created: request=%s receipt=%s rule=%s amount=%s",
            request.id, receipt_id, rule.id, amount,
        )
        self._emit_audit(
            submitter_id,
            "approval_request.created",
            request.id,
            {
                "receipt_id": str(receipt_id),
                "rule_id": str(rule.id),
                "amount": str(amount),
                "category": category,
                "vendor": vendor,
            },
        )

        if rule.actions.auto_approve:
            return self._auto_approve(request, rule)

        if rule.actions.notifications.on_submission:
            self._emit(
                self._notifications.notify_approvers,
                request, rule.approvers_for_tier(0), "submitted",
            )
        return request

    def _auto_approve(self, request: ApprovalRequest, rule: ApprovalRule) -> ApprovalRequest:
        now = self._clock()
        comments = f"Auto-approved by rule '{rule.name}'."
        try:
            approved = self._requests.compare_and_swap_status(
                request.id,
                ApprovalStatus.pending,
                append_comment=comments,
                action=self._action_record(
                    request.id, self._system_actor_id, ApprovalActionType.auto_approve, comments, now
                ),
                status=ApprovalStatus.approved,
                approver_id=self._system_actor_id,
                decided_at=now,
            )
        except StatusConflict as exc:
            raise InvalidStateTransition(str(exc))

        self._emit_audit(
            self._system_actor_id,
            "approval_request.auto_approved",
            approved.id,
            {"rule_id": str(rule.id), "before": ApprovalStatus.pending.value, "after": approved.status.value},
        )
        if rule.actions.notifications.on_approval:
            self._emit(self._notifications.notify_submitter, approved, "approved", comments)
        return approved

    # ─── Decide ───

    def process_approval_action(
        self,
        request_id: uuid.UUID,
        actor: AuthenticatedPrincipal,
        action: str | ApprovalActionType,
        comments: str | None = None,
    ) -> ApprovalRequest:
        """Apply approve / reject / request_info from a human approver.

        Raises:
            InvalidSubmission: unknown action.
            RequestNotFound: unknown request, or one of another company.
            InvalidStateTransition: request already decided, or decided
                concurrently.
            InsufficientApprovalAuthority: actor is neither an approver of the
                current tier nor the effective delegate of one.
        """
        action_type = self._parse_action(action)

        request = self._requests.get(request_id)
        if request is None or request.company_id != actor.company_id:
            raise RequestNotFound(f"Approval request {request_id} not found.")

        if request.status not in NON_TERMINAL_STATUSES:
            raise InvalidStateTransition(
                f"Approval request {request_id} is already {request.status.value}."
            )

        rule = self._rules.get_rule(request.rule_id)
        if rule is None:
            raise RuleNotFound(f"Approval rule {request.rule_id} not found.")

        now = self._clock()
        delegated_from = self._check_authority(request, rule, actor.id, now)

        fields: dict = {}
        if action_type is ApprovalActionType.approve:
            fields.update(status=ApprovalStatus.approved, approver_id=actor.id, decided_at=now)
        elif action_type is ApprovalActionType.reject:
            fields.update(status=ApprovalStatus.rejected, approver_id=actor.id, decided_at=now)

        try:
            # The comment is appended by the store, so a concurrent request_info
            # that kept the status unchanged is never overwritten.
            updated = self._requests.compare_and_swap_status(
                request.id,
                request.status,
                append_comment=self._comment_entry(actor.id, comments),
                action=self._action_record(
                    request.id, actor.id, action_type, comments, now, delegated_from
                ),
                **fields,
            )
        except StatusConflict as exc:
            raise InvalidStateTransition(str(exc))

        logger.info(
            "Approval action: request=%s action=%s actor=%s delegated_from=%s status=%s",
            updated.id, action_type.value, actor.id, delegated_from, updated.status.value,
        )
        self._emit_audit(
            actor.id,
            f"approval_request.{action_type.value}",
            updated.id,
            {
                "before": request.status.value,
                "after": updated.status.value,
                "escalation_tier": updated.escalation_tier,
                "delegated_from": delegated_from,
                "comments": comments,
            },
        )

        notify = rule.actions.notifications
        if action_type is ApprovalActionType.approve and notify.on_approval:
            self._emit(self._notifications.notify_submitter, updated, "approved", comments)
        elif action_type is ApprovalActionType.reject and notify.on_rejection:
            self._emit(self._notifications.notify_submitter, updated, "rejected", comments)
        elif action_type is ApprovalActionType.request_info:
            self._emit(self._notifications.notify_submitter, updated, "request_info", comments)

        return updated

    def bulk_process_approvals(
        self,
        request_ids: Iterable[uuid.UUID],
        actor: AuthenticatedPrincipal,
        action: str | ApprovalActionType,
        comments: str | None = None,
    ) -> BulkActionResult:
        """Apply one action to many requests; each one succeeds or fails on its own."""
        action_type = self._parse_action(action)
        result = BulkActionResult()
        for request_id in request_ids:
            try:
                self.process_approval_action(request_id, actor, action_type, comments)
            except ApprovalWorkflowError as exc:
                result.failed.append(
                    {"request_id": request_id, "error": exc.kind, "detail": exc.message}
                )
            else:
                result.successful.append(request_id)
        return result

    # ─── Escalate ───

    def escalate_approval(self, request_id: uuid.UUID) -> ApprovalRequest:
        """Hand a stalled request to the next approver in the escalation chain.

        The trigger (an SLA check) is the caller's business; see
        process_overdue_approvals for the scheduled sweep.
        """
        request = self._requests.get(request_id)
        if request is None:
            raise RequestNotFound(f"Approval request {request_id} not found.")
        if request.status not in NON_TERMINAL_STATUSES:
            raise InvalidStateTransition(
                f"Approval request {request_id} is already {request.status.value}."
            )

        rule = self._rules.get_rule(request.rule_id)
        if rule is None:
            raise RuleNotFound(f"Approval rule {request.rule_id} not found.")

        chain = rule.actions.escalation_chain
        if not chain:
            raise NoEscalationPath(f"Rule '{rule.name}' has no escalation chain.")
        if request.escalation_tier >= len(chain):
            raise NoEscalationPath(
                f"Escalation chain of rule '{rule.name}' is exhausted "
                f"(tier {request.escalation_tier} of {len(chain)})."
            )

        now = self._clock()
        next_tier = request.escalation_tier + 1
        try:
            updated = self._requests.compare_and_swap_status(
                request.id,
                request.status,
                action=self._action_record(
                    request.id, self._system_actor_id, ApprovalActionType.escalate,
                    f"Escalated to tier {next_tier}.", now,
                ),
                status=ApprovalStatus.escalated,
                approver_id=None,
                escalation_tier=next_tier,
                escalated_at=now,
                due_at=self._due_at(rule, now),
            )
        except StatusConflict as exc:
            raise InvalidStateTransition(str(exc))

        logger.info(
            "Approval request escalated: request=%s tier=%s approvers=%s",
            updated.id, next_tier, rule.approvers_for_tier(next_tier),
        )
        self._emit_audit(
            self._system_actor_id,
            "approval_request.escalated",
            updated.id,
            {"before": request.status.value, "after": updated.status.value, "escalation_tier": next_tier},
        )
        self._emit(
            self._notifications.notify_approvers,
            updated, rule.approvers_for_tier(next_tier), "escalated",
        )
        return updated

    def process_overdue_approvals(self) -> OverdueSweepResult:
        """Remind and escalate every live request whose due time has passed."""
        now = self._clock()
        result = OverdueSweepResult()
        rules: dict[uuid.UUID, ApprovalRule | None] = {}

        for request in self._requests.list_overdue(now):
            if request.rule_id not in rules:
                rules[request.rule_id] = self._rules.get_rule(request.rule_id)
            rule = rules[request.rule_id]
            if rule is None:
                logger.warning("Overdue request %s references missing rule %s", request.id, request.rule_id)
                continue

            if rule.actions.notifications.reminder_interval_minutes:
                self._emit(
                    self._notifications.notify_approvers,
                    request, rule.approvers_for_tier(request.escalation_tier), "reminder",
                )
                result.reminded += 1

            if request.escalation_tier < len(rule.actions.escalation_chain):
                try:
                    self.escalate_approval(request.id)
                except (InvalidStateTransition, NoEscalationPath) as exc:
                    logger.info("Skipping escalation of %s: %s", request.id, exc)
                else:
                    result.escalated += 1
            else:
                result.exhausted += 1
                self._snooze(request, rule, now)

        if result.reminded or result.escalated or result.exhausted:
            logger.info(
                "Overdue sweep: reminded=%d escalated=%d exhausted=%d",
                result.reminded, result.escalated, result.exhausted,
            )
        return result

    def _snooze(self, request: ApprovalRequest, rule: ApprovalRule, now: datetime) -> None:
        """Reschedule a request with nothing left to escalate to.

        With a reminder interval the next reminder is due one interval from
        now; without one the request drops out of the sweep entirely.
        """
        interval = rule.actions.notifications.reminder_interval_minutes
        due_at = now + timedelta(minutes=interval) if interval else None
        try:
            self._requests.compare_and_swap_status(request.id, request.status, due_at=due_at)
        except StatusConflict:
            logger.info("Request %s changed during sweep; not rescheduling reminder", request.id)

    # ─── Queries ───

    def get_request(self, request_id: uuid.UUID, company_id: uuid.UUID) -> ApprovalRequest:
        request = self._requests.get(request_id)
        if request is None or request.company_id != company_id:
            raise RequestNotFound(f"Approval request {request_id} not found.")
        return request

    def list_actions(self, request_id: uuid.UUID, company_id: uuid.UUID) -> list[ApprovalActionRecord]:
        self.get_request(request_id, company_id)
        return sorted(self._requests.list_actions(request_id), key=lambda a: a.created_at)

    def get_pending_approvals_for_user(
        self, user_id: str, company_id: uuid.UUID
    ) -> list[ApprovalRequest]:
        """Live requests the user may act on now, oldest first."""
        now = self._clock()
        rules: dict[uuid.UUID, ApprovalRule | None] = {}
        delegators = self._delegations.list_delegators_to(user_id, company_id, now)
        pending = []

        for request in self._requests.list_by_status(company_id, NON_TERMINAL_STATUSES):
            if request.rule_id not in rules:
                rules[request.rule_id] = self._rules.get_rule(request.rule_id)
            rule = rules[request.rule_id]
            if rule is None:
                continue
            authorized, _ = self._authority_for(request, rule, user_id, now, delegators)
            if authorized:
                pending.append(request)

        return sorted(pending, key=lambda r: r.created_at)

    def get_approval_history(
        self,
        company_id: uuid.UUID,
        filters: HistoryFilters | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[ApprovalRequest], int]:
        if page < 1 or limit < 1:
            raise InvalidSubmission("page and limit must be positive.")
        return self._requests.list_history(
            company_id, filters or HistoryFilters(), (page - 1) * limit, limit
        )

    def get_statistics(self, company_id: uuid.UUID) -> ApprovalStatistics:
        """Dashboard counters: live requests, this month's decisions and active rules."""
        month_start = self._clock().replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        def count(status: ApprovalStatus, start: datetime | None = None) -> int:
            _, total = self._requests.list_history(
                company_id, HistoryFilters(status=status, start=start), 0, 1
            )
            return total

        return ApprovalStatistics(
            pending=count(ApprovalStatus.pending),
            escalated=count(ApprovalStatus.escalated),
            approved_this_month=count(ApprovalStatus.approved, month_start),
            rejected_this_month=count(ApprovalStatus.rejected, month_start),
            active_rules=len(self._rules.list_active_rules(company_id)),
        )

    # ─── Delegation ───

    def delegate_approval(
        self,
        principal: AuthenticatedPrincipal,
        delegate_to_id: str,
        start_date: datetime,
        end_date: datetime,
        max_amount: Decimal | None = None,
        categories: Iterable[str] | None = None,
        reason: str | None = None,
    ) -> ApprovalDelegation:
        """Grant the principal's own approval authority to another user."""
        if delegate_to_id == principal.id:
            raise InvalidSubmission("Cannot delegate approval authority to yourself.")
        if start_date > end_date:
            raise InvalidSubmission("start_date must not be after end_date.")
        if max_amount is not None and max_amount <= 0:
            raise InvalidSubmission("max_amount must be greater than zero.")

        delegation = self._delegations.insert(
            ApprovalDelegation(
                delegator_id=principal.id,
                delegate_to_id=delegate_to_id,
                company_id=principal.company_id,
                start_date=start_date,
                end_date=end_date,
                max_amount=max_amount,
                categories=frozenset(categories) if categories else None,
                reason=reason,
                created_at=self._clock(),
            )
        )
        logger.info(
            "Delegation created: %s -> %s (%s .. %s)",
            delegation.delegator_id, delegation.delegate_to_id, start_date, end_date,
        )
        self._emit_audit(
            principal.id,
            "approval_delegation.created",
            delegation.id,
            {
                "delegate_to_id": delegate_to_id,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "max_amount": str(max_amount) if max_amount is not None else None,
                "categories": sorted(delegation.categories) if delegation.categories else None,
            },
            resource_type="approval_delegation",
        )
        self._emit(self._notifications.notify_delegation, delegation)
        return delegation

    def list_delegations(self, user_id: str, company_id: uuid.UUID) -> list[ApprovalDelegation]:
        return sorted(
            self._delegations.list_for_user(user_id, company_id),
            key=lambda d: d.created_at,
            reverse=True,
        )

    # ─── Internal helpers ───

    @staticmethod
    def _parse_action(action: str | ApprovalActionType) -> ApprovalActionType:
        try:
            action_type = ApprovalActionType(action)
        except ValueError:
            action_type = None
        if action_type not in USER_ACTIONS:
            raise InvalidSubmission(
                f"Invalid action '{action}'. Must be 'approve', 'reject' or 'request_info'."
            )
        return action_type

    def _authority_for(
        self,
        request: ApprovalRequest,
        rule: ApprovalRule,
        user_id: str,
        at: datetime,
        delegators: set[str] | None = None,
    ) -> tuple[bool, str | None]:
        """Return (authorized, delegated_from) for the request's current tier.

        ``delegators``, when given, limits delegation lookups to approvers
        known to have delegated to ``user_id``.
        """
        approvers = rule.approvers_for_tier(request.escalation_tier)
        if user_id in approvers:
            return True, None
        for approver_id in approvers:
            if delegators is not None and approver_id not in delegators:
                continue
            effective = self.resolver.resolve_effective_approver(
                approver_id, request.company_id, request.amount, request.category, at
            )
            if effective == user_id:
                return True, approver_id
        return False, None

    def _check_authority(
        self, request: ApprovalRequest, rule: ApprovalRule, user_id: str, at: datetime
    ) -> str | None:
        authorized, delegated_from = self._authority_for(request, rule, user_id, at)
        if not authorized:
            logger.warning(
                "Denied approval attempt: request=%s user=%s tier=%s",
                request.id, user_id, request.escalation_tier,
            )
            self._emit_audit(
                user_id,
                "approval_request.denied",
                request.id,
                {"status": request.status.value, "escalation_tier": request.escalation_tier},
            )
            raise InsufficientApprovalAuthority(
                f"User {user_id} is not authorized to act on approval request {request.id}."
            )
        return delegated_from

    @staticmethod
    def _comment_entry(author: str, comment: str | None) -> str | None:
        return f"[{author}] {comment}" if comment else None

    @staticmethod
    def _due_at(rule: ApprovalRule, start: datetime) -> datetime | None:
        minutes = rule.conditions.time_window_minutes
        if not minutes:
            return None
        return start + timedelta(minutes=minutes)

    @staticmethod
    def _action_record(
        request_id: uuid.UUID,
        actor_id: str,
        action: ApprovalActionType,
        comments: str | None,
        at: datetime,
        delegated_from: str | None = None,
    ) -> ApprovalActionRecord:
        return ApprovalActionRecord(
            request_id=request_id,
            actor_id=actor_id,
            action=action,
            comments=comments,
            delegated_from=delegated_from,
            created_at=at,
        )

    def _emit_audit(
        self,
        actor_id: str | None,
        action: str,
        resource_id: uuid.UUID,
        details: dict,
        resource_type: str = "approval_request",
    ) -> None:
        self._emit(self._audit.log_action, actor_id, action, resource_type, resource_id, details)

    @staticmethod
    def _emit(fn: Callable, *args) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("Approval side effect %s failed", getattr(fn, "__qualname__", fn))
