"""Approval rule engine: decides whether a receipt needs approval.

Deterministic: the same rule set and submission always select the same rule.
Rules are evaluated in priority order (lower number first) and the first rule
whose conditions all match governs; later rules are never consulted.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from app.core.errors import CompanyNotFound, InvalidSubmission
from app.rules.types import ApprovalRule, Requirement, Submission
from app.services.ports import CompanyDirectory, RuleStore

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def validate_submission(amount, category) -> Decimal:
    """Return the amount as a Decimal, raising InvalidSubmission on bad input."""
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidSubmission(f"Amount '{amount}' is not a number.")
    if not value.is_finite() or value <= 0:
        raise InvalidSubmission("Amount must be greater than zero.")
    if not category or not str(category).strip():
        raise InvalidSubmission("Category is required.")
    return value


def order_rules(rules) -> list[ApprovalRule]:
    """Active rules by priority ascending; ties go to the most recently created."""
    active = [r for r in rules if r.is_active]
    newest_first = sorted(active, key=lambda r: r.created_at or _EPOCH, reverse=True)
    return sorted(newest_first, key=lambda r: r.priority)


def matches_rule(rule: ApprovalRule, submission: Submission) -> bool:
    conditions = rule.conditions

    if conditions.amount_threshold is not None and submission.amount < conditions.amount_threshold:
        return False

    if conditions.categories and submission.category not in conditions.categories:
        return False

    if conditions.vendors and submission.vendor not in conditions.vendors:
        return False

    if conditions.user_roles and submission.submitter_role not in conditions.user_roles:
        return False

    return True


def select_rule(rules, submission: Submission) -> ApprovalRule | None:
    for rule in order_rules(rules):
        if matches_rule(rule, submission):
            return rule
    return None


class ApprovalRuleEngine:
    """Evaluates a submission against a company's active approval rules."""

    def __init__(self, rules: RuleStore, companies: CompanyDirectory):
        self._rules = rules
        self._companies = companies

    def evaluate(self, company_id: uuid.UUID, submission: Submission) -> Requirement:
        amount = validate_submission(submission.amount, submission.category)
        if amount != submission.amount:
            submission = Submission(
                amount=amount,
                category=submission.category,
                submitter_role=submission.submitter_role,
                vendor=submission.vendor,
            )

        if not self._companies.exists(company_id):
            raise CompanyNotFound(f"Company {company_id} not found.")

        rule = select_rule(self._rules.list_active_rules(company_id), submission)

        if rule is None:
            logger.debug("evaluate: company=%s no rule matched", company_id)
            return Requirement(requires_approval=False)

        logger.debug(
            "evaluate: company=%s matched rule=%s priority=%s",
            company_id, rule.id, rule.priority,
        )
        if not rule.actions.requires_approval:
            return Requirement(requires_approval=False)

        return Requirement(
            requires_approval=True,
            rule=rule,
            auto_approve=rule.actions.auto_approve,
        )
