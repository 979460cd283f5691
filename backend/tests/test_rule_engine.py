"""Unit tests for approval rule selection (app.rules.approval_engine)."""
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.errors import CompanyNotFound, InvalidSubmission
from app.rules.approval_engine import (
    ApprovalRuleEngine,
    matches_rule,
    order_rules,
    validate_submission,
)
from app.rules.types import Submission

from fakes import COMPANY_ID, OTHER_COMPANY_ID, T0, InMemoryCompanyDirectory, InMemoryRuleStore, make_rule


def _engine(*rules) -> ApprovalRuleEngine:
    return ApprovalRuleEngine(InMemoryRuleStore(rules), InMemoryCompanyDirectory())


def _submission(amount="1500", category="travel", role="EMPLOYEE", vendor=None) -> Submission:
    return Submission(amount=Decimal(amount), category=category, submitter_role=role, vendor=vendor)


# ─── Selection ────────────────────────────────────────────────────────────────

def test_threshold_rule_requires_approval():
    """Rule{threshold 1000, approvers [U1]} + 1500 travel => approval required by that rule."""
    rule = make_rule(priority=1, amount_threshold=1000, approvers=["U1"])
    requirement = _engine(rule).evaluate(COMPANY_ID, _submission("1500"))

    assert requirement.requires_approval is True
    assert requirement.rule is rule
    assert requirement.auto_approve is False


def test_amount_below_threshold_does_not_match():
    rule = make_rule(amount_threshold=1000)
    requirement = _engine(rule).evaluate(COMPANY_ID, _submission("999.99"))

    assert requirement.requires_approval is False
    assert requirement.rule is None


def test_amount_equal_to_threshold_matches():
    rule = make_rule(amount_threshold=1000)
    assert _engine(rule).evaluate(COMPANY_ID, _submission("1000")).requires_approval is True


def test_lower_priority_number_wins():
    r1 = make_rule(name="R1", priority=1)
    r2 = make_rule(name="R2", priority=2)
    # Insertion order must not matter
    requirement = _engine(r2, r1).evaluate(COMPANY_ID, _submission())
    assert requirement.rule is r1


def test_priority_tie_goes_to_newest_rule():
    older = make_rule(name="older", priority=5, created_at=T0)
    newer = make_rule(name="newer", priority=5, created_at=T0 + timedelta(days=1))
    assert _engine(older, newer).evaluate(COMPANY_ID, _submission()).rule is newer


def test_first_matching_rule_governs_even_without_approval():
    """A higher-priority 'no approval' rule shadows later rules."""
    exempt = make_rule(name="exempt", priority=1, categories=["meals"], requires_approval=False)
    catch_all = make_rule(name="catch-all", priority=10)
    engine = _engine(exempt, catch_all)

    assert engine.evaluate(COMPANY_ID, _submission(category="meals")).requires_approval is False
    assert engine.evaluate(COMPANY_ID, _submission(category="travel")).rule is catch_all


def test_no_rules_means_no_approval():
    requirement = _engine().evaluate(COMPANY_ID, _submission())
    assert requirement.requires_approval is False


def test_inactive_rules_are_ignored():
    rule = make_rule(is_active=False)
    assert order_rules([rule]) == []


def test_rules_of_other_company_are_not_considered():
    rule = make_rule(company_id=OTHER_COMPANY_ID)
    assert _engine(rule).evaluate(COMPANY_ID, _submission()).requires_approval is False


def test_evaluation_is_deterministic():
    rules = [make_rule(name=f"r{i}", priority=i % 3, created_at=T0 + timedelta(hours=i)) for i in range(9)]
    engine = _engine(*rules)
    first = engine.evaluate(COMPANY_ID, _submission())
    for _ in range(20):
        assert engine.evaluate(COMPANY_ID, _submission()).rule is first.rule


def test_auto_approve_rule_is_flagged():
    rule = make_rule(auto_approve=True, approvers=[])
    requirement = _engine(rule).evaluate(COMPANY_ID, _submission())
    assert requirement.requires_approval is True
    assert requirement.auto_approve is True


# ─── Conditions ───────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "rule_kwargs, submission_kwargs, expected",
    [
        ({"categories": ["travel", "lodging"]}, {"category": "travel"}, True),
        ({"categories": ["travel", "lodging"]}, {"category": "meals"}, False),
        ({"vendors": ["Acme"]}, {"vendor": "Acme"}, True),
        ({"vendors": ["Acme"]}, {"vendor": "Globex"}, False),
        ({"vendors": ["Acme"]}, {"vendor": None}, False),
        ({"user_roles": ["EMPLOYEE"]}, {"role": "EMPLOYEE"}, True),
        ({"user_roles": ["MANAGER"]}, {"role": "EMPLOYEE"}, False),
        ({}, {"vendor": None}, True),
    ],
)
def test_condition_matching(rule_kwargs, submission_kwargs, expected):
    rule = make_rule(**rule_kwargs)
    assert matches_rule(rule, _submission(**submission_kwargs)) is expected


def test_all_conditions_must_hold():
    rule = make_rule(amount_threshold=100, categories=["travel"], user_roles=["EMPLOYEE"])
    assert matches_rule(rule, _submission("150", "travel", "EMPLOYEE")) is True
    assert matches_rule(rule, _submission("150", "travel", "MANAGER")) is False
    assert matches_rule(rule, _submission("50", "travel", "EMPLOYEE")) is False


# ─── Validation ───────────────────────────────────────────────────────────────

def test_unknown_company_raises():
    with pytest.raises(CompanyNotFound):
        _engine(make_rule()).evaluate(uuid.uuid4(), _submission())


@pytest.mark.parametrize("amount", ["0", "-5", "NaN", "abc", None])
def test_invalid_amount_rejected(amount):
    with pytest.raises(InvalidSubmission):
        validate_submission(amount, "travel")


@pytest.mark.parametrize("category", ["", "   ", None])
def test_missing_category_rejected(category):
    with pytest.raises(InvalidSubmission):
        validate_submission(Decimal("10"), category)


def test_validate_submission_coerces_to_decimal():
    assert validate_submission("12.50", "travel") == Decimal("12.50")
