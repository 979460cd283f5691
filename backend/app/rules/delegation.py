"""Delegation resolver: who actually holds a nominal approver's authority.

A delegation hands one user's approval authority to another for a date
window, optionally capped by amount and restricted to categories.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal

from app.rules.types import ApprovalDelegation
from app.services.ports import DelegationStore

logger = logging.getLogger(__name__)


class DelegationResolver:
    def __init__(self, delegations: DelegationStore):
        self._delegations = delegations

    def applicable_delegation(
        self,
        nominal_approver_id: str,
        company_id: uuid.UUID,
        amount: Decimal,
        category: str,
        at: datetime,
    ) -> ApprovalDelegation | None:
        """Return the delegation that applies, or None.

        Several overlapping delegations for one delegator are not expected;
        when they happen, the most recently created one that covers the
        amount and category wins.
        """
        candidates = [
            d for d in self._delegations.list_active_delegations(nominal_approver_id, company_id, at)
            if d.company_id == company_id
            and d.delegator_id == nominal_approver_id
            and d.is_active_at(at)
            and d.covers(amount, category)
        ]
        if not candidates:
            return None
        if len(candidates) > 1:
            logger.warning(
                "Overlapping delegations for approver=%s company=%s (%d active); using newest.",
                nominal_approver_id, company_id, len(candidates),
            )
        return max(candidates, key=lambda d: d.created_at)

    def resolve_effective_approver(
        self,
        nominal_approver_id: str,
        company_id: uuid.UUID,
        amount: Decimal,
        category: str,
        at: datetime,
    ) -> str:
        delegation = self.applicable_delegation(
            nominal_approver_id, company_id, amount, category, at
        )
        if delegation is None:
            return nominal_approver_id
        return delegation.delegate_to_id
