"""Seed script: creates a demo company, its approval rules and dev tokens.

Idempotent: checks for existing records before inserting.
Run: python scripts/seed.py   (from backend/)
"""
import os
import sys
import uuid
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.security import create_access_token
from app.db.session import SessionLocal
from app.models.approval_rule import ApprovalRule
from app.models.company import Company

DEMO_COMPANY_ID = uuid.UUID("00000000-0000-4000-8000-000000000001")


# ─── Upsert helpers ───────────────────────────────────────────────────────────

def _upsert_company(db: Session) -> Company:
    company = db.get(Company, DEMO_COMPANY_ID)
    if company:
        print(f"  [skip] Company {company.name}")
        return company
    company = Company(id=DEMO_COMPANY_ID, name="Demo Co", is_active=True)
    db.add(company)
    db.flush()
    print(f"  [new]  Company {company.name}")
    return company


def _upsert_rule(db: Session, company: Company, name: str, **fields) -> ApprovalRule:
    rule = db.execute(
        select(ApprovalRule).where(ApprovalRule.company_id == company.id, ApprovalRule.name == name)
    ).scalars().first()
    if rule:
        print(f"  [skip] Rule {name}")
        return rule
    rule = ApprovalRule(company_id=company.id, name=name, created_by="seed", **fields)
    db.add(rule)
    db.flush()
    print(f"  [new]  Rule {name} (priority {rule.priority})")
    return rule


def seed() -> None:
    with SessionLocal() as db:
        company = _upsert_company(db)

        _upsert_rule(
            db, company, "Meals under 50 auto-approve",
            priority=10,
            categories=["meals"],
            requires_approval=True,
            auto_approve=True,
        )
        _upsert_rule(
            db, company, "Travel over 1000",
            priority=20,
            amount_threshold=Decimal("1000.00"),
            categories=["travel", "lodging"],
            approvers=["manager-1"],
            escalation_chain=["director-1", "cfo-1"],
            time_window_minutes=2 * 24 * 60,
            reminder_interval_minutes=24 * 60,
        )
        _upsert_rule(
            db, company, "Anything over 250",
            priority=100,
            amount_threshold=Decimal("250.00"),
            approvers=["manager-1", "manager-2"],
            escalation_chain=["director-1"],
            time_window_minutes=3 * 24 * 60,
        )
        db.commit()

    print("\nDev tokens:")
    for user_id, role in [
        ("admin-1", "ADMIN"),
        ("manager-1", "APPROVER"),
        ("director-1", "MANAGER"),
        ("employee-1", "EMPLOYEE"),
    ]:
        print(f"  {role:<9} {user_id:<11} {create_access_token(user_id, DEMO_COMPANY_ID, role)}")


if __name__ == "__main__":
    seed()
