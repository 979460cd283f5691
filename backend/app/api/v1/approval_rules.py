"""Approval rule administration endpoints (ADMIN)."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.deps import require_role
from app.db.session import get_session
from app.models.approval_rule import ApprovalRule
from app.rules.types import AuthenticatedPrincipal
from app.schemas.approval_rule import ApprovalRuleIn, ApprovalRuleOut, ApprovalRuleUpdate
from app.services import audit as audit_svc

router = APIRouter()

Admin = Annotated[AuthenticatedPrincipal, Depends(require_role("ADMIN"))]
DB = Annotated[Session, Depends(get_session)]


def _get_company_rule(db: Session, rule_id: uuid.UUID, company_id: uuid.UUID) -> ApprovalRule:
    rule = db.execute(
        select(ApprovalRule).where(
            ApprovalRule.id == rule_id,
            ApprovalRule.company_id == company_id,
        )
    ).scalars().first()
    if rule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rule not found.")
    return rule


@router.get("", response_model=list[ApprovalRuleOut], summary="List approval rules in evaluation order (ADMIN)")
def list_rules(
    db: DB,
    principal: Admin,
    include_inactive: bool = Query(False),
):
    stmt = select(ApprovalRule).where(ApprovalRule.company_id == principal.company_id)
    if not include_inactive:
        stmt = stmt.where(ApprovalRule.is_active.is_(True))
    stmt = stmt.order_by(ApprovalRule.priority.asc(), ApprovalRule.created_at.desc())
    return [ApprovalRuleOut.model_validate(r) for r in db.execute(stmt).scalars().all()]


@router.get("/{rule_id}", response_model=ApprovalRuleOut, summary="Get an approval rule (ADMIN)")
def get_rule(rule_id: uuid.UUID, db: DB, principal: Admin):
    return ApprovalRuleOut.model_validate(_get_company_rule(db, rule_id, principal.company_id))


@router.post(
    "",
    response_model=ApprovalRuleOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an approval rule (ADMIN)",
)
def create_rule(body: ApprovalRuleIn, db: DB, principal: Admin):
    rule = ApprovalRule(
        **body.model_dump(),
        company_id=principal.company_id,
        created_by=principal.id,
    )
    db.add(rule)
    db.flush()
    audit_svc.log(
        db,
        action="approval_rule.created",
        entity_type="approval_rule",
        entity_id=rule.id,
        actor_id=principal.id,
        details=body.model_dump(mode="json"),
    )
    db.commit()
    db.refresh(rule)
    return ApprovalRuleOut.model_validate(rule)


@router.put("/{rule_id}", response_model=ApprovalRuleOut, summary="Update an approval rule (ADMIN)")
def update_rule(rule_id: uuid.UUID, body: ApprovalRuleUpdate, db: DB, principal: Admin):
    rule = _get_company_rule(db, rule_id, principal.company_id)
    changes = body.model_dump(exclude_unset=True)

    for field, value in changes.items():
        setattr(rule, field, value)

    # Validate the merged result the same way a create would be
    try:
        ApprovalRuleIn.model_validate(ApprovalRuleOut.model_validate(rule).model_dump())
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    audit_svc.log(
        db,
        action="approval_rule.updated",
        entity_type="approval_rule",
        entity_id=rule.id,
        actor_id=principal.id,
        details=body.model_dump(mode="json", exclude_unset=True),
    )
    db.commit()
    db.refresh(rule)
    return ApprovalRuleOut.model_validate(rule)


@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Deactivate an approval rule (ADMIN)",
)
def delete_rule(rule_id: uuid.UUID, db: DB, principal: Admin):
    rule = _get_company_rule(db, rule_id, principal.company_id)
    # Soft delete: existing requests keep pointing at the rule
    rule.is_active = False
    audit_svc.log(
        db,
        action="approval_rule.deactivated",
        entity_type="approval_rule",
        entity_id=rule.id,
        actor_id=principal.id,
    )
    db.commit()
