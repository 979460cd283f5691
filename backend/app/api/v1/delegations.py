"""Approval delegation endpoints."""
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from app.core.deps import get_current_principal, get_workflow, require_role
from app.rules.types import AuthenticatedPrincipal
from app.schemas.delegation import DelegationIn, DelegationOut
from app.services.approval import ApprovalWorkflowService

router = APIRouter()

Workflow = Annotated[ApprovalWorkflowService, Depends(get_workflow)]


@router.post(
    "",
    response_model=DelegationOut,
    status_code=status.HTTP_201_CREATED,
    summary="Delegate your approval authority for a date range (APPROVER, MANAGER, ADMIN)",
)
def create_delegation(
    body: DelegationIn,
    workflow: Workflow,
    principal: Annotated[AuthenticatedPrincipal, Depends(require_role("APPROVER", "MANAGER", "ADMIN"))],
):
    delegation = workflow.delegate_approval(
        principal,
        delegate_to_id=body.delegate_to_id,
        start_date=body.start_date,
        end_date=body.end_date,
        max_amount=body.max_amount,
        categories=body.categories,
        reason=body.reason,
    )
    return DelegationOut.model_validate(delegation)


@router.get("", response_model=list[DelegationOut], summary="Delegations granted by or to a user")
def list_delegations(
    workflow: Workflow,
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    user_id: str | None = Query(None, description="ADMIN only; defaults to the caller"),
):
    target = user_id if user_id and principal.role == "ADMIN" else principal.id
    return [DelegationOut.model_validate(d) for d in workflow.list_delegations(target, principal.company_id)]
