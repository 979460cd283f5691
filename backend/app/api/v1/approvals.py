"""Approval workflow API endpoints.

  POST /approvals/check                       does this receipt need approval?
  POST /approvals/submit                      evaluate + open a request if required
  POST /approvals/requests                    open a request against a given rule
  GET  /approvals/pending                     requests the caller may act on
  GET  /approvals/history                     paginated request history
  GET  /approvals/statistics                  dashboard counters
  GET  /approvals/requests/{id}               request detail with action log
  POST /approvals/requests/{id}/action        approve / reject / request_info
  POST /approvals/requests/{id}/escalate      hand to the next escalation tier
  POST /approvals/bulk-action                 approve or reject many at once

Workflow errors are rendered by the ApprovalWorkflowError handler in main.
"""
import logging
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.core.config import settings
from app.core.deps import get_current_principal, get_workflow, require_role
from app.core.limiter import limiter
from app.rules.types import (
    ApprovalStatus,
    AuthenticatedPrincipal,
    HistoryFilters,
    Requirement,
    Submission,
)
from app.schemas.approval import (
    ApprovalActionIn,
    ApprovalActionOut,
    ApprovalHistoryResponse,
    ApprovalListResponse,
    ApprovalRequestDetail,
    ApprovalRequestOut,
    ApprovalStatisticsOut,
    BulkApprovalActionIn,
    BulkApprovalActionOut,
    CreateApprovalRequestIn,
    RequirementOut,
    SubmissionIn,
    SubmitForApprovalIn,
    SubmitForApprovalOut,
)
from app.services.approval import ApprovalWorkflowService

logger = logging.getLogger(__name__)

router = APIRouter()

Principal = Annotated[AuthenticatedPrincipal, Depends(get_current_principal)]
Workflow = Annotated[ApprovalWorkflowService, Depends(get_workflow)]

REVIEWER_ROLES = ("APPROVER", "MANAGER", "ADMIN")


def _requirement_out(requirement: Requirement) -> RequirementOut:
    rule = requirement.rule
    return RequirementOut(
        requires_approval=requirement.requires_approval,
        auto_approve=requirement.auto_approve,
        rule_id=rule.id if rule else None,
        rule_name=rule.name if rule else None,
        approvers=rule.approvers_for_tier(0) if rule else [],
    )


# ─── Evaluation ───

@router.post("/check", response_model=RequirementOut, summary="Check whether a receipt requires approval")
def check_requirement(body: SubmissionIn, principal: Principal, workflow: Workflow):
    requirement = workflow.evaluate(
        principal.company_id,
        Submission(
            amount=body.amount,
            category=body.category,
            submitter_role=principal.role,
            vendor=body.vendor,
        ),
    )
    return _requirement_out(requirement)


@router.post(
    "/submit",
    response_model=SubmitForApprovalOut,
    summary="Submit a receipt; opens an approval request when a rule requires one",
)
def submit_for_approval(body: SubmitForApprovalIn, principal: Principal, workflow: Workflow):
    requirement, request = workflow.submit_for_approval(
        principal,
        receipt_id=body.receipt_id,
        amount=body.amount,
        category=body.category,
        vendor=body.vendor,
        reason=body.reason,
    )
    return SubmitForApprovalOut(
        requirement=_requirement_out(requirement),
        request=ApprovalRequestOut.model_validate(request) if request else None,
    )


# ─── Requests ───

@router.post(
    "/requests",
    response_model=ApprovalRequestOut,
    status_code=status.HTTP_201_CREATED,
    summary="Open an approval request for a receipt",
)
def create_request(body: CreateApprovalRequestIn, principal: Principal, workflow: Workflow):
    request = workflow.create_request(
        receipt_id=body.receipt_id,
        submitter_id=principal.id,
        company_id=principal.company_id,
        rule_id=body.rule_id,
        amount=body.amount,
        category=body.category,
        vendor=body.vendor,
        reason=body.reason,
    )
    return ApprovalRequestOut.model_validate(request)


@router.get("/pending", response_model=ApprovalListResponse, summary="Requests awaiting the caller's decision")
def list_pending(principal: Principal, workflow: Workflow):
    items = [
        ApprovalRequestOut.model_validate(r)
        for r in workflow.get_pending_approvals_for_user(principal.id, principal.company_id)
    ]
    return ApprovalListResponse(items=items, total=len(items))


@router.get("/history", response_model=ApprovalHistoryResponse, summary="Approval request history")
def list_history(
    principal: Principal,
    workflow: Workflow,
    status_filter: ApprovalStatus | None = Query(None, alias="status"),
    submitter_id: str | None = Query(None),
    approver_id: str | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
):
    limit = min(limit, settings.APPROVAL_HISTORY_MAX_PAGE_SIZE)
    # Employees only ever see their own submissions
    if principal.role not in REVIEWER_ROLES:
        submitter_id = principal.id

    items, total = workflow.get_approval_history(
        principal.company_id,
        HistoryFilters(
            status=status_filter,
            submitter_id=submitter_id,
            approver_id=approver_id,
            start=start,
            end=end,
        ),
        page=page,
        limit=limit,
    )
    return ApprovalHistoryResponse(
        items=[ApprovalRequestOut.model_validate(r) for r in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/statistics", response_model=ApprovalStatisticsOut, summary="Approval dashboard counters")
def statistics(
    workflow: Workflow,
    principal: Annotated[AuthenticatedPrincipal, Depends(require_role(*REVIEWER_ROLES))],
):
    return ApprovalStatisticsOut.model_validate(workflow.get_statistics(principal.company_id))


@router.get("/requests/{request_id}", response_model=ApprovalRequestDetail, summary="Approval request detail")
def get_request(request_id: uuid.UUID, principal: Principal, workflow: Workflow):
    request = workflow.get_request(request_id, principal.company_id)
    if principal.role not in REVIEWER_ROLES and request.submitter_id != principal.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view your own approval requests.",
        )
    actions = workflow.list_actions(request_id, principal.company_id)
    return ApprovalRequestDetail(
        **ApprovalRequestOut.model_validate(request).model_dump(),
        actions=[ApprovalActionOut.model_validate(a) for a in actions],
    )


# ─── Decisions ───

@router.post(
    "/requests/{request_id}/action",
    response_model=ApprovalRequestOut,
    summary="Approve, reject or request more information",
)
@limiter.limit(settings.APPROVAL_ACTION_RATE_LIMIT)
def process_action(
    request: Request,
    request_id: uuid.UUID,
    body: ApprovalActionIn,
    principal: Principal,
    workflow: Workflow,
):
    updated = workflow.process_approval_action(request_id, principal, body.action, body.comments)
    return ApprovalRequestOut.model_validate(updated)


@router.post(
    "/requests/{request_id}/escalate",
    response_model=ApprovalRequestOut,
    summary="Escalate a stalled request to the next tier (MANAGER, ADMIN)",
)
def escalate(
    request_id: uuid.UUID,
    workflow: Workflow,
    principal: Annotated[AuthenticatedPrincipal, Depends(require_role("MANAGER", "ADMIN"))],
):
    # Scope check before acting: escalate_approval itself is tenant-agnostic
    workflow.get_request(request_id, principal.company_id)
    updated = workflow.escalate_approval(request_id)
    logger.info("Manual escalation of %s by %s", request_id, principal.id)
    return ApprovalRequestOut.model_validate(updated)


@router.post("/bulk-action", response_model=BulkApprovalActionOut, summary="Approve or reject several requests")
@limiter.limit(settings.APPROVAL_ACTION_RATE_LIMIT)
def bulk_action(
    request: Request,
    body: BulkApprovalActionIn,
    workflow: Workflow,
    principal: Annotated[AuthenticatedPrincipal, Depends(require_role(*REVIEWER_ROLES))],
):
    result = workflow.bulk_process_approvals(body.request_ids, principal, body.action, body.comments)
    return BulkApprovalActionOut(successful=result.successful, failed=result.failed)
