"""Pydantic schemas for approval request API endpoints."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.rules.types import ApprovalActionType, ApprovalStatus


# ─── Approval request output ───

class ApprovalRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    receipt_id: uuid.UUID
    submitter_id: str
    company_id: uuid.UUID
    rule_id: uuid.UUID
    amount: Decimal
    category: str
    vendor: str | None
    reason: str | None
    status: ApprovalStatus
    approver_id: str | None
    comments: str | None
    escalation_tier: int
    created_at: datetime
    decided_at: datetime | None
    escalated_at: datetime | None
    due_at: datetime | None


class ApprovalActionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    actor_id: str
    action: ApprovalActionType
    comments: str | None
    delegated_from: str | None
    created_at: datetime


class ApprovalRequestDetail(ApprovalRequestOut):
    actions: list[ApprovalActionOut] = []


# ─── Submission / requirement check ───

class SubmissionIn(BaseModel):
    amount: Decimal = Field(gt=0)
    category: str = Field(min_length=1, max_length=100)
    vendor: str | None = Field(default=None, max_length=255)


class RequirementOut(BaseModel):
    requires_approval: bool
    auto_approve: bool = False
    rule_id: uuid.UUID | None = None
    rule_name: str | None = None
    approvers: list[str] = []


class CreateApprovalRequestIn(BaseModel):
    receipt_id: uuid.UUID
    rule_id: uuid.UUID
    amount: Decimal = Field(gt=0)
    category: str = Field(min_length=1, max_length=100)
    vendor: str | None = Field(default=None, max_length=255)
    reason: str | None = None


class SubmitForApprovalIn(SubmissionIn):
    receipt_id: uuid.UUID
    reason: str | None = None


class SubmitForApprovalOut(BaseModel):
    requirement: RequirementOut
    request: ApprovalRequestOut | None = None


# ─── Decisions ───

class ApprovalActionIn(BaseModel):
    action: Literal["approve", "reject", "request_info"]
    comments: str | None = Field(default=None, max_length=2000)


class BulkApprovalActionIn(BaseModel):
    request_ids: list[uuid.UUID] = Field(min_length=1, max_length=100)
    action: Literal["approve", "reject"]
    comments: str | None = Field(default=None, max_length=2000)


class BulkFailure(BaseModel):
    request_id: uuid.UUID
    error: str
    detail: str


class BulkApprovalActionOut(BaseModel):
    successful: list[uuid.UUID]
    failed: list[BulkFailure]


# ─── Lists ───

class ApprovalListResponse(BaseModel):
    items: list[ApprovalRequestOut]
    total: int


class ApprovalHistoryResponse(ApprovalListResponse):
    page: int
    limit: int


class ApprovalStatisticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pending: int
    escalated: int
    approved_this_month: int
    rejected_this_month: int
    active_rules: int
