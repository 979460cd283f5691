"""Pydantic schemas for approval rules."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ApprovalRuleIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    is_active: bool = True
    priority: int = 100

    amount_threshold: Decimal | None = Field(default=None, ge=0)
    categories: list[str] = []
    vendors: list[str] = []
    time_window_minutes: int | None = Field(default=None, gt=0)
    user_roles: list[str] = []

    requires_approval: bool = True
    auto_approve: bool = False
    approvers: list[str] = []
    escalation_chain: list[str] = []
    notify_on_submission: bool = True
    notify_on_approval: bool = True
    notify_on_rejection: bool = True
    reminder_interval_minutes: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_approvers(self):
        if self.auto_approve and not self.requires_approval:
            raise ValueError("auto_approve requires requires_approval=true")
        if self.requires_approval and not self.auto_approve and not self.approvers:
            raise ValueError("approvers must not be empty when human approval is required")
        return self


class ApprovalRuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    is_active: bool | None = None
    priority: int | None = None

    amount_threshold: Decimal | None = Field(default=None, ge=0)
    categories: list[str] | None = None
    vendors: list[str] | None = None
    time_window_minutes: int | None = Field(default=None, gt=0)
    user_roles: list[str] | None = None

    requires_approval: bool | None = None
    auto_approve: bool | None = None
    approvers: list[str] | None = None
    escalation_chain: list[str] | None = None
    notify_on_submission: bool | None = None
    notify_on_approval: bool | None = None
    notify_on_rejection: bool | None = None
    reminder_interval_minutes: int | None = Field(default=None, gt=0)


class ApprovalRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    name: str
    description: str | None
    is_active: bool
    priority: int
    created_by: str | None

    amount_threshold: Decimal | None
    categories: list[str]
    vendors: list[str]
    time_window_minutes: int | None
    user_roles: list[str]

    requires_approval: bool
    auto_approve: bool
    approvers: list[str]
    escalation_chain: list[str]
    notify_on_submission: bool
    notify_on_approval: bool
    notify_on_rejection: bool
    reminder_interval_minutes: int | None

    created_at: datetime
    updated_at: datetime
