"""Pydantic schemas for approval delegations."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class DelegationIn(BaseModel):
    delegate_to_id: str = Field(min_length=1, max_length=64)
    start_date: datetime
    end_date: datetime
    max_amount: Decimal | None = Field(default=None, gt=0)
    categories: list[str] | None = None
    reason: str | None = None


class DelegationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    delegator_id: str
    delegate_to_id: str
    company_id: uuid.UUID
    start_date: datetime
    end_date: datetime
    max_amount: Decimal | None
    categories: frozenset[str] | None
    reason: str | None
    created_at: datetime

    @field_serializer("categories")
    def _sorted_categories(self, value: frozenset[str] | None):
        return sorted(value) if value is not None else None
