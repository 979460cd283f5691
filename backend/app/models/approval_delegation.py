"""Approval delegation model."""
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, UUIDMixin


class ApprovalDelegation(Base, UUIDMixin, TimestampMixin):
    """Time-boxed grant of one user's approval authority to another.

    Expires naturally when end_date passes; rows are kept as history.
    """

    __tablename__ = "approval_delegations"
    __table_args__ = (
        Index("ix_approval_delegations_lookup", "delegator_id", "company_id", "start_date", "end_date"),
    )

    delegator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    delegate_to_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    categories: Mapped[list | None] = mapped_column(JSON, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
