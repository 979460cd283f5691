"""Company-configured approval rules."""
import uuid
from decimal import Decimal

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, UUIDMixin


class ApprovalRule(Base, UUIDMixin, TimestampMixin):
    """Maps submission conditions (amount, category, vendor, role) to an approval action."""

    __tablename__ = "approval_rules"
    __table_args__ = (
        Index("ix_approval_rules_company_active_priority", "company_id", "is_active", "priority"),
    )

    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Conditions: empty lists mean "any"
    amount_threshold: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    categories: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    vendors: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    time_window_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_roles: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Actions
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_approve: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approvers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # ordered user ids
    escalation_chain: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # ordered user ids
    notify_on_submission: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_rejection: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reminder_interval_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
