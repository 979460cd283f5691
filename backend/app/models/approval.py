import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin, UUIDMixin


class ApprovalRequest(Base, UUIDMixin, TimestampMixin):
    """One receipt's journey through the approval workflow."""

    __tablename__ = "approval_requests"
    __table_args__ = (
        # At most one live request per receipt
        Index(
            "uq_approval_requests_receipt_live",
            "receipt_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'escalated')"),
        ),
        Index("ix_approval_requests_company_status", "company_id", "status"),
    )

    receipt_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    submitter_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False
    )
    rule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("approval_rules.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )  # pending, approved, rejected, escalated
    approver_id: Mapped[str | None] = mapped_column(String(64), nullable=True)  # "system" for auto-approval
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    escalation_tier: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    actions: Mapped[list["ApprovalAction"]] = relationship(
        "ApprovalAction", back_populates="request", cascade="all, delete-orphan"
    )


class ApprovalAction(Base, UUIDMixin, TimestampMixin):
    """Append-only record of every decision, escalation and info request."""

    __tablename__ = "approval_actions"

    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("approval_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)  # approve, reject, request_info, escalate, auto_approve
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    delegated_from: Mapped[str | None] = mapped_column(String(64), nullable=True)

    request: Mapped["ApprovalRequest"] = relationship("ApprovalRequest", back_populates="actions")
