from app.models.company import Company
from app.models.approval_rule import ApprovalRule
from app.models.approval import ApprovalRequest, ApprovalAction
from app.models.approval_delegation import ApprovalDelegation
from app.models.audit import AuditLog

__all__ = [
    "Company",
    "ApprovalRule",
    "ApprovalRequest", "ApprovalAction",
    "ApprovalDelegation",
    "AuditLog",
]
