"""Approval workflow error taxonomy.

Every error is local and synchronous; none is retried inside the workflow.
``status_code`` is the HTTP status the API layer maps each kind to.
"""


class ApprovalWorkflowError(Exception):
    status_code: int = 400
    kind: str = "approval_workflow_error"

    def __init__(self, message: str | None = None):
        self.message = message or (type(self).__doc__ or self.kind).strip()
        super().__init__(self.message)


class InvalidSubmission(ApprovalWorkflowError):
    """Submission is malformed or out of range."""
    status_code = 400
    kind = "invalid_submission"


class CompanyNotFound(ApprovalWorkflowError):
    """Company not found."""
    status_code = 404
    kind = "company_not_found"


class RuleNotFound(ApprovalWorkflowError):
    """Approval rule not found."""
    status_code = 404
    kind = "rule_not_found"


class RequestNotFound(ApprovalWorkflowError):
    """Approval request not found."""
    status_code = 404
    kind = "request_not_found"


class DuplicateApprovalRequest(ApprovalWorkflowError):
    """A pending or escalated approval request already exists for this receipt."""
    status_code = 409
    kind = "duplicate_approval_request"


class InsufficientApprovalAuthority(ApprovalWorkflowError):
    """User is not authorized to act on this approval request."""
    status_code = 403
    kind = "insufficient_approval_authority"


class InvalidStateTransition(ApprovalWorkflowError):
    """Approval request is not in an actionable state."""
    status_code = 409
    kind = "invalid_state_transition"


class NoEscalationPath(ApprovalWorkflowError):
    """No escalation path remains for this approval request."""
    status_code = 400
    kind = "no_escalation_path"
