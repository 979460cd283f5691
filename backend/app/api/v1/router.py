from fastapi import APIRouter

from app.api.v1 import approvals, approval_rules, delegations

api_router = APIRouter()

api_router.include_router(approval_rules.router, prefix="/approvals/rules", tags=["approval-rules"])
api_router.include_router(delegations.router, prefix="/approvals/delegations", tags=["delegations"])
api_router.include_router(approvals.router, prefix="/approvals", tags=["approvals"])
