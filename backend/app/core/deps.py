from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.security import decode_token
from app.db.session import get_session
from app.rules.types import AuthenticatedPrincipal

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")

ROLES = ("EMPLOYEE", "APPROVER", "MANAGER", "ADMIN")


async def get_current_principal(
    token: Annotated[str, Depends(oauth2_scheme)],
) -> AuthenticatedPrincipal:
    """Validate the bearer JWT and return the caller's typed identity."""
    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token)
        if payload.get("type") != "access":
            raise credentials_exc
        user_id: str | None = payload.get("sub")
        company_id: str | None = payload.get("company_id")
        role: str | None = payload.get("role")
        if not user_id or not company_id or not role:
            raise credentials_exc
        return AuthenticatedPrincipal(id=user_id, company_id=UUID(company_id), role=role)
    except (JWTError, ValueError):
        raise credentials_exc


def require_role(*roles: str):
    """Dependency factory: raises 403 if principal role not in allowed list."""
    async def check(principal: AuthenticatedPrincipal = Depends(get_current_principal)):
        if principal.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{principal.role}' is not permitted for this action.",
            )
        return principal
    return check


def get_workflow(db: Annotated[Session, Depends(get_session)]):
    """ApprovalWorkflowService bound to the request's session."""
    from app.services.stores import build_workflow_service

    return build_workflow_service(db)
