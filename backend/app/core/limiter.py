"""Rate limiter singleton: import from here to avoid circular deps."""
from jose import JWTError
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.security import decode_token


def approver_or_ip(request: Request) -> str:
    """Bucket approval actions per authenticated user, falling back to client IP."""
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        try:
            subject = decode_token(auth[7:]).get("sub")
        except JWTError:
            subject = None
        if subject:
            return f"user:{subject}"
    return get_remote_address(request)


limiter = Limiter(key_func=approver_or_ip)
