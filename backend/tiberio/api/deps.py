from typing import Optional

from fastapi import Header, HTTPException, Request, status

from tiberio.adapters.event_emitter import EventEmitter, NullEmitter
from tiberio.config import settings


def require_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """
    Tokens are issued and verified by the external auth service; the API only
    insists that one is attached as "Bearer <token>".
    """
    if not settings.AUTH_REQUIRED:
        return None
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access denied, no token provided",
        )
    return token.strip()


def get_emitter(request: Request) -> EventEmitter:
    return getattr(request.app.state, "emitter", None) or NullEmitter()
