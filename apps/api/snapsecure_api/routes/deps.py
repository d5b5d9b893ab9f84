"""Shared route dependencies."""

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from snapsecure_api.container import SecurityContainer


def get_container(request: Request) -> SecurityContainer:
    """Services built in the application lifespan."""
    return request.app.state.container


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def current_user_id(
    authorization: Optional[str] = Header(default=None),
    container: SecurityContainer = Depends(get_container),
) -> int:
    """Resolve the bearer session token to a user id."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session token.",
        )
    user_id = container.accounts.validate_token(authorization[7:].strip())
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session token.",
        )
    return user_id


def require_admin(
    x_admin_key: Optional[str] = Header(default=None),
    container: SecurityContainer = Depends(get_container),
) -> None:
    """Constant-time admin key check. Admin routes are closed when no key is configured."""
    expected = container.settings.admin_api_key
    if not expected or not x_admin_key or not hmac.compare_digest(expected, x_admin_key):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
