"""
Shared dependencies: the authenticated user and role guards.

The tenant is always taken from the authenticated user, never from the request body.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from .models.tenant import Tenant
from .models.user import User
from .platform.database import get_db
from .platform.request_context import set_tenant_id
from .platform.security import bearer_scheme, decode_token


def _unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise _unauthorized()
    claims = decode_token(credentials.credentials)
    if claims is None:
        raise _unauthorized("Invalid or expired token")

    user = db.query(User).filter(User.id == str(claims["sub"])).first()
    if user is None or not user.is_active:
        raise _unauthorized("User not found or inactive")
    tenant = db.query(Tenant).filter(Tenant.id == user.tenant_id).first()
    if tenant is None or not tenant.is_active:
        raise _unauthorized("Tenant not found or inactive")

    set_tenant_id(user.tenant_id)
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


def require_master_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_master_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Master admin access required")
    return current_user


__all__ = ["get_current_user", "require_admin", "require_master_admin"]
