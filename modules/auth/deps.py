"""
Auth Module - Dependencies
===========================
FastAPI dependencies for the authenticated identity.
These are injected into route handlers via Depends().

NOTE: Credentials are issued and validated upstream (gateway / reverse proxy).
The core only receives the already-authenticated (user_id, role) pair through
the X-User-ID / X-User-Role headers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Depends, HTTPException, status

from common.helpers import safe_int
from modules.user.models import UserRole


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: str = UserRole.USER.value

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


def get_current_identity(
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
) -> Optional[Identity]:
    """
    Build the caller identity from upstream auth headers.
    Returns Identity or None.
    """
    user_id = safe_int(x_user_id)
    if not user_id or user_id < 1:
        return None
    role = (x_user_role or UserRole.USER.value).strip().lower()
    if role not in (UserRole.USER.value, UserRole.ADMIN.value):
        role = UserRole.USER.value
    return Identity(user_id=user_id, role=role)


def require_login(identity=Depends(get_current_identity)) -> Identity:
    """Require any authenticated caller. Raises 401 if identity is missing."""
    if not identity:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="login_required")
    return identity


def require_admin(identity=Depends(get_current_identity)) -> Identity:
    """Only allow admin callers. Raises 403 otherwise."""
    if not identity:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="login_required")
    if not identity.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin_required")
    return identity
