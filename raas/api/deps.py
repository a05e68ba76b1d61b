"""
RaaS API — Shared Dependencies

FastAPI dependency injection for DB sessions and caller identity.
"""

from typing import Iterator, Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from ..business.auth import ADMIN_ROLES, AuthUser, UserRole


def get_db(request: Request) -> Iterator[Session]:
    """Yield a database session; uncommitted work is rolled back on close."""
    with request.app.state.db_session() as session:
        yield session


# ── Auth ─────────────────────────────────────────────────────────────────
# Identity is asserted by the upstream gateway, which has already
# authenticated the caller.

def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> AuthUser:
    if not x_user_id:
        raise HTTPException(401, "Missing caller identity")
    try:
        role = UserRole((x_user_role or UserRole.USER.value).upper())
    except ValueError:
        raise HTTPException(401, f"Unknown role {x_user_role!r}") from None
    return AuthUser(user_id=x_user_id, role=role)


def require_role(*roles: UserRole):
    """Dependency that checks the caller has one of the required roles."""
    def check(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user
    return check


require_admin = require_role(*ADMIN_ROLES)
