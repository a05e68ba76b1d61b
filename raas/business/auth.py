"""Caller identity, as handed over by the upstream gateway."""

from enum import Enum

from pydantic import BaseModel


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    USER = "USER"


ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPER_ADMIN)


class AuthUser(BaseModel):
    user_id: str
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
