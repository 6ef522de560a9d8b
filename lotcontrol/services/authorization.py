"""
Authorization gate.

The acting identity is resolved once per request into an immutable
`Principal` carrying its roles and the flattened permission set. Every
mutating service call asks the gate before touching state.
"""
import uuid
from typing import FrozenSet, Tuple

from pydantic import BaseModel, ConfigDict

from lotcontrol.core.config import settings
from lotcontrol.core.exceptions import AuthorizationError, ProtectedResourceError
from lotcontrol.db.schema import Role, User


# resource -> actions. Names are 'resource:action'.
SYSTEM_PERMISSIONS = {
    "parameters": ["read", "create", "update"],
    "specifications": ["read", "create", "update", "delete"],
    "products": ["read", "create", "update"],
    "records": ["read", "create", "update", "delete", "approve"],
    "controls": ["read", "create"],
    "roles": ["read", "create", "update", "delete"],
    "users": ["read", "create", "update", "delete"],
    "audit": ["read"],
}


def permission_name(resource: str, action: str) -> str:
    return f"{resource}:{action}"


class RoleGrant(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    name: str
    level: int


class Principal(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: uuid.UUID
    email: str
    roles: Tuple[RoleGrant, ...] = ()
    permissions: FrozenSet[str] = frozenset()

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        """Flattens the user's roles and their permissions."""
        grants = tuple(
            RoleGrant(id=role.id, name=role.name, level=role.level)
            for role in user.roles
        )
        names = frozenset(
            permission.name
            for role in user.roles
            for permission in role.permissions
        )
        return cls(user_id=user.id, email=user.email,
                   roles=grants, permissions=names)

    @property
    def highest_level(self) -> int:
        return max((role.level for role in self.roles), default=0)


# ==========================================================================
# CHECKS (pure, never raise)
# ==========================================================================


def has_permission(principal: Principal, name: str) -> bool:
    if not name:
        return False
    return name in principal.permissions


def has_minimum_role_level(principal: Principal, level: int) -> bool:
    return principal.highest_level >= level


def is_admin(principal: Principal) -> bool:
    return has_minimum_role_level(principal, settings.admin_role_level)


def can_mutate(principal: Principal, resource: str, action: str) -> bool:
    """Administrators pass; everyone else needs the 'resource:action' grant."""
    return is_admin(principal) or has_permission(
        principal, permission_name(resource, action))


def is_protected_level(level: int) -> bool:
    return level >= settings.admin_role_level


def is_protected_role(role: Role) -> bool:
    return is_protected_level(role.level)


def is_protected_user(user: User) -> bool:
    return any(is_protected_role(role) for role in user.roles)


# ==========================================================================
# GUARDS (raise)
# ==========================================================================


def require_permission(principal: Principal, resource: str, action: str) -> None:
    if not can_mutate(principal, resource, action):
        raise AuthorizationError(
            f"Missing permission '{permission_name(resource, action)}'.")


def require_admin(principal: Principal) -> None:
    if not is_admin(principal):
        raise AuthorizationError(
            f"This operation requires a role of level {settings.admin_role_level} or higher.")


def ensure_role_not_protected(role: Role, verb: str = "modify") -> None:
    """
    Applies regardless of the caller's permissions: protected
    roles are managed by the seed script only.
    """
    if is_protected_role(role):
        raise ProtectedResourceError(
            f"Cannot {verb} protected role '{role.name}' (level {role.level}).")


def ensure_user_not_protected(principal: Principal, target: User, verb: str) -> None:
    """
    A user holding a protected role cannot be deleted, demoted or stripped
    of a second factor by another principal.
    """
    if target.id != principal.user_id and is_protected_user(target):
        raise ProtectedResourceError(
            f"Cannot {verb} user '{target.email}': the user holds a protected role.")
