from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

DEFAULT_SUPER_ADMIN_ROLE = "admin"
DEFAULT_USER_ADMIN_ROLE = "user-admin"
DEFAULT_ORGANIZATION_ADMIN_ROLE = "organization-admin"


def normalize_role_name(name: str) -> str:
    return name.strip().upper()


@dataclass(frozen=True)
class SystemRoles:
    """Well-known role names, fixed for the lifetime of the process."""

    super_admin: str = DEFAULT_SUPER_ADMIN_ROLE
    user_admin: str = DEFAULT_USER_ADMIN_ROLE
    organization_admin: str = DEFAULT_ORGANIZATION_ADMIN_ROLE

    @property
    def privileged(self) -> frozenset[str]:
        return frozenset({normalize_role_name(self.super_admin), normalize_role_name(self.user_admin)})

    @property
    def protected(self) -> frozenset[str]:
        return frozenset(
            {
                normalize_role_name(self.super_admin),
                normalize_role_name(self.user_admin),
                normalize_role_name(self.organization_admin),
            }
        )

    def is_protected(self, role_name: str | None) -> bool:
        if not role_name:
            return False
        return normalize_role_name(role_name) in self.protected

    def is_organization_admin(self, role_name: str | None) -> bool:
        if not role_name:
            return False
        return normalize_role_name(role_name) == normalize_role_name(self.organization_admin)


@dataclass(frozen=True)
class Principal:
    user_id: str
    roles: frozenset[str] = field(default_factory=frozenset)
    is_super_admin: bool = False
    is_super_or_user_admin: bool = False

    @classmethod
    def create(cls, user_id: str, roles: Iterable[str], system_roles: SystemRoles) -> Principal:
        role_set = frozenset(item for item in roles if isinstance(item, str) and item.strip())
        normalized = {normalize_role_name(item) for item in role_set}
        return cls(
            user_id=user_id,
            roles=role_set,
            is_super_admin=normalize_role_name(system_roles.super_admin) in normalized,
            is_super_or_user_admin=bool(normalized & system_roles.privileged),
        )

    @classmethod
    def from_claims(cls, claims: dict[str, Any], system_roles: SystemRoles) -> Principal:
        roles = claims.get("roles", [])
        if isinstance(roles, str):
            roles = [roles]
        if not isinstance(roles, list):
            roles = []
        return cls.create(str(claims.get("sub") or ""), roles, system_roles)

    @property
    def normalized_roles(self) -> frozenset[str]:
        return frozenset(normalize_role_name(item) for item in self.roles)
