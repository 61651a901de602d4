from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlmodel import Session, col, select

from orgscope.domain.errors import ForbiddenError, InvalidRequestError
from orgscope.domain.models import Role, RoleAssignableRole
from orgscope.domain.permissions import Principal, SystemRoles
from orgscope.infra.db import open_session

logger = logging.getLogger(__name__)


class RoleDelegationGraph:
    """Direct grantor -> grantable role edges. Edges are never chained."""

    def __init__(self, principal: Principal, system_roles: SystemRoles) -> None:
        self.principal = principal
        self.system_roles = system_roles

    def ensure_not_protected(self, role: Role | None = None, *, name: str | None = None) -> None:
        for candidate in (role.normalized_name if role is not None else None, name):
            if self.system_roles.is_protected(candidate):
                raise ForbiddenError("operation not allowed on system role")

    def caller_role_ids(self, session: Session) -> list[str]:
        normalized = sorted(self.principal.normalized_roles)
        if not normalized:
            return []
        return list(session.exec(select(Role.id).where(col(Role.normalized_name).in_(normalized))).all())

    def assignable_role_ids(self, session: Session, requested: Iterable[str] | None = None) -> set[str]:
        grantor_ids = self.caller_role_ids(session)
        if not grantor_ids:
            return set()
        statement = select(RoleAssignableRole.assignable_role_id).where(
            col(RoleAssignableRole.role_id).in_(grantor_ids)
        )
        if requested is not None:
            statement = statement.where(col(RoleAssignableRole.assignable_role_id).in_(sorted(set(requested))))
        return set(session.exec(statement).all())

    def check_all_role_permission(self, role_ids: Iterable[str]) -> None:
        if self.principal.is_super_or_user_admin:
            return
        requested = list(role_ids)
        if not requested:
            return
        if any(not isinstance(item, str) or not item.strip() for item in requested):
            raise InvalidRequestError("role id must not be empty")
        with open_session() as session:
            assignable = self.assignable_role_ids(session, requested)
        denied = [item for item in requested if item not in assignable]
        if denied:
            logger.info("user %s may not grant roles %s", self.principal.user_id, denied)
            raise ForbiddenError("contains a non-grantable role")
