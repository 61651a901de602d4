from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session, col, select

from orgscope.domain.errors import ForbiddenError, InvalidRequestError, NotFoundError
from orgscope.domain.hierarchy import covers
from orgscope.domain.models import OrganizationAdministrator, OrganizationUser, Role, User, UserRole
from orgscope.domain.permissions import Principal, SystemRoles
from orgscope.infra.db import open_session
from orgscope.services.hierarchy_service import HierarchyIndex
from orgscope.services.organization_service import revoke_organization_admin_role
from orgscope.services.role_delegation_service import RoleDelegationGraph
from orgscope.services.scope_service import ScopeAuthorizer

logger = logging.getLogger(__name__)


class UserService:
    """Role and membership assignment for existing users."""

    def __init__(
        self,
        principal: Principal,
        system_roles: SystemRoles,
        *,
        authorizer: ScopeAuthorizer | None = None,
        graph: RoleDelegationGraph | None = None,
        index: HierarchyIndex | None = None,
    ) -> None:
        self.principal = principal
        self.system_roles = system_roles
        self.index = index or HierarchyIndex()
        self.authorizer = authorizer or ScopeAuthorizer(principal, system_roles, index=self.index)
        self.graph = graph or RoleDelegationGraph(principal, system_roles)

    def _get_user(self, session: Session, user_id: str) -> User:
        user = session.get(User, user_id) if user_id else None
        if user is None:
            raise NotFoundError("user not found")
        return user

    def _normalize_ids(self, values: list[str]) -> list[str]:
        if any(not isinstance(item, str) or not item.strip() for item in values):
            raise InvalidRequestError("identifiers must not be empty")
        return list(dict.fromkeys(item.strip() for item in values))

    def get_roles(self, user_id: str) -> list[Role]:
        with open_session() as session:
            self._get_user(session, user_id)
            self.authorizer.check_user_permission(user_id)
            roles = session.exec(
                select(Role)
                .join(UserRole, col(UserRole.role_id) == col(Role.id))
                .where(UserRole.user_id == user_id)
            ).all()
            return sorted(roles, key=lambda item: item.name)

    def set_roles(self, user_id: str, role_ids: list[str]) -> dict[str, Any]:
        """Replace the user's generic roles.

        Additions must be grantable by the caller; removals are always allowed.
        System roles are never granted or revoked here; the organization-admin
        role follows administrator edges.
        """
        requested = self._normalize_ids(role_ids)
        protected = self.system_roles.protected
        with open_session() as session:
            self._get_user(session, user_id)
            self.authorizer.check_user_permission(user_id)

            requested_roles = (
                {item.id: item for item in session.exec(select(Role).where(col(Role.id).in_(requested))).all()}
                if requested
                else {}
            )
            missing = [item for item in requested if item not in requested_roles]
            if missing:
                raise NotFoundError(f"roles not found: {missing}")
            if any(item.normalized_name in protected for item in requested_roles.values()):
                logger.info("user %s denied granting a system role to %s", self.principal.user_id, user_id)
                raise ForbiddenError("operation not allowed on system role")

            current = {
                item.id: item
                for item in session.exec(
                    select(Role)
                    .join(UserRole, col(UserRole.role_id) == col(Role.id))
                    .where(UserRole.user_id == user_id)
                ).all()
            }
            to_add = [item for item in requested if item not in current]
            to_remove = [
                role_id
                for role_id, role in current.items()
                if role_id not in requested_roles and role.normalized_name not in protected
            ]

        self.graph.check_all_role_permission(to_add)

        with open_session() as session:
            for role_id in to_remove:
                link = session.get(UserRole, (user_id, role_id))
                if link is not None:
                    session.delete(link)
            for role_id in to_add:
                session.add(UserRole(user_id=user_id, role_id=role_id))
            session.commit()
        return {"user_id": user_id, "added": to_add, "removed": sorted(to_remove)}

    def set_organizations(self, user_id: str, organization_ids: list[str]) -> dict[str, Any]:
        requested = self._normalize_ids(organization_ids)
        with open_session() as session:
            self._get_user(session, user_id)
            current = set(
                session.exec(select(OrganizationUser.organization_id).where(OrganizationUser.user_id == user_id)).all()
            )
            to_add = [item for item in requested if item not in current]
            add_targets = self.index.scoped(session, to_add)
            if len(add_targets) != len(to_add):
                raise NotFoundError("organization not found")
            removed_candidates = self.index.scoped(session, [item for item in current if item not in requested])

        if to_add and not self.authorizer.can_manage_all(add_targets):
            logger.info("user %s denied adding user %s to %s", self.principal.user_id, user_id, to_add)
            raise ForbiddenError("no permission to manage the organizations")

        # Memberships outside the caller's scope were granted by someone else and stay.
        if self.principal.is_super_or_user_admin:
            to_remove = sorted(item.id for item in removed_candidates)
        else:
            scopes = self.authorizer.admin_organizations()
            to_remove = sorted(item.id for item in removed_candidates if covers(scopes, item))

        with open_session() as session:
            for org_id in to_remove:
                link = session.get(OrganizationUser, (org_id, user_id))
                if link is not None:
                    session.delete(link)
            for org_id in to_add:
                session.add(OrganizationUser(organization_id=org_id, user_id=user_id))

            admin_edges = list(
                session.exec(
                    select(OrganizationAdministrator).where(OrganizationAdministrator.user_id == user_id)
                ).all()
            )
            dropped = [item for item in admin_edges if item.organization_id in to_remove]
            for edge in dropped:
                session.delete(edge)
            if admin_edges and len(dropped) == len(admin_edges):
                revoke_organization_admin_role(session, self.system_roles, user_id)
            session.commit()
        return {"user_id": user_id, "added": to_add, "removed": to_remove}
