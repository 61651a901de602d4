from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from orgscope.domain.errors import ConflictError, ForbiddenError, InternalError, NotFoundError
from orgscope.domain.hierarchy import ScopedEntity, collapse_nested, covers
from orgscope.domain.models import (
    Organization,
    OrganizationAdministrator,
    OrganizationCreate,
    OrganizationDetail,
    OrganizationUpdate,
    OrganizationUser,
    Role,
    User,
    UserRole,
    new_id,
    now_utc,
)
from orgscope.domain.permissions import Principal, SystemRoles, normalize_role_name
from orgscope.infra.db import open_session
from orgscope.services.hierarchy_service import HierarchyIndex
from orgscope.services.scope_service import ScopeAuthorizer

logger = logging.getLogger(__name__)


def organization_admin_role_id(session: Session, system_roles: SystemRoles) -> str | None:
    normalized = normalize_role_name(system_roles.organization_admin)
    return session.exec(select(Role.id).where(Role.normalized_name == normalized)).first()


def revoke_organization_admin_role(session: Session, system_roles: SystemRoles, user_id: str) -> None:
    role_id = organization_admin_role_id(session, system_roles)
    if role_id is None:
        return
    link = session.get(UserRole, (user_id, role_id))
    if link is not None:
        session.delete(link)


class OrganizationService:
    """Organization tree administration, gated by the scope authorizer."""

    def __init__(
        self,
        principal: Principal,
        system_roles: SystemRoles,
        *,
        authorizer: ScopeAuthorizer | None = None,
        index: HierarchyIndex | None = None,
    ) -> None:
        self.principal = principal
        self.system_roles = system_roles
        self.index = index or HierarchyIndex()
        self.authorizer = authorizer or ScopeAuthorizer(principal, system_roles, index=self.index)

    def _get_organization(self, session: Session, org_id: str) -> Organization:
        organization = session.get(Organization, org_id) if org_id else None
        if organization is None or organization.is_deleted:
            raise NotFoundError("organization not found")
        return organization

    def _require_super_admin(self) -> None:
        if not self.principal.is_super_admin:
            raise ForbiddenError("only the super admin may manage root organizations")

    def create(self, payload: OrganizationCreate) -> OrganizationDetail:
        parent_id = payload.parent_id.strip() if payload.parent_id and payload.parent_id.strip() else None
        if parent_id is None:
            self._require_super_admin()
        else:
            with open_session() as session:
                self._get_organization(session, parent_id)
            self.authorizer.check_organization_permission(parent_id)

        with open_session() as session:
            organization = Organization(
                id=new_id(),
                name=payload.name,
                code=payload.code,
                parent_id=parent_id,
            )
            session.add(organization)
            detail = self.index.add(session, organization)
            session.commit()
            session.refresh(detail)
            return detail

    def update(self, org_id: str, payload: OrganizationUpdate) -> OrganizationDetail:
        parent_id = payload.parent_id.strip() if payload.parent_id and payload.parent_id.strip() else None
        with open_session() as session:
            organization = self._get_organization(session, org_id)
            old_parent_id = organization.parent_id
            if parent_id is not None:
                self._get_organization(session, parent_id)

        if parent_id == old_parent_id:
            self.authorizer.check_organization_permission(org_id)
        elif parent_id is None:
            self._require_super_admin()
        else:
            # Moving a subtree needs authority over both ends.
            self.authorizer.check_all_organizations_permission([org_id, parent_id])

        with open_session() as session:
            organization = self._get_organization(session, org_id)
            organization.name = payload.name
            organization.code = payload.code
            organization.parent_id = parent_id
            organization.updated_at = now_utc()
            session.add(organization)
            detail = self.index.move(session, organization, old_parent_id)
            session.commit()
            session.refresh(detail)
            return detail

    def delete(self, org_id: str) -> str:
        with open_session() as session:
            organization = self._get_organization(session, org_id)
            parent_id = organization.parent_id

        if parent_id is None:
            self._require_super_admin()
        else:
            self.authorizer.check_organization_permission(parent_id)

        with open_session() as session:
            organization = self._get_organization(session, org_id)
            child = session.exec(
                select(Organization.id)
                .where(Organization.parent_id == org_id)
                .where(col(Organization.is_deleted).is_(False))
            ).first()
            if child is not None:
                raise ConflictError("delete the child organizations first")

            try:
                admins = session.exec(
                    select(OrganizationAdministrator).where(OrganizationAdministrator.organization_id == org_id)
                ).all()
                for admin in admins:
                    session.delete(admin)
                session.flush()
                for admin in admins:
                    remaining = session.exec(
                        select(OrganizationAdministrator.organization_id).where(
                            OrganizationAdministrator.user_id == admin.user_id
                        )
                    ).first()
                    if remaining is None:
                        revoke_organization_admin_role(session, self.system_roles, admin.user_id)
                for member in session.exec(
                    select(OrganizationUser).where(OrganizationUser.organization_id == org_id)
                ).all():
                    session.delete(member)
                self.index.remove(session, org_id)
                organization.is_deleted = True
                organization.updated_at = now_utc()
                session.add(organization)
                session.commit()
            except SQLAlchemyError as exc:
                logger.exception("failed to delete organization %s", org_id)
                session.rollback()
                raise InternalError("failed to delete organization") from exc
            return org_id

    def get(self, org_id: str) -> OrganizationDetail:
        self.authorizer.check_organization_permission(org_id)
        with open_session() as session:
            detail = self.index.get(session, org_id)
        if detail is None:
            raise NotFoundError("organization not found")
        return detail

    def subtree(self, org_id: str) -> list[OrganizationDetail]:
        self.authorizer.check_organization_permission(org_id)
        with open_session() as session:
            return self.index.subtree(session, org_id)

    def list_children(self, parent_id: str | None = None) -> list[OrganizationDetail]:
        parent_id = parent_id or None
        with open_session() as session:
            if self.principal.is_super_or_user_admin:
                rows = session.exec(select(OrganizationDetail).where(OrganizationDetail.parent_id == parent_id)).all()
                return sorted(rows, key=lambda item: (item.code or "", item.name))

            scopes = self.authorizer.admin_organizations()
            if not scopes:
                return []
            if parent_id is None:
                roots = sorted(item.id for item in collapse_nested(scopes))
                rows = session.exec(select(OrganizationDetail).where(col(OrganizationDetail.id).in_(roots))).all()
                return sorted(rows, key=lambda item: (item.level, item.code or "", item.name))
            rows = session.exec(select(OrganizationDetail).where(OrganizationDetail.parent_id == parent_id)).all()
            return sorted(
                (item for item in rows if covers(scopes, ScopedEntity(id=item.id, path=item.path))),
                key=lambda item: (item.code or "", item.name),
            )

    def add_administrator(self, org_id: str, user_id: str) -> None:
        self.authorizer.check_organization_permission(org_id)
        with open_session() as session:
            self._get_organization(session, org_id)
            if session.get(User, user_id) is None:
                raise NotFoundError("user not found")

            if session.get(OrganizationAdministrator, (org_id, user_id)) is None:
                session.add(OrganizationAdministrator(organization_id=org_id, user_id=user_id))

            role_id = organization_admin_role_id(session, self.system_roles)
            if role_id is None:
                raise InternalError("organization admin role is not provisioned")
            if session.get(UserRole, (user_id, role_id)) is None:
                session.add(UserRole(user_id=user_id, role_id=role_id))
            session.commit()

    def remove_administrator(self, org_id: str, user_id: str) -> None:
        self.authorizer.check_organization_permission(org_id)
        with open_session() as session:
            if session.get(User, user_id) is None:
                raise NotFoundError("user not found")
            edges = list(
                session.exec(
                    select(OrganizationAdministrator).where(OrganizationAdministrator.user_id == user_id)
                ).all()
            )
            edge = next((item for item in edges if item.organization_id == org_id), None)
            if edge is None:
                return
            session.delete(edge)
            if len(edges) == 1:
                revoke_organization_admin_role(session, self.system_roles, user_id)
            session.commit()
