from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from orgscope.domain.errors import ForbiddenError
from orgscope.domain.hierarchy import ScopedEntity, collapse_nested, covers
from orgscope.domain.models import OrganizationAdministrator, OrganizationDetail, OrganizationUser
from orgscope.domain.permissions import Principal, SystemRoles
from orgscope.infra.cache import SlidingCache, admin_scope_cache
from orgscope.infra.db import open_session
from orgscope.services.hierarchy_service import HierarchyIndex

logger = logging.getLogger(__name__)


class AdminScopeResolver:
    """Organizations a user administers directly, keyed by user id.

    Results are served from a sliding time-bound cache. Adding or removing an
    administrator edge does not evict the entry; it becomes visible once the
    window lapses or ``invalidate`` is called.
    """

    CACHE_KEY_PREFIX = "admin-organizations"

    def __init__(self, cache: SlidingCache | None = None) -> None:
        self._cache = cache if cache is not None else admin_scope_cache

    def _cache_key(self, user_id: str) -> str:
        return f"{self.CACHE_KEY_PREFIX}:{user_id}"

    def _load(self, user_id: str) -> tuple[ScopedEntity, ...]:
        with open_session() as session:
            rows = session.exec(
                select(OrganizationDetail)
                .join(
                    OrganizationAdministrator,
                    col(OrganizationAdministrator.organization_id) == col(OrganizationDetail.id),
                )
                .where(OrganizationAdministrator.user_id == user_id)
            ).all()
            entities = [ScopedEntity(id=row.id, path=row.path) for row in rows]
        return tuple(collapse_nested(entities))

    def admin_organizations(self, user_id: str) -> list[ScopedEntity]:
        if not user_id:
            return []
        try:
            return list(self._cache.get_or_create(self._cache_key(user_id), lambda: self._load(user_id)))
        except SQLAlchemyError:
            logger.exception("failed to resolve admin organizations for user %s", user_id)
            return []

    def invalidate(self, user_id: str) -> None:
        self._cache.invalidate(self._cache_key(user_id))


class ScopeAuthorizer:
    def __init__(
        self,
        principal: Principal,
        system_roles: SystemRoles,
        *,
        resolver: AdminScopeResolver | None = None,
        index: HierarchyIndex | None = None,
    ) -> None:
        self.principal = principal
        self.system_roles = system_roles
        self.resolver = resolver or AdminScopeResolver()
        self.index = index or HierarchyIndex()

    def admin_organizations(self) -> list[ScopedEntity]:
        return self.resolver.admin_organizations(self.principal.user_id)

    def can_manage_all(self, targets: Sequence[ScopedEntity]) -> bool:
        """Every target must sit inside some administered subtree."""
        if self.principal.is_super_or_user_admin:
            return True
        scopes = self.admin_organizations()
        if not scopes:
            return False
        return all(covers(scopes, target) for target in targets)

    def can_manage_any(self, targets: Sequence[ScopedEntity]) -> bool:
        """At least one target must sit inside some administered subtree."""
        if self.principal.is_super_or_user_admin:
            return True
        scopes = self.admin_organizations()
        if not scopes:
            return False
        return any(covers(scopes, target) for target in targets)

    def _resolve_targets(self, org_ids: Iterable[str]) -> tuple[list[ScopedEntity], bool]:
        requested = {item for item in org_ids}
        with open_session() as session:
            targets = self.index.scoped(session, requested)
        complete = len(targets) == len(requested) and "" not in requested
        return targets, complete

    def can_manage_organization(self, org_id: str) -> bool:
        return self.can_manage_all_organizations([org_id])

    def can_manage_all_organizations(self, org_ids: Iterable[str]) -> bool:
        if self.principal.is_super_or_user_admin:
            return True
        targets, complete = self._resolve_targets(org_ids)
        # Unknown organizations mean no authority.
        if not complete:
            return False
        return self.can_manage_all(targets)

    def check_organization_permission(self, org_id: str) -> None:
        if not self.can_manage_organization(org_id):
            logger.info("user %s denied on organization %s", self.principal.user_id, org_id)
            raise ForbiddenError("no permission to manage the organization")

    def check_all_organizations_permission(self, org_ids: Iterable[str]) -> None:
        org_id_list = list(org_ids)
        if not self.can_manage_all_organizations(org_id_list):
            logger.info("user %s denied on organizations %s", self.principal.user_id, org_id_list)
            raise ForbiddenError("no permission to manage the organizations")

    def user_organizations(self, user_id: str) -> list[ScopedEntity]:
        with open_session() as session:
            rows = session.exec(
                select(OrganizationDetail)
                .join(OrganizationUser, col(OrganizationUser.organization_id) == col(OrganizationDetail.id))
                .where(OrganizationUser.user_id == user_id)
            ).all()
            return [ScopedEntity(id=row.id, path=row.path) for row in rows]

    def check_user_permission(self, user_id: str) -> None:
        if self.principal.is_super_or_user_admin:
            return
        if self.can_manage_any(self.user_organizations(user_id)):
            return
        logger.info("user %s denied on user %s", self.principal.user_id, user_id)
        raise ForbiddenError("no permission to manage the user")
