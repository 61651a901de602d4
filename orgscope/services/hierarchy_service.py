from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlmodel import Session, col, select

from orgscope.domain.errors import ConflictError, NotFoundError
from orgscope.domain.hierarchy import PATH_SEP, ScopedEntity, build_path, is_ancestor_or_self, path_level
from orgscope.domain.models import Organization, OrganizationDetail
from orgscope.infra.db import open_session

logger = logging.getLogger(__name__)


class HierarchyIndex:
    """Materialized-path projection over the organization forest.

    Reads take the caller's session so they see the same snapshot as the
    surrounding unit of work; writes never commit on their own.
    """

    def get(self, session: Session, org_id: str) -> OrganizationDetail | None:
        if not org_id:
            return None
        return session.get(OrganizationDetail, org_id)

    def path_of(self, session: Session, org_id: str) -> str:
        detail = self.get(session, org_id)
        if detail is None:
            raise NotFoundError("organization not found")
        return detail.path

    def scoped(self, session: Session, org_ids: Iterable[str]) -> list[ScopedEntity]:
        wanted = sorted({item for item in org_ids if item})
        if not wanted:
            return []
        rows = session.exec(select(OrganizationDetail).where(col(OrganizationDetail.id).in_(wanted))).all()
        return [ScopedEntity(id=row.id, path=row.path) for row in rows]

    def subtree(self, session: Session, org_id: str) -> list[OrganizationDetail]:
        root = self.get(session, org_id)
        if root is None:
            return []
        descendants = self._descendants(session, root.path)
        return [root, *sorted(descendants, key=lambda item: item.path)]

    def add(self, session: Session, organization: Organization) -> OrganizationDetail:
        parent = self.get(session, organization.parent_id) if organization.parent_id else None
        if organization.parent_id and parent is None:
            raise NotFoundError("parent organization not found")
        detail = OrganizationDetail(
            id=organization.id,
            name=organization.name,
            code=organization.code,
            parent_id=organization.parent_id,
            path=build_path(parent.path if parent else None, organization.id),
            level=parent.level + 1 if parent else 0,
            has_child=False,
        )
        if parent is not None and not parent.has_child:
            parent.has_child = True
            session.add(parent)
        session.add(detail)
        return detail

    def move(self, session: Session, organization: Organization, old_parent_id: str | None) -> OrganizationDetail:
        detail = self.get(session, organization.id)
        if detail is None:
            raise NotFoundError("organization not found")
        parent = self.get(session, organization.parent_id) if organization.parent_id else None
        if organization.parent_id and parent is None:
            raise NotFoundError("parent organization not found")
        if parent is not None and is_ancestor_or_self(detail.path, parent.path):
            raise ConflictError("organization cannot move under itself or its descendant")

        old_path = detail.path
        old_level = detail.level
        detail.name = organization.name
        detail.code = organization.code
        detail.parent_id = organization.parent_id
        detail.path = build_path(parent.path if parent else None, organization.id)
        detail.level = parent.level + 1 if parent else 0
        depth_delta = detail.level - old_level

        if detail.path != old_path:
            for child in self._descendants(session, old_path):
                suffix = child.path[len(old_path) :]
                child.path = f"{detail.path}{suffix}"
                child.level = child.level + depth_delta
                session.add(child)
        session.add(detail)

        if parent is not None and not parent.has_child:
            parent.has_child = True
            session.add(parent)
        if old_parent_id and old_parent_id != organization.parent_id:
            self._refresh_has_child(session, old_parent_id, excluding=organization.id)
        return detail

    def remove(self, session: Session, org_id: str) -> None:
        detail = self.get(session, org_id)
        if detail is None:
            return
        parent_id = detail.parent_id
        session.delete(detail)
        if parent_id:
            self._refresh_has_child(session, parent_id, excluding=org_id)

    def _descendants(self, session: Session, path: str) -> list[OrganizationDetail]:
        candidates = session.exec(
            select(OrganizationDetail).where(col(OrganizationDetail.path).like(f"{path}{PATH_SEP}%"))
        ).all()
        # LIKE treats "_" as a wildcard, so re-check on whole segments.
        return [item for item in candidates if item.path != path and is_ancestor_or_self(path, item.path)]

    def _refresh_has_child(self, session: Session, org_id: str, *, excluding: str) -> None:
        detail = self.get(session, org_id)
        if detail is None:
            return
        remaining = session.exec(
            select(OrganizationDetail.id)
            .where(OrganizationDetail.parent_id == org_id)
            .where(OrganizationDetail.id != excluding)
        ).first()
        detail.has_child = remaining is not None
        session.add(detail)

    def rebuild(self, session: Session) -> int:
        """Recompute the whole projection from organization rows.

        Organizations whose ancestor chain is broken (deleted or missing parent,
        or a cycle) are left out. Returns the number of projected rows.
        """
        organizations = {
            item.id: item
            for item in session.exec(select(Organization).where(col(Organization.is_deleted).is_(False))).all()
        }
        paths: dict[str, str | None] = {}

        def resolve(org_id: str, trail: frozenset[str]) -> str | None:
            if org_id in paths:
                return paths[org_id]
            organization = organizations.get(org_id)
            if organization is None or org_id in trail:
                return None
            if organization.parent_id is None:
                path: str | None = build_path(None, org_id)
            else:
                parent_path = resolve(organization.parent_id, trail | {org_id})
                path = build_path(parent_path, org_id) if parent_path is not None else None
            paths[org_id] = path
            return path

        for org_id in organizations:
            resolve(org_id, frozenset())

        projected = {org_id: path for org_id, path in paths.items() if path is not None}
        parents_with_children = {
            organizations[org_id].parent_id for org_id in projected if organizations[org_id].parent_id
        }

        for existing in session.exec(select(OrganizationDetail)).all():
            session.delete(existing)
        session.flush()
        for org_id, path in projected.items():
            organization = organizations[org_id]
            session.add(
                OrganizationDetail(
                    id=org_id,
                    name=organization.name,
                    code=organization.code,
                    parent_id=organization.parent_id,
                    path=path,
                    level=path_level(path),
                    has_child=org_id in parents_with_children,
                )
            )
        dropped = len(organizations) - len(projected)
        if dropped:
            logger.warning("organization projection dropped %d orphaned organizations", dropped)
        return len(projected)

    def rebuild_all(self) -> int:
        with open_session() as session:
            count = self.rebuild(session)
            session.commit()
            return count
