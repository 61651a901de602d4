from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from orgscope.domain.errors import ConflictError, InternalError, NotFoundError
from orgscope.domain.models import (
    Role,
    RoleAssignableRole,
    RoleCreate,
    RoleStatementUpdate,
    RoleUpdate,
    UserRole,
    now_utc,
)
from orgscope.domain.permissions import Principal, SystemRoles, normalize_role_name
from orgscope.domain.statement import parse_statements
from orgscope.infra.cache import SlidingCache, role_statement_cache
from orgscope.infra.db import open_session
from orgscope.services.permission_service import role_statements_key
from orgscope.services.role_delegation_service import RoleDelegationGraph

logger = logging.getLogger(__name__)


class RoleService:
    def __init__(
        self,
        principal: Principal,
        system_roles: SystemRoles,
        *,
        graph: RoleDelegationGraph | None = None,
        statement_cache: SlidingCache | None = None,
    ) -> None:
        self.principal = principal
        self.system_roles = system_roles
        self.graph = graph or RoleDelegationGraph(principal, system_roles)
        self._statement_cache = statement_cache if statement_cache is not None else role_statement_cache

    def _get_role(self, session: Session, role_id: str) -> Role:
        role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError("role not found")
        return role

    def _name_taken(self, session: Session, normalized_name: str, exclude_id: str | None = None) -> bool:
        statement = select(Role.id).where(Role.normalized_name == normalized_name)
        if exclude_id is not None:
            statement = statement.where(Role.id != exclude_id)
        return session.exec(statement).first() is not None

    def _forget_statements(self, role: Role) -> None:
        self._statement_cache.invalidate(role_statements_key(role.normalized_name))

    def create(self, payload: RoleCreate) -> Role:
        self.graph.ensure_not_protected(name=payload.name)
        normalized_name = normalize_role_name(payload.name)
        with open_session() as session:
            if self._name_taken(session, normalized_name):
                raise ConflictError("role already exists")
            role = Role(
                name=payload.name.strip(),
                normalized_name=normalized_name,
                description=payload.description,
                version=1,
                statement=[],
            )
            session.add(role)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role already exists") from exc
            session.refresh(role)
            return role

    def update(self, role_id: str, payload: RoleUpdate) -> Role:
        with open_session() as session:
            role = self._get_role(session, role_id)
            self.graph.ensure_not_protected(role, name=payload.name)
            normalized_name = normalize_role_name(payload.name)
            if self._name_taken(session, normalized_name, exclude_id=role.id):
                raise ConflictError("role already exists")
            self._forget_statements(role)
            role.name = payload.name.strip()
            role.normalized_name = normalized_name
            role.description = payload.description
            role.updated_at = now_utc()
            session.add(role)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role already exists") from exc
            session.refresh(role)
            self._forget_statements(role)
            return role

    def update_statement(self, role_id: str, payload: RoleStatementUpdate) -> Role:
        with open_session() as session:
            role = self._get_role(session, role_id)
            self.graph.ensure_not_protected(role)
            statements = parse_statements(item.model_dump() for item in payload.statement)
            role.statement = [item.to_dict() for item in statements]
            role.version = role.version + 1
            role.updated_at = now_utc()
            session.add(role)
            session.commit()
            session.refresh(role)
            self._forget_statements(role)
            return role

    def delete(self, role_id: str) -> None:
        with open_session() as session:
            role = self._get_role(session, role_id)
            self.graph.ensure_not_protected(role)
            try:
                self._delete_user_roles(session, role.id)
                self._delete_role_edges(session, role.id)
                self._delete_role_row(session, role)
                session.commit()
            except SQLAlchemyError as exc:
                logger.exception("failed to delete role %s", role_id)
                session.rollback()
                raise InternalError("failed to delete role") from exc
            self._forget_statements(role)

    def _delete_user_roles(self, session: Session, role_id: str) -> None:
        for link in session.exec(select(UserRole).where(UserRole.role_id == role_id)).all():
            session.delete(link)
        session.flush()

    def _delete_role_edges(self, session: Session, role_id: str) -> None:
        edges = session.exec(
            select(RoleAssignableRole).where(
                (col(RoleAssignableRole.role_id) == role_id) | (col(RoleAssignableRole.assignable_role_id) == role_id)
            )
        ).all()
        for edge in edges:
            session.delete(edge)
        session.flush()

    def _delete_role_row(self, session: Session, role: Role) -> None:
        session.delete(role)
        session.flush()

    def get(self, role_id: str) -> Role | None:
        with open_session() as session:
            return session.get(Role, role_id)

    def list_roles(self, q: str | None = None) -> list[dict[str, Any]]:
        with open_session() as session:
            statement = select(Role)
            if q:
                statement = statement.where(col(Role.name).contains(q))
            roles = sorted(session.exec(statement).all(), key=lambda item: item.updated_at, reverse=True)
            role_ids = [item.id for item in roles]
            edges = (
                session.exec(select(RoleAssignableRole).where(col(RoleAssignableRole.role_id).in_(role_ids))).all()
                if role_ids
                else []
            )
            names = {item.id: item.name for item in session.exec(select(Role)).all()}
            return [
                {
                    "id": role.id,
                    "name": role.name,
                    "description": role.description,
                    "version": role.version,
                    "assignable_roles": [
                        {"id": edge.assignable_role_id, "name": names.get(edge.assignable_role_id, "")}
                        for edge in edges
                        if edge.role_id == role.id
                    ],
                }
                for role in roles
            ]

    def add_assignable_roles(self, role_id: str, assignable_role_ids: list[str]) -> list[str]:
        with open_session() as session:
            role = self._get_role(session, role_id)
            self.graph.ensure_not_protected(role)
            wanted = [item for item in dict.fromkeys(assignable_role_ids) if item]
            found = {
                item.id: item for item in (session.exec(select(Role).where(col(Role.id).in_(wanted))).all() if wanted else [])
            }
            missing = [item for item in wanted if item not in found]
            if missing:
                raise NotFoundError(f"roles not found: {missing}")
            for target in found.values():
                self.graph.ensure_not_protected(target)
            existing = set(
                session.exec(
                    select(RoleAssignableRole.assignable_role_id).where(RoleAssignableRole.role_id == role_id)
                ).all()
            )
            added: list[str] = []
            for assignable_id in wanted:
                if assignable_id in existing:
                    continue
                session.add(RoleAssignableRole(role_id=role_id, assignable_role_id=assignable_id))
                added.append(assignable_id)
            if added:
                session.commit()
            return added

    def remove_assignable_role(self, role_id: str, assignable_role_id: str) -> None:
        with open_session() as session:
            edge = session.get(RoleAssignableRole, (role_id, assignable_role_id))
            if edge is None:
                raise NotFoundError("assignable role relationship not found")
            session.delete(edge)
            session.commit()

    def assignable_roles(self) -> list[Role]:
        """Roles the caller may hand out through the generic user-role path."""
        excluded = self.system_roles.protected
        with open_session() as session:
            if self.principal.is_super_or_user_admin:
                roles = session.exec(select(Role).where(col(Role.normalized_name).not_in(sorted(excluded)))).all()
                return sorted(roles, key=lambda item: item.name)
            assignable_ids = self.graph.assignable_role_ids(session)
            if not assignable_ids:
                return []
            roles = session.exec(select(Role).where(col(Role.id).in_(sorted(assignable_ids)))).all()
            return sorted((item for item in roles if item.normalized_name not in excluded), key=lambda item: item.name)
