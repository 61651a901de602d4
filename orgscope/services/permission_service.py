from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlmodel import select

from orgscope.domain.errors import InvalidRequestError
from orgscope.domain.models import EnforceQuery, Role
from orgscope.domain.permissions import Principal, normalize_role_name
from orgscope.domain.statement import (
    Effect,
    Statement,
    all_roles_agree,
    combine,
    parse_statements,
    role_verdict,
)
from orgscope.infra.cache import SlidingCache, role_statement_cache
from orgscope.infra.db import open_session

logger = logging.getLogger(__name__)


def role_statements_key(normalized_name: str) -> str:
    return f"role-statements:{normalized_name}"


class PermissionService:
    """Evaluates the Allow/Deny statements attached to a principal's roles."""

    def __init__(self, principal: Principal, *, cache: SlidingCache | None = None) -> None:
        self.principal = principal
        self._cache = cache if cache is not None else role_statement_cache

    def _load_statements(self, normalized_name: str) -> tuple[Statement, ...]:
        with open_session() as session:
            role = session.exec(select(Role).where(Role.normalized_name == normalized_name)).first()
            if role is None or not role.statement:
                return ()
            try:
                return tuple(parse_statements(role.statement))
            except InvalidRequestError:
                # A malformed stored document must not grant anything.
                logger.exception("role %s carries an invalid statement document", role.id)
                return ()

    def statements_for(self, role_name: str) -> tuple[Statement, ...]:
        normalized = normalize_role_name(role_name)
        return self._cache.get_or_create(role_statements_key(normalized), lambda: self._load_statements(normalized))

    def statements_by_role(self) -> list[tuple[Statement, ...]]:
        return [self.statements_for(role_name) for role_name in sorted(self.principal.roles)]

    def statements(self) -> list[Statement]:
        return [item for role_statements in self.statements_by_role() for item in role_statements]

    def decide(self, action: str, resource: str | None, statements: Sequence[Statement]) -> Effect:
        return combine(item.assert_(action, resource) for item in statements)

    def _evaluate(self, query: EnforceQuery, by_role: Sequence[tuple[Statement, ...]]) -> bool:
        """Answer one query against statements grouped per role.

        Without ``policy_effect`` the statements of every role are combined
        with deny-overrides. With it, each role that has an opinion must
        yield that effect, and at least one role must have an opinion.
        """
        if query.policy_effect is None:
            statements = [item for role_statements in by_role for item in role_statements]
            return self.decide(query.action, query.resource, statements) is Effect.ALLOW
        try:
            mode = Effect.parse(query.policy_effect)
        except InvalidRequestError:
            logger.error("unknown policy effect %r in enforce query", query.policy_effect)
            return False
        return all_roles_agree(
            role_verdict(role_statements, mode, query.action, query.resource) for role_statements in by_role
        )

    def enforce(self, query: EnforceQuery) -> bool:
        if not self.principal.roles:
            return False
        allowed = self._evaluate(query, self.statements_by_role())
        if not allowed:
            logger.debug(
                "user %s denied %s on %s",
                self.principal.user_id,
                query.action,
                query.resource,
            )
        return allowed

    def enforce_batch(self, queries: Sequence[EnforceQuery]) -> list[bool]:
        if not queries or not self.principal.roles:
            return [False for _ in queries]
        by_role = self.statements_by_role()
        return [self._evaluate(item, by_role) for item in queries]
