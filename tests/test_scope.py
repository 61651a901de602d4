from __future__ import annotations

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from orgscope.domain.errors import ForbiddenError
from orgscope.domain.hierarchy import ScopedEntity
from orgscope.domain.models import Organization, OrganizationAdministrator, OrganizationUser, User
from orgscope.domain.permissions import Principal, SystemRoles
from orgscope.infra.cache import SlidingCache
from orgscope.services.hierarchy_service import HierarchyIndex
from orgscope.services.scope_service import AdminScopeResolver, ScopeAuthorizer

SYSTEM_ROLES = SystemRoles()


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _org(engine: Engine, org_id: str, parent_id: str | None = None) -> None:
    with Session(engine) as session:
        organization = Organization(id=org_id, name=org_id, parent_id=parent_id)
        session.add(organization)
        HierarchyIndex().add(session, organization)
        session.commit()


def _user(engine: Engine, user_id: str) -> None:
    with Session(engine) as session:
        session.add(User(id=user_id, username=user_id))
        session.commit()


def _admin_edge(engine: Engine, org_id: str, user_id: str) -> None:
    with Session(engine) as session:
        session.add(OrganizationAdministrator(organization_id=org_id, user_id=user_id))
        session.commit()


def _member(engine: Engine, org_id: str, user_id: str) -> None:
    with Session(engine) as session:
        session.add(OrganizationUser(organization_id=org_id, user_id=user_id))
        session.commit()


@pytest.fixture()
def forest(engine: Engine) -> Engine:
    # a -> a1 -> a11, b, and the prefix-colliding sibling "ab"
    _org(engine, "a")
    _org(engine, "a1", parent_id="a")
    _org(engine, "a11", parent_id="a1")
    _org(engine, "b")
    _org(engine, "ab")
    _user(engine, "alice")
    _user(engine, "bob")
    _admin_edge(engine, "a", "alice")
    return engine


def _authorizer(user_id: str, *roles: str) -> ScopeAuthorizer:
    return ScopeAuthorizer(Principal.create(user_id, roles, SYSTEM_ROLES), SYSTEM_ROLES)


def test_admin_organizations_are_cached_until_the_window_lapses(forest: Engine) -> None:
    clock = FakeClock()
    resolver = AdminScopeResolver(cache=SlidingCache(60, clock=clock))

    assert [item.id for item in resolver.admin_organizations("alice")] == ["a"]

    _admin_edge(forest, "b", "alice")
    clock.now = 30
    assert [item.id for item in resolver.admin_organizations("alice")] == ["a"]

    # The hit at t=30 slid the expiry to t=90.
    clock.now = 80
    assert [item.id for item in resolver.admin_organizations("alice")] == ["a"]

    clock.now = 200
    assert sorted(item.id for item in resolver.admin_organizations("alice")) == ["a", "b"]


def test_invalidate_forces_a_reload(forest: Engine) -> None:
    resolver = AdminScopeResolver(cache=SlidingCache(60, clock=FakeClock()))
    assert [item.id for item in resolver.admin_organizations("alice")] == ["a"]
    _admin_edge(forest, "b", "alice")
    resolver.invalidate("alice")
    assert sorted(item.id for item in resolver.admin_organizations("alice")) == ["a", "b"]


def test_nested_admin_roots_are_collapsed(forest: Engine) -> None:
    _admin_edge(forest, "a11", "alice")
    resolver = AdminScopeResolver(cache=SlidingCache(60))
    assert resolver.admin_organizations("alice") == [ScopedEntity(id="a", path="a")]


def test_resolver_fails_closed(forest: Engine, monkeypatch: pytest.MonkeyPatch) -> None:
    cache = SlidingCache(60)
    resolver = AdminScopeResolver(cache=cache)

    def _boom(user_id: str) -> tuple[ScopedEntity, ...]:
        raise OperationalError("SELECT", {}, Exception("database unavailable"))

    monkeypatch.setattr(resolver, "_load", _boom)
    assert resolver.admin_organizations("alice") == []
    assert len(cache) == 0

    authorizer = ScopeAuthorizer(
        Principal.create("alice", ["operator"], SYSTEM_ROLES),
        SYSTEM_ROLES,
        resolver=resolver,
    )
    assert authorizer.can_manage_organization("a") is False


def test_manage_all_requires_every_target(forest: Engine) -> None:
    authorizer = _authorizer("alice", "operator")
    a11 = ScopedEntity(id="a11", path="a/a1/a11")
    b = ScopedEntity(id="b", path="b")
    ab = ScopedEntity(id="ab", path="ab")

    assert authorizer.can_manage_all([a11]) is True
    assert authorizer.can_manage_all([a11, b]) is False
    assert authorizer.can_manage_any([a11, b]) is True
    assert authorizer.can_manage_any([b, ab]) is False


def test_organization_checks_resolve_paths(forest: Engine) -> None:
    authorizer = _authorizer("alice", "operator")
    assert authorizer.can_manage_organization("a11") is True
    assert authorizer.can_manage_organization("ab") is False
    assert authorizer.can_manage_organization("missing") is False
    assert authorizer.can_manage_all_organizations(["a1", "a11"]) is True
    assert authorizer.can_manage_all_organizations(["a1", "b"]) is False
    with pytest.raises(ForbiddenError):
        authorizer.check_all_organizations_permission(["a1", "missing"])


def test_caller_without_admin_edges_manages_nothing(forest: Engine) -> None:
    authorizer = _authorizer("bob", "operator")
    assert authorizer.can_manage_all([]) is False
    assert authorizer.can_manage_organization("a") is False
    with pytest.raises(ForbiddenError):
        authorizer.check_organization_permission("a")


@pytest.mark.parametrize("role", ["admin", "user-admin", "User-Admin"])
def test_privileged_callers_bypass_scope(forest: Engine, role: str) -> None:
    authorizer = _authorizer("root", role)
    assert authorizer.can_manage_all([ScopedEntity(id="x", path="x")]) is True
    assert authorizer.can_manage_any([]) is True
    assert authorizer.can_manage_organization("does-not-exist") is True
    assert authorizer.can_manage_all_organizations(["does-not-exist", "b"]) is True
    authorizer.check_user_permission("nobody")


def test_user_permission_needs_overlap_with_one_membership(forest: Engine) -> None:
    _user(forest, "carol")
    _member(forest, "a11", "carol")
    _member(forest, "b", "carol")

    _authorizer("alice", "operator").check_user_permission("carol")
    with pytest.raises(ForbiddenError):
        _authorizer("bob", "operator").check_user_permission("carol")
