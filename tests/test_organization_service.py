from __future__ import annotations

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from orgscope.domain.errors import ConflictError, ForbiddenError, InternalError, NotFoundError
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
)
from orgscope.domain.permissions import Principal, SystemRoles
from orgscope.services.organization_service import OrganizationService

SYSTEM_ROLES = SystemRoles()


def _service(user_id: str = "root", *roles: str) -> OrganizationService:
    principal = Principal.create(user_id, roles or ("admin",), SYSTEM_ROLES)
    return OrganizationService(principal, SYSTEM_ROLES)


def _users(engine: Engine, *user_ids: str) -> None:
    with Session(engine) as session:
        for user_id in user_ids:
            session.add(User(id=user_id, username=user_id))
        session.commit()


@pytest.fixture()
def org_admin_role(engine: Engine) -> Engine:
    with Session(engine) as session:
        session.add(Role(id="r-org-admin", name="organization-admin", normalized_name="ORGANIZATION-ADMIN"))
        session.commit()
    _users(engine, "alice", "bob")
    return engine


def _has_org_admin_role(engine: Engine, user_id: str) -> bool:
    with Session(engine) as session:
        return session.get(UserRole, (user_id, "r-org-admin")) is not None


def test_root_creation_is_reserved_for_super_admin(org_admin_role: Engine) -> None:
    root = _service().create(OrganizationCreate(name="HQ", code="hq"))
    assert root.path == root.id
    assert root.level == 0

    with pytest.raises(ForbiddenError):
        _service("bob", "user-admin").create(OrganizationCreate(name="Other"))
    with pytest.raises(NotFoundError):
        _service().create(OrganizationCreate(name="Child", parent_id="missing"))


def test_scoped_admin_creates_only_inside_scope(org_admin_role: Engine) -> None:
    super_admin = _service()
    north = super_admin.create(OrganizationCreate(name="North"))
    south = super_admin.create(OrganizationCreate(name="South"))
    super_admin.add_administrator(north.id, "alice")
    assert _has_org_admin_role(org_admin_role, "alice")

    alice = _service("alice", "organization-admin")
    team = alice.create(OrganizationCreate(name="Team", parent_id=north.id))
    assert team.path == f"{north.id}/{team.id}"
    assert team.level == 1
    assert alice.get(north.id).has_child is True

    with pytest.raises(ForbiddenError):
        alice.create(OrganizationCreate(name="Intruder", parent_id=south.id))
    with pytest.raises(ForbiddenError):
        alice.get(south.id)
    assert [item.id for item in alice.list_children()] == [north.id]
    assert [item.id for item in alice.list_children(north.id)] == [team.id]
    assert [item.id for item in alice.subtree(north.id)] == [north.id, team.id]


def test_move_requires_authority_over_both_ends(org_admin_role: Engine) -> None:
    super_admin = _service()
    north = super_admin.create(OrganizationCreate(name="North"))
    south = super_admin.create(OrganizationCreate(name="South"))
    team = super_admin.create(OrganizationCreate(name="Team", parent_id=north.id))
    squad = super_admin.create(OrganizationCreate(name="Squad", parent_id=team.id))
    super_admin.add_administrator(north.id, "alice")

    alice = _service("alice", "organization-admin")
    with pytest.raises(ForbiddenError):
        alice.update(team.id, OrganizationUpdate(name="Team", parent_id=south.id))
    with pytest.raises(ForbiddenError):
        alice.update(team.id, OrganizationUpdate(name="Team"))
    renamed = alice.update(team.id, OrganizationUpdate(name="Team 2", parent_id=north.id))
    assert renamed.name == "Team 2"

    with pytest.raises(ConflictError):
        super_admin.update(north.id, OrganizationUpdate(name="North", parent_id=squad.id))

    moved = super_admin.update(team.id, OrganizationUpdate(name="Team", parent_id=south.id))
    assert moved.path == f"{south.id}/{team.id}"
    with Session(org_admin_role) as session:
        squad_detail = session.get(OrganizationDetail, squad.id)
        north_detail = session.get(OrganizationDetail, north.id)
        assert squad_detail is not None and north_detail is not None
        assert squad_detail.path == f"{south.id}/{team.id}/{squad.id}"
        assert squad_detail.level == 2
        assert north_detail.has_child is False


def test_delete_requires_leaf_and_cleans_up(org_admin_role: Engine) -> None:
    super_admin = _service()
    north = super_admin.create(OrganizationCreate(name="North"))
    team = super_admin.create(OrganizationCreate(name="Team", parent_id=north.id))
    super_admin.add_administrator(team.id, "bob")
    with Session(org_admin_role) as session:
        session.add(OrganizationUser(organization_id=team.id, user_id="alice"))
        session.commit()

    with pytest.raises(ConflictError):
        super_admin.delete(north.id)

    assert super_admin.delete(team.id) == team.id
    with Session(org_admin_role) as session:
        organization = session.get(Organization, team.id)
        assert organization is not None and organization.is_deleted is True
        assert session.get(OrganizationDetail, team.id) is None
        assert session.exec(select(OrganizationAdministrator)).all() == []
        assert session.exec(select(OrganizationUser)).all() == []
        north_detail = session.get(OrganizationDetail, north.id)
        assert north_detail is not None and north_detail.has_child is False
    with pytest.raises(NotFoundError):
        super_admin.get(team.id)
    assert not _has_org_admin_role(org_admin_role, "bob")


def test_removing_last_admin_edge_revokes_role(org_admin_role: Engine) -> None:
    super_admin = _service()
    north = super_admin.create(OrganizationCreate(name="North"))
    south = super_admin.create(OrganizationCreate(name="South"))
    super_admin.add_administrator(north.id, "alice")
    super_admin.add_administrator(south.id, "alice")

    super_admin.remove_administrator(north.id, "alice")
    assert _has_org_admin_role(org_admin_role, "alice")

    super_admin.remove_administrator(south.id, "alice")
    assert not _has_org_admin_role(org_admin_role, "alice")

    with pytest.raises(NotFoundError):
        super_admin.add_administrator(north.id, "ghost")


def test_add_administrator_needs_provisioned_role(engine: Engine) -> None:
    _users(engine, "alice")
    super_admin = _service()
    north = super_admin.create(OrganizationCreate(name="North"))
    with pytest.raises(InternalError):
        super_admin.add_administrator(north.id, "alice")


def test_get_checks_scope_before_existence(org_admin_role: Engine) -> None:
    super_admin = _service()
    north = super_admin.create(OrganizationCreate(name="North"))
    super_admin.add_administrator(north.id, "alice")

    alice = _service("alice", "organization-admin")
    with pytest.raises(ForbiddenError):
        alice.get("missing")
    with pytest.raises(NotFoundError):
        super_admin.get("missing")
