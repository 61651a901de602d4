from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from orgscope.api.deps import CurrentPrincipal, CurrentSystemRoles, ok, require_user_admin
from orgscope.domain.errors import NotFoundError
from orgscope.domain.models import (
    AssignableRolesBindRequest,
    RoleBasicRead,
    RoleCreate,
    RoleRead,
    RoleStatementUpdate,
    RoleUpdate,
)
from orgscope.services.role_service import RoleService

router = APIRouter()


def get_role_service(principal: CurrentPrincipal, system_roles: CurrentSystemRoles) -> RoleService:
    return RoleService(principal, system_roles)


Service = Annotated[RoleService, Depends(get_role_service)]
RoleAdmin = [Depends(require_user_admin)]


def _read(role: Any) -> dict[str, Any]:
    return RoleRead.model_validate(role).model_dump()


@router.get("/assignable")
def list_assignable_roles(service: Service) -> dict[str, Any]:
    return ok([RoleBasicRead.model_validate(item).model_dump() for item in service.assignable_roles()])


@router.post("", dependencies=RoleAdmin)
def create_role(payload: RoleCreate, service: Service) -> dict[str, Any]:
    return ok(_read(service.create(payload)))


@router.get("", dependencies=RoleAdmin)
def list_roles(service: Service, q: str | None = None) -> dict[str, Any]:
    return ok(service.list_roles(q))


@router.get("/{role_id}", dependencies=RoleAdmin)
def get_role(role_id: str, service: Service) -> dict[str, Any]:
    role = service.get(role_id)
    if role is None:
        raise NotFoundError("role not found")
    return ok(_read(role))


@router.put("/{role_id}", dependencies=RoleAdmin)
def update_role(role_id: str, payload: RoleUpdate, service: Service) -> dict[str, Any]:
    return ok(_read(service.update(role_id, payload)))


@router.put("/{role_id}/statement", dependencies=RoleAdmin)
def update_role_statement(role_id: str, payload: RoleStatementUpdate, service: Service) -> dict[str, Any]:
    return ok(_read(service.update_statement(role_id, payload)))


@router.delete("/{role_id}", dependencies=RoleAdmin)
def delete_role(role_id: str, service: Service) -> dict[str, Any]:
    service.delete(role_id)
    return ok(role_id)


@router.post("/{role_id}/assignable-roles", dependencies=RoleAdmin)
def add_assignable_roles(role_id: str, payload: AssignableRolesBindRequest, service: Service) -> dict[str, Any]:
    return ok(service.add_assignable_roles(role_id, payload.assignable_role_ids))


@router.delete("/{role_id}/assignable-roles/{assignable_role_id}", dependencies=RoleAdmin)
def remove_assignable_role(role_id: str, assignable_role_id: str, service: Service) -> dict[str, Any]:
    service.remove_assignable_role(role_id, assignable_role_id)
    return ok()
