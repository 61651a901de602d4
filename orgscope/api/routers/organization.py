from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from orgscope.api.deps import CurrentPrincipal, CurrentSystemRoles, ok, require_super_admin
from orgscope.domain.models import (
    AdministratorBindRequest,
    OrganizationCreate,
    OrganizationRead,
    OrganizationUpdate,
)
from orgscope.services.hierarchy_service import HierarchyIndex
from orgscope.services.organization_service import OrganizationService

router = APIRouter()


def get_organization_service(principal: CurrentPrincipal, system_roles: CurrentSystemRoles) -> OrganizationService:
    return OrganizationService(principal, system_roles)


Service = Annotated[OrganizationService, Depends(get_organization_service)]


def _read(detail: Any) -> dict[str, Any]:
    return OrganizationRead.model_validate(detail).model_dump()


@router.post("/index/rebuild", dependencies=[Depends(require_super_admin)])
def rebuild_index() -> dict[str, Any]:
    return ok({"projected": HierarchyIndex().rebuild_all()})


@router.post("")
def create_organization(payload: OrganizationCreate, service: Service) -> dict[str, Any]:
    return ok(_read(service.create(payload)))


@router.get("")
def list_organizations(service: Service, parent_id: str | None = None) -> dict[str, Any]:
    return ok([_read(item) for item in service.list_children(parent_id)])


@router.get("/{org_id}")
def get_organization(org_id: str, service: Service) -> dict[str, Any]:
    return ok(_read(service.get(org_id)))


@router.get("/{org_id}/subtree")
def get_organization_subtree(org_id: str, service: Service) -> dict[str, Any]:
    return ok([_read(item) for item in service.subtree(org_id)])


@router.put("/{org_id}")
def update_organization(org_id: str, payload: OrganizationUpdate, service: Service) -> dict[str, Any]:
    return ok(_read(service.update(org_id, payload)))


@router.delete("/{org_id}")
def delete_organization(org_id: str, service: Service) -> dict[str, Any]:
    return ok(service.delete(org_id))


@router.post("/{org_id}/administrators")
def add_administrator(org_id: str, payload: AdministratorBindRequest, service: Service) -> dict[str, Any]:
    service.add_administrator(org_id, payload.user_id)
    return ok()


@router.delete("/{org_id}/administrators/{user_id}")
def remove_administrator(org_id: str, user_id: str, service: Service) -> dict[str, Any]:
    service.remove_administrator(org_id, user_id)
    return ok()
