from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from orgscope.api.deps import CurrentPrincipal, CurrentSystemRoles, ok
from orgscope.domain.models import RoleBasicRead, UserOrganizationsUpdate, UserRolesUpdate
from orgscope.services.user_service import UserService

router = APIRouter()


def get_user_service(principal: CurrentPrincipal, system_roles: CurrentSystemRoles) -> UserService:
    return UserService(principal, system_roles)


Service = Annotated[UserService, Depends(get_user_service)]


@router.get("/{user_id}/roles")
def get_user_roles(user_id: str, service: Service) -> dict[str, Any]:
    return ok([RoleBasicRead.model_validate(item).model_dump() for item in service.get_roles(user_id)])


@router.put("/{user_id}/roles")
def set_user_roles(user_id: str, payload: UserRolesUpdate, service: Service) -> dict[str, Any]:
    return ok(service.set_roles(user_id, payload.role_ids))


@router.put("/{user_id}/organizations")
def set_user_organizations(user_id: str, payload: UserOrganizationsUpdate, service: Service) -> dict[str, Any]:
    return ok(service.set_organizations(user_id, payload.organization_ids))
