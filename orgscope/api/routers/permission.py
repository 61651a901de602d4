from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from orgscope.api.deps import CurrentPrincipal
from orgscope.domain.models import EnforceQuery
from orgscope.services.permission_service import PermissionService

router = APIRouter()


def get_permission_service(principal: CurrentPrincipal) -> PermissionService:
    return PermissionService(principal)


Service = Annotated[PermissionService, Depends(get_permission_service)]


@router.get("/enforcers", response_model=bool)
def enforce(
    service: Service,
    action: Annotated[str, Query(min_length=1, max_length=256)],
    resource: Annotated[str | None, Query(max_length=256)] = None,
    policy_effect: Annotated[str | None, Query(max_length=256)] = None,
) -> bool:
    return service.enforce(EnforceQuery(action=action, resource=resource, policy_effect=policy_effect))


@router.post("/permissions/enforce", response_model=list[bool])
def enforce_batch(queries: list[EnforceQuery], service: Service) -> list[bool]:
    return service.enforce_batch(queries)
