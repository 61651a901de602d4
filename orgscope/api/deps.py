from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from orgscope.domain.permissions import Principal, SystemRoles
from orgscope.infra.auth import decode_access_token
from orgscope.infra.config import get_system_roles
from orgscope.infra.context import set_request_principal

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_claims(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> dict[str, Any]:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    try:
        claims = decode_access_token(credentials.credentials)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    return claims


def get_principal(
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
    system_roles: Annotated[SystemRoles, Depends(get_system_roles)],
) -> Principal:
    principal = Principal.from_claims(claims, system_roles)
    set_request_principal(principal)
    return principal


def require_super_admin(
    principal: Annotated[Principal, Depends(get_principal)],
) -> Principal:
    if not principal.is_super_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Super admin required",
        )
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_principal)]
CurrentSystemRoles = Annotated[SystemRoles, Depends(get_system_roles)]


def require_user_admin(
    principal: Annotated[Principal, Depends(get_principal)],
) -> Principal:
    if not principal.is_super_or_user_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User admin required",
        )
    return principal


def ok(data: Any = None) -> dict[str, Any]:
    return {"code": status.HTTP_200_OK, "success": True, "data": data}
