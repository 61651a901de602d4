from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from orgscope.api.routers import organization, permission, role, user
from orgscope.domain.errors import AuthorizationError
from orgscope.infra.config import LOG_LEVEL
from orgscope.infra.context import PrincipalLogFilter
from orgscope.infra.db import check_db_ready

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s [user=%(user_id)s] %(message)s",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(PrincipalLogFilter())

logger = logging.getLogger(__name__)

app = FastAPI(
    title="orgscope",
    description="Organization-scoped delegated administration and statement-based authorization.",
    version="0.1.0",
)

app.include_router(organization.router, prefix="/api/admin/organizations", tags=["organizations"])
app.include_router(role.router, prefix="/api/admin/roles", tags=["roles"])
app.include_router(user.router, prefix="/api/admin/users", tags=["users"])
app.include_router(permission.router, prefix="/api/v1", tags=["permissions"])


@app.exception_handler(AuthorizationError)
def handle_authorization_error(request: Request, exc: AuthorizationError) -> JSONResponse:
    if exc.code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.code,
        content={"code": exc.code, "success": False, "msg": exc.message},
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
