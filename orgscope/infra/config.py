from __future__ import annotations

import os
from functools import lru_cache

from orgscope.domain.permissions import (
    DEFAULT_ORGANIZATION_ADMIN_ROLE,
    DEFAULT_SUPER_ADMIN_ROLE,
    DEFAULT_USER_ADMIN_ROLE,
    SystemRoles,
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ADMIN_SCOPE_CACHE_TTL_SECONDS = float(os.getenv("ADMIN_SCOPE_CACHE_TTL_SECONDS", "60"))
ROLE_STATEMENT_CACHE_TTL_SECONDS = float(os.getenv("ROLE_STATEMENT_CACHE_TTL_SECONDS", "60"))


@lru_cache(maxsize=1)
def get_system_roles() -> SystemRoles:
    return SystemRoles(
        super_admin=os.getenv("SUPER_ADMIN_ROLE", DEFAULT_SUPER_ADMIN_ROLE),
        user_admin=os.getenv("USER_ADMIN_ROLE", DEFAULT_USER_ADMIN_ROLE),
        organization_admin=os.getenv("ORGANIZATION_ADMIN_ROLE", DEFAULT_ORGANIZATION_ADMIN_ROLE),
    )
