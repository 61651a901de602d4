from __future__ import annotations

import logging
from contextvars import ContextVar

from orgscope.domain.permissions import Principal

principal_ctx: ContextVar[Principal | None] = ContextVar("principal", default=None)


def set_request_principal(principal: Principal | None) -> None:
    principal_ctx.set(principal)


def get_request_principal() -> Principal | None:
    return principal_ctx.get()


def get_user_id() -> str | None:
    principal = principal_ctx.get()
    return principal.user_id if principal is not None else None


class PrincipalLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.user_id = get_user_id() or "-"
        return True
