from __future__ import annotations


class AuthorizationError(Exception):
    code: int = 400

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, object]:
        return {"code": self.code, "message": self.message}


class ForbiddenError(AuthorizationError):
    code = 403


class InvalidRequestError(AuthorizationError):
    code = 400


class NotFoundError(AuthorizationError):
    code = 404


class ConflictError(AuthorizationError):
    code = 409


class InternalError(AuthorizationError):
    code = 500
