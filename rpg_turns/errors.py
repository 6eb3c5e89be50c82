"""Typed errors surfaced at the API boundary.

Each error carries a stable `code`, an HTTP `status_code` and optional
`details`. The backend turns any GameError into a JSON error response;
nothing below the API layer knows about HTTP beyond the status number.
"""

from __future__ import annotations

from typing import Any, Literal


class GameError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str = "Internal error",
        details: dict[str, Any] | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class BadRequestError(GameError):
    code = "BAD_REQUEST"
    status_code = 400

    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class UnauthorizedError(GameError):
    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, message: str = "Unauthorized", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class ForbiddenError(GameError):
    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "Forbidden", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class NotFoundError(GameError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Not found", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class TurnConflictError(GameError):
    """Concurrency violation on turn submission.

    `TURN_NO_MISMATCH` means the client's expected turn number is stale;
    `TURN_CONFLICT` means a concurrent writer won the commit.
    """

    code = "TURN_CONFLICT"
    status_code = 409

    def __init__(
        self,
        code: Literal["TURN_NO_MISMATCH", "TURN_CONFLICT"] = "TURN_CONFLICT",
        message: str = "Turn conflict",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details, code=code)


class PolicyDenyError(GameError):
    code = "POLICY_DENY"
    status_code = 422

    def __init__(self, message: str = "Policy deny", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class InvalidInputError(GameError):
    code = "INVALID_INPUT"
    status_code = 422

    def __init__(self, message: str = "Invalid input", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class InternalError(GameError):
    pass
