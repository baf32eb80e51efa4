# src/PACE/errors.py
"""
Error taxonomy shared by every engine component.

Each error carries the HTTP status it maps to, a stable machine ``code`` and
an operator-facing message. ``InternalError`` is the only kind whose message
is never shown to callers verbatim.
"""
from __future__ import annotations

from typing import Any, Optional


class PaceError(Exception):
    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.extra}


class Forbidden(PaceError):
    status_code = 403
    code = "forbidden"


class ValidationFailed(PaceError):
    status_code = 400
    code = "validation"


class Conflict(PaceError):
    status_code = 409
    code = "conflict"


class NotFound(PaceError):
    status_code = 404
    code = "not_found"


class InUse(PaceError):
    status_code = 409
    code = "in_use"

    def __init__(self, message: str, count: int, **extra: Any) -> None:
        super().__init__(message, count=count, **extra)
        self.count = count


class InternalError(PaceError):
    status_code = 500
    code = "internal"

    def __init__(self, message: str = "Internal server error", cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.code, "message": "Internal server error"}


__all__ = [
    "PaceError",
    "Forbidden",
    "ValidationFailed",
    "Conflict",
    "NotFound",
    "InUse",
    "InternalError",
]
