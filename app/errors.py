"""Error taxonomy and the structured result returned by every public operation."""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    INVALID_ARGUMENT = "invalid-argument"
    NOT_FOUND = "not-found"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"
    PERMISSION_DENIED = "permission-denied"
    INTERNAL = "internal"


class RecordError(Exception):
    """Base for every failure raised by the store layer and the services."""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.code.value


class InvalidArgument(RecordError):
    code = ErrorCode.INVALID_ARGUMENT


class NotFound(RecordError):
    code = ErrorCode.NOT_FOUND


class Conflict(RecordError):
    code = ErrorCode.CONFLICT


class TransactionAborted(Conflict):
    """A transaction lost a write-write race and ran out of retries."""


class Unavailable(RecordError):
    code = ErrorCode.UNAVAILABLE


class PermissionDenied(RecordError):
    code = ErrorCode.PERMISSION_DENIED


class OperationResult(BaseModel):
    """Success/failure discriminated result.

    ``code`` keeps the original error code so callers can branch on it;
    ``retry`` tells a UI to reload and try again instead of treating the
    failure as fatal.
    """

    success: bool
    message: str = ""
    code: Optional[ErrorCode] = None
    retry: bool = False
    data: dict[str, Any] = Field(default_factory=dict)


def ok(message: str = "", **data: Any) -> OperationResult:
    return OperationResult(success=True, message=message, data=data)


def fail(code: ErrorCode, message: str, *, retry: bool = False, **data: Any) -> OperationResult:
    return OperationResult(success=False, message=message, code=code, retry=retry, data=data)


_USER_MESSAGES = {
    ErrorCode.UNAVAILABLE: "The record store is unavailable. Please try again.",
    ErrorCode.PERMISSION_DENIED: "You do not have permission for this action. Contact an administrator.",
}


def failure_from_error(exc: RecordError, action: str) -> OperationResult:
    """Convert a caught ``RecordError`` into a failed result with a user-facing message."""
    message = _USER_MESSAGES.get(exc.code, exc.message)
    return fail(exc.code, f"{action}: {message}", retry=isinstance(exc, (Unavailable, TransactionAborted)))
