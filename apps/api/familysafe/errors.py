"""Error taxonomy shared by the invitation flow and the HTTP layer."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "Unauthenticated"
    INVALID_ARGUMENT = "InvalidArgument"
    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    UPSTREAM_ERROR = "UpstreamError"


STATUS_BY_KIND = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UPSTREAM_ERROR: 500,
}


def kind_for_status(status_code: int) -> ErrorKind:
    """Best-effort mapping for HTTP errors raised without an explicit kind."""
    if status_code in (401, 403):
        return ErrorKind.UNAUTHENTICATED
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 409:
        return ErrorKind.CONFLICT
    if 400 <= status_code < 500:
        return ErrorKind.INVALID_ARGUMENT
    return ErrorKind.UPSTREAM_ERROR


class ApiError(HTTPException):
    """HTTPException that always carries a machine-checkable error kind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(status_code=STATUS_BY_KIND[kind], detail=message)
        self.kind = kind
        self.message = message
        self.extra = dict(extra or {})

    def to_payload(self) -> Dict[str, Any]:
        return {"errorKind": self.kind.value, "message": self.message, **self.extra}
