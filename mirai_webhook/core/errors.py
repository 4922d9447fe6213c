# mirai_webhook/core/errors.py
"""
Typed errors and success results for the webhook API.

Every error carries a ``kind`` from a closed taxonomy. The transport layer
catches ``ApiError`` and renders ``{"error", "message", "cause"}`` with the
status code mapped from the kind, so handlers never pick status codes.
"""
from __future__ import annotations

from typing import Any

ERROR_STATUS: dict[str, int] = {
    "BadOperation": 400,
    "IllegalArgument": 400,
    "Unauthorized": 401,
    "ForbiddenOperation": 403,
    "NotFound": 404,
    "MethodNotAllowed": 405,
    "ContentTooLarge": 413,
    "UnsupportedMediaType": 415,
    "UnprocessableEntity": 422,
    "TooManyRequests": 429,
    "InternalError": 500,
}


def status_for(kind: str) -> int:
    """HTTP status for an error kind; anything unrecognized is a 500."""
    return ERROR_STATUS.get(kind, 500)


class ApiError(Exception):
    """Base class for all errors surfaced to webhook callers."""

    kind: str = "InternalError"

    def __init__(
        self,
        message: str = "Internal error",
        cause: Any = None,
        *,
        kind: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        if kind is not None:
            self.kind = kind
        self.message = message
        self.cause = cause
        self.headers = headers
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return status_for(self.kind)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message, "cause": self.cause}


class BadOperation(ApiError):
    """Malformed request (400)."""

    kind = "BadOperation"


class ForbiddenOperation(ApiError):
    """Token or signature rejected (403)."""

    kind = "ForbiddenOperation"


class NotFound(ApiError):
    """Unknown topic or route (404)."""

    kind = "NotFound"


class MethodNotAllowed(ApiError):
    """HTTP verb not defined for the route (405)."""

    kind = "MethodNotAllowed"


class InternalError(ApiError):
    """Unexpected fault; callers only see the trace id (500)."""

    kind = "InternalError"


class SuccessResponse:
    """Payload plus status. A 204 is rendered without a body."""

    def __init__(self, data: Any = None, status_code: int = 200):
        self.data = data
        self.status_code = status_code

    @property
    def has_body(self) -> bool:
        return self.status_code != 204
