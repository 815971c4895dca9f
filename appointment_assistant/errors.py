"""Error kinds surfaced to API clients.

Every failure that reaches the HTTP layer is an ``AssistantError`` carrying
an explicit ``ErrorKind``; the status code and the ``error`` code in the
JSON body are derived from the kind.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION_ERROR"
    INVALID_DATETIME = "INVALID_DATETIME"
    UNAUTHORIZED = "UNAUTHORIZED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    NOT_FOUND = "NOT_FOUND"
    UPSTREAM = "UPSTREAM_FAILURE"
    CONFIGURATION = "CONFIGURATION_ERROR"


_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.INVALID_DATETIME: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.SESSION_EXPIRED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UPSTREAM: 500,
    ErrorKind.CONFIGURATION: 500,
}


class AssistantError(Exception):
    """A failure with a client-facing message and an explicit kind."""

    def __init__(self, message: str, kind: ErrorKind, *, details: Any = None):
        self.kind = kind
        self.details = details
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message, "error": self.kind.value}
        if self.kind is ErrorKind.SESSION_EXPIRED:
            # The client may retry once it has re-established a session
            payload["recovery"] = True
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ConfigurationError(AssistantError):
    """A startup precondition (credentials, instance URL) is missing."""

    def __init__(self, message: str):
        super().__init__(message, ErrorKind.CONFIGURATION)
