"""Exception taxonomy shared by the file manager layers.

Every error raised by the file manager core derives from
:class:`FileManagerError` and carries the HTTP status the caller-facing API
maps it to, plus a short machine readable ``code``. Connector failures are
normalised exactly once, in :meth:`ConnectorError.from_response`, so call
sites never re-parse heterogeneous error payloads.
"""

from __future__ import annotations

import json
from typing import Any

import httpx

__all__ = [
    "ConnectorError",
    "ConnectorUnreachable",
    "FileManagerError",
    "Forbidden",
    "InvalidMove",
    "InvalidPath",
    "InvalidRequest",
    "NameExhausted",
    "SiteNotFound",
    "Unauthorized",
]


class FileManagerError(Exception):
    """Base class for all file manager failures."""

    status_code: int = 500
    code: str = "file_manager_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidPath(FileManagerError):
    """Raised for traversal attempts and malformed paths."""

    status_code = 400
    code = "invalid_path"


class InvalidRequest(FileManagerError):
    """Raised when a request is structurally unusable (no items, too many, ...)."""

    status_code = 400
    code = "invalid_request"


class InvalidMove(FileManagerError):
    """Raised when a move would place a folder inside itself or a descendant."""

    status_code = 400
    code = "invalid_move"


class Unauthorized(FileManagerError):
    status_code = 401
    code = "unauthorized"


class Forbidden(FileManagerError):
    status_code = 403
    code = "forbidden"


class SiteNotFound(FileManagerError):
    status_code = 404
    code = "not_found"


class NameExhausted(FileManagerError):
    """Raised when no free name was found within the rename budget."""

    status_code = 409
    code = "name_exhausted"


class ConnectorUnreachable(FileManagerError):
    """Raised on network errors and timeouts talking to the connector."""

    status_code = 502
    code = "connector_unreachable"


class ConnectorError(FileManagerError):
    """The remote connector answered with a non-2xx status."""

    code = "connector_error"

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status

    @property
    def status_code(self) -> int:  # type: ignore[override]
        if 400 <= self.status <= 599:
            return self.status
        return 502

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ConnectorError":
        """Build the error from an already-read ``httpx`` response."""

        message = _extract_message(response.content)
        if not message:
            message = response.reason_phrase or f"Connector request failed ({response.status_code})"
        return cls(response.status_code, message)

    def __repr__(self) -> str:
        return f"ConnectorError(status={self.status!r}, message={self.message!r})"


def _extract_message(body: bytes) -> str | None:
    if not body:
        return None
    try:
        data: Any = json.loads(body)
    except ValueError:
        return None
    if isinstance(data, dict):
        for key in ("error", "message"):
            value = data.get(key)
            if value:
                return str(value)
        return None
    if isinstance(data, str) and data:
        return data
    return None
