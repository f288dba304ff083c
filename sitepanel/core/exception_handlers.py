"""Translate file manager failures into JSON error responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sitepanel.filemanager.errors import ConnectorError, FileManagerError

logger = logging.getLogger(__name__)


async def file_manager_error_handler(request: Request, exc: FileManagerError) -> JSONResponse:
    """Render ``exc`` as ``{"detail": ..., "code": ...}`` with its mapped status.

    The code is also left on ``request.state`` for the access log.
    """

    request.state.error_code = exc.code
    if exc.status_code >= 500 or isinstance(exc, ConnectorError):
        logger.warning(
            "%s %s failed: %s (%s)",
            request.method,
            request.url.path,
            exc.message,
            exc.code,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FileManagerError, file_manager_error_handler)  # type: ignore[arg-type]


__all__ = ["file_manager_error_handler", "register_exception_handlers"]
