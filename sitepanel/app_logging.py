"""Logging for the file manager service.

``init_logging`` wires two rotating files into ``LOG_DIR``:

- ``app.log`` for the ``sitepanel`` logger tree (gateway failures, batch
  summaries, aborted zips), plain text or JSON when ``LOG_JSON=true``;
- ``access.log`` for ``uvicorn.access``, one JSON line per request.

The access line names the site a request targeted and, when the request
failed inside the file manager, the error ``code`` it was answered with, so a
connector outage can be traced per site without reading the app log.
Connector tokens, session tokens and cookies are scrubbed from headers and
captured bodies.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request
from starlette.responses import Response

from .core.rate_limit import get_client_ip

APP_LOGGER_NAME = "sitepanel"
ACCESS_LOGGER_NAME = "uvicorn.access"

# Health checks and scrapes; polled too often to be worth a line each.
UNLOGGED_PATHS = frozenset({"/api/health", "/api/metrics"})

SENSITIVE_FIELDS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "password",
        "token",
        "access_token",
        "refresh_token",
        "connector_token",
        "x-api-key",
    }
)


class JsonFormatter(logging.Formatter):
    """One JSON object per record; ``site_id`` is kept when passed via ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        site_id = getattr(record, "site_id", None)
        if site_id:
            payload["site_id"] = site_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


def _scrub(data: object) -> object:
    """Recursively mask sensitive keys in dictionaries and lists."""

    if isinstance(data, dict):
        return {
            key: "***" if str(key).lower() in SENSITIVE_FIELDS else _scrub(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_scrub(value) for value in data]
    return data


def _rotating_handler(log_dir: str, filename: str, formatter: logging.Formatter) -> logging.Handler:
    handler = TimedRotatingFileHandler(
        os.path.join(log_dir, filename),
        when="midnight",
        backupCount=int(os.getenv("LOG_RETENTION_DAYS", "7")),
        utc=_env_flag("LOG_ROTATE_UTC"),
    )
    handler.setFormatter(formatter)
    return handler


async def _capture_json_body(request: Request) -> object | None:
    """Read a JSON action body for logging and replay it to the route.

    Multipart uploads and zip forms are never buffered here.
    """

    if not request.headers.get("content-type", "").startswith("application/json"):
        return None
    body = await request.body()

    async def replay() -> dict:  # pragma: no cover - internal
        return {"type": "http.request", "body": body, "more_body": False}

    request._receive = replay  # type: ignore[attr-defined]
    if not body:
        return None
    try:
        return _scrub(json.loads(body))
    except ValueError:
        return body.decode("utf-8", errors="replace")


def access_record(
    request: Request,
    response: Response,
    *,
    request_id: str,
    latency_ms: float,
    body: object | None = None,
) -> dict[str, Any]:
    """Build the access line for one finished request.

    ``site_id`` comes from the matched route; ``error_code`` is set by the
    file manager exception handler on ``request.state``.
    """

    record: dict[str, Any] = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "status": response.status_code,
        "latency_ms": round(latency_ms, 2),
        "client_ip": get_client_ip(request),
        "headers": _scrub(dict(request.headers)),
    }
    site_id = request.path_params.get("site_id")
    if site_id:
        record["site_id"] = site_id
    error_code = getattr(request.state, "error_code", None)
    if error_code:
        record["error_code"] = error_code
    if body is not None:
        record["body"] = body
    return record


def _install_access_logging(app: FastAPI) -> None:
    """Add the middleware writing one access line per request."""

    log_bodies = _env_flag("LOG_REQUEST_BODIES")
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        body = await _capture_json_body(request) if log_bodies else None

        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id

        record = access_record(
            request,
            response,
            request_id=request_id,
            latency_ms=(time.perf_counter() - started) * 1000,
            body=body,
        )
        access_logger.info(json.dumps(record, default=str))
        return response


def init_logging(app: FastAPI | None = None) -> None:
    """Configure the app and access loggers, then hook ``app`` if given.

    Handlers already on the ``sitepanel`` logger are kept so repeated calls do
    not duplicate lines; the access logger's handlers are always replaced
    because uvicorn installs its own console handler there.
    """

    log_dir = os.getenv("LOG_DIR", "logs")
    os.makedirs(log_dir, exist_ok=True)

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    if _env_flag("LOG_JSON"):
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if not app_logger.handlers:
        app_logger.addHandler(_rotating_handler(log_dir, "app.log", formatter))
    app_logger.setLevel(level)

    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(_rotating_handler(log_dir, "access.log", formatter))
    access_logger.setLevel(level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app)
