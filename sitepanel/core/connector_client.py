"""Shared HTTP client used for every connector call.

One :class:`httpx.AsyncClient` lives for the lifetime of the application and
is handed to request handlers through :func:`get_connector_client`, so
connection pools are reused across requests and tests can substitute a
client backed by :class:`httpx.MockTransport`.
"""

from __future__ import annotations

import os

import httpx
from fastapi import Request

__all__ = ["create_connector_client", "get_connector_client"]


def create_connector_client() -> httpx.AsyncClient:
    max_connections = int(os.getenv("CONNECTOR_MAX_CONNECTIONS", "100"))
    return httpx.AsyncClient(
        follow_redirects=False,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max(1, max_connections // 5),
        ),
    )


def get_connector_client(request: Request) -> httpx.AsyncClient:
    """Return the application's shared connector client."""

    client = getattr(request.app.state, "connector_client", None)
    if client is None:
        raise RuntimeError("Connector client is not initialised; is the app lifespan running?")
    return client
