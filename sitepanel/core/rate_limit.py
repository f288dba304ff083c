"""Rate limiting keyed by client address."""

from __future__ import annotations

from fastapi import Request
from slowapi import Limiter

from sitepanel.filemanager.settings import get_filemanager_settings

__all__ = ["get_client_ip", "limiter", "zip_rate_limit"]


def get_client_ip(request: Request) -> str:
    """Extract a best-effort client IP for rate limiting.

    Prefer ``X-Forwarded-For`` (first hop) if present, otherwise use the
    socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is None:
        return "unknown"
    return request.client.host


def zip_rate_limit() -> str:
    return get_filemanager_settings().zip_rate_limit


limiter = Limiter(key_func=get_client_ip)
