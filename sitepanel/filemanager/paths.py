"""Relative path canonicalisation for remote file manager calls.

Remote entries are addressed only by forward-slash relative paths. Paths
never carry leading or trailing slashes and never contain a ``..`` segment;
the empty string addresses the site root.
"""

from __future__ import annotations

import re
from urllib.parse import quote

from .errors import InvalidPath

__all__ = [
    "assert_within_root",
    "basename",
    "content_disposition_attachment",
    "join_path",
    "normalize_path",
    "parent_of",
    "sanitize_zip_entry_name",
    "split_segments",
    "zip_filename",
]

_EDGE_SLASHES = re.compile(r"^/+|/+$")


def normalize_path(value: str | None) -> str:
    """Return the canonical form of ``value`` or raise :class:`InvalidPath`.

    >>> normalize_path("/a/b/")
    'a/b'
    """

    cleaned = (value or "").strip().replace("\\", "/")
    cleaned = _EDGE_SLASHES.sub("", cleaned)
    if ".." in cleaned.split("/"):
        raise InvalidPath("Invalid path")
    return cleaned


def assert_within_root(path: str, allowed_root: str) -> None:
    """Ensure ``path`` equals or sits below ``allowed_root`` (no-op for root)."""

    if not allowed_root:
        return
    if path == allowed_root or path.startswith(f"{allowed_root}/"):
        return
    raise InvalidPath(f"Path must stay within {allowed_root}")


def join_path(directory: str, name: str) -> str:
    if not directory:
        return normalize_path(name)
    return normalize_path(f"{directory}/{name}")


def basename(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def parent_of(path: str) -> str:
    idx = path.rfind("/")
    return path[:idx] if idx >= 0 else ""


def split_segments(path: str) -> list[str]:
    return [part for part in path.split("/") if part]


def sanitize_zip_entry_name(path: str) -> str:
    """Return a safe archive member name for ``path``."""

    cleaned = path.replace("\\", "/").lstrip("/")
    if not cleaned or ".." in cleaned.split("/"):
        return "file"
    return cleaned


def zip_filename(name: str | None) -> str:
    base = (name or "").strip()
    if not base:
        return "download.zip"
    return base if base.lower().endswith(".zip") else f"{base}.zip"


def content_disposition_attachment(filename: str, *, default: str = "download") -> str:
    """Build an ``attachment`` Content-Disposition value safe against header injection."""

    safe = basename(filename.replace("\\", "/").strip())
    safe = safe.replace("\r", "").replace("\n", "").replace('"', "")
    if not safe:
        safe = default
    safe = safe[:180]
    return f"attachment; filename=\"{safe}\"; filename*=UTF-8''{quote(safe, safe='')}"
