"""Collision-avoiding names: ``report.pdf`` -> ``report (1).pdf`` -> ..."""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import ConnectorError, NameExhausted
from .paths import join_path

__all__ = ["is_collision_error", "next_name", "split_name", "write_with_unique_name"]

T = TypeVar("T")

_FILE_EXISTS = re.compile(r"file exists", re.IGNORECASE)
_ALREADY_EXISTS = re.compile(r"already exists", re.IGNORECASE)


def split_name(name: str) -> tuple[str, str]:
    """Split ``name`` into ``(base, ext)`` at the last dot.

    Dotfiles (``.env``) and names without a dot have an empty extension.
    """

    idx = name.rfind(".")
    if idx <= 0:
        return name, ""
    return name[:idx], name[idx:]


def next_name(original: str, attempt: int) -> str:
    if attempt == 0:
        return original
    base, ext = split_name(original)
    return f"{base} ({attempt}){ext}"


def is_collision_error(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` means "the destination already exists"."""

    if not isinstance(exc, ConnectorError):
        return False
    if exc.status == 409:
        return True
    if exc.status == 500 and _FILE_EXISTS.search(exc.message):
        return True
    return bool(_ALREADY_EXISTS.search(exc.message))


async def write_with_unique_name(
    directory: str,
    filename: str,
    write: Callable[[str], Awaitable[T]],
    *,
    max_renames: int,
) -> tuple[str, str, T]:
    """Call ``write(path)`` under successive candidate names until one sticks.

    Attempt ``0`` uses ``filename`` unchanged, attempts ``1..max_renames`` use
    the suffixed names. Only collision errors trigger another attempt; any
    other failure propagates immediately.

    Returns:
        ``(name, path, result)`` for the attempt that succeeded.

    Raises:
        NameExhausted: every candidate collided.
    """

    for attempt in range(max_renames + 1):
        name = next_name(filename, attempt)
        path = join_path(directory, name)
        try:
            result = await write(path)
        except ConnectorError as exc:
            if is_collision_error(exc):
                continue
            raise
        return name, path, result
    raise NameExhausted(f"Could not pick a free name for {filename}")
