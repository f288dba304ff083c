"""Bounded-concurrency orchestration of independent per-item operations.

Bulk operations never fail fast: every item's outcome is recorded in a
:class:`BatchResult`, so callers must inspect ``failed`` to know whether the
whole operation succeeded. Results keep the submission order of the items
regardless of the order in which workers finished.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .errors import FileManagerError, InvalidMove, InvalidPath, NameExhausted
from .gateway import ConnectorGateway
from .naming import write_with_unique_name
from .paths import assert_within_root, basename, join_path, normalize_path, parent_of
from .payloads import ReadPayload

__all__ = [
    "BatchFailure",
    "BatchResult",
    "UploadAttempt",
    "UploadItem",
    "copy_files",
    "delete_files",
    "ensure_not_into_itself",
    "move_entries",
    "run_batch",
    "run_chunked",
    "upload_files",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def error_message(exc: BaseException) -> str:
    if isinstance(exc, FileManagerError):
        return exc.message
    return str(exc) or exc.__class__.__name__


def error_status(exc: BaseException) -> int:
    if isinstance(exc, FileManagerError):
        return exc.status_code
    return 500


@dataclass(frozen=True)
class BatchFailure(Generic[T]):
    item: T
    error: BaseException

    @property
    def message(self) -> str:
        return error_message(self.error)

    @property
    def status(self) -> int:
        return error_status(self.error)


@dataclass
class BatchResult(Generic[T, R]):
    """Per-item outcomes of one orchestration run.

    ``outcomes`` holds every result or :class:`BatchFailure` in submission
    order; ``ok`` and ``failed`` are the same outcomes split by kind.
    """

    ok: list[R] = field(default_factory=list)
    failed: list[BatchFailure[T]] = field(default_factory=list)
    outcomes: list[R | BatchFailure[T]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failed

    def add_ok(self, value: R) -> None:
        self.ok.append(value)
        self.outcomes.append(value)

    def add_failure(self, failure: BatchFailure[T]) -> None:
        self.failed.append(failure)
        self.outcomes.append(failure)

    def extend(self, other: "BatchResult[T, R]") -> None:
        self.ok.extend(other.ok)
        self.failed.extend(other.failed)
        self.outcomes.extend(other.outcomes)


async def run_batch(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int,
) -> BatchResult[T, R]:
    """Run ``worker`` over ``items`` with at most ``concurrency`` in flight.

    ``min(concurrency, len(items))`` workers pull indexes from one shared
    counter, so each item is processed exactly once. A failing item is
    recorded and never cancels the others. Cancellation of the caller is
    propagated to every worker.
    """

    if not items:
        return BatchResult()

    cursor = itertools.count()
    slots: list[tuple[bool, Any] | None] = [None] * len(items)

    async def _work() -> None:
        while True:
            idx = next(cursor)
            if idx >= len(items):
                return
            try:
                slots[idx] = (True, await worker(items[idx]))
            except Exception as exc:
                slots[idx] = (False, exc)

    workers = max(1, min(concurrency, len(items)))
    await asyncio.gather(*(_work() for _ in range(workers)))

    result: BatchResult[T, R] = BatchResult()
    for idx, (item, slot) in enumerate(zip(items, slots)):
        if slot is None:
            raise RuntimeError(f"Batch item {idx} was never processed")
        succeeded, value = slot
        if succeeded:
            result.add_ok(value)
        else:
            result.add_failure(BatchFailure(item=item, error=value))
    return result


async def run_chunked(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    chunk_size: int,
    pause: float,
) -> BatchResult[T, R]:
    """Run ``worker`` over consecutive chunks of ``items``.

    Items inside a chunk run concurrently; the next chunk starts only after
    every item of the current one has settled and ``pause`` seconds passed.
    """

    result: BatchResult[T, R] = BatchResult()
    size = max(1, chunk_size)
    for start in range(0, len(items), size):
        chunk = items[start : start + size]
        result.extend(await run_batch(chunk, worker, concurrency=len(chunk)))
        if start + size < len(items) and pause > 0:
            await asyncio.sleep(pause)
    return result


# ----------------------------------------------------------------------
# Copy
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class CopiedEntry:
    source: str
    dest: str


async def copy_files(
    sources: Sequence[str],
    destination: str,
    *,
    read: Callable[[str], Awaitable[ReadPayload]],
    write: Callable[[str, ReadPayload], Awaitable[Any]],
    concurrency: int = 4,
    max_renames: int = 50,
    allowed_root: str = "",
) -> BatchResult[str, CopiedEntry]:
    """Copy each source file into ``destination`` under a free name.

    Each source is read once; the write is retried under suffixed names while
    the connector reports a collision. Paths must stay within
    ``allowed_root`` when one is given.
    """

    try:
        root = normalize_path(allowed_root)
        dest_dir = normalize_path(destination)
        assert_within_root(dest_dir, root)
    except InvalidPath as exc:
        failed: BatchResult[str, CopiedEntry] = BatchResult()
        for source in sources:
            failed.add_failure(BatchFailure(item=source, error=exc))
        return failed

    async def _copy_one(raw_source: str) -> CopiedEntry:
        source = normalize_path(raw_source)
        filename = basename(source)
        if not filename:
            raise InvalidPath("Invalid source filename")

        payload = await read(source)

        async def _write(path: str) -> None:
            assert_within_root(path, root)
            await write(path, payload)

        _, dest, _ = await write_with_unique_name(
            dest_dir, filename, _write, max_renames=max_renames
        )
        return CopiedEntry(source=source, dest=dest)

    return await run_batch(list(sources), _copy_one, concurrency)


# ----------------------------------------------------------------------
# Delete
# ----------------------------------------------------------------------


async def delete_files(
    gateway: ConnectorGateway,
    paths: Sequence[str],
    *,
    chunk_size: int = 10,
    pause: float = 0.2,
) -> BatchResult[str, str]:
    async def _delete_one(path: str) -> str:
        await gateway.delete(path)
        return path

    return await run_chunked(paths, _delete_one, chunk_size=chunk_size, pause=pause)


# ----------------------------------------------------------------------
# Upload
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class UploadItem:
    name: str
    data: bytes
    content_type: str | None = None


@dataclass(frozen=True)
class UploadedFile:
    name: str
    saved_as: str
    path: str


@dataclass
class UploadAttempt:
    """One file being uploaded; ``path`` is the last destination tried."""

    file: UploadItem
    path: str | None = None

    @property
    def attempted_as(self) -> str | None:
        return basename(self.path) if self.path else None


async def upload_files(
    gateway: ConnectorGateway,
    directory: str,
    files: Sequence[UploadItem],
    *,
    concurrency: int = 4,
    max_renames: int = 25,
) -> BatchResult[UploadAttempt, UploadedFile]:
    """Upload ``files`` into ``directory``, renaming on collisions.

    Failures carry the :class:`UploadAttempt`, so callers can report the
    name the connector last rejected. It stays unset when no upload call was
    made or when every candidate name collided.
    """

    async def _upload_one(attempt: UploadAttempt) -> UploadedFile:
        item = attempt.file
        filename = basename(normalize_path(item.name))
        if not filename:
            raise InvalidPath("Invalid upload filename")

        async def _send(path: str) -> Any:
            attempt.path = path
            return await gateway.upload(path, basename(path), item.data, item.content_type)

        try:
            saved_as, path, _ = await write_with_unique_name(
                directory, filename, _send, max_renames=max_renames
            )
        except NameExhausted:
            attempt.path = None
            raise
        return UploadedFile(name=item.name, saved_as=saved_as, path=path)

    return await run_batch([UploadAttempt(file=item) for item in files], _upload_one, concurrency)


# ----------------------------------------------------------------------
# Move
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class MovePlan:
    source: str
    dest: str


@dataclass(frozen=True)
class MovedEntry:
    source: str
    dest: str


def ensure_not_into_itself(sources: Sequence[str], destination: str) -> None:
    """Reject ``destination`` when it is, or lies below, any moved source.

    Walks the destination's ancestor chain up to the root; meeting a source
    on the way means a folder would be moved into itself or one of its own
    descendants.
    """

    blocked = set(sources)
    current = destination
    while current:
        if current in blocked:
            raise InvalidMove(f"Cannot move {current} into itself")
        current = parent_of(current)


async def move_entries(
    gateway: ConnectorGateway,
    sources: Sequence[str],
    destination: str,
    *,
    concurrency: int = 1,
) -> tuple[BatchResult[MovePlan, MovedEntry], int]:
    """Move ``sources`` into ``destination``.

    The structural check runs first and rejects the whole call; after that
    every move is independent. Items already at their target are skipped.

    Returns:
        The batch result and the number of skipped items.
    """

    ensure_not_into_itself(sources, destination)

    plans = []
    skipped = 0
    for source in sources:
        dest = join_path(destination, basename(source))
        if not dest or dest == source:
            skipped += 1
            continue
        plans.append(MovePlan(source=source, dest=dest))

    async def _move_one(plan: MovePlan) -> MovedEntry:
        await gateway.move(plan.source, plan.dest)
        return MovedEntry(source=plan.source, dest=plan.dest)

    result = await run_batch(plans, _move_one, concurrency)
    if result.failed:
        logger.warning(
            "Moved %d of %d entries for site %s",
            len(result.ok),
            len(plans),
            gateway.context.site_id,
        )
    return result, skipped
