"""Caller-facing file manager operations for one site.

:class:`FileManagerService` validates caller input, delegates single-item
operations straight to the :class:`~.gateway.ConnectorGateway` (letting their
errors propagate) and runs bulk operations through the orchestrators in
:mod:`.batch`, turning any partial failure into a 400 result.
"""

from __future__ import annotations

import base64
import binascii
import datetime as dt
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .batch import (
    BatchFailure,
    UploadItem,
    copy_files,
    delete_files,
    move_entries,
    upload_files,
)
from .errors import InvalidPath, InvalidRequest
from .gateway import ConnectorGateway
from .paths import join_path, normalize_path, parent_of
from .payloads import ReadPayload
from .schemas import (
    ArchiveAction,
    CopyAction,
    CreateFileAction,
    CreateFolderAction,
    DeleteAction,
    ExtractAction,
    FileAction,
    MoveAction,
    ReadAction,
    RenameAction,
    WriteAction,
)
from .settings import FileManagerSettings, get_filemanager_settings

__all__ = ["ActionResult", "FileManagerService"]

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Body plus HTTP status of a completed action."""

    body: dict[str, Any]
    status_code: int = 200

    @property
    def ok(self) -> bool:
        return self.status_code < 400


@dataclass
class _Failures:
    items: list[dict[str, Any]] = field(default_factory=list)

    def add(self, failure: BatchFailure[Any], **fields: Any) -> None:
        self.items.append({**fields, "status": failure.status, "error": failure.message})


def _normalize_all(values: Sequence[str]) -> list[str]:
    return [normalize_path(value) for value in values]


def _segment(name: str) -> str:
    """Validate ``name`` as a single path segment."""

    cleaned = normalize_path(name)
    if not cleaned or "/" in cleaned:
        raise InvalidPath("Invalid name")
    return cleaned


def _archive_timestamp() -> str:
    now = dt.datetime.now(dt.timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S.") + f"{now.microsecond // 1000:03d}Z"


def _archive_name(name: str | None, archive_format: str) -> str:
    base = (name or "").strip() or _archive_timestamp()
    base = _segment(base)
    suffix = f".{archive_format.lower()}"
    return base if base.lower().endswith(suffix) else f"{base}{suffix}"


def _partial(message: str, failures: _Failures, **extra: Any) -> ActionResult:
    body = {"ok": False, "error": message, "failed": failures.items, **extra}
    return ActionResult(body=body, status_code=400)


class FileManagerService:
    """File manager operations bound to one site's connector."""

    def __init__(
        self,
        gateway: ConnectorGateway,
        *,
        settings: FileManagerSettings | None = None,
    ) -> None:
        self.gateway = gateway
        self.settings = settings or get_filemanager_settings()

    @property
    def site_id(self) -> str:
        return self.gateway.context.site_id

    # ------------------------------------------------------------------
    # Single-item operations
    # ------------------------------------------------------------------

    async def list_directory(self, path: str | None) -> dict[str, Any]:
        directory = normalize_path(path)
        entries = await self.gateway.list_entries(directory)
        return {"path": directory, "entries": entries}

    async def read(self, request: ReadAction) -> ActionResult:
        path = normalize_path(request.path)
        if not path:
            raise InvalidPath("Invalid path")
        payload = await self.gateway.read(path)
        return ActionResult(body={"path": path, **payload.to_dict()})

    async def write(self, request: WriteAction) -> ActionResult:
        path = normalize_path(request.path)
        if not path:
            raise InvalidPath("Invalid path")
        if request.encoding == "base64":
            try:
                base64.b64decode(request.content, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise InvalidRequest("Content is not valid base64") from exc
        await self.gateway.write(path, ReadPayload(kind=request.encoding, content=request.content))
        return ActionResult(body={"ok": True})

    async def create_file(self, request: CreateFileAction) -> ActionResult:
        path = join_path(normalize_path(request.parent), _segment(request.name))
        await self.gateway.write(path, ReadPayload(kind="text", content=""))
        return ActionResult(body={"ok": True, "path": path})

    async def create_folder(self, request: CreateFolderAction) -> ActionResult:
        path = join_path(normalize_path(request.parent), _segment(request.name))
        await self.gateway.mkdir(path)
        return ActionResult(body={"ok": True, "path": path})

    async def rename(self, request: RenameAction) -> ActionResult:
        source = normalize_path(request.path)
        if not source:
            raise InvalidPath("Invalid path")
        target = join_path(parent_of(source), _segment(request.name))
        if target == source:
            return ActionResult(body={"ok": True, "renamed": False})
        await self.gateway.move(source, target)
        return ActionResult(body={"ok": True, "renamed": True, "path": target})

    async def archive(self, request: ArchiveAction) -> ActionResult:
        sources = [path for path in _normalize_all(request.ids) if path]
        if not sources:
            raise InvalidRequest("No items selected")
        archive_format = (request.format or "zip").strip() or "zip"
        target = join_path(normalize_path(request.parent), _archive_name(request.name, archive_format))
        result = await self.gateway.compress(sources, target, archive_format)
        return ActionResult(body={"ok": True, "path": target, "result": result})

    async def extract(self, request: ExtractAction) -> ActionResult:
        sources = [value.strip() for value in request.sources if value and value.strip()]
        if not sources:
            raise InvalidRequest("No archive selected")
        if len(sources) > 1:
            raise InvalidRequest("Extract supports one archive at a time")
        source = normalize_path(sources[0])
        if not source:
            raise InvalidPath("Invalid archive path")
        target = normalize_path(request.target)
        archive_format = (request.format or "").strip() or None
        result = await self.gateway.decompress(source, target, archive_format)
        return ActionResult(body={"message": "Archive extracted", "result": result})

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    async def move(self, request: MoveAction) -> ActionResult:
        sources = [path for path in _normalize_all(request.ids) if path]
        if not sources:
            raise InvalidRequest("No items to move")
        destination = normalize_path(request.destination)

        result, skipped = await move_entries(
            self.gateway, sources, destination, concurrency=self.settings.move_concurrency
        )
        if result.failed:
            failures = _Failures()
            for failure in result.failed:
                failures.add(failure, source=failure.item.source, dest=failure.item.dest)
            return _partial("Some items could not be moved", failures, moved=len(result.ok))
        return ActionResult(body={"ok": True, "moved": len(result.ok), "skipped": skipped})

    async def copy(self, request: CopyAction) -> ActionResult:
        sources = [path for path in _normalize_all(request.ids) if path]
        if not sources:
            raise InvalidRequest("No items to copy")
        destination = normalize_path(request.destination)

        result = await copy_files(
            sources,
            destination,
            read=self.gateway.read,
            write=self.gateway.write,
            concurrency=self.settings.copy_concurrency,
            max_renames=self.settings.copy_max_renames,
        )
        copied = [{"source": entry.source, "dest": entry.dest} for entry in result.ok]
        if result.failed:
            failures = _Failures()
            for failure in result.failed:
                failures.add(failure, source=failure.item)
            logger.warning(
                "Copy into %s for site %s: %d ok, %d failed",
                destination or "/",
                self.site_id,
                len(result.ok),
                len(result.failed),
            )
            return _partial("Some items could not be copied", failures, results=copied)
        return ActionResult(body={"ok": True, "copied": len(copied), "results": copied})

    async def delete(self, request: DeleteAction) -> ActionResult:
        paths = _normalize_all(request.paths)
        if not paths:
            raise InvalidRequest("No items to delete")
        if any(not path for path in paths):
            raise InvalidPath("Refusing to delete the site root")

        result = await delete_files(
            self.gateway,
            paths,
            chunk_size=self.settings.delete_chunk_size,
            pause=self.settings.delete_pause_seconds,
        )
        if result.failed:
            failures = _Failures()
            for failure in result.failed:
                failures.add(failure, path=failure.item)
            logger.warning(
                "Delete for site %s: %d ok, %d failed",
                self.site_id,
                len(result.ok),
                len(result.failed),
            )
            return _partial("Some items could not be deleted", failures, deleted=len(result.ok))
        return ActionResult(body={"ok": True, "deleted": len(result.ok)})

    async def upload(self, directory: str | None, files: Sequence[UploadItem]) -> ActionResult:
        target_dir = normalize_path(directory)
        if not files:
            raise InvalidRequest("No files uploaded")

        result = await upload_files(
            self.gateway,
            target_dir,
            files,
            concurrency=self.settings.upload_concurrency,
            max_renames=self.settings.upload_max_renames,
        )
        results: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []
        for outcome in result.outcomes:
            if isinstance(outcome, BatchFailure):
                record: dict[str, Any] = {"ok": False, "name": outcome.item.file.name}
                if outcome.item.path:
                    record["attempted_as"] = outcome.item.attempted_as
                    record["path"] = outcome.item.path
                record.update(status=outcome.status, error=outcome.message)
                failed.append(record)
            else:
                record = {
                    "ok": True,
                    "name": outcome.name,
                    "saved_as": outcome.saved_as,
                    "path": outcome.path,
                }
            results.append(record)

        if failed:
            logger.warning(
                "Upload into %s for site %s: %d ok, %d failed",
                target_dir or "/",
                self.site_id,
                len(result.ok),
                len(failed),
            )
            body = {
                "ok": False,
                "error": "Some files could not be uploaded",
                "uploaded": len(result.ok),
                "results": results,
                "failed": failed,
            }
            return ActionResult(body=body, status_code=400)
        return ActionResult(body={"ok": True, "uploaded": len(results), "results": results})

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle(self, request: Any) -> ActionResult:
        """Run the handler registered for ``request.action``."""

        handler = _HANDLERS[FileAction(request.action)]
        return await handler(self, request)


_HANDLERS: dict[FileAction, Callable[[FileManagerService, Any], Awaitable[ActionResult]]] = {
    FileAction.READ: FileManagerService.read,
    FileAction.WRITE: FileManagerService.write,
    FileAction.CREATE_FILE: FileManagerService.create_file,
    FileAction.CREATE_FOLDER: FileManagerService.create_folder,
    FileAction.RENAME: FileManagerService.rename,
    FileAction.MOVE: FileManagerService.move,
    FileAction.COPY: FileManagerService.copy,
    FileAction.DELETE: FileManagerService.delete,
    FileAction.ARCHIVE: FileManagerService.archive,
    FileAction.EXTRACT: FileManagerService.extract,
}

_missing = set(FileAction) - set(_HANDLERS)
if _missing:  # pragma: no cover - import-time guard
    raise RuntimeError(f"Unhandled file actions: {sorted(a.value for a in _missing)}")
