"""Runtime knobs for connector calls and bulk operations."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

__all__ = ["FileManagerSettings", "get_filemanager_settings", "reset_filemanager_settings_cache"]

COPY_CONCURRENCY_CAP = 16
COPY_MAX_RENAMES_CAP = 200


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


@dataclasses.dataclass(frozen=True)
class FileManagerSettings:
    """Timeouts are seconds; ``None`` means no per-call read timeout."""

    metadata_timeout: float = 10.0
    archive_timeout: float = 60.0
    copy_concurrency: int = 4
    copy_max_renames: int = 50
    upload_concurrency: int = 4
    upload_max_renames: int = 25
    delete_chunk_size: int = 10
    delete_pause_seconds: float = 0.2
    move_concurrency: int = 1
    zip_max_files: int = 200
    zip_rate_limit: str = "10/minute"

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "copy_concurrency", _clamp(self.copy_concurrency, 1, COPY_CONCURRENCY_CAP)
        )
        object.__setattr__(
            self, "copy_max_renames", _clamp(self.copy_max_renames, 1, COPY_MAX_RENAMES_CAP)
        )
        object.__setattr__(self, "upload_concurrency", max(1, self.upload_concurrency))
        object.__setattr__(self, "delete_chunk_size", max(1, self.delete_chunk_size))


@lru_cache(maxsize=1)
def get_filemanager_settings() -> FileManagerSettings:
    """Load settings from ``FILEMANAGER_*`` environment variables."""

    return FileManagerSettings(
        metadata_timeout=float(os.getenv("FILEMANAGER_METADATA_TIMEOUT", "10")),
        archive_timeout=float(os.getenv("FILEMANAGER_ARCHIVE_TIMEOUT", "60")),
        copy_concurrency=int(os.getenv("FILEMANAGER_COPY_CONCURRENCY", "4")),
        copy_max_renames=int(os.getenv("FILEMANAGER_COPY_MAX_RENAMES", "50")),
        upload_concurrency=int(os.getenv("FILEMANAGER_UPLOAD_CONCURRENCY", "4")),
        upload_max_renames=int(os.getenv("FILEMANAGER_UPLOAD_MAX_RENAMES", "25")),
        delete_chunk_size=int(os.getenv("FILEMANAGER_DELETE_CHUNK_SIZE", "10")),
        delete_pause_seconds=int(os.getenv("FILEMANAGER_DELETE_PAUSE_MS", "200")) / 1000,
        zip_max_files=int(os.getenv("FILEMANAGER_ZIP_MAX_FILES", "200")),
        zip_rate_limit=os.getenv("FILEMANAGER_ZIP_RATE_LIMIT", "10/minute"),
    )


def reset_filemanager_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_filemanager_settings.cache_clear()
