"""Pydantic schemas for the file manager API."""

from __future__ import annotations

import enum
import json
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

class FileAction(str, enum.Enum):
    """Closed set of actions accepted by the JSON action endpoint."""

    READ = "read"
    WRITE = "write"
    CREATE_FILE = "createFile"
    CREATE_FOLDER = "createFolder"
    RENAME = "rename"
    MOVE = "move"
    COPY = "copy"
    DELETE = "delete"
    ARCHIVE = "archive"
    EXTRACT = "extract"

# Minimum caller role per action; everything that changes remote state needs
# at least ``operator``.
ACTION_ROLES: dict[FileAction, str] = {
    FileAction.READ: "viewer",
    FileAction.WRITE: "operator",
    FileAction.CREATE_FILE: "operator",
    FileAction.CREATE_FOLDER: "operator",
    FileAction.RENAME: "operator",
    FileAction.MOVE: "operator",
    FileAction.COPY: "operator",
    FileAction.DELETE: "operator",
    FileAction.ARCHIVE: "operator",
    FileAction.EXTRACT: "operator",
}

class FileEntry(BaseModel):
    """One row of a remote directory listing, passed through as received."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | None = None
    path: str | None = None
    name: str = ""
    kind: str | None = None
    size: Any = None
    modified_at: Any = Field(default=None, alias="modifiedAt")
    extension: str | None = None
    is_archive: bool | None = Field(default=None, alias="isArchive")

class ListResponse(BaseModel):
    path: str
    entries: list[FileEntry]

class ReadAction(BaseModel):
    action: Literal["read"]
    path: str

class WriteAction(BaseModel):
    action: Literal["write"]
    path: str
    content: str = ""
    encoding: Literal["text", "base64"] = "text"

class CreateFileAction(BaseModel):
    action: Literal["createFile"]
    parent: str = ""
    name: str

class CreateFolderAction(BaseModel):
    action: Literal["createFolder"]
    parent: str = ""
    name: str

class RenameAction(BaseModel):
    action: Literal["rename"]
    path: str
    name: str

class MoveAction(BaseModel):
    action: Literal["move"]
    ids: list[str] = Field(default_factory=list)
    destination: str = ""

class CopyAction(BaseModel):
    action: Literal["copy"]
    ids: list[str] = Field(default_factory=list)
    destination: str = ""

class DeleteAction(BaseModel):
    action: Literal["delete"]
    paths: list[str] = Field(default_factory=list)

class ArchiveAction(BaseModel):
    action: Literal["archive"]
    ids: list[str] = Field(default_factory=list)
    parent: str = ""
    name: str | None = None
    format: str = "zip"

class ExtractAction(BaseModel):
    action: Literal["extract"]
    sources: list[str] = Field(default_factory=list)
    target: str = ""
    format: str | None = None

    @field_validator("sources", mode="before")
    @classmethod
    def _unpack_sources(cls, value: Any) -> Any:
        """Accept a bare path or a JSON-encoded array in place of a list."""

        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                try:
                    return json.loads(text)
                except ValueError:
                    return [text]
            return [text] if text else []
        return value

AnyFileAction = Union[
    ReadAction,
    WriteAction,
    CreateFileAction,
    CreateFolderAction,
    RenameAction,
    MoveAction,
    CopyAction,
    DeleteAction,
    ArchiveAction,
    ExtractAction,
]

__all__ = [
    "ACTION_ROLES",
    "AnyFileAction",
    "ArchiveAction",
    "CopyAction",
    "CreateFileAction",
    "CreateFolderAction",
    "DeleteAction",
    "ExtractAction",
    "FileAction",
    "FileEntry",
    "ListResponse",
    "MoveAction",
    "ReadAction",
    "RenameAction",
    "WriteAction",
]
