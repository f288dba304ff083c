"""File manager API for one site.

Every route resolves the site to its connector first (session, organisation
and role checks happen in :mod:`sitepanel.security.auth`) and then talks to
the connector through a per-request :class:`ConnectorGateway`.
"""

from typing import Annotated, Any

import httpx
from fastapi import APIRouter, Body, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.types import Receive, Scope, Send

from ..core.connector_client import get_connector_client
from ..core.rate_limit import limiter, zip_rate_limit
from ..filemanager.archive import stream_zip
from ..filemanager.batch import UploadItem
from ..filemanager.errors import InvalidPath, InvalidRequest
from ..filemanager.gateway import ConnectorGateway
from ..filemanager.paths import (
    basename,
    content_disposition_attachment,
    normalize_path,
    zip_filename,
)
from ..filemanager.schemas import ACTION_ROLES, AnyFileAction, FileAction, ListResponse
from ..filemanager.service import FileManagerService
from ..filemanager.settings import get_filemanager_settings
from ..security.auth import SiteAccess, require_site_access, require_site_role

router = APIRouter(prefix="/api/sites/{site_id}/filemanager", tags=["filemanager"])

ClientDep = Annotated[httpx.AsyncClient, Depends(get_connector_client)]
AccessDep = Annotated[SiteAccess, Depends(require_site_access)]
ViewerAccess = Annotated[SiteAccess, Depends(require_site_role("viewer"))]
OperatorAccess = Annotated[SiteAccess, Depends(require_site_role("operator"))]
OptionalUploads = Annotated[list[UploadFile] | None, File()]

_PASSTHROUGH_HEADERS = (
    "content-type",
    "content-length",
    "content-disposition",
    "accept-ranges",
    "content-range",
)
_NO_STORE_HEADERS = {
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
    "X-Content-Type-Options": "nosniff",
    "X-Accel-Buffering": "no",
}


class UpstreamFileResponse(StreamingResponse):
    """Stream an open connector response and always release it.

    The upstream response is closed once this response has been sent, or
    abandoned for any reason, even when the body was never iterated.
    """

    def __init__(self, upstream: httpx.Response, *, headers: dict[str, str]) -> None:
        super().__init__(
            upstream.aiter_bytes(), status_code=upstream.status_code, headers=headers
        )
        self.upstream = upstream

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.upstream.aclose()


def _service(access: SiteAccess, client: httpx.AsyncClient) -> FileManagerService:
    return FileManagerService(ConnectorGateway(access.context, client))


@router.get("", response_model=ListResponse, response_model_exclude_none=True)
async def list_directory(
    access: ViewerAccess,
    client: ClientDep,
    path: Annotated[str, Query()] = "",
) -> dict[str, Any]:
    """List the entries of ``path`` (the site root when empty)."""

    return await _service(access, client).list_directory(path)


@router.post("")
async def run_action(
    payload: Annotated[AnyFileAction, Body(discriminator="action")],
    access: AccessDep,
    client: ClientDep,
) -> JSONResponse:
    """Dispatch one file manager action on the connector."""

    access.require(ACTION_ROLES[FileAction(payload.action)])
    result = await _service(access, client).handle(payload)
    return JSONResponse(result.body, status_code=result.status_code)


@router.post("/upload")
async def upload_files(
    access: OperatorAccess,
    client: ClientDep,
    file: OptionalUploads = None,
    path: Annotated[str, Form()] = "",
) -> JSONResponse:
    """Upload one or more files into ``path``, renaming on collisions."""

    items = []
    for upload in file or []:
        items.append(
            UploadItem(
                name=upload.filename or "",
                data=await upload.read(),
                content_type=upload.content_type,
            )
        )
    result = await _service(access, client).upload(path, items)
    return JSONResponse(result.body, status_code=result.status_code)


@router.get("/download")
async def download_file(
    request: Request,
    access: ViewerAccess,
    client: ClientDep,
    path: Annotated[str, Query()],
    filename: Annotated[str | None, Query()] = None,
) -> StreamingResponse:
    """Stream a remote file through to the caller, passing through its headers."""

    target = normalize_path(path)
    if not target:
        raise InvalidPath("Invalid path")

    gateway = ConnectorGateway(access.context, client)
    upstream = await gateway.open_download(
        target, filename=filename, range_header=request.headers.get("range")
    )

    try:
        headers = {
            name: upstream.headers[name]
            for name in _PASSTHROUGH_HEADERS
            if name in upstream.headers
        }
        if "content-encoding" in upstream.headers:
            # The body is decoded on the way through, so the upstream length no longer applies.
            headers.pop("content-length", None)
        if "content-disposition" not in headers:
            headers["content-disposition"] = content_disposition_attachment(
                filename or basename(target)
            )
        headers.update(_NO_STORE_HEADERS)
        return UpstreamFileResponse(upstream, headers=headers)
    except Exception:
        await upstream.aclose()
        raise


@router.post("/download-zip")
@limiter.limit(zip_rate_limit)
async def download_zip(
    request: Request,
    access: ViewerAccess,
    client: ClientDep,
    paths: Annotated[list[str] | None, Form()] = None,
    name: Annotated[str, Form()] = "",
) -> StreamingResponse:
    """Stream the selected files as one zip archive."""

    selected: list[str] = []
    for raw in paths or []:
        cleaned = normalize_path(raw)
        if cleaned and cleaned not in selected:
            selected.append(cleaned)
    if not selected:
        raise InvalidRequest("No files selected")

    max_files = get_filemanager_settings().zip_max_files
    if len(selected) > max_files:
        raise InvalidRequest(f"Too many files selected (max {max_files})")

    archive_name = zip_filename(name)
    gateway = ConnectorGateway(access.context, client)
    return StreamingResponse(
        stream_zip(gateway, selected),
        media_type="application/zip",
        headers={
            "Content-Disposition": content_disposition_attachment(archive_name),
            **_NO_STORE_HEADERS,
        },
    )
