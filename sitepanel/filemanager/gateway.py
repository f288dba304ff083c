"""Single point of contact with a site's remote connector daemon.

:class:`ConnectorGateway` issues one bearer-authenticated HTTP call per
operation against ``/api/filemanager/{site_id}/...`` and turns every
non-2xx answer into :class:`~.errors.ConnectorError` and every transport
failure into :class:`~.errors.ConnectorUnreachable`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import quote

import httpx

from ..core.site_context import SiteConnectorContext
from .errors import ConnectorError, ConnectorUnreachable
from .payloads import ReadPayload, build_write_request, detect_read_payload
from .settings import FileManagerSettings, get_filemanager_settings

__all__ = ["ConnectorGateway"]

_UNBOUNDED = httpx.Timeout(10.0, read=None, write=None, pool=None)


class ConnectorGateway:
    """Typed operations against one site's connector.

    The gateway does not own ``client``; the application shares one
    :class:`httpx.AsyncClient` across requests.
    """

    def __init__(
        self,
        context: SiteConnectorContext,
        client: httpx.AsyncClient,
        *,
        settings: FileManagerSettings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.context = context
        self.client = client
        self.settings = settings or get_filemanager_settings()
        self.logger = logger or logging.getLogger(__name__)
        self._prefix = (
            f"{context.connector_base_url.rstrip('/')}/api/filemanager/"
            f"{quote(context.site_id, safe='')}"
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def url(self, operation: str) -> str:
        return f"{self._prefix}/{operation}"

    def _headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.context.connector_token}"}
        if extra:
            headers.update(extra)
        return headers

    @property
    def _metadata_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.settings.metadata_timeout)

    @property
    def _archive_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.settings.archive_timeout)

    async def _request(
        self,
        method: str,
        operation: str,
        *,
        timeout: httpx.Timeout,
        headers: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self.client.request(
                method,
                self.url(operation),
                headers=self._headers(headers),
                timeout=timeout,
                **kwargs,
            )
        except httpx.TransportError as exc:
            self.logger.warning(
                "Connector unreachable for site %s during %s: %s",
                self.context.site_id,
                operation,
                exc,
            )
            raise ConnectorUnreachable("Failed to reach connector") from exc

        if not response.is_success:
            error = ConnectorError.from_response(response)
            self.logger.warning(
                "Connector %s failed for site %s: %s %s",
                operation,
                self.context.site_id,
                error.status,
                error.message,
            )
            raise error
        return response

    @staticmethod
    def _json_or_ok(response: httpx.Response) -> Any:
        if not response.content:
            return {"ok": True}
        try:
            data = response.json()
        except ValueError:
            return {"ok": True}
        return {"ok": True} if data is None else data

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def list_entries(self, path: str) -> list[dict[str, Any]]:
        response = await self._request(
            "GET",
            "list",
            params={"path": path or "/"},
            headers={"Accept": "application/json"},
            timeout=self._metadata_timeout,
        )
        try:
            data = response.json()
        except ValueError:
            data = None
        entries = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise ConnectorError(502, "Unexpected file manager response")
        return entries

    async def read(self, path: str) -> ReadPayload:
        response = await self._request(
            "GET", "read", params={"path": path or "/"}, timeout=self._metadata_timeout
        )
        return detect_read_payload(response.content, response.headers)

    async def write(self, path: str, payload: ReadPayload) -> Any:
        request = build_write_request(payload)
        response = await self._request(
            "POST",
            "write",
            params={"path": path},
            content=request.content,
            headers={**request.headers, "Accept": "application/json"},
            timeout=self._metadata_timeout,
        )
        return self._json_or_ok(response)

    async def mkdir(self, path: str) -> Any:
        response = await self._request(
            "POST", "mkdir", json={"path": path}, timeout=self._metadata_timeout
        )
        return self._json_or_ok(response)

    async def move(self, source: str, target: str) -> Any:
        response = await self._request(
            "POST",
            "move",
            json={"from": source, "to": target},
            headers={"Accept": "application/json"},
            timeout=self._metadata_timeout,
        )
        return self._json_or_ok(response)

    async def delete(self, path: str) -> Any:
        response = await self._request(
            "DELETE",
            "delete",
            params={"path": path},
            headers={"Accept": "application/json"},
            timeout=self._metadata_timeout,
        )
        return self._json_or_ok(response)

    async def delete_many(self, paths: list[str]) -> Any:
        response = await self._request(
            "POST", "delete", json={"paths": paths}, timeout=self._metadata_timeout
        )
        return self._json_or_ok(response)

    async def compress(self, sources: list[str], target: str, format: str | None = None) -> Any:
        body: dict[str, Any] = {"sources": sources, "target": target}
        if format:
            body["format"] = format
        response = await self._request(
            "POST", "compress", json=body, timeout=self._archive_timeout
        )
        return self._json_or_ok(response)

    async def decompress(self, source: str, target: str, format: str | None = None) -> Any:
        body: dict[str, Any] = {"source": source, "target": target}
        if format:
            body["format"] = format
        response = await self._request(
            "POST",
            "decompress",
            json=body,
            headers={"Accept": "application/json"},
            timeout=self._archive_timeout,
        )
        return self._json_or_ok(response)

    async def upload(
        self,
        path: str,
        filename: str,
        data: bytes,
        content_type: str | None = None,
    ) -> Any:
        response = await self._request(
            "POST",
            "upload",
            params={"path": path},
            files={"file": (filename, data, content_type or "application/octet-stream")},
            timeout=_UNBOUNDED,
        )
        return self._json_or_ok(response)

    async def open_download(
        self,
        path: str,
        *,
        filename: str | None = None,
        range_header: str | None = None,
    ) -> httpx.Response:
        """Start a streamed download; the caller must ``aclose()`` the response."""

        params = {"path": path or "/"}
        if filename:
            params["filename"] = filename
        headers = self._headers({"Range": range_header} if range_header else None)
        request = self.client.build_request(
            "GET", self.url("download"), params=params, headers=headers, timeout=_UNBOUNDED
        )
        try:
            response = await self.client.send(request, stream=True)
        except httpx.TransportError as exc:
            self.logger.warning(
                "Connector unreachable for site %s during download: %s",
                self.context.site_id,
                exc,
            )
            raise ConnectorUnreachable("Failed to reach connector") from exc

        if not response.is_success:
            try:
                await response.aread()
            finally:
                await response.aclose()
            error = ConnectorError.from_response(response)
            self.logger.warning(
                "Connector download failed for site %s path %s: %s %s",
                self.context.site_id,
                path,
                error.status,
                error.message,
            )
            raise error
        return response

    @asynccontextmanager
    async def download(self, path: str, *, filename: str | None = None) -> AsyncIterator[httpx.Response]:
        """Scoped variant of :meth:`open_download` that always releases the stream."""

        response = await self.open_download(path, filename=filename)
        try:
            yield response
        finally:
            await response.aclose()
