"""Streaming zip aggregation of remote files.

:func:`stream_zip` is a finite, non-restartable async iterator of archive
bytes. Remote files are fetched one at a time and deflated straight into the
outgoing stream; neither the archive nor a whole member is ever held in
memory or written to disk.
"""

from __future__ import annotations

import logging
import zipfile
from collections.abc import AsyncIterator, Sequence

from .gateway import ConnectorGateway
from .paths import sanitize_zip_entry_name

__all__ = ["stream_zip"]

logger = logging.getLogger(__name__)


class _StreamSink:
    """Write-only, unseekable file object collecting bytes between yields.

    Without ``tell``/``seek`` :class:`zipfile.ZipFile` falls back to data
    descriptors, which is what allows writing members without knowing their
    size up front.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def write(self, data: bytes) -> int:
        self._buffer.extend(data)
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data


async def stream_zip(
    gateway: ConnectorGateway,
    paths: Sequence[str],
    *,
    compresslevel: int = 9,
) -> AsyncIterator[bytes]:
    """Yield a zip archive containing the remote files at ``paths``.

    Any fetch or archive error aborts the stream: the exception propagates and
    the central directory is never written, so the client receives a
    truncated archive instead of a partial one that looks complete.
    """

    sink = _StreamSink()
    archive = zipfile.ZipFile(
        sink, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=compresslevel
    )
    current = None
    try:
        for path in paths:
            current = path
            entry_name = sanitize_zip_entry_name(path)
            async with gateway.download(path) as response:
                with archive.open(entry_name, mode="w", force_zip64=True) as member:
                    async for chunk in response.aiter_bytes():
                        member.write(chunk)
                        data = sink.drain()
                        if data:
                            yield data
            data = sink.drain()
            if data:
                yield data
        current = None
        archive.close()
    except Exception:
        logger.warning(
            "Aborting zip for site %s at %s",
            gateway.context.site_id,
            current or "<finalize>",
            exc_info=True,
        )
        raise

    data = sink.drain()
    if data:
        yield data
