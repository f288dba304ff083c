"""Text/binary classification of connector read responses.

The connector's read endpoint is not uniformly typed: it may answer with raw
text, raw bytes, or a JSON envelope ``{"content": ..., "encoding": ...}``.
:func:`detect_read_payload` folds all of them into a :class:`ReadPayload`, and
:func:`build_write_request` produces the matching write request. Unknown
content types, and textual bodies that are not valid UTF-8, are treated as
binary so data is never corrupted by a lossy text decode.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

__all__ = ["ReadPayload", "WriteRequest", "build_write_request", "detect_read_payload"]

PayloadKind = Literal["text", "base64"]

_ENCODING_HEADERS = ("content-transfer-encoding", "x-content-encoding", "content-encoding")
_TEXTUAL_TYPES = ("application/xml", "application/json", "application/javascript")


@dataclass(frozen=True)
class ReadPayload:
    kind: PayloadKind
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "content": self.content}


@dataclass(frozen=True)
class WriteRequest:
    content: bytes
    headers: dict[str, str]


def _header(headers: Mapping[str, str], name: str) -> str:
    # httpx.Headers is case-insensitive already; plain dicts are not.
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                return candidate
        return ""
    return value


def _is_base64_marked(data: Mapping[str, Any], headers: Mapping[str, str]) -> bool:
    encoding = str(data.get("encoding") or data.get("contentEncoding") or "").lower()
    if encoding == "base64":
        return True
    if data.get("isBase64") is True or data.get("base64") is True:
        return True
    for name in _ENCODING_HEADERS:
        if "base64" in _header(headers, name).lower():
            return True
    return False


def detect_read_payload(body: bytes, headers: Mapping[str, str]) -> ReadPayload:
    """Classify a raw read response as text or base64 content."""

    content_type = _header(headers, "content-type").lower()

    if "application/json" in content_type:
        try:
            parsed = json.loads(body)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict) and isinstance(parsed.get("content"), str):
            kind: PayloadKind = "base64" if _is_base64_marked(parsed, headers) else "text"
            return ReadPayload(kind=kind, content=parsed["content"])

    if content_type.startswith("text/") or any(t in content_type for t in _TEXTUAL_TYPES):
        try:
            return ReadPayload(kind="text", content=body.decode("utf-8"))
        except UnicodeDecodeError:
            pass

    return ReadPayload(kind="base64", content=base64.b64encode(body).decode("ascii"))


def build_write_request(payload: ReadPayload) -> WriteRequest:
    """Return the body and headers the connector write endpoint expects."""

    if payload.kind == "base64":
        body = json.dumps({"content": payload.content, "encoding": "base64"})
        return WriteRequest(
            content=body.encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
    return WriteRequest(
        content=payload.content.encode("utf-8"),
        headers={"Content-Type": "text/plain; charset=utf-8"},
    )
