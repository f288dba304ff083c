import base64
import json
import pathlib
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
from sqlalchemy.orm import Session, sessionmaker

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from sitepanel.core.site_context import SiteConnectorContext
from sitepanel.filemanager.settings import reset_filemanager_settings_cache
from sitepanel.models import Base, Connector, Site
from sitepanel.models.session import get_engine
from sitepanel.security.auth import reset_session_factory

TOKEN_SECRET = "panel-secret"
TOKEN_AUDIENCE = "sitepanel"
TOKEN_ISSUER = "auth.sitepanel"

SITE_ID = "site-1"
ORG_ID = "org-1"
CONNECTOR_TOKEN = "conn-secret"
CONNECTOR_BASE = "http://connector.test:8080"


def issue_token(
    *,
    secret: str = TOKEN_SECRET,
    audience: str = TOKEN_AUDIENCE,
    issuer: str = TOKEN_ISSUER,
    user_id: str | None = "user-1",
    org_id: str | None = ORG_ID,
    **extra_claims,
) -> str:
    """Generate a signed panel session token for tests."""

    payload: dict[str, object] = {
        "aud": audience,
        "iss": issuer,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    if user_id is not None:
        payload["user_id"] = user_id
    if org_id is not None:
        payload["org_id"] = org_id
    payload.update(extra_claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_header(roles: list[str] | None = None, **claims) -> dict[str, str]:
    token = issue_token(roles=roles if roles is not None else ["operator"], **claims)
    return {"Authorization": f"Bearer {token}"}


class FakeConnector:
    """In-memory connector daemon served through :class:`httpx.MockTransport`.

    Files live in ``files`` (path -> bytes) and folders in ``folders``.
    ``fail(op, path, status, body)`` queues a canned error for the next call
    of ``op`` on ``path``.
    """

    def __init__(self, site_id: str = SITE_ID, token: str = CONNECTOR_TOKEN) -> None:
        self.site_id = site_id
        self.token = token
        self.files: dict[str, bytes] = {}
        self.folders: set[str] = set()
        self.requests: list[httpx.Request] = []
        self.compressed: list[dict] = []
        self.extracted: list[dict] = []
        self._failures: dict[tuple[str, str], list[httpx.Response]] = {}

    # -- test helpers --------------------------------------------------

    def fail(self, op: str, path: str, status: int, body=None, times: int = 1) -> None:
        for _ in range(times):
            if isinstance(body, (dict, list)):
                response = httpx.Response(status, json=body)
            else:
                response = httpx.Response(status, text=body or "")
            self._failures.setdefault((op, path), []).append(response)

    def context(self) -> SiteConnectorContext:
        return SiteConnectorContext(
            site_id=self.site_id,
            connector_base_url=CONNECTOR_BASE,
            connector_token=self.token,
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def calls(self, op: str, method: str | None = None) -> list[httpx.Request]:
        suffix = f"/api/filemanager/{self.site_id}/{op}"
        return [
            r
            for r in self.requests
            if r.url.path == suffix and (method is None or r.method == method)
        ]

    # -- transport -----------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"error": "Unauthorized"})

        prefix = f"/api/filemanager/{self.site_id}/"
        if not request.url.path.startswith(prefix):
            return httpx.Response(404, json={"error": "Unknown site"})
        op = request.url.path[len(prefix):]

        body = None
        if request.headers.get("content-type", "").startswith("application/json"):
            body = json.loads(request.content or b"null")
        path = request.url.params.get("path")
        if path is None and isinstance(body, dict):
            path = body.get("path") or body.get("from") or body.get("source") or ""
        queued = self._failures.get((op, path or ""))
        if queued:
            return queued.pop(0)

        return getattr(self, f"_op_{op}")(request, path or "", body)

    def _exists(self, path: str) -> bool:
        return path in self.files or path in self.folders

    def _op_list(self, request, path, body):
        directory = "" if path in ("", "/") else path.strip("/")
        if directory and directory not in self.folders:
            return httpx.Response(404, json={"error": "Not found"})
        prefix = f"{directory}/" if directory else ""
        entries = []
        for folder in sorted(self.folders):
            rest = folder[len(prefix):] if folder.startswith(prefix) else None
            if rest and "/" not in rest:
                entries.append({"path": folder, "name": rest, "kind": "folder", "size": 0})
        for name, data in sorted(self.files.items()):
            rest = name[len(prefix):] if name.startswith(prefix) else None
            if rest and "/" not in rest:
                entries.append(
                    {
                        "path": name,
                        "name": rest,
                        "kind": "file",
                        "size": len(data),
                        "modifiedAt": "2024-05-01T10:00:00Z",
                        "extension": rest.rsplit(".", 1)[-1] if "." in rest else None,
                    }
                )
        return httpx.Response(200, json={"entries": entries})

    def _op_read(self, request, path, body):
        if path not in self.files:
            return httpx.Response(404, json={"error": "Not found"})
        data = self.files[path]
        content_type = "text/plain" if path.endswith((".txt", ".php", ".html")) else "application/octet-stream"
        return httpx.Response(200, content=data, headers={"Content-Type": content_type})

    def _op_write(self, request, path, body):
        if path in self.files:
            return httpx.Response(409, json={"error": "File already exists"})
        if isinstance(body, dict):
            self.files[path] = base64.b64decode(body["content"])
        else:
            self.files[path] = request.content
        return httpx.Response(201, json={"ok": True})

    def _op_mkdir(self, request, path, body):
        if self._exists(path):
            return httpx.Response(409, json={"error": "Folder already exists"})
        self.folders.add(path)
        return httpx.Response(201, json={"ok": True})

    def _op_move(self, request, path, body):
        source, target = body["from"], body["to"]
        if not self._exists(source):
            return httpx.Response(404, json={"error": "Not found"})
        if self._exists(target):
            return httpx.Response(409, json={"error": "Target already exists"})
        if source in self.files:
            self.files[target] = self.files.pop(source)
        else:
            for folder in [f for f in self.folders if f == source or f.startswith(f"{source}/")]:
                self.folders.discard(folder)
                self.folders.add(target + folder[len(source):])
            for name in [n for n in self.files if n.startswith(f"{source}/")]:
                self.files[target + name[len(source):]] = self.files.pop(name)
        return httpx.Response(200, json={"ok": True})

    def _op_delete(self, request, path, body):
        paths = body["paths"] if isinstance(body, dict) and "paths" in body else [path]
        for item in paths:
            if not self._exists(item):
                return httpx.Response(404, json={"message": f"{item} not found"})
            self.files.pop(item, None)
            self.folders.discard(item)
        return httpx.Response(204)

    def _op_compress(self, request, path, body):
        self.compressed.append(body)
        self.files[body["target"]] = b"PK"
        return httpx.Response(200, json={"ok": True, "target": body["target"]})

    def _op_decompress(self, request, path, body):
        self.extracted.append(body)
        return httpx.Response(200, json={"ok": True, "extracted": 2})

    def _op_upload(self, request, path, body):
        if path in self.files:
            return httpx.Response(409, json={"error": "File already exists"})
        self.files[path] = request.content
        return httpx.Response(201, json={"ok": True, "path": path})

    def _op_download(self, request, path, body):
        if path not in self.files:
            return httpx.Response(404, json={"error": "Not found"})
        data = self.files[path]
        filename = request.url.params.get("filename") or path.rsplit("/", 1)[-1]
        headers = {
            "Content-Type": "application/octet-stream",
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Accept-Ranges": "bytes",
        }
        range_header = request.headers.get("range")
        if range_header and range_header.startswith("bytes="):
            start, _, end = range_header[6:].partition("-")
            first, last = int(start), int(end) if end else len(data) - 1
            headers["Content-Range"] = f"bytes {first}-{last}/{len(data)}"
            return httpx.Response(206, content=data[first : last + 1], headers=headers)
        return httpx.Response(200, content=data, headers=headers)


@pytest.fixture
def fake_connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture(autouse=True)
def _fast_settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("FILEMANAGER_DELETE_PAUSE_MS", "0")
    reset_filemanager_settings_cache()
    yield
    reset_filemanager_settings_cache()


@pytest.fixture
def token_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set required environment variables for session token decoding."""

    monkeypatch.setenv("PANEL_TOKEN_SECRET", TOKEN_SECRET)
    monkeypatch.setenv("PANEL_TOKEN_AUDIENCE", TOKEN_AUDIENCE)
    monkeypatch.setenv("PANEL_TOKEN_ISSUER", TOKEN_ISSUER)
    monkeypatch.setenv("PANEL_TOKEN_ALGORITHM", "HS256")


@dataclass
class SiteStore:
    engine: object
    session_factory: sessionmaker[Session]

    def add_site(
        self,
        site_id: str,
        *,
        organization_id: str = ORG_ID,
        fqdn: str | None = "connector.test",
        token: str | None = CONNECTOR_TOKEN,
        ssl_enabled: bool = False,
    ) -> None:
        with self.session_factory.begin() as session:
            connector_id = None
            if fqdn is not None:
                connector = Connector(
                    name=f"{site_id}-connector",
                    fqdn=fqdn,
                    token=token or "",
                    daemon_ssl_enabled=ssl_enabled,
                )
                session.add(connector)
                session.flush()
                connector_id = connector.id
            session.add(
                Site(
                    id=site_id,
                    organization_id=organization_id,
                    name=site_id.title(),
                    domain=f"{site_id}.example",
                    connector_id=connector_id,
                )
            )


@pytest.fixture
def site_store(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path):
    db_url = f"sqlite+pysqlite:///{tmp_path / 'sites.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    reset_session_factory()

    engine = get_engine(db_url)
    Base.metadata.create_all(engine)
    store = SiteStore(
        engine=engine,
        session_factory=sessionmaker(bind=engine, expire_on_commit=False, future=True),
    )
    store.add_site(SITE_ID)

    yield store

    reset_session_factory()
    Base.metadata.drop_all(engine)
    engine.dispose()
