import json
import logging

import pytest
from fastapi import FastAPI, HTTPException, Request
from starlette.testclient import TestClient

from sitepanel.app_logging import _install_access_logging, _scrub
from sitepanel.core.exception_handlers import register_exception_handlers
from sitepanel.filemanager.errors import InvalidPath, SiteNotFound


def _create_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.post("/api/sites/{site_id}/filemanager")
    async def action(site_id: str, request: Request):
        payload = await request.json()
        if payload.get("path") == "..":
            raise InvalidPath("Invalid path")
        return {"site": site_id, "rid": request.state.request_id}

    @app.get("/api/sites/{site_id}/filemanager")
    async def listing(site_id: str):
        if site_id != "site-1":
            raise SiteNotFound("Site not found")
        raise HTTPException(status_code=401, detail="Missing token")

    @app.post("/api/sites/{site_id}/filemanager/upload")
    async def upload(site_id: str, request: Request):
        form = await request.form()
        return {"fields": sorted(form.keys())}

    @app.get("/api/health")
    async def health():  # pragma: no cover - simple
        return {"status": "ok"}

    _install_access_logging(app)
    return app


@pytest.fixture
def access_log(caplog):
    def _lines() -> list[dict]:
        return [
            json.loads(record.getMessage())
            for record in caplog.records
            if record.name == "uvicorn.access"
        ]

    with caplog.at_level(logging.INFO, logger="uvicorn.access"):
        yield _lines


def test_request_id_is_echoed_and_secrets_scrubbed(access_log, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")

    with TestClient(_create_app()) as client:
        resp = client.post(
            "/api/sites/site-1/filemanager",
            json={"action": "read", "path": "a.txt", "token": "secret"},
            headers={"X-Request-Id": "req-42", "Authorization": "Bearer secret"},
        )

    assert resp.json() == {"site": "site-1", "rid": "req-42"}
    assert resp.headers["X-Request-Id"] == "req-42"
    (line,) = access_log()
    assert line["request_id"] == "req-42"
    assert line["site_id"] == "site-1"
    assert line["headers"]["authorization"] == "***"
    assert line["body"] == {"action": "read", "path": "a.txt", "token": "***"}
    assert "error_code" not in line


def test_file_manager_error_code_is_logged(access_log):
    with TestClient(_create_app()) as client:
        bad_path = client.post("/api/sites/site-2/filemanager", json={"path": ".."})
        missing = client.get("/api/sites/gone/filemanager")

    assert bad_path.status_code == 400
    assert missing.status_code == 404
    first, second = access_log()
    assert (first["site_id"], first["status"], first["error_code"]) == ("site-2", 400, "invalid_path")
    assert (second["site_id"], second["status"], second["error_code"]) == ("gone", 404, "not_found")


def test_plain_http_errors_carry_no_error_code(access_log):
    with TestClient(_create_app()) as client:
        resp = client.get("/api/sites/site-1/filemanager")

    assert resp.status_code == 401
    (line,) = access_log()
    assert line["site_id"] == "site-1"
    assert "error_code" not in line


def test_unmatched_paths_have_no_site(access_log):
    with TestClient(_create_app()) as client:
        resp = client.get("/api/unknown")

    assert resp.status_code == 404
    (line,) = access_log()
    assert line["path"] == "/api/unknown"
    assert "site_id" not in line


def test_health_checks_are_not_logged(access_log):
    with TestClient(_create_app()) as client:
        client.get("/api/health")

    assert access_log() == []


def test_multipart_uploads_are_not_buffered(access_log, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")

    with TestClient(_create_app()) as client:
        resp = client.post(
            "/api/sites/site-1/filemanager/upload",
            data={"path": "uploads"},
            files={"file": ("a.txt", b"hello", "text/plain")},
        )

    assert resp.json() == {"fields": ["file", "path"]}
    (line,) = access_log()
    assert "body" not in line
    assert line["request_id"] == resp.headers["X-Request-Id"]


def test_forwarded_client_ip_is_recorded(access_log):
    with TestClient(_create_app()) as client:
        client.post(
            "/api/sites/site-1/filemanager",
            json={"path": "a.txt"},
            headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        )

    (line,) = access_log()
    assert line["client_ip"] == "203.0.113.9"


def test_scrub_handles_nested_structures():
    scrubbed = _scrub(
        {"items": [{"connector_token": "t", "name": "a"}], "Authorization": "Bearer x"}
    )
    assert scrubbed == {"items": [{"connector_token": "***", "name": "a"}], "Authorization": "***"}
