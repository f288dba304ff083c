import json
import logging
from logging.handlers import TimedRotatingFileHandler

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from sitepanel.app_logging import JsonFormatter, init_logging
from sitepanel.core.exception_handlers import register_exception_handlers
from sitepanel.filemanager.errors import ConnectorUnreachable

LOGGER_NAMES = ("sitepanel", "uvicorn.access")


@pytest.fixture
def log_dir(monkeypatch, tmp_path):
    """Point LOG_DIR at a temp dir and give each test fresh loggers."""

    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    saved = {}
    for name in LOGGER_NAMES:
        logger = logging.getLogger(name)
        saved[name] = (list(logger.handlers), logger.level)
        logger.handlers.clear()
    yield tmp_path
    for name, (handlers, level) in saved.items():
        logger = logging.getLogger(name)
        for handler in logger.handlers:
            handler.close()
        logger.handlers[:] = handlers
        logger.setLevel(level)


def _rotating(name: str) -> TimedRotatingFileHandler:
    return next(
        h for h in logging.getLogger(name).handlers if isinstance(h, TimedRotatingFileHandler)
    )


def _flush() -> None:
    for name in LOGGER_NAMES:
        for handler in logging.getLogger(name).handlers:
            handler.flush()


@pytest.mark.parametrize("retention", ["3", "14"])
def test_both_logs_rotate_at_midnight(log_dir, monkeypatch, retention):
    monkeypatch.setenv("LOG_RETENTION_DAYS", retention)

    init_logging()

    for name, filename in (("sitepanel", "app.log"), ("uvicorn.access", "access.log")):
        handler = _rotating(name)
        assert handler.when == "MIDNIGHT"
        assert handler.backupCount == int(retention)
        assert handler.baseFilename == str(log_dir / filename)


def test_access_handlers_are_replaced_and_app_handler_kept(log_dir):
    console = logging.StreamHandler()
    logging.getLogger("uvicorn.access").addHandler(console)

    init_logging()
    app_handler = _rotating("sitepanel")
    init_logging()

    access_handlers = logging.getLogger("uvicorn.access").handlers
    assert console not in access_handlers
    assert len(access_handlers) == 1
    assert logging.getLogger("sitepanel").handlers == [app_handler]


@pytest.mark.parametrize(
    ("value", "expected"),
    [("warning", logging.WARNING), ("DEBUG", logging.DEBUG), ("chatty", logging.INFO)],
)
def test_level_comes_from_environment(log_dir, monkeypatch, value, expected):
    monkeypatch.setenv("LOG_LEVEL", value)

    init_logging()

    assert logging.getLogger("sitepanel").level == expected
    assert logging.getLogger("uvicorn.access").level == expected


def test_init_logging_exposes_app_logger(log_dir):
    app = FastAPI()

    init_logging(app)

    assert app.logger is logging.getLogger("sitepanel")


def test_json_formatter_keeps_site_id(log_dir, monkeypatch):
    monkeypatch.setenv("LOG_JSON", "true")
    init_logging()
    formatter = _rotating("sitepanel").formatter
    assert isinstance(formatter, JsonFormatter)

    record = logging.LogRecord(
        "sitepanel.filemanager.batch", logging.WARNING, __file__, 1, "%d of %d moved", (2, 3), None
    )
    record.site_id = "site-7"
    data = json.loads(formatter.format(record))

    assert data["logger"] == "sitepanel.filemanager.batch"
    assert data["level"] == "WARNING"
    assert data["message"] == "2 of 3 moved"
    assert data["site_id"] == "site-7"


def test_json_formatter_omits_missing_site_id():
    record = logging.LogRecord("sitepanel", logging.INFO, __file__, 1, "ready", (), None)

    assert "site_id" not in json.loads(JsonFormatter().format(record))


def test_unreachable_connector_lands_in_both_files(log_dir, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app = FastAPI()
    register_exception_handlers(app)

    @app.post("/api/sites/{site_id}/filemanager")
    async def action(site_id: str):
        raise ConnectorUnreachable("Connector unreachable")

    init_logging(app)

    with TestClient(app) as client:
        response = client.post(
            "/api/sites/site-3/filemanager",
            json={"action": "read", "path": "a.txt", "connector_token": "secret"},
            headers={"Authorization": "Bearer secret"},
        )
    _flush()

    assert response.status_code == 502
    app_log = (log_dir / "app.log").read_text()
    assert "connector_unreachable" in app_log

    line = (log_dir / "access.log").read_text().splitlines()[-1]
    data = json.loads(line.split(": ", 1)[1])
    assert data["site_id"] == "site-3"
    assert data["status"] == 502
    assert data["error_code"] == "connector_unreachable"
    assert data["headers"]["authorization"] == "***"
    assert data["body"] == {"action": "read", "path": "a.txt", "connector_token": "***"}
