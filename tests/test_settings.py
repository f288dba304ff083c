"""Tests for the file manager runtime knobs."""

from __future__ import annotations

import pytest

from sitepanel.filemanager.settings import (
    COPY_CONCURRENCY_CAP,
    COPY_MAX_RENAMES_CAP,
    FileManagerSettings,
    get_filemanager_settings,
    reset_filemanager_settings_cache,
)


@pytest.mark.parametrize("value, expected", [(0, 1), (-3, 1), (4, 4), (16, 16), (99, 16)])
def test_copy_concurrency_is_capped(value, expected):
    assert FileManagerSettings(copy_concurrency=value).copy_concurrency == expected
    assert COPY_CONCURRENCY_CAP == 16


@pytest.mark.parametrize("value, expected", [(0, 1), (50, 50), (200, 200), (1000, 200)])
def test_copy_rename_budget_is_clamped(value, expected):
    assert FileManagerSettings(copy_max_renames=value).copy_max_renames == expected
    assert COPY_MAX_RENAMES_CAP == 200


def test_upload_and_delete_floors():
    settings = FileManagerSettings(upload_concurrency=0, delete_chunk_size=0)
    assert settings.upload_concurrency == 1
    assert settings.delete_chunk_size == 1


def test_defaults():
    settings = FileManagerSettings()
    assert settings.copy_concurrency == 4
    assert settings.copy_max_renames == 50
    assert settings.upload_max_renames == 25
    assert settings.delete_chunk_size == 10
    assert settings.delete_pause_seconds == 0.2
    assert settings.zip_max_files == 200


def test_environment_overrides_are_clamped(monkeypatch):
    monkeypatch.setenv("FILEMANAGER_COPY_CONCURRENCY", "64")
    monkeypatch.setenv("FILEMANAGER_COPY_MAX_RENAMES", "500")
    monkeypatch.setenv("FILEMANAGER_DELETE_PAUSE_MS", "50")
    reset_filemanager_settings_cache()

    settings = get_filemanager_settings()

    assert settings.copy_concurrency == 16
    assert settings.copy_max_renames == 200
    assert settings.delete_pause_seconds == 0.05
    assert get_filemanager_settings() is settings
