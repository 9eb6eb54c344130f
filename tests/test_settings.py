from __future__ import annotations

import json
import os

import pytest

from repowatch import settings


def test_missing_config_file_means_defaults(tmp_path) -> None:
    assert settings.load_config(str(tmp_path / "absent.json")) == {}


def test_config_must_be_an_object(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        settings.load_config(str(path))


def test_storage_config_defaults(monkeypatch) -> None:
    monkeypatch.delenv("REPOWATCH_DB", raising=False)
    config = settings.build_storage_config({})
    assert config.db_path == settings.DEFAULT_DB_PATH
    assert config.busy_timeout_ms == 5000
    assert config.max_workers == 4


def test_storage_config_from_file_resolves_relative_path(monkeypatch) -> None:
    monkeypatch.delenv("REPOWATCH_DB", raising=False)
    config = settings.build_storage_config(
        {"storage": {"db_path": "data/bot.db", "busy_timeout_ms": "250", "max_workers": 2}}
    )
    assert config.db_path == os.path.join(settings.PROJECT_ROOT, "data/bot.db")
    assert config.busy_timeout_ms == 250
    assert config.max_workers == 2


def test_environment_overrides_file_and_argument_overrides_environment(monkeypatch, tmp_path) -> None:
    env_path = str(tmp_path / "env.db")
    monkeypatch.setenv("REPOWATCH_DB", env_path)
    file_config = {"storage": {"db_path": "/srv/file.db"}}

    assert settings.build_storage_config(file_config).db_path == env_path
    explicit = str(tmp_path / "explicit.db")
    assert settings.build_storage_config(file_config, explicit).db_path == explicit


def test_load_settings_reads_config_from_env_path(monkeypatch, tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "storage": {"db_path": str(tmp_path / "bot.db"), "max_workers": 1},
                "logging": {"enabled": True, "level": "DEBUG"},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("REPOWATCH_CONFIG", str(path))
    monkeypatch.delenv("REPOWATCH_DB", raising=False)
    monkeypatch.chdir(tmp_path)

    storage_config, logging_config = settings.load_settings()

    assert storage_config.db_path == str(tmp_path / "bot.db")
    assert storage_config.max_workers == 1
    assert logging_config == {"enabled": True, "level": "DEBUG"}


def test_null_storage_section_means_defaults(monkeypatch) -> None:
    monkeypatch.delenv("REPOWATCH_DB", raising=False)
    config = settings.build_storage_config({"storage": None})
    assert config.db_path == settings.DEFAULT_DB_PATH
    assert config.max_workers == 4


def test_storage_section_must_be_an_object(monkeypatch) -> None:
    monkeypatch.delenv("REPOWATCH_DB", raising=False)
    with pytest.raises(ValueError, match="storage"):
        settings.build_storage_config({"storage": ["bot.db"]})


def test_in_memory_database_path_is_rejected() -> None:
    with pytest.raises(ValueError, match="memory"):
        settings.build_storage_config({}, ":memory:")


def test_null_logging_section_means_disabled(monkeypatch, tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"storage": None, "logging": None}), encoding="utf-8")
    monkeypatch.setenv("REPOWATCH_CONFIG", str(path))
    monkeypatch.delenv("REPOWATCH_DB", raising=False)
    monkeypatch.chdir(tmp_path)

    _, logging_config = settings.load_settings(str(tmp_path / "bot.db"))

    assert logging_config == {}
