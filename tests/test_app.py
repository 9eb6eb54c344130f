from __future__ import annotations

import logging
import sqlite3

import pytest

from repowatch import app


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path) -> None:
    # Keep the developer's config.json and .env out of CLI tests.
    monkeypatch.setenv("REPOWATCH_CONFIG", str(tmp_path / "missing-config.json"))
    monkeypatch.delenv("REPOWATCH_DB", raising=False)
    monkeypatch.chdir(tmp_path)


def _cli(db_path: str, *args: str) -> int:
    return app.main(["--no-banner", "--db", db_path, *args])


def test_add_list_and_remove(db_path, capsys) -> None:
    assert _cli(db_path, "init") == app.EXIT_OK
    assert _cli(db_path, "add", "42", "octocat/Hello-World") == app.EXIT_OK
    assert _cli(db_path, "add", "42", "octocat/hello-world") == app.EXIT_OK
    output = capsys.readouterr().out
    assert "Added octocat/Hello-World" in output
    assert "already subscribed" in output

    assert _cli(db_path, "toggle-label", "42", "octocat/Hello-World", "bug") == app.EXIT_OK
    assert _cli(db_path, "touch", "42", "octocat/Hello-World", "--at", "0") == app.EXIT_OK
    output = capsys.readouterr().out
    assert "Tracking label 'bug'" in output
    assert "1970-01-01 00:00:00 UTC" in output

    assert _cli(db_path, "list", "--chat", "42") == app.EXIT_OK
    output = capsys.readouterr().out
    assert "octocat/Hello-World" in output
    assert "bug" in output

    assert _cli(db_path, "labels", "42", "octocat/Hello-World") == app.EXIT_OK
    assert "bug" in capsys.readouterr().out

    assert _cli(db_path, "remove", "42", "octocat/Hello-World") == app.EXIT_OK
    assert _cli(db_path, "remove", "42", "octocat/Hello-World") == app.EXIT_OK
    output = capsys.readouterr().out
    assert "Removed octocat/Hello-World" in output
    assert "was not subscribed" in output

    assert _cli(db_path, "list") == app.EXIT_OK
    assert "No subscriptions." in capsys.readouterr().out


def test_invalid_repository_argument(db_path, capsys) -> None:
    assert _cli(db_path, "add", "42", "not-a-repo") == app.EXIT_INVALID_REPO
    assert "Invalid repository" in capsys.readouterr().out


def test_corrupt_row_reports_internal_inconsistency(db_path, capsys) -> None:
    assert _cli(db_path, "add", "7", "octocat/Hello-World") == app.EXIT_OK
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("UPDATE subscriptions SET name_with_owner = 'broken'")
        conn.commit()
    finally:
        conn.close()
    capsys.readouterr()

    assert _cli(db_path, "list") == app.EXIT_INTEGRITY_ERROR
    assert "Internal inconsistency" in capsys.readouterr().out


def test_unreadable_database_reports_try_again(tmp_path, capsys) -> None:
    db_path = tmp_path / "garbage.db"
    db_path.write_bytes(b"definitely not sqlite" * 100)

    assert _cli(str(db_path), "list") == app.EXIT_DATABASE_ERROR
    assert "try again" in capsys.readouterr().out


def test_logging_configuration_writes_rotating_file(tmp_path) -> None:
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    root.handlers = []
    try:
        log_path = tmp_path / "logs" / "repowatch.log"
        app._configure_logging(
            {"enabled": True, "level": "info", "console": False, "file": {"enabled": True, "path": str(log_path)}}
        )
        logging.getLogger("repowatch.test").info("hello from the test")
        for handler in root.handlers:
            handler.flush()
        assert "hello from the test" in log_path.read_text(encoding="utf-8")
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers = saved_handlers
        root.setLevel(saved_level)


@pytest.mark.parametrize(
    "content",
    ["[1, 2]", "{not json", '{"storage": "bot.db"}', '{"logging": ["console"]}'],
)
def test_bad_config_file_reports_invalid_configuration(monkeypatch, tmp_path, db_path, capsys, content) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(content, encoding="utf-8")
    monkeypatch.setenv("REPOWATCH_CONFIG", str(config_path))

    assert _cli(db_path, "list") == app.EXIT_CONFIG_ERROR
    assert "Invalid configuration" in capsys.readouterr().out


def test_in_memory_database_argument_is_rejected(capsys) -> None:
    assert _cli(":memory:", "init") == app.EXIT_CONFIG_ERROR
    assert "Invalid configuration" in capsys.readouterr().out
