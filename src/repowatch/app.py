"""Command line entry point for inspecting and editing the repowatch store.

The polling bot talks to the store through RepoStoragePort; this CLI is for
operators who need to look at or fix subscriptions by hand.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from art import tprint
from rich.console import Console
from rich.table import Table

from repowatch import settings
from repowatch.adapters.sqlite_storage import SQLiteRepoStorage
from repowatch.core.errors import DatabaseError, DataIntegrityError
from repowatch.core.models import InvalidRepoError, RepoEntity, SubscriptionRecord

NAME = "REPOWATCH"
FONT = "tarty-1"

EXIT_OK = 0
EXIT_DATABASE_ERROR = 1
EXIT_INTEGRITY_ERROR = 2
EXIT_INVALID_REPO = 3
EXIT_CONFIG_ERROR = 4

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


def _file_handler(file_cfg: dict[str, Any]) -> RotatingFileHandler:
    path = file_cfg.get("path", "logs/repowatch.log")
    if not os.path.isabs(path):
        path = os.path.join(settings.PROJECT_ROOT, path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def _configure_logging(config: dict[str, Any]) -> None:
    """Attach console and rotating-file handlers as the logging section asks."""

    if not config.get("enabled", False):
        return

    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
    file_cfg = config.get("file") or {}
    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())
    if file_cfg.get("enabled", False):
        handlers.append(_file_handler(file_cfg))
    if not handlers:
        return

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers)


def _format_poll_time(value: Optional[int]) -> str:
    if value is None:
        return "never"
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _render_subscriptions(console: Console, records: list[SubscriptionRecord]) -> None:
    if not records:
        console.print("No subscriptions.")
        return

    table = Table(title="Subscriptions")
    table.add_column("chat", justify="right")
    table.add_column("repository")
    table.add_column("last poll")
    table.add_column("labels")
    for record in records:
        table.add_row(
            str(record.chat_id),
            record.repository.name_with_owner,
            _format_poll_time(record.last_poll_time),
            ", ".join(sorted(record.labels)) or "(all)",
        )
    console.print(table)


async def _dispatch(args: argparse.Namespace, storage: SQLiteRepoStorage, console: Console) -> None:
    command = args.command

    if command == "init":
        console.print(f"Database ready at {storage.db_path}")
        return

    if command == "list":
        records = await storage.list_subscriptions(args.chat)
        _render_subscriptions(console, records)
        return

    if command == "remove":
        # Raw names are accepted so rows that no longer parse can still be removed.
        removed = await storage.remove_repository(args.chat, args.repo)
        console.print(f"Removed {args.repo}" if removed else f"{args.repo} was not subscribed")
        return

    repository = RepoEntity.from_name_with_owner(args.repo)

    if command == "add":
        added = await storage.add_repository(args.chat, repository)
        console.print(f"Added {repository}" if added else f"{repository} is already subscribed")
    elif command == "labels":
        labels = await storage.get_tracked_labels(args.chat, repository)
        console.print(", ".join(sorted(labels)) if labels else "No tracked labels")
    elif command == "toggle-label":
        present = await storage.toggle_label(args.chat, repository, args.label)
        console.print(f"Tracking label {args.label!r}" if present else f"Not tracking label {args.label!r}")
    elif command == "touch":
        await storage.set_last_poll_time(args.chat, repository, args.at)
        poll_time = await storage.get_last_poll_time(args.chat, repository)
        console.print(f"Last poll for {repository}: {_format_poll_time(poll_time)}")


async def _run(args: argparse.Namespace, console: Console) -> None:
    storage_config, logging_config = settings.load_settings(args.db)
    _configure_logging(logging_config)
    LOGGER.debug("Using database %s", storage_config.db_path)

    async with SQLiteRepoStorage.from_config(storage_config) as storage:
        await _dispatch(args, storage, console)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="repowatch")
    parser.add_argument("--db", help="Path to the SQLite database (overrides config and REPOWATCH_DB)")
    parser.add_argument("--no-banner", action="store_true", help="Skip the start-up banner")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the database schema")

    list_parser = subparsers.add_parser("list", help="Show subscriptions with poll time and labels")
    list_parser.add_argument("--chat", type=int, help="Only show this chat")

    for name, help_text in (
        ("add", "Subscribe a chat to a repository"),
        ("remove", "Unsubscribe a chat from a repository"),
        ("labels", "Show tracked labels for a subscription"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("chat", type=int)
        sub.add_argument("repo", help="owner/name")

    toggle_parser = subparsers.add_parser("toggle-label", help="Start or stop tracking a label")
    toggle_parser.add_argument("chat", type=int)
    toggle_parser.add_argument("repo", help="owner/name")
    toggle_parser.add_argument("label")

    touch_parser = subparsers.add_parser("touch", help="Set the last poll time of a subscription")
    touch_parser.add_argument("chat", type=int)
    touch_parser.add_argument("repo", help="owner/name")
    touch_parser.add_argument("--at", type=int, help="Epoch seconds (defaults to now)")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()
    if not args.no_banner:
        _print_banner()

    try:
        asyncio.run(_run(args, console))
    except InvalidRepoError as exc:
        console.print(f"Invalid repository: {exc}")
        return EXIT_INVALID_REPO
    except DataIntegrityError as exc:
        LOGGER.error("Stored data is inconsistent: %s", exc)
        console.print(f"Internal inconsistency: {exc}")
        return EXIT_INTEGRITY_ERROR
    except DatabaseError as exc:
        LOGGER.error("Storage unavailable: %s", exc)
        console.print(f"Database unavailable, try again: {exc}")
        return EXIT_DATABASE_ERROR
    except ValueError as exc:
        # Bad config.json, .env or --db value; JSONDecodeError lands here too.
        console.print(f"Invalid configuration: {exc}")
        return EXIT_CONFIG_ERROR
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
