"""Static configuration for repowatch.

User-editable settings (database location, logging) live in a single JSON
file so they can be changed without touching Python. Environment variables
(optionally from a .env file) override the file for deployments.
"""

from __future__ import annotations

import json
import os
from typing import Any, Optional

from dotenv import load_dotenv

from repowatch.core.config import StorageConfig

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.abspath(os.path.join(PACKAGE_DIR, "..", ".."))

# Default location of the SQLite database, next to the package like before.
DEFAULT_DB_PATH = os.path.join(PACKAGE_DIR, "repowatch.db")

# config.json sits at the project root unless REPOWATCH_CONFIG points elsewhere.
DEFAULT_CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")


def _config_path() -> str:
    return os.getenv("REPOWATCH_CONFIG") or DEFAULT_CONFIG_PATH


def load_config(path: Optional[str] = None) -> dict[str, Any]:
    """Load config.json; a missing file means "use defaults"."""

    path = path or _config_path()
    if not os.path.exists(path):
        return {}

    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a JSON object: {path}")
    return data


def build_storage_config(config: dict[str, Any], db_path: Optional[str] = None) -> StorageConfig:
    """Build the storage settings, resolving relative paths from the project root.

    Precedence: explicit db_path argument, REPOWATCH_DB, storage.db_path, default.
    """

    storage = config.get("storage") or {}
    if not isinstance(storage, dict):
        raise ValueError("Config section 'storage' must be a JSON object")
    path = db_path or os.getenv("REPOWATCH_DB") or storage.get("db_path") or DEFAULT_DB_PATH
    if path == ":memory:":
        raise ValueError("The database must be a file path, not ':memory:'")
    path = os.path.expanduser(path)
    if not os.path.isabs(path):
        path = os.path.join(PROJECT_ROOT, path)
    return StorageConfig(
        db_path=path,
        busy_timeout_ms=int(storage.get("busy_timeout_ms", 5000)),
        max_workers=int(storage.get("max_workers", 4)),
    )


def load_settings(db_path: Optional[str] = None) -> tuple[StorageConfig, dict[str, Any]]:
    """Return (storage config, logging config) for the current environment."""

    # .env keeps deployment paths out of config.json.
    load_dotenv()
    config = load_config()
    logging_config = config.get("logging") or {}
    if not isinstance(logging_config, dict):
        raise ValueError("Config section 'logging' must be a JSON object")
    return build_storage_config(config, db_path), logging_config
