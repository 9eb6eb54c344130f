"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the adapters expect so the app layer can build them safely.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StorageConfig:
    """Settings for the SQLite storage adapter."""

    db_path: str
    busy_timeout_ms: int = 5000
    max_workers: int = 4
