"""SQLite storage adapter.

Implements the core RepoStoragePort on top of a local SQLite database. The
sqlite3 calls are blocking, so every operation runs on a small thread pool
owned by the adapter and is awaited from the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional, TypeVar, Union

from repowatch.core.config import StorageConfig
from repowatch.core.errors import DatabaseError, DataIntegrityError
from repowatch.core.models import (
    ChatId,
    InvalidRepoError,
    RepoEntity,
    SubscriptionRecord,
    normalize_repo_key,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class _CallState:
    """Cancellation flag shared by an awaiting caller and its worker thread."""

    def __init__(self) -> None:
        self.cancelled = threading.Event()
        self.conn: Optional[sqlite3.Connection] = None

    def cancel(self) -> None:
        self.cancelled.set()
        conn = self.conn
        if conn is None:
            return
        try:
            # Aborts a statement that is running or waiting on a lock.
            conn.interrupt()
        except sqlite3.ProgrammingError:
            # The worker closed the connection first; the flag alone decides.
            LOGGER.debug("Connection already closed when the call was cancelled")


class SQLiteRepoStorage:
    """SQLite-backed subscription store that satisfies RepoStoragePort."""

    def __init__(self, db_path: str, *, busy_timeout_ms: int = 5000, max_workers: int = 4) -> None:
        # Each call opens its own connection, so a private in-memory database
        # would be empty on every call.
        if db_path == ":memory:" or db_path.startswith("file::memory:"):
            raise ValueError("SQLiteRepoStorage needs a file path, not an in-memory database")
        if max_workers < 1:
            raise ValueError("max_workers must be positive")
        self._db_path = db_path
        self._busy_timeout_ms = int(busy_timeout_ms)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="repowatch-db")
        self._closed = False
        # The _CallState of the call running on the current worker thread.
        self._local = threading.local()

        directory = os.path.dirname(os.path.abspath(db_path))
        if directory:
            os.makedirs(directory, exist_ok=True)

    @classmethod
    def from_config(cls, config: StorageConfig) -> "SQLiteRepoStorage":
        return cls(
            config.db_path,
            busy_timeout_ms=config.busy_timeout_ms,
            max_workers=config.max_workers,
        )

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None hands transaction control to _transaction().
        conn = sqlite3.connect(
            self._db_path,
            timeout=self._busy_timeout_ms / 1000,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {self._busy_timeout_ms}")
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Run a block in one transaction: commit on success, roll back on error.

        immediate=True takes the write lock up front so read-modify-write
        sequences cannot interleave with another writer. A call whose awaiting
        caller was cancelled is rolled back instead of committed.
        """

        state: Optional[_CallState] = getattr(self._local, "state", None)
        conn = self._connect()
        if state is not None:
            state.conn = conn
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            if state is not None and state.cancelled.is_set():
                conn.execute("ROLLBACK")
                LOGGER.debug("Rolled back a cancelled call on %s", self._db_path)
            else:
                conn.execute("COMMIT")
        finally:
            if state is not None:
                state.conn = None
            conn.close()

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        """Execute a blocking function on the pool and translate sqlite errors."""

        if self._closed:
            raise DatabaseError(f"storage at {self._db_path} is closed")
        state = _CallState()

        def call() -> T:
            if state.cancelled.is_set():
                # Cancelled while still queued behind other calls.
                raise asyncio.CancelledError()
            self._local.state = state
            try:
                return func(*args)
            finally:
                self._local.state = None

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, call)
        except asyncio.CancelledError:
            state.cancel()
            raise
        except sqlite3.Error as exc:
            LOGGER.error("SQLite %s failed: %s", func.__name__, exc)
            raise DatabaseError(str(exc)) from exc

    @staticmethod
    def _decode_repo(raw: Any) -> RepoEntity:
        try:
            return RepoEntity.from_name_with_owner(raw)
        except InvalidRepoError as exc:
            LOGGER.error("Stored repository %r is invalid: %s", raw, exc)
            raise DataIntegrityError(str(raw), exc) from exc

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - subscriptions: one row per (chat, repository) with its poll time
        - tracked_labels: label filters, cascaded away with the subscription
        """

        conn = self._connect()
        try:
            # WAL lets the polling loop read while a command handler writes.
            conn.execute("PRAGMA journal_mode = WAL")
        finally:
            conn.close()

        with self._transaction(immediate=True) as conn:
            # Fields:
            # - chat_id: Telegram chat id
            # - repo_key: lower-cased owner/name, the identity used for lookups
            # - name_with_owner: owner/name as the user typed it
            # - last_poll_time: epoch seconds of the last check, NULL until set
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    chat_id INTEGER NOT NULL,
                    repo_key TEXT NOT NULL,
                    name_with_owner TEXT NOT NULL,
                    last_poll_time INTEGER,
                    created_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (chat_id, repo_key)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tracked_labels (
                    chat_id INTEGER NOT NULL,
                    repo_key TEXT NOT NULL,
                    label_name TEXT NOT NULL,
                    PRIMARY KEY (chat_id, repo_key, label_name),
                    FOREIGN KEY (chat_id, repo_key)
                        REFERENCES subscriptions (chat_id, repo_key)
                        ON DELETE CASCADE
                )
                """
            )
        LOGGER.info("SQLite storage ready at %s", self._db_path)

    def close(self) -> None:
        """Stop the worker pool, blocking until pending operations finish."""

        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)

    async def aclose(self) -> None:
        """Stop the worker pool without blocking the event loop."""

        if self._closed:
            return
        self._closed = True
        await asyncio.get_running_loop().run_in_executor(None, self._executor.shutdown)

    async def __aenter__(self) -> "SQLiteRepoStorage":
        try:
            await self._run(self.init_db)
        except BaseException:
            await self.aclose()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # -- blocking implementations ---------------------------------------

    def _add_repository(self, chat_id: ChatId, repository: RepoEntity) -> bool:
        created_at = datetime.now(timezone.utc)
        with self._transaction(immediate=True) as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO subscriptions (chat_id, repo_key, name_with_owner, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (chat_id, repository.key, repository.name_with_owner, created_at.isoformat()),
            )
            return cur.rowcount > 0

    def _remove_repository(self, chat_id: ChatId, repo_key: str) -> bool:
        # tracked_labels rows go with the subscription via ON DELETE CASCADE.
        with self._transaction(immediate=True) as conn:
            cur = conn.execute(
                "DELETE FROM subscriptions WHERE chat_id = ? AND repo_key = ?",
                (chat_id, repo_key),
            )
            return cur.rowcount > 0

    def _get_repos_per_user(self, chat_id: ChatId) -> list[RepoEntity]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT name_with_owner FROM subscriptions WHERE chat_id = ? ORDER BY rowid",
                (chat_id,),
            ).fetchall()
        return [self._decode_repo(row["name_with_owner"]) for row in rows]

    def _get_all_repos(self) -> dict[ChatId, set[RepoEntity]]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT chat_id, name_with_owner FROM subscriptions").fetchall()
        result: dict[ChatId, set[RepoEntity]] = {}
        for row in rows:
            result.setdefault(int(row["chat_id"]), set()).add(self._decode_repo(row["name_with_owner"]))
        return result

    def _get_last_poll_time(self, chat_id: ChatId, repo_key: str) -> Optional[int]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT last_poll_time FROM subscriptions WHERE chat_id = ? AND repo_key = ?",
                (chat_id, repo_key),
            ).fetchone()
        if row is None or row["last_poll_time"] is None:
            return None
        return int(row["last_poll_time"])

    def _set_last_poll_time(self, chat_id: ChatId, repo_key: str, timestamp: int) -> None:
        with self._transaction(immediate=True) as conn:
            cur = conn.execute(
                "UPDATE subscriptions SET last_poll_time = ? WHERE chat_id = ? AND repo_key = ?",
                (timestamp, chat_id, repo_key),
            )
            updated = cur.rowcount
        if not updated:
            LOGGER.debug("Poll time not stored: chat %s is not subscribed to %s", chat_id, repo_key)

    def _get_tracked_labels(self, chat_id: ChatId, repo_key: str) -> set[str]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT label_name FROM tracked_labels WHERE chat_id = ? AND repo_key = ?",
                (chat_id, repo_key),
            ).fetchall()
        return {row["label_name"] for row in rows}

    def _toggle_label(self, chat_id: ChatId, repo_key: str, label_name: str) -> bool:
        with self._transaction(immediate=True) as conn:
            exists = conn.execute(
                "SELECT 1 FROM subscriptions WHERE chat_id = ? AND repo_key = ?",
                (chat_id, repo_key),
            ).fetchone()
            if exists is None:
                LOGGER.debug("Label %r not toggled: chat %s is not subscribed to %s", label_name, chat_id, repo_key)
                return False
            cur = conn.execute(
                "DELETE FROM tracked_labels WHERE chat_id = ? AND repo_key = ? AND label_name = ?",
                (chat_id, repo_key, label_name),
            )
            if cur.rowcount > 0:
                return False
            conn.execute(
                "INSERT INTO tracked_labels (chat_id, repo_key, label_name) VALUES (?, ?, ?)",
                (chat_id, repo_key, label_name),
            )
            return True

    def _count_repos_per_user(self, chat_id: ChatId) -> int:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM subscriptions WHERE chat_id = ?",
                (chat_id,),
            ).fetchone()
        return int(row["total"])

    def _list_subscriptions(self, chat_id: Optional[ChatId]) -> list[SubscriptionRecord]:
        # Subscriptions and labels are read in one transaction so a concurrent
        # toggle or remove cannot produce a mixed view.
        where = "" if chat_id is None else "WHERE chat_id = ?"
        params: tuple = () if chat_id is None else (chat_id,)
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT chat_id, repo_key, name_with_owner, last_poll_time
                FROM subscriptions {where}
                ORDER BY chat_id, rowid
                """,
                params,
            ).fetchall()
            label_rows = conn.execute(
                f"SELECT chat_id, repo_key, label_name FROM tracked_labels {where}",
                params,
            ).fetchall()

        labels: dict[tuple[int, str], set[str]] = {}
        for row in label_rows:
            labels.setdefault((int(row["chat_id"]), row["repo_key"]), set()).add(row["label_name"])

        records: list[SubscriptionRecord] = []
        for row in rows:
            chat = int(row["chat_id"])
            poll_time = row["last_poll_time"]
            records.append(
                SubscriptionRecord(
                    chat_id=chat,
                    repository=self._decode_repo(row["name_with_owner"]),
                    last_poll_time=int(poll_time) if poll_time is not None else None,
                    labels=frozenset(labels.get((chat, row["repo_key"]), set())),
                )
            )
        return records

    # -- RepoStoragePort -------------------------------------------------

    async def add_repository(self, chat_id: ChatId, repository: RepoEntity) -> bool:
        """Subscribe a chat to a repository; False if it already was."""

        added = await self._run(self._add_repository, chat_id, repository)
        if added:
            LOGGER.info("Chat %s subscribed to %s", chat_id, repository)
        return added

    async def remove_repository(self, chat_id: ChatId, repository: Union[RepoEntity, str]) -> bool:
        """Unsubscribe a chat; accepts a RepoEntity or a raw owner/name."""

        removed = await self._run(self._remove_repository, chat_id, normalize_repo_key(repository))
        if removed:
            LOGGER.info("Chat %s unsubscribed from %s", chat_id, repository)
        return removed

    async def get_repos_per_user(self, chat_id: ChatId) -> list[RepoEntity]:
        return await self._run(self._get_repos_per_user, chat_id)

    async def get_all_repos(self) -> dict[ChatId, set[RepoEntity]]:
        return await self._run(self._get_all_repos)

    async def get_last_poll_time(self, chat_id: ChatId, repository: RepoEntity) -> Optional[int]:
        return await self._run(self._get_last_poll_time, chat_id, repository.key)

    async def set_last_poll_time(
        self,
        chat_id: ChatId,
        repository: RepoEntity,
        timestamp: Optional[int] = None,
    ) -> None:
        if timestamp is None:
            timestamp = int(time.time())
        await self._run(self._set_last_poll_time, chat_id, repository.key, int(timestamp))

    async def get_tracked_labels(self, chat_id: ChatId, repository: RepoEntity) -> set[str]:
        return await self._run(self._get_tracked_labels, chat_id, repository.key)

    async def toggle_label(self, chat_id: ChatId, repository: RepoEntity, label_name: str) -> bool:
        return await self._run(self._toggle_label, chat_id, repository.key, label_name)

    async def count_repos_per_user(self, chat_id: ChatId) -> int:
        return await self._run(self._count_repos_per_user, chat_id)

    async def list_subscriptions(self, chat_id: Optional[ChatId] = None) -> list[SubscriptionRecord]:
        """Return subscriptions with their poll time and labels in one snapshot."""

        return await self._run(self._list_subscriptions, chat_id)
