"""In-memory storage adapter.

Dict-backed RepoStoragePort used by tests and by callers that need a store
without a database. Semantics match SQLiteRepoStorage.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Union

from repowatch.core.models import ChatId, RepoEntity, SubscriptionRecord, normalize_repo_key

LOGGER = logging.getLogger(__name__)


@dataclass
class _Subscription:
    repository: RepoEntity
    last_poll_time: Optional[int] = None
    labels: set[str] = field(default_factory=set)


class InMemoryRepoStorage:
    """Storage adapter that keeps subscriptions in process memory."""

    def __init__(self) -> None:
        # chat_id -> repo_key -> subscription; insertion order is preserved.
        self._data: dict[ChatId, dict[str, _Subscription]] = {}
        self._lock = asyncio.Lock()

    def init_db(self) -> None:
        """Nothing to create; kept for parity with SQLiteRepoStorage."""

    def close(self) -> None:
        self._data.clear()

    async def aclose(self) -> None:
        async with self._lock:
            self.close()

    async def __aenter__(self) -> "InMemoryRepoStorage":
        self.init_db()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _find(self, chat_id: ChatId, repo_key: str) -> Optional[_Subscription]:
        return self._data.get(chat_id, {}).get(repo_key)

    async def add_repository(self, chat_id: ChatId, repository: RepoEntity) -> bool:
        async with self._lock:
            repos = self._data.setdefault(chat_id, {})
            if repository.key in repos:
                return False
            repos[repository.key] = _Subscription(repository=repository)
        LOGGER.info("Chat %s subscribed to %s", chat_id, repository)
        return True

    async def remove_repository(self, chat_id: ChatId, repository: Union[RepoEntity, str]) -> bool:
        async with self._lock:
            repos = self._data.get(chat_id)
            if not repos or repos.pop(normalize_repo_key(repository), None) is None:
                return False
            if not repos:
                del self._data[chat_id]
        LOGGER.info("Chat %s unsubscribed from %s", chat_id, repository)
        return True

    async def get_repos_per_user(self, chat_id: ChatId) -> list[RepoEntity]:
        async with self._lock:
            return [sub.repository for sub in self._data.get(chat_id, {}).values()]

    async def get_all_repos(self) -> dict[ChatId, set[RepoEntity]]:
        async with self._lock:
            return {
                chat_id: {sub.repository for sub in repos.values()}
                for chat_id, repos in self._data.items()
                if repos
            }

    async def get_last_poll_time(self, chat_id: ChatId, repository: RepoEntity) -> Optional[int]:
        async with self._lock:
            sub = self._find(chat_id, repository.key)
            return sub.last_poll_time if sub else None

    async def set_last_poll_time(
        self,
        chat_id: ChatId,
        repository: RepoEntity,
        timestamp: Optional[int] = None,
    ) -> None:
        if timestamp is None:
            timestamp = int(time.time())
        async with self._lock:
            sub = self._find(chat_id, repository.key)
            if sub is None:
                LOGGER.debug("Poll time not stored: chat %s is not subscribed to %s", chat_id, repository)
                return
            sub.last_poll_time = int(timestamp)

    async def get_tracked_labels(self, chat_id: ChatId, repository: RepoEntity) -> set[str]:
        async with self._lock:
            sub = self._find(chat_id, repository.key)
            return set(sub.labels) if sub else set()

    async def toggle_label(self, chat_id: ChatId, repository: RepoEntity, label_name: str) -> bool:
        async with self._lock:
            sub = self._find(chat_id, repository.key)
            if sub is None:
                LOGGER.debug("Label %r not toggled: chat %s is not subscribed to %s", label_name, chat_id, repository)
                return False
            if label_name in sub.labels:
                sub.labels.discard(label_name)
                return False
            sub.labels.add(label_name)
            return True

    async def count_repos_per_user(self, chat_id: ChatId) -> int:
        async with self._lock:
            return len(self._data.get(chat_id, {}))

    async def list_subscriptions(self, chat_id: Optional[ChatId] = None) -> list[SubscriptionRecord]:
        async with self._lock:
            chats = sorted(self._data) if chat_id is None else [chat_id]
            return [
                SubscriptionRecord(
                    chat_id=chat,
                    repository=sub.repository,
                    last_poll_time=sub.last_poll_time,
                    labels=frozenset(sub.labels),
                )
                for chat in chats
                for sub in self._data.get(chat, {}).values()
            ]
