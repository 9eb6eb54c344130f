"""Ports (interfaces) used by the polling service and command handlers.

Callers depend only on RepoStoragePort so the SQLite adapter can be swapped
for the in-memory one in tests.
"""

from __future__ import annotations

from typing import Optional, Protocol, Union, runtime_checkable

from repowatch.core.models import ChatId, RepoEntity


@runtime_checkable
class RepoStoragePort(Protocol):
    """Durable subscription operations.

    Every method may raise StorageError. Missing rows are reported through
    the return value (False, None, empty collections), never as errors.
    """

    async def add_repository(self, chat_id: ChatId, repository: RepoEntity) -> bool:
        """Subscribe a chat; False if it was already subscribed."""
        ...

    async def remove_repository(self, chat_id: ChatId, repository: Union[RepoEntity, str]) -> bool:
        """Unsubscribe a chat, dropping its poll time and labels."""
        ...

    async def get_repos_per_user(self, chat_id: ChatId) -> list[RepoEntity]:
        ...

    async def get_all_repos(self) -> dict[ChatId, set[RepoEntity]]:
        ...

    async def get_last_poll_time(self, chat_id: ChatId, repository: RepoEntity) -> Optional[int]:
        ...

    async def set_last_poll_time(
        self,
        chat_id: ChatId,
        repository: RepoEntity,
        timestamp: Optional[int] = None,
    ) -> None:
        """Record the poll time (defaults to now) for an existing subscription."""
        ...

    async def get_tracked_labels(self, chat_id: ChatId, repository: RepoEntity) -> set[str]:
        ...

    async def toggle_label(self, chat_id: ChatId, repository: RepoEntity, label_name: str) -> bool:
        """Flip label membership; True if the label is tracked afterwards."""
        ...

    async def count_repos_per_user(self, chat_id: ChatId) -> int:
        ...
