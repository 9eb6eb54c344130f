"""Core domain models.

These types are shared across the core and adapters to avoid tight coupling
to any integration-specific types (Telegram chats, GitHub API payloads).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

# Telegram chat ids are plain integers; the storage layer never interprets them.
ChatId = int

# GitHub owners allow letters, digits and single hyphens; repository names
# additionally allow dots and underscores.
_OWNER_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})$")
_NAME_RE = re.compile(r"^[A-Za-z0-9._-]{1,100}$")


class InvalidRepoError(ValueError):
    """Raised when a value cannot be parsed into a repository identity."""


@dataclass(frozen=True)
class RepoEntity:
    """Repository identity in ``owner/name`` form.

    Equality and hashing use the lower-cased identity so that ``Foo/Bar`` and
    ``foo/bar`` refer to the same subscription, while ``owner`` and ``name``
    keep the casing the user typed for display.
    """

    owner: str = field(compare=False)
    name: str = field(compare=False)
    key: str = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", f"{self.owner}/{self.name}".lower())

    @property
    def name_with_owner(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def from_name_with_owner(cls, raw: str) -> "RepoEntity":
        """Parse ``owner/name`` and validate both parts."""

        if not isinstance(raw, str):
            raise InvalidRepoError(f"expected a string, got {type(raw).__name__}")
        owner, sep, name = raw.strip().partition("/")
        if not sep or "/" in name:
            raise InvalidRepoError(f"expected 'owner/name', got {raw!r}")
        if not _OWNER_RE.match(owner) or "--" in owner or owner.endswith("-"):
            raise InvalidRepoError(f"invalid owner {owner!r}")
        if not _NAME_RE.match(name) or name in {".", ".."}:
            raise InvalidRepoError(f"invalid repository name {name!r}")
        return cls(owner=owner, name=name)

    def __str__(self) -> str:
        return self.name_with_owner


def normalize_repo_key(value: "RepoEntity | str") -> str:
    """Return the lookup key for a repository or a raw ``owner/name`` string."""

    if isinstance(value, RepoEntity):
        return value.key
    return value.strip().lower()


@dataclass(frozen=True)
class SubscriptionRecord:
    """A subscription together with its polling metadata and label filter."""

    chat_id: ChatId
    repository: RepoEntity
    last_poll_time: Optional[int]
    labels: frozenset[str]
