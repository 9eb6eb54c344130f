"""Storage error taxonomy (core domain).

Absence is never an error: "not found" and "already present" are reported as
plain results by the storage port. These exceptions are reserved for genuine
failures so callers can tell a flaky database from corrupted rows.
"""

from __future__ import annotations


class StorageError(Exception):
    """Base class for every failure raised by a storage adapter."""


class DatabaseError(StorageError):
    """The backing database could not execute the operation."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Database error: {message}")
        self.message = message


class DataIntegrityError(StorageError):
    """A stored repository value failed validation when read back."""

    def __init__(self, raw_value: str, cause: BaseException) -> None:
        super().__init__(f"Data integrity error: Stored repository '{raw_value}' is invalid: {cause}")
        self.raw_value = raw_value
        self.cause = cause
