from __future__ import annotations

import asyncio

import pytest

from repowatch.adapters.memory_storage import InMemoryRepoStorage
from repowatch.adapters.sqlite_storage import SQLiteRepoStorage


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "repowatch.db")


@pytest.fixture(params=["memory", "sqlite"])
def make_storage(request, db_path):
    """Factory for each RepoStoragePort implementation."""

    def factory():
        if request.param == "memory":
            return InMemoryRepoStorage()
        return SQLiteRepoStorage(db_path)

    return factory


@pytest.fixture
def run_scenario(make_storage):
    """Run an async scenario against a freshly opened store and return its result."""

    def run(scenario):
        async def runner():
            async with make_storage() as storage:
                return await scenario(storage)

        return asyncio.run(runner())

    return run
