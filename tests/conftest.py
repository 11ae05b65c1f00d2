"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import random
from collections.abc import AsyncGenerator, Iterator
from pathlib import Path
from typing import Any

import pytest

from crew_sync.config import reset_config
from crew_sync.remote.memory_remote import InMemoryRemoteStore
from crew_sync.storage.memory_store import InMemoryLocalStore
from crew_sync.storage.sqlite_store import SQLiteLocalStore


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path) -> Iterator[None]:
    """Keep tests away from the user's ~/.crewsync and CREWSYNC_* settings."""
    saved = {k: v for k, v in os.environ.items() if k.startswith("CREWSYNC_")}
    for key in saved:
        del os.environ[key]
    os.environ["CREWSYNC_DIR"] = str(tmp_path / "crewsync")
    reset_config()
    yield
    reset_config()
    for key in [k for k in os.environ if k.startswith("CREWSYNC_")]:
        del os.environ[key]
    os.environ.update(saved)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
async def memory_store() -> InMemoryLocalStore:
    """Create an in-memory local store."""
    store = InMemoryLocalStore()
    await store.initialize()
    return store


@pytest.fixture
async def sqlite_store(tmp_path: Path) -> AsyncGenerator[SQLiteLocalStore, None]:
    """Create a temporary SQLite local store."""
    store = SQLiteLocalStore(tmp_path / "local.db")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def remote() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


def build_job(job_id: int = 42, **overrides: Any) -> dict[str, Any]:
    job: dict[str, Any] = {
        "id": job_id,
        "date": "2025-06-01",
        "crew": "Crew Alpha",
        "client": "Smith",
        "scope": "Hang lights",
    }
    job.update(overrides)
    return job


@pytest.fixture
def make_job() -> Any:
    """Factory for valid job documents."""
    return build_job
