"""Shared CLI helpers for configuration, local store access, and output."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

import typer

from crew_sync.config import SyncConfig
from crew_sync.config import get_config as _get_config
from crew_sync.storage.sqlite_store import SQLiteLocalStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Resources opened during a CLI command, closed before the event loop shuts
# down so aiosqlite's worker thread never posts to a closed loop.
_active_resources: list[Any] = []


def get_config() -> SyncConfig:
    """Get CLI configuration (TOML file plus ``CREWSYNC_*`` overrides)."""
    return _get_config()


def track(resource: T) -> T:
    """Register something with an async ``close()`` for cleanup in :func:`run_async`."""
    _active_resources.append(resource)
    return resource


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async CLI command, closing tracked resources before loop teardown."""

    async def _with_cleanup() -> T:
        try:
            return await coro
        finally:
            for resource in reversed(_active_resources):
                try:
                    await resource.close()
                except Exception:
                    logger.debug("Failed to close %r during cleanup", resource, exc_info=True)
            _active_resources.clear()
            await asyncio.sleep(0)

    return asyncio.run(_with_cleanup())


async def open_store(config: SyncConfig) -> SQLiteLocalStore:
    """Open (creating if needed) the local SQLite store named by ``config``."""
    store = track(SQLiteLocalStore(config.db_path))
    await store.initialize()
    return store


def output_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))
