"""SQLite mixin for app-state values and local blobs."""

from __future__ import annotations

import json
import logging
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)


class SQLiteAppStateMixin:
    """Mixin: JSON key/value state plus raw binary blobs."""

    def _read_conn(self) -> aiosqlite.Connection:
        raise NotImplementedError

    def _write_conn(self) -> AbstractAsyncContextManager[aiosqlite.Connection]:
        raise NotImplementedError

    async def get_state(self, key: str) -> Any | None:
        conn = self._read_conn()
        async with conn.execute("SELECT value FROM app_state WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except (json.JSONDecodeError, TypeError):
            logger.warning("Corrupt JSON in app_state for %s", key)
            return None

    async def put_state(self, key: str, value: Any) -> None:
        async with self._write_conn() as conn:
            await conn.execute(
                "INSERT OR REPLACE INTO app_state (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )

    async def get_blob(self, key: str) -> bytes | None:
        conn = self._read_conn()
        async with conn.execute("SELECT data FROM blobs WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        return bytes(row["data"]) if row else None

    async def put_blob(self, key: str, data: bytes) -> None:
        async with self._write_conn() as conn:
            await conn.execute(
                "INSERT OR REPLACE INTO blobs (key, data, size) VALUES (?, ?, ?)",
                (key, bytes(data), len(data)),
            )

    async def delete_blob(self, key: str) -> bool:
        async with self._write_conn() as conn:
            cursor = await conn.execute("DELETE FROM blobs WHERE key = ?", (key,))
            return cursor.rowcount > 0
