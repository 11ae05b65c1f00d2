"""SQLite mixin for replicated entity records."""

from __future__ import annotations

import json
import logging
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any

from crew_sync.core.entities import updated_at_of
from crew_sync.errors import LocalStoreError

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)


def _check_table(table: str) -> str:
    if not table:
        raise LocalStoreError("Table name must not be empty")
    return str(table)


class SQLiteDocumentMixin:
    """Mixin: keyed JSON documents grouped by table."""

    def _read_conn(self) -> aiosqlite.Connection:
        raise NotImplementedError

    def _write_conn(self) -> AbstractAsyncContextManager[aiosqlite.Connection]:
        raise NotImplementedError

    async def get(self, table: str, key: str) -> dict[str, Any] | None:
        conn = self._read_conn()
        async with conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND key = ?",
            (_check_table(table), str(key)),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row["data"])

    async def put(self, table: str, key: str, record: dict[str, Any]) -> None:
        async with self._write_conn() as conn:
            await conn.execute(
                """INSERT OR REPLACE INTO documents (collection, key, data, updated_at)
                   VALUES (?, ?, ?, ?)""",
                (_check_table(table), str(key), json.dumps(record), updated_at_of(record)),
            )

    async def delete(self, table: str, key: str) -> bool:
        async with self._write_conn() as conn:
            cursor = await conn.execute(
                "DELETE FROM documents WHERE collection = ? AND key = ?",
                (_check_table(table), str(key)),
            )
            return cursor.rowcount > 0

    async def all(self, table: str) -> list[dict[str, Any]]:
        conn = self._read_conn()
        async with conn.execute(
            "SELECT key, data FROM documents WHERE collection = ? ORDER BY key",
            (_check_table(table),),
        ) as cursor:
            rows = await cursor.fetchall()

        records: list[dict[str, Any]] = []
        for row in rows:
            try:
                records.append(json.loads(row["data"]))
            except (json.JSONDecodeError, TypeError):
                logger.warning("Corrupt JSON in documents for %s/%s", table, row["key"])
        return records
