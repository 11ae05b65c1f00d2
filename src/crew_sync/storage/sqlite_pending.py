"""SQLite mixin for the pending-operation outbox."""

from __future__ import annotations

import json
import sqlite3
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING

from crew_sync.core.operations import OperationType, PendingOperation

if TYPE_CHECKING:
    import aiosqlite

_COLUMNS = "id, type, payload, attempt, next_attempt_at, created_at, updated_at, held_reason"


def row_to_pending(row: aiosqlite.Row) -> PendingOperation:
    """Convert a pending_ops row to a PendingOperation."""
    return PendingOperation(
        id=row["id"],
        type=OperationType(row["type"]),
        payload=json.loads(row["payload"]),
        attempt=row["attempt"],
        next_attempt_at=row["next_attempt_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        held_reason=row["held_reason"],
    )


class SQLitePendingOpsMixin:
    """Mixin: durable outbox ordered by (next_attempt_at, created_at)."""

    def _read_conn(self) -> aiosqlite.Connection:
        raise NotImplementedError

    def _write_conn(self) -> AbstractAsyncContextManager[aiosqlite.Connection]:
        raise NotImplementedError

    async def add_pending(self, op: PendingOperation) -> None:
        async with self._write_conn() as conn:
            try:
                await conn.execute(
                    f"INSERT INTO pending_ops ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        op.id,
                        op.type.value,
                        json.dumps(op.payload),
                        op.attempt,
                        op.next_attempt_at,
                        op.created_at,
                        op.updated_at,
                        op.held_reason,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise ValueError(f"Pending operation {op.id} already exists") from e

    async def get_pending(self, op_id: str) -> PendingOperation | None:
        conn = self._read_conn()
        async with conn.execute(
            f"SELECT {_COLUMNS} FROM pending_ops WHERE id = ?", (op_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return row_to_pending(row) if row else None

    async def update_pending(self, op: PendingOperation) -> None:
        async with self._write_conn() as conn:
            cursor = await conn.execute(
                """UPDATE pending_ops
                   SET type = ?, payload = ?, attempt = ?, next_attempt_at = ?,
                       created_at = ?, updated_at = ?, held_reason = ?
                   WHERE id = ?""",
                (
                    op.type.value,
                    json.dumps(op.payload),
                    op.attempt,
                    op.next_attempt_at,
                    op.created_at,
                    op.updated_at,
                    op.held_reason,
                    op.id,
                ),
            )
            if cursor.rowcount == 0:
                raise ValueError(f"Pending operation {op.id} does not exist")

    async def delete_pending(self, op_id: str) -> bool:
        async with self._write_conn() as conn:
            cursor = await conn.execute("DELETE FROM pending_ops WHERE id = ?", (op_id,))
            return cursor.rowcount > 0

    async def pending_due(self, threshold: int) -> list[PendingOperation]:
        conn = self._read_conn()
        async with conn.execute(
            f"""SELECT {_COLUMNS} FROM pending_ops
                WHERE held_reason IS NULL AND next_attempt_at <= ?
                ORDER BY next_attempt_at, created_at, id""",
            (threshold,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [row_to_pending(r) for r in rows]

    async def next_pending_due_at(self) -> int | None:
        conn = self._read_conn()
        async with conn.execute(
            "SELECT MIN(next_attempt_at) AS due FROM pending_ops WHERE held_reason IS NULL"
        ) as cursor:
            row = await cursor.fetchone()
        return row["due"] if row else None

    async def list_pending(self) -> list[PendingOperation]:
        conn = self._read_conn()
        async with conn.execute(
            f"SELECT {_COLUMNS} FROM pending_ops ORDER BY next_attempt_at, created_at, id"
        ) as cursor:
            rows = await cursor.fetchall()
        return [row_to_pending(r) for r in rows]

    async def count_pending(self) -> int:
        conn = self._read_conn()
        async with conn.execute("SELECT COUNT(*) AS cnt FROM pending_ops") as cursor:
            row = await cursor.fetchone()
        return row["cnt"] if row else 0
