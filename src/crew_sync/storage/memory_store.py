"""In-memory local store for development and testing."""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import replace
from typing import Any

from crew_sync.core.operations import PendingOperation
from crew_sync.storage.base import LocalStore


class InMemoryLocalStore(LocalStore):
    """Dict-backed store. Data is lost when the process exits.

    Transactions hold a lock for their whole duration and snapshot every
    table up front, restoring the snapshot if the block raises. Callers
    outside the transaction wait on the same lock, so they never see a
    partial write.
    """

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._pending: dict[str, PendingOperation] = {}
        self._state: dict[str, Any] = {}
        self._blobs: dict[str, bytes] = {}
        self._lock = asyncio.Lock()
        self._in_tx: ContextVar[bool] = ContextVar(f"memory_tx_{id(self)}", default=False)

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        if self._in_tx.get():
            yield
            return
        async with self._lock:
            yield

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._in_tx.get():
            yield
            return
        async with self._lock:
            snapshot = (
                copy.deepcopy(dict(self._tables)),
                dict(self._pending),
                copy.deepcopy(self._state),
                dict(self._blobs),
            )
            token = self._in_tx.set(True)
            try:
                yield
            except BaseException:
                tables, pending, state, blobs = snapshot
                self._tables = defaultdict(dict, tables)
                self._pending = pending
                self._state = state
                self._blobs = blobs
                raise
            finally:
                self._in_tx.reset(token)

    # ========== Entity tables ==========

    async def get(self, table: str, key: str) -> dict[str, Any] | None:
        async with self._guard():
            record = self._tables[table].get(str(key))
            return copy.deepcopy(record) if record is not None else None

    async def put(self, table: str, key: str, record: dict[str, Any]) -> None:
        async with self._guard():
            self._tables[table][str(key)] = copy.deepcopy(record)

    async def delete(self, table: str, key: str) -> bool:
        async with self._guard():
            return self._tables[table].pop(str(key), None) is not None

    async def all(self, table: str) -> list[dict[str, Any]]:
        async with self._guard():
            rows = self._tables[table]
            return [copy.deepcopy(rows[k]) for k in sorted(rows)]

    # ========== Pending operations ==========

    async def add_pending(self, op: PendingOperation) -> None:
        async with self._guard():
            if op.id in self._pending:
                raise ValueError(f"Pending operation {op.id} already exists")
            self._pending[op.id] = op

    async def get_pending(self, op_id: str) -> PendingOperation | None:
        async with self._guard():
            return self._pending.get(op_id)

    async def update_pending(self, op: PendingOperation) -> None:
        async with self._guard():
            if op.id not in self._pending:
                raise ValueError(f"Pending operation {op.id} does not exist")
            self._pending[op.id] = replace(op, payload=copy.deepcopy(op.payload))

    async def delete_pending(self, op_id: str) -> bool:
        async with self._guard():
            return self._pending.pop(op_id, None) is not None

    async def pending_due(self, threshold: int) -> list[PendingOperation]:
        async with self._guard():
            due = [
                op
                for op in self._pending.values()
                if not op.is_held and op.next_attempt_at <= threshold
            ]
            return sorted(due, key=lambda op: op.sort_key)

    async def next_pending_due_at(self) -> int | None:
        async with self._guard():
            times = [op.next_attempt_at for op in self._pending.values() if not op.is_held]
            return min(times) if times else None

    async def list_pending(self) -> list[PendingOperation]:
        async with self._guard():
            return sorted(self._pending.values(), key=lambda op: op.sort_key)

    async def count_pending(self) -> int:
        async with self._guard():
            return len(self._pending)

    # ========== App state ==========

    async def get_state(self, key: str) -> Any | None:
        async with self._guard():
            return copy.deepcopy(self._state.get(key))

    async def put_state(self, key: str, value: Any) -> None:
        async with self._guard():
            self._state[key] = copy.deepcopy(value)

    # ========== Blobs ==========

    async def get_blob(self, key: str) -> bytes | None:
        async with self._guard():
            return self._blobs.get(key)

    async def put_blob(self, key: str, data: bytes) -> None:
        async with self._guard():
            self._blobs[key] = bytes(data)

    async def delete_blob(self, key: str) -> bool:
        async with self._guard():
            return self._blobs.pop(key, None) is not None
