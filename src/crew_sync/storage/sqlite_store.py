"""SQLite storage backend for the local durable store."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from pathlib import Path

import aiosqlite

from crew_sync.errors import LocalStoreError
from crew_sync.storage.base import LocalStore
from crew_sync.storage.sqlite_app_state import SQLiteAppStateMixin
from crew_sync.storage.sqlite_documents import SQLiteDocumentMixin
from crew_sync.storage.sqlite_pending import SQLitePendingOpsMixin
from crew_sync.storage.sqlite_schema import SCHEMA, SCHEMA_VERSION, run_migrations

logger = logging.getLogger(__name__)


class SQLiteLocalStore(
    SQLiteDocumentMixin,
    SQLitePendingOpsMixin,
    SQLiteAppStateMixin,
    LocalStore,
):
    """SQLite-based local store. Data persists to disk and survives restarts.

    All writes go through one writer connection guarded by an asyncio lock.
    Inside ``transaction()`` the owning task reads and writes through the
    writer connection and commits once at the end. Every other reader uses a
    separate ``query_only`` connection, which under WAL only ever sees
    committed data.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path).resolve()
        self._conn: aiosqlite.Connection | None = None
        self._reader: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._tx_owner: ContextVar[bool] = ContextVar(f"sqlite_tx_{id(self)}", default=False)

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Open connections, migrate an older schema, then apply the full schema."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA synchronous=NORMAL")
        await self._conn.execute("PRAGMA busy_timeout=5000")

        await self._conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)"
        )
        await self._conn.commit()

        async with self._conn.execute("SELECT version FROM schema_version") as cursor:
            row = await cursor.fetchone()

        if row is not None and row["version"] < SCHEMA_VERSION:
            await run_migrations(self._conn, row["version"])

        await self._conn.executescript(SCHEMA)

        async with self._conn.execute("SELECT version FROM schema_version") as cursor:
            row = await cursor.fetchone()
            if row is None:
                await self._conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
                )
                await self._conn.commit()

        self._reader = await aiosqlite.connect(self._db_path)
        self._reader.row_factory = aiosqlite.Row
        await self._reader.execute("PRAGMA query_only=ON")
        await self._reader.execute("PRAGMA busy_timeout=5000")

        logger.debug("Opened local store at %s", self._db_path)

    async def close(self) -> None:
        """Close reader and writer connections."""
        if self._reader:
            await self._reader.close()
            self._reader = None
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def schema_version(self) -> int:
        conn = self._ensure_conn()
        async with conn.execute("SELECT version FROM schema_version") as cursor:
            row = await cursor.fetchone()
        return row["version"] if row else 0

    def _ensure_conn(self) -> aiosqlite.Connection:
        """Ensure writer connection is available."""
        if self._conn is None:
            raise LocalStoreError("Database not initialized. Call initialize() first.")
        return self._conn

    def _read_conn(self) -> aiosqlite.Connection:
        """Writer connection for the transaction owner, committed-only reader otherwise."""
        if self._tx_owner.get() or self._reader is None:
            return self._ensure_conn()
        return self._reader

    @asynccontextmanager
    async def _write_conn(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = self._ensure_conn()
        if self._tx_owner.get():
            yield conn
            return
        async with self._lock:
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._tx_owner.get():
            yield
            return
        conn = self._ensure_conn()
        async with self._lock:
            token = self._tx_owner.set(True)
            try:
                yield
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()
            finally:
                self._tx_owner.reset(token)
