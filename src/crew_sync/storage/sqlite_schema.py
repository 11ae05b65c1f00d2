"""SQLite schema definition for the local durable store."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 2

# ── Migrations ──────────────────────────────────────────────────────
# Each entry maps (from_version -> to_version) with a list of SQL statements.
# Migrations run sequentially in initialize() when db version < SCHEMA_VERSION.

MIGRATIONS: dict[tuple[int, int], list[str]] = {
    (1, 2): [
        "ALTER TABLE pending_ops ADD COLUMN held_reason TEXT",
    ],
}


async def run_migrations(conn: aiosqlite.Connection, current_version: int) -> int:
    """Apply all pending migrations from current_version to SCHEMA_VERSION.

    Returns the final schema version after all migrations.
    """
    version = current_version

    while version < SCHEMA_VERSION:
        next_version = version + 1
        for sql in MIGRATIONS.get((version, next_version), []):
            try:
                await conn.execute(sql)
            except sqlite3.OperationalError as e:
                # Column may already exist after a partial migration.
                if "duplicate column" in str(e).lower() or "already exists" in str(e).lower():
                    logger.debug("Migration already applied: %s", e)
                else:
                    raise
        logger.info("Migrated local store schema v%d -> v%d", version, next_version)
        version = next_version

    await conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
    await conn.commit()

    return version


SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Replicated entity records, one row per (table, key)
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    key TEXT NOT NULL,
    data TEXT NOT NULL,  -- JSON
    updated_at INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (collection, key)
);

-- Outbox of not-yet-confirmed mutations
CREATE TABLE IF NOT EXISTS pending_ops (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    payload TEXT NOT NULL,  -- JSON
    attempt INTEGER NOT NULL DEFAULT 0,
    next_attempt_at INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    held_reason TEXT
);
CREATE INDEX IF NOT EXISTS idx_pending_ops_due ON pending_ops(next_attempt_at, created_at);

-- Small key/value app state (last sync time, cursors)
CREATE TABLE IF NOT EXISTS app_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL  -- JSON
);

-- Locally captured binaries awaiting upload
CREATE TABLE IF NOT EXISTS blobs (
    key TEXT PRIMARY KEY,
    data BLOB NOT NULL,
    size INTEGER NOT NULL
);
"""
