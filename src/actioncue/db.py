"""Database schema and connection setup for actioncue."""

from __future__ import annotations

import aiosqlite

SCHEMA_VERSION = 1

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Actions: the queue
CREATE TABLE IF NOT EXISTS actions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    hook TEXT NOT NULL,
    args TEXT NOT NULL DEFAULT '[]',  -- JSON array
    schedule TEXT NOT NULL,  -- JSON
    group_name TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    priority INTEGER NOT NULL DEFAULT 0,
    claim_id TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,  -- JSON
    cancel_requested INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL,
    next_due REAL,
    started_at REAL,
    completed_at REAL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_actions_status_due ON actions(status, next_due);
CREATE INDEX IF NOT EXISTS idx_actions_group ON actions(group_name);
CREATE INDEX IF NOT EXISTS idx_actions_claim ON actions(claim_id);
CREATE INDEX IF NOT EXISTS idx_actions_hook ON actions(hook);

-- Claims: leases held by workers
CREATE TABLE IF NOT EXISTS claims (
    id TEXT PRIMARY KEY,
    holder TEXT NOT NULL,
    created_at REAL NOT NULL,
    expires_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_claims_expires ON claims(expires_at);

-- Audit trail per action
CREATE TABLE IF NOT EXISTS action_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    action_id INTEGER NOT NULL,
    timestamp REAL NOT NULL,
    message TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_action_logs_action ON action_logs(action_id);
"""


async def init_db(db_path: str, busy_timeout_ms: int = 5000) -> aiosqlite.Connection:
    """
    Initialize database connection and schema.

    The connection runs in autocommit mode; callers open explicit
    ``BEGIN IMMEDIATE`` transactions for writes.

    Args:
        db_path: Path to SQLite file or ":memory:" for in-memory.
        busy_timeout_ms: How long to wait for another writer's lock.

    Returns:
        Open database connection.
    """
    conn = await aiosqlite.connect(db_path, isolation_level=None)
    conn.row_factory = aiosqlite.Row

    # Enable WAL mode for better concurrency
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")

    await conn.execute("BEGIN IMMEDIATE")
    try:
        # Check if schema exists
        async with conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        ) as cursor:
            exists = await cursor.fetchone()

        if not exists:
            # Fresh database - create schema
            for statement in _statements(SCHEMA):
                await conn.execute(statement)
            await conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        await conn.commit()
    except BaseException:
        await conn.rollback()
        await conn.close()
        raise

    return conn


def _statements(script: str) -> list[str]:
    """Split the schema script into statements (executescript would commit early)."""
    lines = [line for line in script.splitlines() if not line.strip().startswith("--")]
    return [s.strip() for s in "\n".join(lines).split(";") if s.strip()]
