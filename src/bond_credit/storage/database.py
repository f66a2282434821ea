"""Async SQLite database layer for bond.credit.

Uses ``aiosqlite`` for non-blocking database access with WAL mode and
dictionary-style row results.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite


class Database:
    """Thin async wrapper around an SQLite database.

    Parameters
    ----------
    db_path:
        Filesystem path to the SQLite database file.  The file (and any
        intermediate directories) will be created automatically on
        :meth:`connect` if they do not already exist.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database connection, enable WAL mode, and run migrations."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))

        await self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.row_factory = sqlite3.Row

        await self._migrate()

    async def close(self) -> None:
        """Close the database connection gracefully."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement and commit.

        Returns the raw ``aiosqlite.Cursor`` so callers can inspect
        ``lastrowid``, ``rowcount``, etc.
        """
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        await self._conn.commit()
        return cursor

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        """Execute a query and return the first row as a dict, or ``None``."""
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        return dict(row)

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        """Execute a query and return all rows as a list of dicts."""
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    async def ping(self) -> bool:
        """Return ``True`` if a trivial query succeeds."""
        if self._conn is None:
            return False
        try:
            await self.fetch_one("SELECT 1 AS ok")
        except (sqlite3.Error, ValueError):
            return False
        return True

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    async def _migrate(self) -> None:
        """Create all required tables and indexes if they do not already exist."""
        assert self._conn is not None

        await self._conn.executescript(
            """\
            CREATE TABLE IF NOT EXISTS deposit_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                token_type TEXT NOT NULL,
                amount TEXT NOT NULL,
                shares_received TEXT NOT NULL,
                tx_hash TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                opportunity_id INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS withdrawal_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                token_type TEXT NOT NULL,
                shares_burned TEXT NOT NULL,
                tokens_received TEXT NOT NULL,
                yield_earned TEXT NOT NULL,
                tx_hash TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS allocation_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                opportunity_id INTEGER NOT NULL,
                amount TEXT NOT NULL,
                tx_hash TEXT NOT NULL,
                gas_used TEXT NOT NULL,
                latency_ms INTEGER NOT NULL,
                success BOOLEAN NOT NULL,
                timestamp INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS intent_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                intent_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                opportunity_id INTEGER NOT NULL,
                action_type TEXT NOT NULL,
                amount TEXT NOT NULL,
                success BOOLEAN NOT NULL,
                gas_used TEXT NOT NULL,
                latency_ms INTEGER NOT NULL,
                tx_hash TEXT NOT NULL,
                error_message TEXT,
                timestamp INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS score_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                opportunity_id INTEGER NOT NULL,
                opportunity_name TEXT NOT NULL,
                old_score INTEGER NOT NULL,
                new_score INTEGER NOT NULL,
                score_change INTEGER NOT NULL,
                update_type TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS system_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                message TEXT NOT NULL,
                severity TEXT NOT NULL,
                metadata TEXT,
                timestamp INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS wallets (
                account_id TEXT PRIMARY KEY,
                network TEXT NOT NULL,
                public_key TEXT NOT NULL,
                derivation_path TEXT DEFAULT '',
                wallet_index INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS transfers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT,
                sender_id TEXT NOT NULL,
                receiver_id TEXT NOT NULL,
                amount_yocto TEXT NOT NULL,
                network TEXT NOT NULL,
                status TEXT NOT NULL,
                tx_hash TEXT,
                error TEXT,
                timestamp INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_deposit_user ON deposit_events(user_id);
            CREATE INDEX IF NOT EXISTS idx_deposit_timestamp ON deposit_events(timestamp);
            CREATE INDEX IF NOT EXISTS idx_withdrawal_user ON withdrawal_events(user_id);
            CREATE INDEX IF NOT EXISTS idx_allocation_user ON allocation_events(user_id);
            CREATE INDEX IF NOT EXISTS idx_allocation_opportunity ON allocation_events(opportunity_id);
            CREATE INDEX IF NOT EXISTS idx_intent_user ON intent_events(user_id);
            CREATE INDEX IF NOT EXISTS idx_score_opportunity ON score_events(opportunity_id);
            CREATE INDEX IF NOT EXISTS idx_transfer_sender ON transfers(sender_id);
            CREATE INDEX IF NOT EXISTS idx_transfer_run ON transfers(run_id);
            """
        )
        await self._conn.commit()


# ------------------------------------------------------------------
# Convenience factory
# ------------------------------------------------------------------

def get_database(root_dir: Path) -> Database:
    """Return a :class:`Database` instance pointing at ``root_dir/bond-credit.db``.

    The caller is responsible for calling :meth:`Database.connect` before
    using the returned instance.
    """
    return Database(Path(root_dir) / "bond-credit.db")
