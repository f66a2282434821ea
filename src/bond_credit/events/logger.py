"""Event logger -- append-only records of vault and opportunity activity.

Each ``log_*`` method inserts one row and returns its id. Amounts are
stored as strings so yoctoNEAR-sized integers survive untouched.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from typing import Any, Optional

from bond_credit.storage.database import Database
from bond_credit.storage.models import (
    AllocationEvent,
    DepositEvent,
    EventStats,
    IntentEvent,
    ScoreEvent,
    Severity,
    SystemEvent,
    WithdrawalEvent,
)

logger = logging.getLogger("bond_credit.events")

EVENT_TABLES = (
    "deposit_events",
    "withdrawal_events",
    "allocation_events",
    "intent_events",
    "score_events",
    "system_events",
)

_DAY_MS = 24 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class EventLogger:
    """Writes and queries the event tables of a connected :class:`Database`."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def log_deposit(
        self,
        user_id: str,
        token_type: str,
        amount: Any,
        shares_received: Any,
        tx_hash: str,
        opportunity_id: Optional[int] = None,
    ) -> int:
        return await self._insert("deposit_events", {
            "user_id": user_id,
            "token_type": token_type,
            "amount": str(amount),
            "shares_received": str(shares_received),
            "tx_hash": tx_hash,
            "timestamp": _now_ms(),
            "opportunity_id": opportunity_id,
        })

    async def log_withdrawal(
        self,
        user_id: str,
        token_type: str,
        shares_burned: Any,
        tokens_received: Any,
        yield_earned: Any,
        tx_hash: str,
    ) -> int:
        return await self._insert("withdrawal_events", {
            "user_id": user_id,
            "token_type": token_type,
            "shares_burned": str(shares_burned),
            "tokens_received": str(tokens_received),
            "yield_earned": str(yield_earned),
            "tx_hash": tx_hash,
            "timestamp": _now_ms(),
        })

    async def log_allocation(
        self,
        user_id: str,
        opportunity_id: int,
        amount: Any,
        tx_hash: str,
        gas_used: Any,
        latency_ms: int,
        success: bool = True,
    ) -> int:
        return await self._insert("allocation_events", {
            "user_id": user_id,
            "opportunity_id": opportunity_id,
            "amount": str(amount),
            "tx_hash": tx_hash,
            "gas_used": str(gas_used),
            "latency_ms": latency_ms,
            "success": success,
            "timestamp": _now_ms(),
        })

    async def log_intent_execution(
        self,
        intent_id: str,
        user_id: str,
        opportunity_id: int,
        action_type: str,
        amount: Any,
        success: bool,
        gas_used: Any,
        latency_ms: int,
        tx_hash: str,
        error_message: Optional[str] = None,
    ) -> int:
        return await self._insert("intent_events", {
            "intent_id": intent_id,
            "user_id": user_id,
            "opportunity_id": opportunity_id,
            "action_type": action_type,
            "amount": str(amount),
            "success": success,
            "gas_used": str(gas_used),
            "latency_ms": latency_ms,
            "tx_hash": tx_hash,
            "error_message": error_message,
            "timestamp": _now_ms(),
        })

    async def log_score_update(
        self,
        opportunity_id: int,
        opportunity_name: str,
        old_score: int,
        new_score: int,
        update_type: str = "manual",
    ) -> int:
        return await self._insert("score_events", {
            "opportunity_id": opportunity_id,
            "opportunity_name": opportunity_name,
            "old_score": old_score,
            "new_score": new_score,
            "score_change": new_score - old_score,
            "update_type": update_type,
            "timestamp": _now_ms(),
        })

    async def log_system_event(
        self,
        event_type: str,
        message: str,
        severity: Severity | str = Severity.INFO,
        metadata: Optional[dict] = None,
    ) -> int:
        return await self._insert("system_events", {
            "event_type": event_type,
            "message": message,
            "severity": Severity(severity).value,
            "metadata": json.dumps(metadata) if metadata else None,
            "timestamp": _now_ms(),
        })

    async def _insert(self, table: str, row: dict) -> int:
        if table not in EVENT_TABLES:
            raise ValueError(f"Unknown event table '{table}'")
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        try:
            cursor = await self.db.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
        except sqlite3.Error as e:
            logger.error(f"Failed to insert {table} event: {e}")
            raise
        logger.info(f"{table} event logged (id={cursor.lastrowid})")
        return cursor.lastrowid

    # ------------------------------------------------------------------
    # Queries (newest first)
    # ------------------------------------------------------------------

    async def _query(
        self,
        table: str,
        filters: dict[str, Any],
        limit: int,
        offset: int,
    ) -> list[dict]:
        if table not in EVENT_TABLES:
            raise ValueError(f"Unknown event table '{table}'")
        sql = f"SELECT * FROM {table}"
        params: list[Any] = []
        conditions = []
        for column, value in filters.items():
            if value is not None and value != "":
                conditions.append(f"{column} = ?")
                params.append(value)
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return await self.db.fetch_all(sql, tuple(params))

    async def get_deposit_events(
        self, user_id: str | None = None, limit: int = 100, offset: int = 0,
    ) -> list[DepositEvent]:
        rows = await self._query("deposit_events", {"user_id": user_id}, limit, offset)
        return [DepositEvent.model_validate(r) for r in rows]

    async def get_withdrawal_events(
        self, user_id: str | None = None, limit: int = 100, offset: int = 0,
    ) -> list[WithdrawalEvent]:
        rows = await self._query("withdrawal_events", {"user_id": user_id}, limit, offset)
        return [WithdrawalEvent.model_validate(r) for r in rows]

    async def get_allocation_events(
        self,
        user_id: str | None = None,
        opportunity_id: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AllocationEvent]:
        rows = await self._query(
            "allocation_events",
            {"user_id": user_id, "opportunity_id": opportunity_id},
            limit, offset,
        )
        return [AllocationEvent.model_validate(r) for r in rows]

    async def get_intent_events(
        self, user_id: str | None = None, limit: int = 100, offset: int = 0,
    ) -> list[IntentEvent]:
        rows = await self._query("intent_events", {"user_id": user_id}, limit, offset)
        return [IntentEvent.model_validate(r) for r in rows]

    async def get_score_events(
        self, opportunity_id: int | None = None, limit: int = 100, offset: int = 0,
    ) -> list[ScoreEvent]:
        rows = await self._query("score_events", {"opportunity_id": opportunity_id}, limit, offset)
        return [ScoreEvent.model_validate(r) for r in rows]

    async def get_system_events(self, limit: int = 100, offset: int = 0) -> list[SystemEvent]:
        rows = await self._query("system_events", {}, limit, offset)
        return [SystemEvent.model_validate(r) for r in rows]

    async def get_event_stats(self) -> EventStats:
        since = _now_ms() - _DAY_MS

        async def count(table: str, recent: bool = False) -> int:
            if recent:
                row = await self.db.fetch_one(
                    f"SELECT COUNT(*) AS n FROM {table} WHERE timestamp > ?", (since,)
                )
            else:
                row = await self.db.fetch_one(f"SELECT COUNT(*) AS n FROM {table}")
            return row["n"] if row else 0

        return EventStats(
            deposits=await count("deposit_events"),
            withdrawals=await count("withdrawal_events"),
            allocations=await count("allocation_events"),
            intents=await count("intent_events"),
            score_updates=await count("score_events"),
            recent_deposits=await count("deposit_events", recent=True),
            recent_withdrawals=await count("withdrawal_events", recent=True),
            recent_allocations=await count("allocation_events", recent=True),
        )
