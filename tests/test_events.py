"""Tests for the SQLite database wrapper and the event logger."""

from __future__ import annotations

import sqlite3

import pytest

from bond_credit.events.logger import EventLogger
from bond_credit.storage.database import Database, get_database
from bond_credit.storage.models import Severity


@pytest.fixture
def events(db):
    return EventLogger(db)


class TestDatabase:
    @pytest.mark.asyncio
    async def test_creates_tables(self, db):
        rows = await db.fetch_all("SELECT name FROM sqlite_master WHERE type = 'table'")
        names = {r["name"] for r in rows}
        assert {"deposit_events", "system_events", "wallets", "transfers"} <= names

    @pytest.mark.asyncio
    async def test_ping(self, tmp_path):
        database = Database(tmp_path / "nested" / "ping.db")
        assert not await database.ping()
        await database.connect()
        try:
            assert database.is_connected
            assert await database.ping()
        finally:
            await database.close()
        assert not database.is_connected

    def test_get_database_path(self, tmp_path):
        assert get_database(tmp_path).db_path == tmp_path / "bond-credit.db"


class TestEventLogger:
    @pytest.mark.asyncio
    async def test_deposit_roundtrip_keeps_large_amounts(self, events):
        amount = 12 * 10**24
        event_id = await events.log_deposit("alice.near", "NEAR", amount, amount, "tx1", opportunity_id=2)
        [event] = await events.get_deposit_events()
        assert event.id == event_id
        assert event.amount == str(amount)
        assert event.opportunity_id == 2
        assert event.to_api()["userId"] == "alice.near"

    @pytest.mark.asyncio
    async def test_newest_first_with_paging(self, events):
        for i in range(3):
            await events.log_withdrawal("bob.near", "NEAR", i, i, 0, f"tx{i}")
        rows = await events.get_withdrawal_events(limit=2)
        assert [r.tx_hash for r in rows] == ["tx2", "tx1"]
        rows = await events.get_withdrawal_events(limit=2, offset=2)
        assert [r.tx_hash for r in rows] == ["tx0"]

    @pytest.mark.asyncio
    async def test_filters(self, events):
        await events.log_allocation("alice.near", 1, 100, "a", 5, 120)
        await events.log_allocation("alice.near", 2, 100, "b", 5, 120, success=False)
        await events.log_allocation("bob.near", 1, 100, "c", 5, 120)

        assert len(await events.get_allocation_events(user_id="alice.near")) == 2
        rows = await events.get_allocation_events(user_id="alice.near", opportunity_id=2)
        assert [r.tx_hash for r in rows] == ["b"]
        assert rows[0].success is False

    @pytest.mark.asyncio
    async def test_intent_error_message(self, events):
        await events.log_intent_execution(
            "intent-1", "alice.near", 3, "deposit", 10, False, 0, 900, "tx", error_message="slippage",
        )
        [event] = await events.get_intent_events(user_id="alice.near")
        assert event.error_message == "slippage"
        assert event.success is False

    @pytest.mark.asyncio
    async def test_score_change_is_derived(self, events):
        await events.log_score_update(4, "USDT Index", 70, 64, update_type="automated")
        [event] = await events.get_score_events(opportunity_id=4)
        assert event.score_change == -6
        assert event.update_type == "automated"

    @pytest.mark.asyncio
    async def test_system_event_metadata(self, events):
        await events.log_system_event("tier_change", "Agent 1 promoted", "warning", {"agentId": "1"})
        await events.log_system_event("startup", "API started")
        newest, oldest = await events.get_system_events()
        assert newest.metadata is None
        assert oldest.metadata == {"agentId": "1"}
        assert oldest.severity == Severity.WARNING

    @pytest.mark.asyncio
    async def test_unknown_severity_rejected(self, events):
        with pytest.raises(ValueError):
            await events.log_system_event("x", "y", "loud")

    @pytest.mark.asyncio
    async def test_stats(self, events):
        await events.log_deposit("a", "NEAR", 1, 1, "t1")
        await events.log_deposit("b", "NEAR", 1, 1, "t2")
        await events.log_score_update(1, "NEAR Staking", 50, 60)
        stats = await events.get_event_stats()
        assert stats.deposits == 2
        assert stats.recent_deposits == 2
        assert stats.withdrawals == 0
        assert stats.score_updates == 1
        assert stats.to_api()["recentDeposits"] == 2

    @pytest.mark.asyncio
    async def test_insert_failure_propagates(self, tmp_path):
        database = Database(tmp_path / "closed.db")
        await database.connect()
        logger = EventLogger(database)
        await database._conn.execute("DROP TABLE system_events")
        with pytest.raises(sqlite3.Error):
            await logger.log_system_event("x", "y")
        await database.close()
