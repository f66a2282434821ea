"""Integration tests for the Platform object."""

from __future__ import annotations

import pytest
import pytest_asyncio

from bond_credit.core.models import OpportunityRisk
from bond_credit.core.platform import Platform
from bond_credit.scoring.opportunity import OpportunityMetrics, PerformanceInput
from bond_credit.storage.models import Severity
from bond_credit.vaults.chains import ChainId
from bond_credit.vaults.credit_vault import (
    calculate_dynamic_ltv,
    create_credit_vault,
    update_vault_debt,
)
from bond_credit.wallet.keystore import create_keystore
from tests.conftest import TEST_MNEMONIC, make_agent


@pytest_asyncio.fixture
async def platform(tmp_path, near_node):
    p = await Platform.init(tmp_path, name="test-deployment", transport=near_node.transport)
    yield p
    await p.shutdown()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_init_writes_config_and_logs(self, platform, tmp_path):
        assert (tmp_path / ".bond-credit" / "config.yaml").exists()
        assert (tmp_path / ".bond-credit" / "bond-credit.db").exists()
        [event] = await platform.events.get_system_events()
        assert event.event_type == "init"
        assert "test-deployment" in event.message

    @pytest.mark.asyncio
    async def test_seeded_on_start(self, platform):
        status = platform.status()
        assert status["name"] == "test-deployment"
        assert status["agents"] == 3
        assert status["opportunities"] == 4
        assert status["vaults"] == 0
        assert status["riskMonitor"]["isRunning"] is False

    @pytest.mark.asyncio
    async def test_load_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="bond-credit init"):
            await Platform.load(tmp_path)

    @pytest.mark.asyncio
    async def test_load_registers_keystore_wallets(self, platform, tmp_path, near_node):
        await platform.shutdown()
        create_keystore(tmp_path / ".bond-credit" / "wallet", TEST_MNEMONIC, "pw", count=2)

        loaded = await Platform.load(tmp_path, transport=near_node.transport)
        try:
            assert loaded.config.name == "test-deployment"
            assert len(await loaded.wallet_manager.list_wallets()) == 2
            assert loaded.status()["wallets"] == 2
        finally:
            await loaded.shutdown()

    @pytest.mark.asyncio
    async def test_bulk_executor_uses_transfer_config(self, platform):
        platform.config.transfers.count = 4
        executor = platform.bulk_executor()
        assert executor.config.count == 4
        assert executor.manager is platform.wallet_manager


class TestRescoring:
    @pytest.mark.asyncio
    async def test_updates_store_and_logs_change(self, platform):
        metrics = [
            OpportunityMetrics(id=1, name="NEAR Staking Pool", performance=PerformanceInput(apy_30d=12)),
            OpportunityMetrics(id=99, name="Unknown"),
        ]
        scores = await platform.rescore_opportunities(metrics)
        assert [s.opportunity_id for s in scores] == [1, 99]

        stored = platform.store.get_opportunity(1)
        assert stored.total_score == scores[0].total_score
        assert stored.performance == 24
        assert stored.risk_level == OpportunityRisk.HIGH

        [event] = await platform.events.get_score_events()
        assert event.opportunity_id == 1
        assert event.old_score == 92
        assert event.score_change == scores[0].total_score - 92
        assert event.update_type == "scoring"


class TestAlerts:
    @pytest.mark.asyncio
    async def test_alerts_logged_and_forwarded(self, platform):
        agent = make_agent()
        platform.store.upsert_agent(agent)
        max_ltv = calculate_dynamic_ltv(agent, ChainId.ETHEREUM, 10_000)
        vault = create_credit_vault(agent.id, ChainId.ETHEREUM, "ETH", 4, 10_000, max_ltv)
        platform.store.upsert_vault(update_vault_debt(vault, 8_000, 8_000))

        forwarded = []

        async def handler(event, data):
            forwarded.append((event, data))

        platform.set_event_handler(handler)
        await platform.risk_monitor.perform_risk_check()

        events = [e for e in await platform.events.get_system_events() if e.event_type == "risk_alert"]
        assert len(events) == 3
        assert {e.severity for e in events} == {Severity.ERROR, Severity.CRITICAL}
        assert all(e.metadata["vaultId"] == vault.id for e in events)
        assert [name for name, _ in forwarded] == ["risk.alert"] * 3
        assert forwarded[0][1]["vaultId"] == vault.id
