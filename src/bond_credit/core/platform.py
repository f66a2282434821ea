"""Platform - the top-level object wiring config, storage, monitor and wallets."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional

import httpx

from bond_credit import __version__
from bond_credit.config import BondConfig, get_root_dir, load_config, save_config
from bond_credit.core.models import OpportunityRisk
from bond_credit.core.seed import ensure_seeded
from bond_credit.core.store import InMemoryStore
from bond_credit.events.logger import EventLogger
from bond_credit.scoring.opportunity import OpportunityMetrics, OpportunityScorer, TrustScore
from bond_credit.storage.database import Database, get_database
from bond_credit.storage.models import Severity
from bond_credit.vaults.market_data import MarketDataFeed
from bond_credit.vaults.risk_monitor import AlertType, RiskAlert, RiskMonitor
from bond_credit.wallet.manager import WalletManager
from bond_credit.wallet.transfers import BulkTransferExecutor, WalletResult

logger = logging.getLogger("bond_credit.platform")

_ALERT_SEVERITY = {
    AlertType.WARNING: Severity.WARNING,
    AlertType.ALERT: Severity.ERROR,
    AlertType.CRITICAL: Severity.CRITICAL,
}

_RISK_FOR_BAND = {
    "Preferred": OpportunityRisk.LOW,
    "Moderate": OpportunityRisk.MEDIUM,
    "Caution": OpportunityRisk.HIGH,
}


class Platform:
    """One bond.credit deployment rooted at a ``.bond-credit`` directory.

    Holds the in-memory agent/vault store (seeded with demo data), the
    SQLite event log, the risk monitor and the NEAR wallet manager.
    """

    def __init__(
        self,
        config: BondConfig,
        root_dir: Path,
        db: Database,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.root_dir = root_dir
        self.db = db
        self.store = InMemoryStore()
        ensure_seeded(self.store)
        self.events = EventLogger(db)
        self.scorer = OpportunityScorer()
        self.risk_monitor = RiskMonitor(self.store, config.risk_monitor)
        self.market_feed = MarketDataFeed(
            self.risk_monitor, config.risk_monitor.market_data_chains or None
        )
        self.wallet_dir = root_dir / "wallet"
        self.wallet_manager = WalletManager(self.wallet_dir, db, config.near, transport=transport)
        self.started_at = time.monotonic()
        self._on_event: Callable[[str, dict], Awaitable[None]] | None = None

        self.risk_monitor.set_alert_listener(self._on_alert)

    @classmethod
    async def load(
        cls,
        base_path: Path | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> Platform:
        """Load an existing deployment from a .bond-credit directory."""
        root_dir = get_root_dir(base_path)
        config_path = root_dir / "config.yaml"

        if not config_path.exists():
            raise FileNotFoundError(
                f"No bond.credit setup found at {root_dir}. Run 'bond-credit init' first."
            )

        config = load_config(config_path)
        db = get_database(root_dir)
        await db.connect()

        platform = cls(config=config, root_dir=root_dir, db=db, transport=transport)
        if platform.wallet_manager.has_wallet():
            await platform.wallet_manager.register_wallets_in_db()
        logger.info(f"Loaded '{config.name}' from {root_dir}")
        return platform

    @classmethod
    async def init(
        cls,
        base_path: Path | None = None,
        name: str = "bond.credit",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> Platform:
        """Create the config file and database in the given directory."""
        root_dir = get_root_dir(base_path)
        config_path = root_dir / "config.yaml"

        config = BondConfig(name=name)
        save_config(config, config_path)

        db = get_database(root_dir)
        await db.connect()

        platform = cls(config=config, root_dir=root_dir, db=db, transport=transport)
        await platform.events.log_system_event("init", f"Initialized '{name}'")
        return platform

    def set_event_handler(self, handler: Callable[[str, dict], Awaitable[None]]) -> None:
        """Set a callback for platform events (used by the dashboard)."""
        self._on_event = handler

    async def _emit(self, event: str, data: dict) -> None:
        if self._on_event:
            await self._on_event(event, data)

    async def _on_alert(self, alert: RiskAlert) -> None:
        """Persist risk alerts to the system event log and forward them."""
        await self.events.log_system_event(
            "risk_alert",
            alert.message,
            severity=_ALERT_SEVERITY[alert.type],
            metadata={"vaultId": alert.vault_id, "alertId": alert.id, "type": alert.type.value},
        )
        await self._emit("risk.alert", alert.to_api())

    # ------------------------------------------------------------------
    # Opportunities
    # ------------------------------------------------------------------

    async def rescore_opportunities(self, batch: list[OpportunityMetrics]) -> list[TrustScore]:
        """Score *batch*, update matching stored opportunities and log changes."""
        scores = self.scorer.calculate_batch_scores(batch)
        for score in scores:
            opportunity = self.store.get_opportunity(score.opportunity_id)
            if opportunity is None:
                logger.warning(f"Scored unknown opportunity {score.opportunity_id}, not stored")
                continue
            old_score = opportunity.total_score
            self.store.upsert_opportunity(opportunity.model_copy(update={
                "trust_score": score.total_score,
                "total_score": score.total_score,
                "performance": score.performance_score,
                "reliability": score.reliability_score,
                "safety": score.safety_score,
                "risk_level": _RISK_FOR_BAND[score.risk.level],
            }))
            await self.events.log_score_update(
                score.opportunity_id, opportunity.name, old_score, score.total_score,
                update_type="scoring",
            )
        return scores

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    def bulk_executor(
        self,
        on_progress: Optional[Callable[[str, WalletResult], None]] = None,
    ) -> BulkTransferExecutor:
        return BulkTransferExecutor(self.wallet_manager, self.config.transfers, on_progress)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    def status(self) -> dict:
        return {
            "name": self.config.name,
            "version": __version__,
            "network": self.wallet_manager.network.network_id,
            "agents": len(self.store.list_agents()),
            "vaults": len(self.store.list_vaults()),
            "opportunities": len(self.store.list_opportunities()),
            "wallets": len(self.wallet_manager.accounts),
            "riskMonitor": self.risk_monitor.get_status(),
        }

    async def shutdown(self) -> None:
        """Clean shutdown."""
        await self.risk_monitor.stop()
        await self.wallet_manager.close()
        await self.db.close()
