"""Risk monitor -- periodic vault checks, alerting and auto-protection."""

from __future__ import annotations

import asyncio
import logging
import random
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from pydantic import Field

from bond_credit.config import RiskMonitorConfig
from bond_credit.core.models import Agent, ApiModel, new_id, utcnow
from bond_credit.core.store import InMemoryStore
from bond_credit.vaults.chains import ChainId
from bond_credit.vaults.credit_vault import (
    CreditVault,
    HistoryPoint,
    VaultRiskLevel,
    VaultRiskMetrics,
    VaultStatus,
    calculate_vault_risk_metrics,
    execute_protection_rules,
    recalculate_vault_metrics,
    should_trigger_liquidation_protection,
)

logger = logging.getLogger("bond_credit.vaults.risk_monitor")

_HISTORY_LENGTH = 100


class AlertType(str, Enum):
    WARNING = "WARNING"
    ALERT = "ALERT"
    CRITICAL = "CRITICAL"


class RiskAlert(ApiModel):
    id: str = Field(default_factory=lambda: new_id("alert"))
    vault_id: str
    type: AlertType
    message: str
    timestamp: datetime = Field(default_factory=utcnow)
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None


class MarketData(ApiModel):
    chain_id: int
    timestamp: datetime = Field(default_factory=utcnow)
    volatility: float = 1.0
    gas_price: float = 0
    block_number: int = 0
    price_feeds: dict[str, float] = Field(default_factory=dict)


class VaultMonitorResult(ApiModel):
    vault: CreditVault
    risk_metrics: VaultRiskMetrics
    alerts: list[RiskAlert] = Field(default_factory=list)
    protection_triggered: bool = False


AlertListener = Callable[[RiskAlert], Awaitable[None]]


def _validate_chain(chain_id: int) -> int:
    try:
        return int(ChainId(chain_id))
    except ValueError:
        raise ValueError(f"Invalid chain ID: {chain_id}") from None


class RiskMonitor:
    """Watches the store's active vaults and raises alerts.

    The check loop runs as an asyncio task between :meth:`start` and
    :meth:`stop`; :meth:`perform_risk_check` can also be awaited directly.
    """

    def __init__(
        self,
        store: InMemoryStore,
        config: RiskMonitorConfig | None = None,
    ) -> None:
        self.store = store
        self.config = config or RiskMonitorConfig()
        self._alerts: dict[str, RiskAlert] = {}
        self._market_data: dict[int, MarketData] = {}
        self._history: dict[str, deque[HistoryPoint]] = {}
        self._risk_levels: dict[str, VaultRiskLevel] = {}
        self._protection_triggers: dict[str, int] = {}
        self._task: asyncio.Task | None = None
        self._last_check: datetime | None = None
        self._on_alert: AlertListener | None = None

    def set_alert_listener(self, listener: AlertListener | None) -> None:
        """Receive every newly generated alert (used by the dashboard)."""
        self._on_alert = listener

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Risk monitoring started (interval {self.config.check_interval_seconds}s)"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Risk monitoring stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.perform_risk_check()
            except Exception as e:
                logger.error(f"Error during risk check: {e}")
            await asyncio.sleep(self.config.check_interval_seconds)

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    def update_market_data(self, chain_id: int, **fields) -> MarketData:
        """Merge *fields* into the chain's market data and stamp it."""
        chain_id = _validate_chain(chain_id)
        existing = self._market_data.get(chain_id)
        base = existing.model_dump() if existing else {"chain_id": chain_id}
        base.update({k: v for k, v in fields.items() if v is not None})
        base["chain_id"] = chain_id
        base["timestamp"] = utcnow()
        data = MarketData.model_validate(base)
        self._market_data[chain_id] = data
        return data

    def get_market_data(self, chain_id: int) -> MarketData | None:
        return self._market_data.get(chain_id)

    def all_market_data(self) -> list[MarketData]:
        return list(self._market_data.values())

    def _volatility(self, chain_id: int) -> float:
        data = self._market_data.get(chain_id)
        return data.volatility if data and data.volatility else 1.0

    def simulate_market_volatility(
        self,
        chain_id: int,
        min_volatility: float,
        max_volatility: float,
        rng: random.Random | None = None,
    ) -> float:
        """Draw a volatility uniformly from ``[min, max]`` and apply it."""
        if min_volatility < 0 or max_volatility < 0 or min_volatility >= max_volatility:
            raise ValueError("Invalid volatility range")
        volatility = (rng or random).uniform(min_volatility, max_volatility)
        self.update_market_data(chain_id, volatility=volatility)
        logger.info(f"Simulated volatility {volatility:.3f} on chain {chain_id}")
        return volatility

    def simulate_price_update(self, chain_id: int, volatility_factor: float) -> dict[str, float]:
        """Scale every price feed of the chain by ``1 + volatility_factor``."""
        if volatility_factor < -1 or volatility_factor > 1:
            raise ValueError("Invalid volatility factor")
        data = self._market_data.get(_validate_chain(chain_id))
        feeds = data.price_feeds if data else {}
        prices = {token: price * (1 + volatility_factor) for token, price in feeds.items()}
        self.update_market_data(chain_id, price_feeds=prices)
        return prices

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def perform_risk_check(self) -> list[VaultMonitorResult]:
        """Monitor every active vault in the store once."""
        results = []
        for vault in self.store.list_vaults():
            if vault.status != VaultStatus.ACTIVE:
                continue
            agent = self.store.get_agent(vault.agent_id)
            if agent is None:
                logger.warning(f"Skipping vault {vault.id}: agent {vault.agent_id} not found")
                continue
            result = await self.monitor_vault(vault, agent)
            vault = result.vault
            if result.protection_triggered and self.config.auto_protection_enabled:
                vault = self._auto_protect(vault, agent)
            self.store.upsert_vault(vault)
            results.append(result)

        self._last_check = utcnow()
        logger.debug(f"Risk check complete: {len(results)} vaults")
        return results

    async def monitor_vault(
        self,
        vault: CreditVault,
        agent: Agent,
        history: list[HistoryPoint] | None = None,
    ) -> VaultMonitorResult:
        """Recalculate one vault, derive its risk metrics and raise alerts.

        When *history* is omitted the monitor's own recent observations of
        the vault are used.
        """
        volatility = self._volatility(vault.chain_id)
        updated = recalculate_vault_metrics(vault, agent, volatility)

        if history is None:
            points = self._history.setdefault(vault.id, deque(maxlen=_HISTORY_LENGTH))
            points.append(HistoryPoint(
                timestamp=updated.last_risk_check,
                ltv=updated.ltv,
                health_factor=updated.health_factor,
            ))
            history = list(points)

        metrics = calculate_vault_risk_metrics(updated, agent, history)
        self._risk_levels[vault.id] = metrics.risk_level
        alerts = self._generate_alerts(updated, metrics)
        for alert in alerts:
            self._store_alert(alert)
            await self._notify(alert)

        return VaultMonitorResult(
            vault=updated,
            risk_metrics=metrics,
            alerts=alerts,
            protection_triggered=should_trigger_liquidation_protection(updated, agent, volatility),
        )

    def _auto_protect(self, vault: CreditVault, agent: Agent) -> CreditVault:
        triggered = self._protection_triggers.get(vault.id, 0)
        if triggered >= self.config.max_protection_triggers:
            logger.warning(f"Vault {vault.id} reached the auto-protection trigger limit")
            return vault
        rules = self.store.list_protection_rules(vault.id)
        results = execute_protection_rules(vault, rules, agent, self._volatility(vault.chain_id))
        executed = sum(1 for r in results if r.executed)
        logger.info(f"Liquidation protection on vault {vault.id}: {executed}/{len(results)} rules executed")
        self._protection_triggers[vault.id] = triggered + 1
        protection = vault.liquidation_protection.model_copy(update={"last_triggered": utcnow()})
        return vault.model_copy(update={"liquidation_protection": protection})

    def _store_alert(self, alert: RiskAlert) -> None:
        self._alerts[alert.id] = alert
        # Insertion order is creation order.
        while len(self._alerts) > self.config.max_alerts:
            self._alerts.pop(next(iter(self._alerts)))

    async def _notify(self, alert: RiskAlert) -> None:
        if self._on_alert is None:
            return
        try:
            await self._on_alert(alert)
        except Exception as e:
            logger.warning(f"Alert listener failed for {alert.id}: {e}")

    def _generate_alerts(self, vault: CreditVault, metrics: VaultRiskMetrics) -> list[RiskAlert]:
        cfg = self.config
        alerts: list[RiskAlert] = []

        def add(kind: AlertType, message: str) -> None:
            alerts.append(RiskAlert(vault_id=vault.id, type=kind, message=message))

        ltv = vault.ltv
        if ltv >= cfg.ltv_critical:
            add(AlertType.CRITICAL, f"LTV {ltv:.2f}% exceeds critical threshold")
        elif ltv >= cfg.ltv_alert:
            add(AlertType.ALERT, f"LTV {ltv:.2f}% exceeds alert threshold")
        elif ltv >= cfg.ltv_warning:
            add(AlertType.WARNING, f"LTV {ltv:.2f}% approaching alert threshold")

        hf = vault.health_factor
        if hf <= cfg.health_factor_critical:
            add(AlertType.CRITICAL, f"Health factor {hf:.2f} below critical threshold")
        elif hf <= cfg.health_factor_alert:
            add(AlertType.ALERT, f"Health factor {hf:.2f} below alert threshold")
        elif hf <= cfg.health_factor_warning:
            add(AlertType.WARNING, f"Health factor {hf:.2f} approaching alert threshold")

        if metrics.risk_level == VaultRiskLevel.CRITICAL:
            add(AlertType.CRITICAL, f"Vault risk level is CRITICAL (Score: {metrics.risk_score})")
        elif metrics.risk_level == VaultRiskLevel.HIGH:
            add(AlertType.ALERT, f"Vault risk level is HIGH (Score: {metrics.risk_score})")

        for alert in alerts:
            logger.warning(f"[{alert.type.value}] vault {vault.id}: {alert.message}")
        return alerts

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def get_active_alerts(self) -> list[RiskAlert]:
        return [a for a in self._alerts.values() if not a.acknowledged]

    def get_vault_alerts(self, vault_id: str) -> list[RiskAlert]:
        return [a for a in self._alerts.values() if a.vault_id == vault_id]

    def acknowledge_alert(self, alert_id: str, acknowledged_by: str) -> bool:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return False
        alert.acknowledged = True
        alert.acknowledged_by = acknowledged_by
        alert.acknowledged_at = utcnow()
        return True

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_risk_summary(self) -> dict:
        """Risk-level counts from the latest observation of each stored vault."""
        vault_ids = {v.id for v in self.store.list_vaults()}
        levels = [lvl for vid, lvl in self._risk_levels.items() if vid in vault_ids]
        alerts = list(self._alerts.values())
        return {
            "totalVaults": len(vault_ids),
            "criticalRisk": levels.count(VaultRiskLevel.CRITICAL),
            "highRisk": levels.count(VaultRiskLevel.HIGH),
            "mediumRisk": levels.count(VaultRiskLevel.MEDIUM),
            "lowRisk": levels.count(VaultRiskLevel.LOW),
            "totalAlerts": len(alerts),
            "unacknowledgedAlerts": sum(1 for a in alerts if not a.acknowledged),
        }

    def get_status(self) -> dict:
        return {
            "isRunning": self.is_running,
            "lastCheck": self._last_check.isoformat() if self._last_check else None,
            "config": self.config.model_dump(),
            "alertsCount": len(self._alerts),
        }
