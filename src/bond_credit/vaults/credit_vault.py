"""Credit vaults: dynamic LTV, health factor, risk metrics and protection rules.

Every function here is pure over its inputs apart from
:func:`execute_protection_rules`, which stamps ``last_executed`` on the
rules it runs. Vault updates return new objects.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import Field, field_serializer

from bond_credit.core.models import (
    Agent,
    ApiModel,
    CredibilityTier,
    new_id,
    round_half_up,
    utcnow,
)
from bond_credit.scoring.tiers import LTV_CEILING, LTV_FLOOR, calculate_max_ltv
from bond_credit.vaults.chains import CHAIN_CONFIGS

logger = logging.getLogger("bond_credit.vaults.credit_vault")

_TIER_BONUS = {
    CredibilityTier.DIAMOND: 3,
    CredibilityTier.PLATINUM: 2,
    CredibilityTier.GOLD: 1,
    CredibilityTier.SILVER: 0.5,
    CredibilityTier.BRONZE: 0,
}

DEFAULT_DEBT_TOKEN = "USDC"
DEFAULT_PROTECTION_COOLDOWN = 3600
PROTECTION_THRESHOLD_RATIO = 0.85


def _finite_or_none(value: float) -> Optional[float]:
    return None if math.isinf(value) or math.isnan(value) else value


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class VaultStatus(str, Enum):
    ACTIVE = "ACTIVE"
    LIQUIDATED = "LIQUIDATED"
    CLOSED = "CLOSED"
    SUSPENDED = "SUSPENDED"


class VaultRiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Position(ApiModel):
    token: str
    amount: float = 0
    value_usd: float = Field(default=0, alias="valueUSD")
    last_updated: datetime = Field(default_factory=utcnow)


class LiquidationProtection(ApiModel):
    enabled: bool = True
    threshold: float = 0
    cooldown: int = DEFAULT_PROTECTION_COOLDOWN  # seconds
    last_triggered: Optional[datetime] = None


class CreditVault(ApiModel):
    """A collateralised credit position for one agent on one chain.

    ``health_factor`` is ``inf`` while the vault carries no debt; it is
    serialized as ``null`` in JSON.
    """

    id: str = Field(default_factory=lambda: new_id("vault"))
    agent_id: str
    chain_id: int
    status: VaultStatus = VaultStatus.ACTIVE
    collateral: Position
    debt: Position = Field(default_factory=lambda: Position(token=DEFAULT_DEBT_TOKEN))
    ltv: float = 0
    health_factor: float = math.inf
    max_ltv: float = Field(alias="maxLTV")
    liquidation_protection: LiquidationProtection = Field(default_factory=LiquidationProtection)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_risk_check: datetime = Field(default_factory=utcnow)

    @field_serializer("ltv", "health_factor")
    def _serialize_ratio(self, value: float) -> Optional[float]:
        return _finite_or_none(value)


class ProtectionActionType(str, Enum):
    NOTIFY = "NOTIFY"
    AUTO_REPAY = "AUTO_REPAY"
    COLLATERAL_INCREASE = "COLLATERAL_INCREASE"
    DEBT_REDUCTION = "DEBT_REDUCTION"


class ProtectionAction(ApiModel):
    type: ProtectionActionType
    parameters: dict[str, Any] = Field(default_factory=dict)


class ProtectionConditions(ApiModel):
    ltv_threshold: Optional[float] = None
    health_factor_threshold: Optional[float] = None
    score_threshold: Optional[float] = None
    time_window: Optional[int] = None  # seconds


class VaultProtectionRule(ApiModel):
    id: str = Field(default_factory=lambda: new_id("rule"))
    vault_id: str
    name: str
    description: str = ""
    conditions: ProtectionConditions = Field(default_factory=ProtectionConditions)
    actions: list[ProtectionAction] = Field(default_factory=list)
    enabled: bool = True
    priority: int = 1
    cooldown: int = 300  # seconds
    last_executed: Optional[datetime] = None


class ProtectionResult(ApiModel):
    rule_id: str
    action: str
    executed: bool
    message: str


class HistoryPoint(ApiModel):
    timestamp: datetime
    ltv: float
    health_factor: float


class MetricPoint(ApiModel):
    timestamp: datetime
    value: Optional[float]


class VaultRiskMetrics(ApiModel):
    vault_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    current_ltv: float = Field(alias="currentLTV")
    current_health_factor: float
    risk_score: int
    ltv_history: list[MetricPoint] = Field(default_factory=list)
    health_factor_history: list[MetricPoint] = Field(default_factory=list)
    risk_level: VaultRiskLevel
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @field_serializer("current_health_factor")
    def _serialize_health_factor(self, value: float) -> Optional[float]:
        return _finite_or_none(value)


# ---------------------------------------------------------------------------
# LTV and health factor
# ---------------------------------------------------------------------------

def calculate_dynamic_ltv(
    agent: Agent,
    chain_id: int,
    collateral_value: float,
    volatility: float = 1.0,
) -> float:
    """Chain-adjusted maximum LTV for *agent*.

    The tier LTV from :func:`calculate_max_ltv` is scaled by the chain's
    base multiplier, shifted by the agent's distance from a score of 50,
    damped by ``volatility_multiplier ** volatility`` and finally topped up
    with a tier bonus. The result is rounded to two decimals and clamped
    to ``[20, 85]``.

    Raises
    ------
    ValueError
        If *chain_id* has no vault configuration.
    """
    chain = CHAIN_CONFIGS.get(chain_id)
    if chain is None:
        raise ValueError(f"Unsupported chain ID: {chain_id}")

    adjustments = chain.ltv_adjustments
    ltv = calculate_max_ltv(agent, collateral_value, "normal") * adjustments.base_multiplier
    ltv += (agent.score.overall - 50) * adjustments.score_multiplier
    ltv *= adjustments.volatility_multiplier ** volatility
    ltv += _TIER_BONUS.get(agent.credibility_tier, 0)
    return max(LTV_FLOOR, min(LTV_CEILING, round_half_up(ltv, 2)))


def calculate_health_factor(vault: CreditVault, agent: Agent, volatility: float = 1.0) -> float:
    debt = vault.debt.value_usd
    if debt == 0:
        return math.inf
    dynamic_ltv = calculate_dynamic_ltv(agent, vault.chain_id, vault.collateral.value_usd, volatility)
    max_debt = vault.collateral.value_usd * dynamic_ltv / 100
    if debt >= max_debt:
        return 0.0
    return vault.collateral.value_usd / debt


# ---------------------------------------------------------------------------
# Risk metrics
# ---------------------------------------------------------------------------

def _variance(values: list[float]) -> float:
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def calculate_risk_score(vault: CreditVault, agent: Agent, history: list[HistoryPoint]) -> int:
    """Risk score in 0-100, higher is riskier."""
    score = 0.0
    ltv_risk = min(100.0, vault.ltv / vault.max_ltv * 100) if vault.max_ltv else 100.0
    score += ltv_risk * 0.4
    score += max(0.0, 100 - vault.health_factor * 50) * 0.3
    score += max(0.0, 100 - agent.score.overall) * 0.2
    if len(history) > 1:
        score += min(100.0, _variance([p.ltv for p in history]) * 100) * 0.1
    return round_half_up(score)


def determine_risk_level(ltv: float, health_factor: float, risk_score: float) -> VaultRiskLevel:
    if health_factor <= 1.0 or ltv >= 95 or risk_score >= 80:
        return VaultRiskLevel.CRITICAL
    if health_factor <= 1.2 or ltv >= 85 or risk_score >= 60:
        return VaultRiskLevel.HIGH
    if health_factor <= 1.5 or ltv >= 75 or risk_score >= 40:
        return VaultRiskLevel.MEDIUM
    return VaultRiskLevel.LOW


def _warnings(vault: CreditVault, agent: Agent, level: VaultRiskLevel) -> list[str]:
    warnings = []
    if vault.ltv >= vault.max_ltv * 0.9:
        warnings.append("LTV approaching maximum limit")
    if vault.health_factor <= 1.2:
        warnings.append("Health factor below safe threshold")
    if agent.score.overall < 50:
        warnings.append("Agent credibility score is low")
    if level == VaultRiskLevel.CRITICAL:
        warnings.append("Vault at risk of liquidation")
    return warnings


def _recommendations(vault: CreditVault, agent: Agent, level: VaultRiskLevel) -> list[str]:
    recommendations = []
    if vault.ltv >= vault.max_ltv * 0.8:
        recommendations.append("Consider reducing debt or increasing collateral")
    if vault.health_factor <= 1.3:
        recommendations.append("Monitor health factor closely and take preventive action")
    if agent.score.overall < 60:
        recommendations.append("Improve agent credibility score through better performance")
    if level in (VaultRiskLevel.HIGH, VaultRiskLevel.CRITICAL):
        recommendations.append("Enable liquidation protection immediately")
        recommendations.append("Contact support for risk mitigation strategies")
    return recommendations


def calculate_vault_risk_metrics(
    vault: CreditVault,
    agent: Agent,
    history: list[HistoryPoint] | None = None,
) -> VaultRiskMetrics:
    history = history or []
    risk_score = calculate_risk_score(vault, agent, history)
    level = determine_risk_level(vault.ltv, vault.health_factor, risk_score)
    return VaultRiskMetrics(
        vault_id=vault.id,
        current_ltv=vault.ltv,
        current_health_factor=vault.health_factor,
        risk_score=risk_score,
        ltv_history=[MetricPoint(timestamp=p.timestamp, value=p.ltv) for p in history],
        health_factor_history=[
            MetricPoint(timestamp=p.timestamp, value=_finite_or_none(p.health_factor))
            for p in history
        ],
        risk_level=level,
        warnings=_warnings(vault, agent, level),
        recommendations=_recommendations(vault, agent, level),
    )


# ---------------------------------------------------------------------------
# Liquidation protection
# ---------------------------------------------------------------------------

def _in_cooldown(last: datetime | None, cooldown_seconds: float, now: datetime) -> bool:
    return last is not None and now - last < timedelta(seconds=cooldown_seconds)


def should_trigger_liquidation_protection(
    vault: CreditVault,
    agent: Agent,
    volatility: float = 1.0,
    now: datetime | None = None,
) -> bool:
    protection = vault.liquidation_protection
    if not protection.enabled:
        return False
    if _in_cooldown(protection.last_triggered, protection.cooldown, now or utcnow()):
        return False
    if vault.ltv >= protection.threshold:
        return True
    chain = CHAIN_CONFIGS[vault.chain_id]
    return calculate_health_factor(vault, agent, volatility) <= chain.liquidation.min_health_factor


def _rule_conditions_met(
    vault: CreditVault,
    agent: Agent,
    rule: VaultProtectionRule,
    volatility: float,
) -> bool:
    conditions = rule.conditions
    if conditions.ltv_threshold and vault.ltv >= conditions.ltv_threshold:
        return True
    if conditions.health_factor_threshold:
        if calculate_health_factor(vault, agent, volatility) <= conditions.health_factor_threshold:
            return True
    if conditions.score_threshold and agent.score.overall <= conditions.score_threshold:
        return True
    return False


def _run_rule_actions(vault: CreditVault, rule: VaultProtectionRule) -> None:
    for action in rule.actions:
        if action.type == ProtectionActionType.NOTIFY:
            logger.info(f"Notification sent for vault {vault.id}: {rule.description}")
        elif action.type == ProtectionActionType.AUTO_REPAY:
            logger.info(f"Auto-repayment triggered for vault {vault.id}")
        elif action.type == ProtectionActionType.COLLATERAL_INCREASE:
            logger.info(f"Collateral increase recommended for vault {vault.id}")
        elif action.type == ProtectionActionType.DEBT_REDUCTION:
            logger.info(f"Debt reduction recommended for vault {vault.id}")


def execute_protection_rules(
    vault: CreditVault,
    rules: list[VaultProtectionRule],
    agent: Agent,
    volatility: float = 1.0,
    now: datetime | None = None,
) -> list[ProtectionResult]:
    """Evaluate enabled rules, highest priority first, and run those that fire."""
    now = now or utcnow()
    results: list[ProtectionResult] = []
    ordered = sorted((r for r in rules if r.enabled), key=lambda r: r.priority, reverse=True)

    for rule in ordered:
        if _in_cooldown(rule.last_executed, rule.cooldown, now):
            results.append(ProtectionResult(
                rule_id=rule.id, action=rule.name, executed=False,
                message="Rule in cooldown period",
            ))
            continue

        if not _rule_conditions_met(vault, agent, rule, volatility):
            results.append(ProtectionResult(
                rule_id=rule.id, action=rule.name, executed=False,
                message="Conditions not met",
            ))
            continue

        try:
            _run_rule_actions(vault, rule)
        except Exception as e:
            logger.error(f"Protection rule {rule.id} failed on vault {vault.id}: {e}")
            results.append(ProtectionResult(
                rule_id=rule.id, action=rule.name, executed=False,
                message=f"Rule execution failed: {e}",
            ))
            continue

        rule.last_executed = now
        results.append(ProtectionResult(
            rule_id=rule.id, action=rule.name, executed=True,
            message="Rule executed successfully",
        ))
    return results


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def create_credit_vault(
    agent_id: str,
    chain_id: int,
    collateral_token: str,
    collateral_amount: float,
    collateral_value_usd: float,
    max_ltv: float,
) -> CreditVault:
    vault = CreditVault(
        agent_id=agent_id,
        chain_id=chain_id,
        collateral=Position(
            token=collateral_token,
            amount=collateral_amount,
            value_usd=collateral_value_usd,
        ),
        max_ltv=max_ltv,
        liquidation_protection=LiquidationProtection(
            enabled=True,
            threshold=max_ltv * PROTECTION_THRESHOLD_RATIO,
            cooldown=DEFAULT_PROTECTION_COOLDOWN,
        ),
    )
    logger.info(
        f"Created vault {vault.id} for agent {agent_id} on chain {chain_id} "
        f"(collateral ${collateral_value_usd:,.2f}, max LTV {max_ltv}%)"
    )
    return vault


def update_vault_collateral(vault: CreditVault, amount: float, value_usd: float) -> CreditVault:
    now = utcnow()
    collateral = vault.collateral.model_copy(
        update={"amount": amount, "value_usd": value_usd, "last_updated": now}
    )
    return vault.model_copy(update={"collateral": collateral, "updated_at": now})


def update_vault_debt(vault: CreditVault, amount: float, value_usd: float) -> CreditVault:
    now = utcnow()
    debt = vault.debt.model_copy(
        update={"amount": amount, "value_usd": value_usd, "last_updated": now}
    )
    return vault.model_copy(update={"debt": debt, "updated_at": now})


def recalculate_vault_metrics(vault: CreditVault, agent: Agent, volatility: float = 1.0) -> CreditVault:
    """Return a copy of *vault* with LTV, health factor and max LTV refreshed."""
    if vault.debt.value_usd > 0 and vault.collateral.value_usd > 0:
        ltv = vault.debt.value_usd / vault.collateral.value_usd * 100
    elif vault.debt.value_usd > 0:
        ltv = math.inf
    else:
        ltv = 0.0
    health_factor = calculate_health_factor(vault, agent, volatility)
    max_ltv = calculate_dynamic_ltv(agent, vault.chain_id, vault.collateral.value_usd, volatility)
    now = utcnow()
    return vault.model_copy(update={
        "ltv": round_half_up(ltv, 2),
        "health_factor": round_half_up(health_factor, 2),
        "max_ltv": round_half_up(max_ltv, 2),
        "last_risk_check": now,
        "updated_at": now,
    })
