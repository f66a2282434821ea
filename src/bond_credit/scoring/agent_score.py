"""Agent scoring: pillar weighting, confidence, tiers, LTV and reputation."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from pydantic import Field

from bond_credit.core.models import (
    Agent,
    AgentScore,
    ApiModel,
    CredibilityTier,
    ReputationBreakdown,
    ReputationEvent,
    ReputationEventType,
    ReputationSummary,
    VerificationMethod,
    VerificationStatus,
    round_half_up,
    utcnow,
)

PROVENANCE_WEIGHT = 0.4
PERFORMANCE_WEIGHT = 0.4
PERCEPTION_WEIGHT = 0.2

MAX_ALLOWED_LTV = 95

_BASE_LTV_BY_TIER = {
    CredibilityTier.DIAMOND: 80,
    CredibilityTier.PLATINUM: 70,
    CredibilityTier.GOLD: 60,
    CredibilityTier.SILVER: 50,
    CredibilityTier.BRONZE: 40,
}


# ---------------------------------------------------------------------------
# LTV models
# ---------------------------------------------------------------------------

class AdjustmentType(str, Enum):
    SCORE_BONUS = "score_bonus"
    CONFIDENCE_BONUS = "confidence_bonus"
    PERFORMANCE_BONUS = "performance_bonus"
    PROVENANCE_BONUS = "provenance_bonus"
    COLLATERAL_BONUS = "collateral_bonus"
    MARKET_BONUS = "market_bonus"


class LTVAdjustment(ApiModel):
    type: AdjustmentType
    factor: str = ""
    description: str = ""
    impact: float = 0
    reason: str = ""
    expires_at: Optional[datetime] = None


class Collateral(ApiModel):
    id: str = ""
    asset_type: str = ""
    amount: float = 0
    value: float = 0
    ltv_ratio: float = 0
    liquidation_threshold: float = 0


class MarketConditions(ApiModel):
    volatility: float = 0
    trend: str = "neutral"  # bull | bear | neutral


class LTVCalculation(ApiModel):
    base: float
    adjustments: list[LTVAdjustment] = Field(default_factory=list)
    final: float
    max_allowed: float = MAX_ALLOWED_LTV
    confidence: float
    risk_score: float


class LTVSnapshot(ApiModel):
    current: float
    maximum: float
    utilization: float


class CreditLine(ApiModel):
    total: float
    used: float
    available: float
    apr: float


class AssetManagement(ApiModel):
    aum: float
    diversity_score: float
    liquidation_risk: float


class RiskMetrics(ApiModel):
    ltv: LTVSnapshot
    credit_line: CreditLine
    asset_management: AssetManagement
    performance_variance: float
    tier_stability: float
    market_exposure: float


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------

def calculate_agent_score(
    provenance: float,
    performance: float,
    perception: float,
    verification: float = 0,
) -> AgentScore:
    """Combine the three pillars into an :class:`AgentScore`.

    ``overall`` is the 40/40/20 weighted sum, rounded. The verification
    score is carried along but does not feed the overall value.
    """
    overall = round_half_up(
        provenance * PROVENANCE_WEIGHT
        + performance * PERFORMANCE_WEIGHT
        + perception * PERCEPTION_WEIGHT
    )
    return AgentScore(
        overall=overall,
        provenance=provenance,
        performance=performance,
        perception=perception,
        confidence=_calculate_confidence(provenance, performance, perception),
        verification=verification,
    )


def _calculate_confidence(provenance: float, performance: float, perception: float) -> int:
    # Agreement between the pillars and their level count equally.
    scores = [provenance, performance, perception]
    mean = sum(scores) / len(scores)
    variance = sum((s - mean) ** 2 for s in scores) / len(scores)
    from_variance = max(0.0, 100 - variance * 0.5)
    from_level = mean * 0.8
    return round_half_up((from_variance + from_level) / 2)


def calculate_verification_score(methods: Iterable[VerificationMethod]) -> int:
    """Mean score over passed verification methods (0 when none passed)."""
    passed = [m.score for m in methods if m.status == VerificationStatus.PASSED]
    if not passed:
        return 0
    return round_half_up(sum(passed) / len(passed))


def determine_credibility_tier(overall_score: float) -> CredibilityTier:
    if overall_score >= 90:
        return CredibilityTier.DIAMOND
    if overall_score >= 80:
        return CredibilityTier.PLATINUM
    if overall_score >= 70:
        return CredibilityTier.GOLD
    if overall_score >= 60:
        return CredibilityTier.SILVER
    return CredibilityTier.BRONZE


def base_ltv_for_tier(tier: CredibilityTier) -> int:
    return _BASE_LTV_BY_TIER[tier]


# ---------------------------------------------------------------------------
# LTV
# ---------------------------------------------------------------------------

def calculate_ltv(
    base_ltv: float,
    score: AgentScore,
    adjustments: list[LTVAdjustment] | None = None,
    collateral: list[Collateral] | None = None,
    market: MarketConditions | None = None,
) -> LTVCalculation:
    """Apply the requested adjustments to *base_ltv*.

    Parameters
    ----------
    base_ltv:
        Starting LTV percentage, usually :func:`base_ltv_for_tier`.
    score:
        The agent's current score.
    adjustments:
        Which bonuses to evaluate. Only listed adjustment types apply.
    collateral:
        Collateral positions used by ``collateral_bonus``.
    market:
        Market conditions used by ``market_bonus``.

    Returns
    -------
    LTVCalculation
        Final LTV clamped to ``[0, 95]``, confidence clamped to
        ``[0.1, 1]`` and risk score clamped to ``[0, 100]``.
    """
    adjustments = adjustments or []
    final = float(base_ltv)
    confidence = 0.8
    risk_score = 0.0

    for adjustment in adjustments:
        kind = adjustment.type
        if kind == AdjustmentType.SCORE_BONUS:
            if score.overall >= 90:
                final += 5
                confidence += 0.1
            elif score.overall >= 80:
                final += 3
                confidence += 0.05
            elif score.overall >= 70:
                final += 1
        elif kind == AdjustmentType.CONFIDENCE_BONUS:
            if score.confidence >= 90:
                final += 2
                confidence += 0.08
        elif kind == AdjustmentType.PERFORMANCE_BONUS:
            if score.performance >= 85:
                final += 2
                confidence += 0.06
        elif kind == AdjustmentType.PROVENANCE_BONUS:
            if score.provenance >= 90:
                final += 1
                confidence += 0.04
        elif kind == AdjustmentType.COLLATERAL_BONUS:
            if collateral:
                total_value = sum(c.value for c in collateral)
                avg_ratio = sum(c.ltv_ratio for c in collateral) / len(collateral)
                if total_value > 1_000_000:
                    final += 3
                    confidence += 0.05
                elif total_value > 500_000:
                    final += 2
                    confidence += 0.03
                if avg_ratio > 80:
                    final += 1
                    confidence += 0.02
        elif kind == AdjustmentType.MARKET_BONUS:
            if market is not None:
                if market.trend == "bull" and market.volatility < 30:
                    final += 2
                    confidence += 0.03
                elif market.trend == "bear" or market.volatility > 50:
                    final -= 3
                    confidence -= 0.1
                    risk_score += 20

    return LTVCalculation(
        base=base_ltv,
        adjustments=adjustments,
        final=min(MAX_ALLOWED_LTV, max(0.0, final)),
        confidence=min(1.0, max(0.1, confidence)),
        risk_score=min(100.0, max(0.0, risk_score)),
    )


def calculate_risk_metrics(agent: Agent) -> RiskMetrics:
    """Credit-line and LTV snapshot for an agent.

    Only the LTV block depends on the agent; credit-line and asset
    management figures are fixed demo values.
    """
    calc = calculate_ltv(base_ltv_for_tier(agent.credibility_tier), agent.score)
    current = round_half_up(calc.final * 0.8)
    utilization = round_half_up(calc.final * 0.8 / calc.final * 100) if calc.final else 0
    return RiskMetrics(
        ltv=LTVSnapshot(current=current, maximum=calc.final, utilization=utilization),
        credit_line=CreditLine(total=1_000_000, used=800_000, available=200_000, apr=8.5),
        asset_management=AssetManagement(aum=2_500_000, diversity_score=85, liquidation_risk=35),
        performance_variance=12.5,
        tier_stability=92,
        market_exposure=45,
    )


# ---------------------------------------------------------------------------
# Reputation
# ---------------------------------------------------------------------------

_PERFORMANCE_EVENTS = {
    ReputationEventType.PERFORMANCE_IMPROVEMENT,
    ReputationEventType.PERFORMANCE_DECLINE,
}
_CREDIT_EVENTS = {
    ReputationEventType.CREDIT_LINE_INCREASE,
    ReputationEventType.CREDIT_LINE_DECREASE,
    ReputationEventType.APR_IMPROVEMENT,
    ReputationEventType.APR_DECLINE,
    ReputationEventType.LTV_OPTIMIZATION,
}
_COMPLIANCE_EVENTS = {
    ReputationEventType.COMPLIANCE_VIOLATION,
    ReputationEventType.COMPLIANCE_IMPROVEMENT,
}


def build_reputation_summary(agent_id: str, events: list[ReputationEvent]) -> ReputationSummary:
    """Summarise reputation events, which must be ordered newest first."""
    if not events:
        return ReputationSummary(agent_id=agent_id)

    recent = events[:10]
    return ReputationSummary(
        agent_id=agent_id,
        last_updated=utcnow(),
        total_events=len(events),
        positive_events=sum(1 for e in events if e.impact > 0),
        negative_events=sum(1 for e in events if e.impact < 0),
        breakdown=_reputation_breakdown(events),
        recent_events=recent,
        trend=_reputation_trend(recent),
    )


def _reputation_breakdown(events: list[ReputationEvent]) -> ReputationBreakdown:
    performance = credit = risk = compliance = 0.0
    total = 0.0
    for event in events:
        impact = event.impact
        total += impact
        if event.type in _PERFORMANCE_EVENTS:
            performance += impact
        elif event.type in _CREDIT_EVENTS:
            credit += impact
        elif event.type == ReputationEventType.RISK_MANAGEMENT:
            risk += impact
        elif event.type in _COMPLIANCE_EVENTS:
            compliance += impact
        elif event.type == ReputationEventType.AUM_CHANGE:
            performance += impact * 0.5
            risk += impact * 0.5

    scale = max(1.0, abs(total))

    def _normalize(value: float) -> float:
        return max(0.0, min(100.0, 50 + value / scale * 50))

    return ReputationBreakdown(
        performance=_normalize(performance),
        credit=_normalize(credit),
        risk=_normalize(risk),
        compliance=_normalize(compliance),
        overall=_normalize(total),
    )


def _reputation_trend(events: list[ReputationEvent]) -> str:
    recent_impact = sum(e.impact for e in events[:5])
    if recent_impact > 10:
        return "improving"
    if recent_impact < -10:
        return "declining"
    return "stable"
