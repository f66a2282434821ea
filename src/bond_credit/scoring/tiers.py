"""Credibility tiers: LTV ceilings, upgrade paths and tier comparisons."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from bond_credit.core.models import Agent, CredibilityTier


@dataclass(frozen=True)
class TierInfo:
    """Static description of one credibility tier."""

    name: str
    max_ltv: int
    min_score: int
    max_score: int
    description: str
    requirements: list[str] = field(default_factory=list)
    benefits: list[str] = field(default_factory=list)
    upgrade_requirements: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        return {
            "name": data["name"],
            "maxLTV": data["max_ltv"],
            "minScore": data["min_score"],
            "maxScore": data["max_score"],
            "description": data["description"],
            "requirements": data["requirements"],
            "benefits": data["benefits"],
            "upgradeRequirements": data["upgrade_requirements"],
        }


CREDIBILITY_TIERS: dict[CredibilityTier, TierInfo] = {
    CredibilityTier.BRONZE: TierInfo(
        name="Bronze",
        max_ltv=40,
        min_score=0,
        max_score=59,
        description="Basic tier for new agents",
        requirements=["New agent registration", "Basic verification"],
        benefits=["Access to basic lending", "Standard rates"],
        upgrade_requirements=["Score 60+", "30 days active", "2+ successful transactions"],
    ),
    CredibilityTier.SILVER: TierInfo(
        name="Silver",
        max_ltv=50,
        min_score=60,
        max_score=69,
        description="Established agents with proven track record",
        requirements=["Score 60+", "30 days active", "2+ successful transactions"],
        benefits=["Higher LTV limits", "Better rates", "Priority support"],
        upgrade_requirements=[
            "Score 70+", "90 days active", "10+ successful transactions", "No critical alerts",
        ],
    ),
    CredibilityTier.GOLD: TierInfo(
        name="Gold",
        max_ltv=60,
        min_score=70,
        max_score=79,
        description="High-performing agents with strong reputation",
        requirements=[
            "Score 70+", "90 days active", "10+ successful transactions", "No critical alerts",
        ],
        benefits=["Premium LTV limits", "Best rates", "VIP support", "Early access to new features"],
        upgrade_requirements=[
            "Score 80+", "180 days active", "25+ successful transactions", "No alerts in 30 days",
        ],
    ),
    CredibilityTier.PLATINUM: TierInfo(
        name="Platinum",
        max_ltv=70,
        min_score=80,
        max_score=89,
        description="Elite agents with exceptional scores",
        requirements=[
            "Score 80+", "180 days active", "25+ successful transactions", "No alerts in 30 days",
        ],
        benefits=[
            "Elite LTV limits", "Premium rates", "Dedicated support",
            "Exclusive features", "Governance rights",
        ],
        upgrade_requirements=[
            "Score 90+", "365 days active", "50+ successful transactions", "Perfect compliance record",
        ],
    ),
    CredibilityTier.DIAMOND: TierInfo(
        name="Diamond",
        max_ltv=80,
        min_score=90,
        max_score=100,
        description="Top-tier agents with maximum trust",
        requirements=[
            "Score 90+", "365 days active", "50+ successful transactions", "Perfect compliance record",
        ],
        benefits=[
            "Maximum LTV limits", "Elite rates", "24/7 dedicated support",
            "All features access", "Governance voting", "Revenue sharing",
        ],
        upgrade_requirements=["Maintain score 90+", "Continue excellent performance"],
    ),
}

TIER_ORDER = [
    CredibilityTier.BRONZE,
    CredibilityTier.SILVER,
    CredibilityTier.GOLD,
    CredibilityTier.PLATINUM,
    CredibilityTier.DIAMOND,
]

_DAYS_REQUIRED = {
    CredibilityTier.SILVER: 30,
    CredibilityTier.GOLD: 90,
    CredibilityTier.PLATINUM: 180,
    CredibilityTier.DIAMOND: 365,
}

_TRANSACTIONS_REQUIRED = {
    CredibilityTier.SILVER: 2,
    CredibilityTier.GOLD: 10,
    CredibilityTier.PLATINUM: 25,
    CredibilityTier.DIAMOND: 50,
}

_MARKET_ADJUSTMENT = {"bull": 2, "bear": -3, "volatile": -2}

LTV_FLOOR = 20
LTV_CEILING = 85


# ---------------------------------------------------------------------------
# LTV
# ---------------------------------------------------------------------------

def ltv_breakdown(agent: Agent, collateral: float = 0, market: str = "normal") -> dict:
    """Individual bonuses that :func:`calculate_max_ltv` adds to the tier base."""
    if collateral > 1_000_000:
        collateral_bonus = 3
    elif collateral > 500_000:
        collateral_bonus = 2
    elif collateral > 100_000:
        collateral_bonus = 1
    else:
        collateral_bonus = 0
    return {
        "scoreBonus": min(5, int(agent.score.overall // 20)),
        "verificationBonus": min(3, int(agent.score.verification // 33)),
        "performanceBonus": min(2, int(agent.score.performance // 50)),
        "collateralBonus": collateral_bonus,
        "marketAdjustment": _MARKET_ADJUSTMENT.get(market, 0),
    }


def calculate_max_ltv(agent: Agent, collateral: float = 0, market: str = "normal") -> float:
    """Maximum LTV for *agent* given collateral value and market regime.

    Unknown market regimes are treated as ``"normal"``. The result always
    lies in ``[20, 85]``.
    """
    parts = ltv_breakdown(agent, collateral, market)
    ltv = (
        CREDIBILITY_TIERS[agent.credibility_tier].max_ltv
        + parts["scoreBonus"]
        + parts["verificationBonus"]
        + parts["performanceBonus"]
        + parts["collateralBonus"]
    )
    if market == "bull":
        ltv = min(ltv + 2, LTV_CEILING)
    elif market == "bear":
        ltv = max(ltv - 3, LTV_FLOOR)
    elif market == "volatile":
        ltv = max(ltv - 2, 25)
    return max(LTV_FLOOR, min(LTV_CEILING, ltv))


# ---------------------------------------------------------------------------
# Upgrades
# ---------------------------------------------------------------------------

def next_tier(tier: CredibilityTier) -> CredibilityTier | None:
    index = TIER_ORDER.index(tier)
    if index < len(TIER_ORDER) - 1:
        return TIER_ORDER[index + 1]
    return None


def check_tier_upgrade_eligibility(
    agent: Agent,
    days_active: int,
    successful_transactions: int,
) -> dict:
    """Report whether *agent* meets the next tier's requirements.

    Returns
    -------
    dict
        ``eligible``, ``currentTier``, ``nextTier``, ``requirements`` and
        ``missingRequirements``. Agents already at DIAMOND are never
        eligible.
    """
    current = agent.credibility_tier
    upcoming = next_tier(current)
    if upcoming is None:
        return {
            "eligible": False,
            "currentTier": current.value,
            "nextTier": None,
            "requirements": [],
            "missingRequirements": ["Already at highest tier"],
        }

    info = CREDIBILITY_TIERS[upcoming]
    missing: list[str] = []
    if agent.score.overall < info.min_score:
        missing.append(f"Score {agent.score.overall}/{info.min_score}+ required")
    days_required = _DAYS_REQUIRED[upcoming]
    if days_active < days_required:
        missing.append(f"{days_active}/{days_required} days active required")
    txs_required = _TRANSACTIONS_REQUIRED[upcoming]
    if successful_transactions < txs_required:
        missing.append(f"{successful_transactions}/{txs_required}+ successful transactions required")

    return {
        "eligible": not missing,
        "currentTier": current.value,
        "nextTier": upcoming.value,
        "requirements": list(info.requirements),
        "missingRequirements": missing,
    }


def _time_for_gap(gap: float, met_label: str) -> str:
    if gap <= 0:
        return met_label
    if gap <= 5:
        return "1-2 weeks"
    if gap <= 10:
        return "2-4 weeks"
    if gap <= 15:
        return "1-2 months"
    return "3+ months"


def estimate_upgrade_time(agent: Agent, upcoming: CredibilityTier | None) -> str:
    if upcoming is None:
        return "Already at highest tier"
    gap = CREDIBILITY_TIERS[upcoming].min_score - agent.score.overall
    return _time_for_gap(gap, "Score requirement met")


def calculate_tier_benefits(agent: Agent, days_active: int = 30, successful_transactions: int = 5) -> dict:
    info = CREDIBILITY_TIERS[agent.credibility_tier]
    upgrade = check_tier_upgrade_eligibility(agent, days_active, successful_transactions)
    upcoming = CredibilityTier(upgrade["nextTier"]) if upgrade["nextTier"] else None
    return {
        "currentTier": agent.credibility_tier.value,
        "tierInfo": info.to_dict(),
        "maxLTV": calculate_max_ltv(agent),
        "benefits": list(info.benefits),
        "upgradePath": {
            "nextTier": upgrade["nextTier"],
            "requirements": upgrade["requirements"],
            "estimatedTime": estimate_upgrade_time(agent, upcoming),
        },
    }


def tier_recommendations(agent: Agent) -> list[dict]:
    """Other tiers whose minimum score the agent already meets, closest first."""
    current_score = agent.score.overall
    recommendations = []
    for tier, info in CREDIBILITY_TIERS.items():
        if tier == agent.credibility_tier or current_score < info.min_score:
            continue
        gap = info.min_score - current_score
        recommendations.append({
            "tier": tier.value,
            "tierInfo": info.to_dict(),
            "scoreGap": gap,
            "estimatedTime": _time_for_gap(gap, "Immediate"),
            "requirements": list(info.requirements),
            "benefits": list(info.benefits),
        })
    recommendations.sort(key=lambda r: r["scoreGap"])
    return recommendations


def compare_agent_tiers(agents: list[Agent]) -> dict:
    distribution = {tier.value: 0 for tier in TIER_ORDER}
    scores: dict[str, list[float]] = {tier.value: [] for tier in TIER_ORDER}
    ltvs: dict[str, list[float]] = {tier.value: [] for tier in TIER_ORDER}

    for agent in agents:
        key = agent.credibility_tier.value
        distribution[key] += 1
        scores[key].append(agent.score.overall)
        ltvs[key].append(calculate_max_ltv(agent))

    average_scores = {}
    performance = {}
    for key in distribution:
        avg_score = sum(scores[key]) / len(scores[key]) if scores[key] else 0
        avg_ltv = sum(ltvs[key]) / len(ltvs[key]) if ltvs[key] else 0
        average_scores[key] = avg_score
        performance[key] = {"avgLTV": avg_ltv, "avgScore": avg_score}

    return {
        "tierDistribution": distribution,
        "averageScores": average_scores,
        "tierPerformance": performance,
    }
