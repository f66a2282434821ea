"""Tests for credibility tiers, max LTV and upgrade eligibility."""

from __future__ import annotations

import pytest

from bond_credit.core.models import CredibilityTier
from bond_credit.scoring.tiers import (
    CREDIBILITY_TIERS,
    LTV_CEILING,
    LTV_FLOOR,
    calculate_max_ltv,
    calculate_tier_benefits,
    check_tier_upgrade_eligibility,
    compare_agent_tiers,
    ltv_breakdown,
    next_tier,
    tier_recommendations,
)
from tests.conftest import make_agent


class TestTierTable:
    def test_tiers_cover_score_range(self):
        ranges = sorted((i.min_score, i.max_score) for i in CREDIBILITY_TIERS.values())
        assert ranges[0][0] == 0
        assert ranges[-1][1] == 100
        for (_, hi), (lo, _) in zip(ranges, ranges[1:]):
            assert lo == hi + 1

    def test_to_dict_uses_api_keys(self):
        data = CREDIBILITY_TIERS[CredibilityTier.GOLD].to_dict()
        assert data["maxLTV"] == 60
        assert data["minScore"] == 70
        assert "upgradeRequirements" in data

    def test_next_tier(self):
        assert next_tier(CredibilityTier.BRONZE) == CredibilityTier.SILVER
        assert next_tier(CredibilityTier.DIAMOND) is None


class TestMaxLTV:
    def test_breakdown(self, gold_agent):
        parts = ltv_breakdown(gold_agent, 600_000, "bull")
        assert parts == {
            "scoreBonus": 3,
            "verificationBonus": 2,
            "performanceBonus": 1,
            "collateralBonus": 2,
            "marketAdjustment": 2,
        }

    def test_normal_market(self, gold_agent):
        assert calculate_max_ltv(gold_agent) == 66

    @pytest.mark.parametrize(
        "market,expected",
        [("normal", 68), ("bull", 70), ("bear", 65), ("volatile", 66), ("sideways", 68)],
    )
    def test_market_regimes(self, gold_agent, market, expected):
        assert calculate_max_ltv(gold_agent, 600_000, market) == expected

    def test_capped_at_ceiling(self):
        agent = make_agent(100, 100, 100, 100, tier=CredibilityTier.DIAMOND)
        assert calculate_max_ltv(agent, 2_000_000, "bull") == LTV_CEILING

    def test_never_below_floor(self):
        agent = make_agent(0, 0, 0, 0, tier=CredibilityTier.BRONZE)
        for market in ("normal", "bear", "volatile"):
            assert calculate_max_ltv(agent, 0, market) >= LTV_FLOOR


class TestUpgradeEligibility:
    def test_missing_score(self, gold_agent):
        result = check_tier_upgrade_eligibility(gold_agent, 200, 30)
        assert result["eligible"] is False
        assert result["nextTier"] == "PLATINUM"
        assert result["missingRequirements"] == ["Score 76/80+ required"]

    def test_eligible(self):
        agent = make_agent(tier=CredibilityTier.SILVER)
        result = check_tier_upgrade_eligibility(agent, 100, 20)
        assert result["eligible"] is True
        assert result["missingRequirements"] == []

    def test_days_and_transactions_reported(self):
        agent = make_agent(tier=CredibilityTier.SILVER)
        result = check_tier_upgrade_eligibility(agent, 10, 1)
        assert len(result["missingRequirements"]) == 2

    def test_diamond_is_top(self):
        agent = make_agent(100, 100, 100, tier=CredibilityTier.DIAMOND)
        result = check_tier_upgrade_eligibility(agent, 1000, 1000)
        assert result["eligible"] is False
        assert result["missingRequirements"] == ["Already at highest tier"]


class TestRecommendationsAndComparison:
    def test_recommendations_only_reachable_tiers(self, gold_agent):
        recs = tier_recommendations(gold_agent)
        assert [r["tier"] for r in recs] == ["BRONZE", "SILVER"]
        assert all(r["estimatedTime"] == "Immediate" for r in recs)

    def test_tier_benefits(self, gold_agent):
        benefits = calculate_tier_benefits(gold_agent)
        assert benefits["maxLTV"] == 66
        assert benefits["upgradePath"]["nextTier"] == "PLATINUM"
        assert benefits["upgradePath"]["estimatedTime"] == "1-2 weeks"

    def test_compare_seeded_agents(self, store):
        comparison = compare_agent_tiers(store.list_agents())
        assert comparison["tierDistribution"]["GOLD"] == 2
        assert comparison["tierDistribution"]["PLATINUM"] == 1
        assert comparison["tierDistribution"]["DIAMOND"] == 0
        assert comparison["averageScores"]["DIAMOND"] == 0
