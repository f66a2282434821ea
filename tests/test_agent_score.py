"""Tests for agent scoring, LTV adjustments, risk metrics and reputation."""

from __future__ import annotations

from datetime import timedelta

import pytest

from bond_credit.core.models import (
    CredibilityTier,
    ReputationEvent,
    ReputationEventType,
    VerificationMethod,
    VerificationStatus,
    VerificationType,
    round_half_up,
    utcnow,
)
from bond_credit.scoring.agent_score import (
    AdjustmentType,
    Collateral,
    LTVAdjustment,
    MarketConditions,
    base_ltv_for_tier,
    build_reputation_summary,
    calculate_agent_score,
    calculate_ltv,
    calculate_risk_metrics,
    calculate_verification_score,
    determine_credibility_tier,
)
from tests.conftest import make_agent


def _adjust(*kinds: AdjustmentType) -> list[LTVAdjustment]:
    return [LTVAdjustment(type=k) for k in kinds]


class TestAgentScore:
    def test_overall_is_weighted_40_40_20(self):
        score = calculate_agent_score(80, 80, 60, 80)
        assert score.overall == 76
        assert score.verification == 80

    def test_half_points_round_up(self):
        # 36 + 34 + 16.5
        assert calculate_agent_score(90, 85, 82.5).overall == 87

    def test_verification_does_not_change_overall(self):
        assert calculate_agent_score(70, 70, 70, 0).overall == calculate_agent_score(70, 70, 70, 100).overall

    def test_confidence_rewards_agreement_and_level(self):
        assert calculate_agent_score(100, 100, 100).confidence == 90
        assert calculate_agent_score(80, 80, 60).confidence == 57

    def test_confidence_never_negative(self):
        score = calculate_agent_score(100, 0, 0)
        assert score.confidence >= 0

    def test_verification_score_averages_passed_methods(self):
        methods = [
            VerificationMethod(type=VerificationType.CODE_AUDIT, status=VerificationStatus.PASSED, score=90),
            VerificationMethod(type=VerificationType.SOCIAL_PROOF, status=VerificationStatus.PASSED, score=71),
            VerificationMethod(type=VerificationType.COMPLIANCE_CHECK, status=VerificationStatus.FAILED, score=10),
        ]
        # (90 + 71) / 2 = 80.5 rounds up
        assert calculate_verification_score(methods) == 81
        assert calculate_verification_score([]) == 0


class TestTierMapping:
    @pytest.mark.parametrize(
        "overall,tier",
        [
            (95, CredibilityTier.DIAMOND),
            (90, CredibilityTier.DIAMOND),
            (89, CredibilityTier.PLATINUM),
            (70, CredibilityTier.GOLD),
            (65, CredibilityTier.SILVER),
            (59, CredibilityTier.BRONZE),
            (0, CredibilityTier.BRONZE),
        ],
    )
    def test_determine_tier(self, overall, tier):
        assert determine_credibility_tier(overall) == tier

    def test_base_ltv_per_tier(self):
        assert base_ltv_for_tier(CredibilityTier.DIAMOND) == 80
        assert base_ltv_for_tier(CredibilityTier.BRONZE) == 40


class TestCalculateLTV:
    def test_no_adjustments_keeps_base(self):
        calc = calculate_ltv(60, calculate_agent_score(80, 80, 60))
        assert calc.final == 60
        assert calc.confidence == pytest.approx(0.8)
        assert calc.risk_score == 0
        assert calc.max_allowed == 95

    def test_score_bonus_by_band(self):
        gold = calculate_agent_score(80, 80, 60)        # 76
        platinum = calculate_agent_score(95, 85, 83)    # 89
        diamond = calculate_agent_score(95, 95, 95)     # 95
        assert calculate_ltv(60, gold, _adjust(AdjustmentType.SCORE_BONUS)).final == 61
        calc = calculate_ltv(60, platinum, _adjust(AdjustmentType.SCORE_BONUS))
        assert calc.final == 63
        assert calc.confidence == pytest.approx(0.85)
        assert calculate_ltv(60, diamond, _adjust(AdjustmentType.SCORE_BONUS)).final == 65

    def test_unlisted_adjustments_do_not_apply(self):
        diamond = calculate_agent_score(95, 95, 95)
        calc = calculate_ltv(60, diamond, _adjust(AdjustmentType.PROVENANCE_BONUS))
        assert calc.final == 61

    def test_collateral_bonus(self):
        score = calculate_agent_score(80, 80, 60)
        collateral = [
            Collateral(id="a", value=1_000_000, ltv_ratio=85),
            Collateral(id="b", value=500_000, ltv_ratio=85),
        ]
        calc = calculate_ltv(60, score, _adjust(AdjustmentType.COLLATERAL_BONUS), collateral)
        assert calc.final == 64

    def test_bear_market_penalty(self):
        score = calculate_agent_score(80, 80, 60)
        calc = calculate_ltv(
            60, score, _adjust(AdjustmentType.MARKET_BONUS),
            market=MarketConditions(volatility=20, trend="bear"),
        )
        assert calc.final == 57
        assert calc.confidence == pytest.approx(0.7)
        assert calc.risk_score == 20

    def test_bull_market_with_low_volatility(self):
        score = calculate_agent_score(80, 80, 60)
        calc = calculate_ltv(
            60, score, _adjust(AdjustmentType.MARKET_BONUS),
            market=MarketConditions(volatility=10, trend="bull"),
        )
        assert calc.final == 62

    def test_final_is_clamped_to_95(self):
        diamond = calculate_agent_score(95, 95, 95)
        calc = calculate_ltv(94, diamond, _adjust(AdjustmentType.SCORE_BONUS))
        assert calc.final == 95

    def test_final_never_negative(self):
        score = calculate_agent_score(10, 10, 10)
        calc = calculate_ltv(
            1, score, _adjust(AdjustmentType.MARKET_BONUS),
            market=MarketConditions(volatility=80, trend="bear"),
        )
        assert calc.final == 0

    def test_serializes_camel_case(self):
        data = calculate_ltv(60, calculate_agent_score(80, 80, 60)).to_api()
        assert set(data) >= {"base", "final", "maxAllowed", "confidence", "riskScore"}


class TestRiskMetrics:
    def test_ltv_snapshot_derived_from_tier(self):
        metrics = calculate_risk_metrics(make_agent())
        assert metrics.ltv.maximum == 60
        assert metrics.ltv.current == 48
        assert metrics.ltv.utilization == 80

    def test_fixed_credit_line(self):
        metrics = calculate_risk_metrics(make_agent(tier=CredibilityTier.BRONZE))
        assert metrics.credit_line.total == 1_000_000
        assert metrics.credit_line.available == 200_000
        assert metrics.to_api()["creditLine"]["apr"] == 8.5


class TestReputation:
    def test_empty_summary(self):
        summary = build_reputation_summary("agent_x", [])
        assert summary.total_events == 0
        assert summary.trend == "stable"
        assert summary.breakdown.overall == 50

    def test_breakdown_and_trend(self):
        now = utcnow()
        events = [
            ReputationEvent(
                agent_id="a", type=ReputationEventType.PERFORMANCE_IMPROVEMENT,
                impact=20, timestamp=now,
            ),
            ReputationEvent(
                agent_id="a", type=ReputationEventType.COMPLIANCE_VIOLATION,
                impact=-5, timestamp=now - timedelta(days=1),
            ),
        ]
        summary = build_reputation_summary("a", events)
        assert summary.total_events == 2
        assert summary.positive_events == 1
        assert summary.negative_events == 1
        assert summary.breakdown.performance == 100
        assert summary.breakdown.compliance == pytest.approx(50 - 5 / 15 * 50)
        assert summary.breakdown.credit == 50
        assert summary.trend == "improving"

    def test_declining_trend(self):
        events = [
            ReputationEvent(agent_id="a", type=ReputationEventType.APR_DECLINE, impact=-8),
            ReputationEvent(agent_id="a", type=ReputationEventType.CREDIT_LINE_DECREASE, impact=-8),
        ]
        summary = build_reputation_summary("a", events)
        assert summary.trend == "declining"
        assert summary.breakdown.credit == 0

    def test_recent_events_capped_at_ten(self):
        events = [
            ReputationEvent(agent_id="a", type=ReputationEventType.RISK_MANAGEMENT, impact=1)
            for _ in range(12)
        ]
        summary = build_reputation_summary("a", events)
        assert len(summary.recent_events) == 10
        assert summary.total_events == 12

    def test_impact_bounds_validated(self):
        with pytest.raises(ValueError):
            ReputationEvent(agent_id="a", type=ReputationEventType.AUM_CHANGE, impact=150)


class TestRoundHalfUp:
    @pytest.mark.parametrize(
        "value,places,expected",
        [(86.5, 0, 87), (2.5, 0, 3), (2.4, 0, 2), (-0.5, 0, 0), (66.125, 2, 66.13), (66.124, 2, 66.12)],
    )
    def test_rounding(self, value, places, expected):
        assert round_half_up(value, places) == expected

    def test_integer_result(self):
        assert isinstance(round_half_up(86.5), int)

    def test_infinity_passes_through(self):
        assert round_half_up(float("inf"), 2) == float("inf")
