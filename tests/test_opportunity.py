"""Tests for the three-metric opportunity trust scorer."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from bond_credit.scoring.opportunity import (
    OpportunityMetrics,
    OpportunityScorer,
    PerformanceInput,
    ReliabilityInput,
    SafetyInput,
)

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)
TGAS = 10**12


@pytest.fixture
def scorer():
    return OpportunityScorer(now=NOW)


class TestPerformance:
    @pytest.mark.parametrize(
        "apy,expected",
        [(None, 0), (0, 0), (3, 6), (7, 14), (12, 24), (16, 30), (25, 40), (100, 40)],
    )
    def test_apy_bands(self, apy, expected):
        assert OpportunityScorer.performance_score(PerformanceInput(apy_30d=apy)) == expected

    def test_prefers_30d_over_7d_over_target(self):
        perf = PerformanceInput(apy_7d=3, apy_30d=12, target_apy=25)
        assert OpportunityScorer.performance_score(perf) == 24
        assert OpportunityScorer.performance_score(PerformanceInput(apy_7d=3, target_apy=25)) == 6
        assert OpportunityScorer.performance_score(PerformanceInput(target_apy=25)) == 40


class TestReliability:
    def test_few_intents_get_neutral_score(self, scorer):
        assert scorer.reliability_score(ReliabilityInput(success_rate=100, total_intents=5)) == 15

    def test_combined(self, scorer):
        rel = ReliabilityInput(
            success_rate=96, avg_gas_used=15 * TGAS, avg_latency_ms=500, total_intents=50,
        )
        assert scorer.reliability_score(rel) == 39

    def test_capped_at_max(self, scorer):
        rel = ReliabilityInput(success_rate=100, avg_gas_used=1, avg_latency_ms=1, total_intents=50)
        assert scorer.reliability_score(rel) == 40

    def test_gas_and_latency_tables(self):
        assert OpportunityScorer.gas_score(50 * TGAS) == 6
        assert OpportunityScorer.gas_score(150 * TGAS) == 0
        assert OpportunityScorer.latency_score(2500) == 3
        assert OpportunityScorer.latency_score(20_000) == 0


class TestSafety:
    def test_recent_audit_bonus(self, scorer):
        safety = SafetyInput(is_audited=True, audit_date=NOW - timedelta(days=60))
        assert scorer.safety_score(safety) == 18

    def test_old_audit_gets_base_points(self, scorer):
        safety = SafetyInput(is_audited=True, audit_date=NOW - timedelta(days=3 * 365))
        assert scorer.safety_score(safety) == 15

    def test_recent_incident_penalty(self, scorer):
        safety = SafetyInput(
            is_audited=True,
            audit_date=NOW - timedelta(days=60),
            has_incidents=True,
            last_incident=NOW - timedelta(days=30),
        )
        assert scorer.safety_score(safety) == 10

    def test_never_negative(self, scorer):
        safety = SafetyInput(has_incidents=True, last_incident=NOW - timedelta(days=1))
        assert scorer.safety_score(safety) == 0

    def test_naive_dates_treated_as_utc(self, scorer):
        naive = (NOW - timedelta(days=60)).replace(tzinfo=None)
        assert scorer.safety_score(SafetyInput(is_audited=True, audit_date=naive)) == 18


class TestTrustScore:
    @pytest.mark.parametrize(
        "total,level",
        [(0, "Caution"), (49, "Caution"), (50, "Moderate"), (79, "Moderate"), (80, "Preferred")],
    )
    def test_risk_bands(self, total, level):
        assert OpportunityScorer.risk_band(total).level == level

    def test_total_is_sum_of_components(self, scorer):
        metrics = OpportunityMetrics(
            id=7,
            name="Test Pool",
            performance=PerformanceInput(apy_30d=12),
            reliability=ReliabilityInput(
                success_rate=96, avg_gas_used=15 * TGAS, avg_latency_ms=500, total_intents=50,
            ),
            safety=SafetyInput(is_audited=True, audit_date=NOW - timedelta(days=60)),
        )
        score = scorer.calculate_score(metrics)
        assert score.opportunity_id == 7
        assert score.total_score == 24 + 39 + 18
        assert score.risk.level == "Preferred"
        assert score.breakdown["safety"] == {"score": 18, "max": 20}

    def test_batch_preserves_order(self, scorer):
        batch = [OpportunityMetrics(id=i) for i in (3, 1, 2)]
        assert [s.opportunity_id for s in scorer.calculate_batch_scores(batch)] == [3, 1, 2]

    def test_explanation_totals(self):
        info = OpportunityScorer.explanation()
        parts = info["breakdown"]
        assert sum(p["maxScore"] for p in parts.values()) == info["totalMaxScore"] == 100
