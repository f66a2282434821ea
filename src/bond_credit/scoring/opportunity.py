"""Three-metric trust scoring for yield opportunities.

Performance (0-40), reliability (0-40) and safety (0-20) add up to a
0-100 trust score that maps onto a Caution / Moderate / Preferred band.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

logger = logging.getLogger("bond_credit.scoring.opportunity")

_SECONDS_PER_MONTH = 60 * 60 * 24 * 30
_TGAS = 10**12


class PerformanceInput(BaseModel):
    apy_7d: Optional[float] = None
    apy_30d: Optional[float] = None
    target_apy: Optional[float] = None


class ReliabilityInput(BaseModel):
    success_rate: float = 0          # percent
    avg_gas_used: float = 0          # gas units
    avg_latency_ms: float = 0
    total_intents: int = 0


class SafetyInput(BaseModel):
    is_audited: bool = False
    has_incidents: bool = False
    audit_date: Optional[datetime] = None
    last_incident: Optional[datetime] = None


class OpportunityMetrics(BaseModel):
    id: int
    name: str = ""
    performance: PerformanceInput = Field(default_factory=PerformanceInput)
    reliability: ReliabilityInput = Field(default_factory=ReliabilityInput)
    safety: SafetyInput = Field(default_factory=SafetyInput)


class RiskBand(BaseModel):
    level: str
    color: str
    description: str


class TrustScore(BaseModel):
    opportunity_id: int
    total_score: int
    performance_score: int
    reliability_score: int
    safety_score: int
    risk: RiskBand
    breakdown: dict[str, dict[str, int]]


class OpportunityScorer:
    """Scores opportunities from APY history, intent execution and audits."""

    performance_max = 40
    reliability_max = 40
    safety_max = 20

    def __init__(self, now: datetime | None = None) -> None:
        self._now = now

    def _current_time(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    def calculate_score(self, metrics: OpportunityMetrics) -> TrustScore:
        performance = self.performance_score(metrics.performance)
        reliability = self.reliability_score(metrics.reliability)
        safety = self.safety_score(metrics.safety)
        total = performance + reliability + safety
        risk = self.risk_band(total)

        logger.info(
            f"Score calculated for opportunity {metrics.id}: total={total} "
            f"(performance={performance}, reliability={reliability}, "
            f"safety={safety}, risk={risk.level})"
        )
        return TrustScore(
            opportunity_id=metrics.id,
            total_score=total,
            performance_score=performance,
            reliability_score=reliability,
            safety_score=safety,
            risk=risk,
            breakdown={
                "performance": {"score": performance, "max": self.performance_max},
                "reliability": {"score": reliability, "max": self.reliability_max},
                "safety": {"score": safety, "max": self.safety_max},
            },
        )

    def calculate_batch_scores(self, batch: list[OpportunityMetrics]) -> list[TrustScore]:
        return [self.calculate_score(m) for m in batch]

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @staticmethod
    def performance_score(perf: PerformanceInput) -> int:
        # 30d APY wins over 7d, which wins over the target.
        apy = perf.apy_30d or perf.apy_7d or perf.target_apy
        if not apy or apy <= 0:
            return 0
        if apy < 5:
            return int(apy / 5 * 10)
        if apy < 10:
            return 10 + int((apy - 5) / 5 * 10)
        if apy < 15:
            return 20 + int((apy - 10) / 5 * 10)
        return 30 + min(10, int((apy - 15) // 5) * 10)

    def reliability_score(self, rel: ReliabilityInput) -> int:
        if rel.total_intents < 10:
            return 15
        success = int(rel.success_rate / 100 * 25)
        return min(
            self.reliability_max,
            success + self.gas_score(rel.avg_gas_used) + self.latency_score(rel.avg_latency_ms),
        )

    @staticmethod
    def gas_score(avg_gas_used: float) -> int:
        for limit_tgas, points in ((20, 10), (40, 8), (60, 6), (80, 4), (100, 2)):
            if avg_gas_used < limit_tgas * _TGAS:
                return points
        return 0

    @staticmethod
    def latency_score(avg_latency_ms: float) -> int:
        for limit_ms, points in ((1000, 5), (2000, 4), (3000, 3), (5000, 2), (10000, 1)):
            if avg_latency_ms < limit_ms:
                return points
        return 0

    def safety_score(self, safety: SafetyInput) -> int:
        score = 0
        if safety.is_audited:
            score += 15
            if safety.audit_date is not None:
                score += self._recency_points(safety.audit_date)
        if safety.has_incidents:
            score -= 5
            if safety.last_incident is not None:
                score -= self._recency_points(safety.last_incident)
        return max(0, min(self.safety_max, score))

    def _recency_points(self, when: datetime) -> int:
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        months = (self._current_time() - when).total_seconds() / _SECONDS_PER_MONTH
        if months < 6:
            return 3
        if months < 12:
            return 2
        if months < 24:
            return 1
        return 0

    @staticmethod
    def risk_band(total: int) -> RiskBand:
        if total < 50:
            return RiskBand(level="Caution", color="red", description="High risk - proceed with caution")
        if total < 80:
            return RiskBand(
                level="Moderate", color="yellow",
                description="Medium risk - acceptable for most users",
            )
        return RiskBand(level="Preferred", color="green", description="Low risk - recommended opportunity")

    @staticmethod
    def explanation() -> dict:
        return {
            "totalMaxScore": 100,
            "breakdown": {
                "performance": {
                    "maxScore": 40,
                    "description": "Based on actual APY performance (7d/30d)",
                    "calculation": "Higher APY = higher score, up to 40 points",
                },
                "reliability": {
                    "maxScore": 40,
                    "description": "Based on intent success rate, gas efficiency, latency",
                    "calculation": "Success rate (25pts) + gas efficiency (10pts) + latency (5pts)",
                },
                "safety": {
                    "maxScore": 20,
                    "description": "Based on audit status and incident history",
                    "calculation": "Audit status (15pts) + recent audit bonus (3pts) - incident penalties",
                },
            },
            "riskLevels": {
                "caution": {"min": 0, "max": 49, "description": "High risk"},
                "moderate": {"min": 50, "max": 79, "description": "Medium risk"},
                "preferred": {"min": 80, "max": 100, "description": "Low risk"},
            },
        }
