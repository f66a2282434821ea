"""Pydantic models for agents, scores, verification and reputation."""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class VerificationType(str, Enum):
    CODE_AUDIT = "code_audit"
    PENETRATION_TEST = "penetration_test"
    PERFORMANCE_BENCHMARK = "performance_benchmark"
    SECURITY_ASSESSMENT = "security_assessment"
    COMPLIANCE_CHECK = "compliance_check"
    REPUTATION_VERIFICATION = "reputation_verification"
    ON_CHAIN_ANALYSIS = "on_chain_analysis"
    SOCIAL_PROOF = "social_proof"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PASSED = "passed"
    FAILED = "failed"
    EXPIRED = "expired"
    UNDER_REVIEW = "under_review"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CredibilityTier(str, Enum):
    DIAMOND = "DIAMOND"
    PLATINUM = "PLATINUM"
    GOLD = "GOLD"
    SILVER = "SILVER"
    BRONZE = "BRONZE"


class AgentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    UNDER_REVIEW = "UNDER_REVIEW"


class ReputationEventType(str, Enum):
    PERFORMANCE_IMPROVEMENT = "performance_improvement"
    PERFORMANCE_DECLINE = "performance_decline"
    CREDIT_LINE_INCREASE = "credit_line_increase"
    CREDIT_LINE_DECREASE = "credit_line_decrease"
    APR_IMPROVEMENT = "apr_improvement"
    APR_DECLINE = "apr_decline"
    LTV_OPTIMIZATION = "ltv_optimization"
    RISK_MANAGEMENT = "risk_management"
    COMPLIANCE_VIOLATION = "compliance_violation"
    COMPLIANCE_IMPROVEMENT = "compliance_improvement"
    AUM_CHANGE = "aum_change"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Generate a prefixed short hex ID, e.g. ``vault_3f9a0c1d2e4b``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def round_half_up(value: float, places: int = 0) -> float:
    """Round halves upwards (86.5 -> 87), unlike the built-in banker's ``round``.

    Non-finite values pass through unchanged. With ``places=0`` the result
    is an ``int``.
    """
    if not math.isfinite(value):
        return value
    if places == 0:
        return math.floor(value + 0.5)
    factor = 10**places
    return math.floor(value * factor + 0.5) / factor


class ApiModel(BaseModel):
    """Base model that serializes with camelCase keys for the JSON API."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Agent records
# ---------------------------------------------------------------------------

class VerificationDetails(ApiModel):
    auditor: Optional[str] = None
    methodology: Optional[str] = None
    findings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    risk_level: Optional[RiskLevel] = None
    compliance_standards: list[str] = Field(default_factory=list)


class VerificationMethod(ApiModel):
    id: str = Field(default_factory=lambda: new_id("verif"))
    type: VerificationType
    status: VerificationStatus
    score: float = 0
    last_verified: datetime = Field(default_factory=utcnow)
    next_verification_due: datetime = Field(default_factory=utcnow)
    details: VerificationDetails = Field(default_factory=VerificationDetails)


class ProvenanceInfo(ApiModel):
    source_code: str = ""
    verification_hash: str = ""
    deployment_chain: str = ""
    last_audit: Optional[datetime] = None
    audit_score: Optional[float] = None
    audit_report: Optional[str] = None


class AgentMetadata(ApiModel):
    description: str = ""
    category: str = ""
    version: str = ""
    tags: list[str] = Field(default_factory=list)
    provenance: ProvenanceInfo = Field(default_factory=ProvenanceInfo)
    verification_methods: list[VerificationMethod] = Field(default_factory=list)


class AgentScore(ApiModel):
    """Pillar scores (0-100) plus the derived overall and confidence values."""

    overall: int
    provenance: float
    performance: float
    perception: float
    confidence: int
    verification: float = 0
    last_updated: datetime = Field(default_factory=utcnow)


class Agent(ApiModel):
    id: str = Field(default_factory=lambda: new_id("agent"))
    name: str
    operator: str
    metadata: AgentMetadata = Field(default_factory=AgentMetadata)
    score: AgentScore
    credibility_tier: CredibilityTier
    status: AgentStatus = AgentStatus.ACTIVE
    verification: VerificationStatus = VerificationStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def days_active(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return max(0, (now - created).days)


# ---------------------------------------------------------------------------
# Reputation
# ---------------------------------------------------------------------------

class ReputationEvent(ApiModel):
    id: str = Field(default_factory=lambda: new_id("evt"))
    agent_id: str
    type: ReputationEventType
    impact: float = Field(ge=-100, le=100)
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class ReputationBreakdown(ApiModel):
    performance: float = 50
    credit: float = 50
    risk: float = 50
    compliance: float = 50
    overall: float = 50


class ReputationSummary(ApiModel):
    agent_id: str
    last_updated: datetime = Field(default_factory=utcnow)
    total_events: int = 0
    positive_events: int = 0
    negative_events: int = 0
    breakdown: ReputationBreakdown = Field(default_factory=ReputationBreakdown)
    recent_events: list[ReputationEvent] = Field(default_factory=list)
    trend: str = "stable"


# ---------------------------------------------------------------------------
# Opportunities
# ---------------------------------------------------------------------------

class OpportunityRisk(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Opportunity(ApiModel):
    id: int
    name: str
    description: str = ""
    apy: float
    trust_score: int = 0
    performance: int = 0
    reliability: int = 0
    safety: int = 0
    total_score: int = 0
    risk_level: OpportunityRisk = OpportunityRisk.MEDIUM
    contract_address: str = ""
    token_address: str = ""
    category: str = ""
    min_deposit: float = 0
    max_deposit: float = 0
    tvl: float = 0
