"""Demo agents, reputation events and yield opportunities."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from bond_credit.core.models import (
    Agent,
    AgentMetadata,
    AgentStatus,
    CredibilityTier,
    Opportunity,
    OpportunityRisk,
    ProvenanceInfo,
    ReputationEvent,
    ReputationEventType,
    RiskLevel,
    VerificationDetails,
    VerificationMethod,
    VerificationStatus,
    VerificationType,
)
from bond_credit.core.store import InMemoryStore
from bond_credit.scoring.agent_score import calculate_agent_score

logger = logging.getLogger("bond_credit.seed")


def _date(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def _method(
    method_id: str,
    kind: VerificationType,
    status: VerificationStatus,
    score: float,
    verified: datetime,
    due: datetime,
    **details,
) -> VerificationMethod:
    return VerificationMethod(
        id=method_id,
        type=kind,
        status=status,
        score=score,
        last_verified=verified,
        next_verification_due=due,
        details=VerificationDetails(**details),
    )


def demo_agents() -> list[Agent]:
    return [
        Agent(
            id="1",
            name="Alpha Trading Bot",
            operator="0x742d35Cc6640C178fFfbDD5B5e3d6480",
            metadata=AgentMetadata(
                description="High-frequency trading bot for DeFi protocols",
                category="Trading",
                version="2.1.0",
                tags=["defi", "trading", "arbitrage"],
                provenance=ProvenanceInfo(
                    source_code="https://github.com/agent-dev/trading-alpha",
                    verification_hash="0x1234567890abcdef...",
                    deployment_chain="Ethereum",
                    last_audit=_date(2024, 1, 15),
                    audit_score=92,
                    audit_report="https://audit-reports.com/alpha-trading-bot-v2.1",
                ),
                verification_methods=[
                    _method(
                        "verif_1_1", VerificationType.CODE_AUDIT, VerificationStatus.PASSED, 92,
                        _date(2024, 1, 15), _date(2024, 7, 15),
                        auditor="Trail of Bits",
                        methodology="Static analysis, manual review, fuzzing",
                        findings=["Minor gas optimization opportunities", "No critical vulnerabilities found"],
                        recommendations=["Implement additional test coverage", "Consider formal verification"],
                        risk_level=RiskLevel.LOW,
                        compliance_standards=["Ethereum Security Best Practices"],
                    ),
                    _method(
                        "verif_1_2", VerificationType.SECURITY_ASSESSMENT, VerificationStatus.PASSED, 88,
                        _date(2024, 1, 20), _date(2024, 7, 20),
                        auditor="OpenZeppelin",
                        methodology="Security review, threat modeling",
                        findings=["Robust access control implementation", "Secure upgrade pattern"],
                        recommendations=["Add rate limiting", "Implement circuit breakers"],
                        risk_level=RiskLevel.LOW,
                    ),
                    _method(
                        "verif_1_3", VerificationType.PERFORMANCE_BENCHMARK, VerificationStatus.PASSED, 95,
                        _date(2024, 1, 25), _date(2024, 4, 25),
                        methodology="Gas optimization testing, execution time analysis",
                        findings=["Efficient gas usage", "Fast execution times"],
                        recommendations=[
                            "Monitor gas costs in production",
                            "Optimize for high-frequency scenarios",
                        ],
                    ),
                ],
            ),
            score=calculate_agent_score(95, 85, 83, 92),
            credibility_tier=CredibilityTier.PLATINUM,
            status=AgentStatus.ACTIVE,
            verification=VerificationStatus.PASSED,
            created_at=_date(2024, 1, 1),
        ),
        Agent(
            id="2",
            name="Yield Optimizer Pro",
            operator="0x123e4567e89b12d3a456426614174000",
            metadata=AgentMetadata(
                description="Automated yield farming across multiple chains",
                category="DeFi",
                version="1.8.3",
                tags=["yield", "farming", "optimization"],
                provenance=ProvenanceInfo(
                    source_code="https://github.com/yield-protocol/optimizer",
                    verification_hash="0xabcdef1234567890...",
                    deployment_chain="Polygon",
                    last_audit=_date(2024, 1, 10),
                    audit_score=78,
                    audit_report="https://audit-reports.com/yield-optimizer-v1.8",
                ),
                verification_methods=[
                    _method(
                        "verif_2_1", VerificationType.CODE_AUDIT, VerificationStatus.PASSED, 78,
                        _date(2024, 1, 10), _date(2024, 7, 10),
                        auditor="Consensys Diligence",
                        methodology="Automated analysis, manual review",
                        findings=["Some medium-risk findings", "Good overall architecture"],
                        recommendations=["Fix medium-risk issues", "Add more test coverage"],
                        risk_level=RiskLevel.MEDIUM,
                    ),
                    _method(
                        "verif_2_2", VerificationType.COMPLIANCE_CHECK, VerificationStatus.IN_PROGRESS, 65,
                        _date(2024, 1, 15), _date(2024, 2, 15),
                        methodology="Regulatory compliance review",
                        findings=["Pending regulatory review", "Basic compliance framework in place"],
                        recommendations=["Complete regulatory review", "Implement compliance monitoring"],
                        risk_level=RiskLevel.MEDIUM,
                    ),
                ],
            ),
            score=calculate_agent_score(92, 72, 68, 72),
            credibility_tier=CredibilityTier.GOLD,
            status=AgentStatus.ACTIVE,
            verification=VerificationStatus.IN_PROGRESS,
            created_at=_date(2024, 1, 15),
        ),
        Agent(
            id="3",
            name="Arbitrage Hunter",
            operator="0x456789abcdef0123456789abcdef0123",
            metadata=AgentMetadata(
                description="Cross-exchange arbitrage detection and execution",
                category="Trading",
                version="3.0.1",
                tags=["arbitrage", "trading", "cross-exchange"],
                provenance=ProvenanceInfo(
                    source_code="https://github.com/arbitrage-labs/hunter",
                    verification_hash="0x7890abcdef123456...",
                    deployment_chain="Arbitrum",
                    last_audit=_date(2024, 1, 20),
                    audit_score=85,
                    audit_report="https://audit-reports.com/arbitrage-hunter-v3.0",
                ),
                verification_methods=[
                    _method(
                        "verif_3_1", VerificationType.CODE_AUDIT, VerificationStatus.PASSED, 85,
                        _date(2024, 1, 20), _date(2024, 7, 20),
                        auditor="Quantstamp",
                        methodology="Automated analysis, manual review, formal verification",
                        findings=["Good security practices", "Minor optimization opportunities"],
                        recommendations=["Implement additional safety checks", "Add circuit breakers"],
                        risk_level=RiskLevel.LOW,
                    ),
                    _method(
                        "verif_3_2", VerificationType.PENETRATION_TEST, VerificationStatus.PASSED, 82,
                        _date(2024, 1, 25), _date(2024, 4, 25),
                        methodology="Penetration testing, vulnerability assessment",
                        findings=["Resistant to common attack vectors", "Good input validation"],
                        recommendations=["Implement additional rate limiting", "Add anomaly detection"],
                        risk_level=RiskLevel.LOW,
                    ),
                ],
            ),
            score=calculate_agent_score(89, 78, 76, 84),
            credibility_tier=CredibilityTier.GOLD,
            status=AgentStatus.ACTIVE,
            verification=VerificationStatus.PASSED,
            created_at=_date(2024, 1, 20),
        ),
    ]


def demo_reputation_events() -> list[ReputationEvent]:
    return [
        ReputationEvent(
            id="evt_1",
            agent_id="1",
            type=ReputationEventType.PERFORMANCE_IMPROVEMENT,
            timestamp=_date(2024, 1, 25, 10, 30),
            description="Trading algorithm update resulted in 15% better returns",
            impact=25,
            metadata={"previousValue": 141.2, "newValue": 156.7, "changePercentage": 15.5},
        ),
        ReputationEvent(
            id="evt_2",
            agent_id="1",
            type=ReputationEventType.CREDIT_LINE_INCREASE,
            timestamp=_date(2024, 1, 24, 14, 15),
            description="Credit line increased from $500K to $750K due to performance",
            impact=20,
            metadata={"previousValue": 500000, "newValue": 750000, "changePercentage": 50},
        ),
        ReputationEvent(
            id="evt_3",
            agent_id="2",
            type=ReputationEventType.APR_IMPROVEMENT,
            timestamp=_date(2024, 1, 23, 9, 45),
            description="APR improved from 8.2% to 9.1% through strategy updates",
            impact=15,
            metadata={"previousValue": 8.2, "newValue": 9.1, "changePercentage": 11.0},
        ),
        ReputationEvent(
            id="evt_4",
            agent_id="3",
            type=ReputationEventType.LTV_OPTIMIZATION,
            timestamp=_date(2024, 1, 22, 16, 20),
            description="LTV ratio updated from 65% to 72% while maintaining risk profile",
            impact=18,
            metadata={"previousValue": 65, "newValue": 72, "changePercentage": 10.8},
        ),
    ]


def demo_opportunities() -> list[Opportunity]:
    return [
        Opportunity(
            id=1,
            name="NEAR Staking Pool",
            description="High-yield staking pool with automated compounding and risk management strategies.",
            apy=12.5, trust_score=92, performance=37, reliability=35, safety=20, total_score=92,
            risk_level=OpportunityRisk.LOW,
            contract_address="staking.near", token_address="near", category="staking",
            min_deposit=1, max_deposit=100000, tvl=1250000,
        ),
        Opportunity(
            id=2,
            name="Liquidity Mining Farm",
            description=(
                "Automated liquidity provision with dynamic fee optimization "
                "and impermanent loss protection."
            ),
            apy=18.7, trust_score=85, performance=32, reliability=33, safety=20, total_score=85,
            risk_level=OpportunityRisk.MEDIUM,
            contract_address="liquidity-farm.near", token_address="usdc", category="liquidity",
            min_deposit=100, max_deposit=50000, tvl=850000,
        ),
        Opportunity(
            id=3,
            name="Cross-Chain Bridge Vault",
            description="Multi-chain yield farming with bridge rewards and cross-chain arbitrage opportunities.",
            apy=15.2, trust_score=78, performance=30, reliability=28, safety=20, total_score=78,
            risk_level=OpportunityRisk.MEDIUM,
            contract_address="bridge-vault.near", token_address="weth", category="bridge",
            min_deposit=0.1, max_deposit=10000, tvl=420000,
        ),
        Opportunity(
            id=4,
            name="DeFi Index Fund",
            description="Diversified portfolio of top-performing DeFi protocols with automated rebalancing.",
            apy=14.8, trust_score=88, performance=35, reliability=33, safety=20, total_score=88,
            risk_level=OpportunityRisk.LOW,
            contract_address="defi-index.near", token_address="usdt", category="index",
            min_deposit=50, max_deposit=25000, tvl=680000,
        ),
    ]


def ensure_seeded(store: InMemoryStore) -> bool:
    """Load the demo data into an empty store.

    Returns ``True`` if anything was inserted. A store that already holds
    agents is left untouched.
    """
    if store.list_agents():
        return False

    for agent in demo_agents():
        store.upsert_agent(agent)
    for event in demo_reputation_events():
        store.add_reputation_event(event)
    if not store.list_opportunities():
        for opportunity in demo_opportunities():
            store.upsert_opportunity(opportunity)

    logger.info(
        f"Seeded {len(store.list_agents())} agents and "
        f"{len(store.list_opportunities())} opportunities"
    )
    return True
