"""FastAPI JSON API for bond.credit."""

from __future__ import annotations

import json
import logging
import random
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bond_credit import __version__
from bond_credit.core.models import (
    Agent,
    AgentMetadata,
    AgentStatus,
    CredibilityTier,
    VerificationDetails,
    VerificationMethod,
    VerificationStatus,
    VerificationType,
    round_half_up,
    utcnow,
)
from bond_credit.core.platform import Platform
from bond_credit.scoring.agent_score import (
    Collateral,
    LTVAdjustment,
    MarketConditions,
    base_ltv_for_tier,
    build_reputation_summary,
    calculate_agent_score,
    calculate_ltv,
    calculate_risk_metrics,
)
from bond_credit.scoring.opportunity import OpportunityMetrics
from bond_credit.scoring.tiers import (
    CREDIBILITY_TIERS,
    calculate_max_ltv,
    check_tier_upgrade_eligibility,
    compare_agent_tiers,
    ltv_breakdown,
    tier_recommendations,
)
from bond_credit.vaults.chains import CHAIN_CONFIGS, ChainId
from bond_credit.vaults.credit_vault import (
    CreditVault,
    ProtectionAction,
    ProtectionConditions,
    VaultProtectionRule,
    calculate_dynamic_ltv,
    create_credit_vault,
    execute_protection_rules,
    recalculate_vault_metrics,
    should_trigger_liquidation_protection,
    update_vault_collateral,
    update_vault_debt,
)

logger = logging.getLogger("bond_credit.dashboard")

_app = FastAPI(title="bond.credit API", version=__version__)
_platform: Platform | None = None
_base_path: Path | None = None
_transport: Optional[httpx.AsyncBaseTransport] = None
_websockets: list[WebSocket] = []

_GLOBAL_STATS = {
    "tvl": 2847592.45,
    "users": 1247,
    "activeVaults": 156,
    "totalYield": 89234.67,
    "dailyVolume": 456789.23,
    "averageApy": 15.2,
    "riskDistribution": {"low": 68, "medium": 24, "high": 8},
}
_RISK_RANK = {"LOW": 1, "MEDIUM": 2, "HIGH": 3}
_NO_CACHE = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class ApiError(Exception):
    """Turned into a ``{"success": false, "error": ...}`` response."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _ok(data: Any = None, status_code: int = 200, **extra: Any) -> JSONResponse:
    body = {"success": True, "data": data, **extra}
    return JSONResponse(jsonable_encoder(body, by_alias=True), status_code=status_code)


def _fail(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def _require(body: dict, *fields: str) -> None:
    if any(body.get(f) in (None, "") for f in fields):
        raise ApiError("Missing required fields")


def _number(value: Any, name: str) -> float:
    """Read a numeric body field; objects, lists and booleans are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ApiError(f"{name} must be a number")
    try:
        return float(value)
    except ValueError:
        raise ApiError(f"{name} must be a number") from None


def _object(value: Any, name: str) -> dict:
    if not isinstance(value, dict):
        raise ApiError(f"{name} must be an object")
    return value


def _platform_or_503() -> Platform:
    if _platform is None:
        raise ApiError("Platform not loaded", 503)
    return _platform


def _agent_or_404(agent_id: str) -> Agent:
    agent = _platform_or_503().store.get_agent(agent_id)
    if agent is None:
        raise ApiError("Agent not found", 404)
    return agent


def _vault_or_404(vault_id: str) -> CreditVault:
    vault = _platform_or_503().store.get_vault(vault_id)
    if vault is None:
        raise ApiError("Vault not found", 404)
    return vault


def _valid_chain(chain_id: Any) -> int:
    try:
        return int(ChainId(int(chain_id)))
    except (TypeError, ValueError):
        raise ApiError("Invalid chain ID") from None


# ------------------------------------------------------------------
# Error handlers
# ------------------------------------------------------------------


@_app.exception_handler(ApiError)
async def _handle_api_error(request: Request, exc: ApiError):
    return _fail(exc.message, exc.status_code)


@_app.exception_handler(RequestValidationError)
async def _handle_validation_error(request: Request, exc: RequestValidationError):
    return _fail("Invalid request body", 400)


@_app.exception_handler(ValueError)
async def _handle_value_error(request: Request, exc: ValueError):
    return _fail(str(exc), 400)


@_app.exception_handler(Exception)
async def _handle_unexpected(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return _fail("Internal server error", 500)


# ------------------------------------------------------------------
# Lifecycle
# ------------------------------------------------------------------


async def _broadcast_ws(event: str, data: dict) -> None:
    """Send an event to all connected WebSocket clients."""
    payload = json.dumps({"event": event, "data": data})
    disconnected = []
    for ws in _websockets:
        try:
            await ws.send_text(payload)
        except Exception:
            disconnected.append(ws)
    for ws in disconnected:
        _websockets.remove(ws)


async def _event_handler(event: str, data: dict) -> None:
    """Bridge platform events to WebSocket clients."""
    await _broadcast_ws(event, data)


def configure(base_path: Path | None = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """Point the app at a deployment directory before it starts."""
    global _base_path, _transport
    _base_path = base_path
    _transport = transport
    return _app


@_app.on_event("startup")
async def startup():
    global _platform
    _platform = await Platform.load(_base_path, transport=_transport)
    _platform.set_event_handler(_event_handler)
    if _platform.config.risk_monitor.autostart:
        _platform.risk_monitor.start()
    logger.info(f"API started for '{_platform.config.name}'")


@_app.on_event("shutdown")
async def shutdown():
    global _platform
    if _platform:
        await _platform.shutdown()
        _platform = None


# ------------------------------------------------------------------
# Health and status
# ------------------------------------------------------------------


@_app.get("/api/health")
async def api_health():
    platform = _platform_or_503()
    db_ok = await platform.db.ping()
    checks = {
        "database": {"status": "ok" if db_ok else "error"},
        "riskMonitor": {"status": "ok", "running": platform.risk_monitor.is_running},
    }
    healthy = all(c["status"] == "ok" for c in checks.values())
    body = {
        "success": healthy,
        "status": "healthy" if healthy else "degraded",
        "timestamp": utcnow().isoformat(),
        "uptime": round(platform.uptime, 3),
        "version": __version__,
        "checks": checks,
    }
    return JSONResponse(body, status_code=200 if healthy else 503, headers=_NO_CACHE)


@_app.get("/api/status")
async def api_status():
    return _ok(_platform_or_503().status())


# ------------------------------------------------------------------
# Agents
# ------------------------------------------------------------------


@_app.get("/api/agents")
async def api_agents(
    category: str | None = Query(None),
    tier: str | None = Query(None),
    status: str | None = Query(None),
):
    agents = _platform_or_503().store.list_agents()
    if category and category != "all":
        agents = [a for a in agents if a.metadata.category.lower() == category.lower()]
    if tier and tier != "all":
        agents = [a for a in agents if a.credibility_tier.value == tier]
    if status and status != "all":
        agents = [a for a in agents if a.status.value == status]
    return _ok(agents)


@_app.post("/api/agents")
async def api_create_agent(body: dict):
    _require(body, "name", "operator", "metadata", "scores")
    scores = _object(body["scores"], "scores")
    score = calculate_agent_score(
        _number(scores.get("provenance", 0), "scores.provenance"),
        _number(scores.get("performance", 0), "scores.performance"),
        _number(scores.get("perception", 0), "scores.perception"),
        0,
    )
    if score.overall >= 80:
        tier = CredibilityTier.PLATINUM
    elif score.overall >= 60:
        tier = CredibilityTier.GOLD
    else:
        tier = CredibilityTier.SILVER

    agent = Agent(
        name=body["name"],
        operator=body["operator"],
        metadata=AgentMetadata.model_validate(body["metadata"]),
        score=score,
        credibility_tier=tier,
        status=AgentStatus.UNDER_REVIEW,
        verification=VerificationStatus.UNDER_REVIEW,
    )
    _platform_or_503().store.upsert_agent(agent)
    logger.info(f"Created agent {agent.id} ({agent.name}) at tier {tier.value}")
    return _ok(agent, status_code=201)


@_app.get("/api/agents/{agent_id}")
async def api_agent(agent_id: str):
    return _ok(_agent_or_404(agent_id))


@_app.get("/api/agents/{agent_id}/reputation")
async def api_agent_reputation(agent_id: str):
    _agent_or_404(agent_id)
    events = _platform_or_503().store.get_reputation_events(agent_id)
    return _ok(build_reputation_summary(agent_id, events))


# ------------------------------------------------------------------
# Credibility tiers
# ------------------------------------------------------------------


def _mock_successful_transactions() -> int:
    return random.randint(5, 54)


@_app.get("/api/credibility-tiers")
async def api_tiers(
    agent_id: str | None = Query(None, alias="agentId"),
    tier: str | None = Query(None),
    include_comparison: bool = Query(False, alias="includeComparison"),
):
    agents = _platform_or_503().store.list_agents()
    filtered = agents
    if agent_id:
        filtered = [a for a in filtered if a.id == agent_id]
    if tier and tier != "all":
        filtered = [a for a in filtered if a.credibility_tier.value == tier]

    details = []
    for agent in filtered:
        days_active = agent.days_active()
        successful = _mock_successful_transactions()
        details.append({
            "agentId": agent.id,
            "agentName": agent.name,
            "currentTier": agent.credibility_tier.value,
            "tierInfo": CREDIBILITY_TIERS[agent.credibility_tier].to_dict(),
            "maxLTV": calculate_max_ltv(agent),
            "score": agent.score.overall,
            "daysActive": days_active,
            "successfulTransactions": successful,
            "upgradeEligibility": check_tier_upgrade_eligibility(agent, days_active, successful),
            "lastUpdated": agent.updated_at,
        })

    return _ok({
        "tierInfo": [{"tier": t.value, **info.to_dict()} for t, info in CREDIBILITY_TIERS.items()],
        "agentTierDetails": details,
        "tierComparison": compare_agent_tiers(agents) if include_comparison and agents else None,
        "totalAgents": len(agents),
        "filteredCount": len(filtered),
    })


@_app.post("/api/credibility-tiers")
async def api_tiers_action(body: dict):
    if not body.get("agentId") or not body.get("action"):
        raise ApiError("agentId and action are required")
    agent = _agent_or_404(body["agentId"])
    action = body["action"]
    collateral = body.get("collateral")
    market = body.get("marketConditions")
    if market is not None and not isinstance(market, str):
        raise ApiError("marketConditions must be a string")

    if action == "calculate_ltv":
        if collateral is None or market is None:
            raise ApiError("collateral and marketConditions are required for LTV calculation")
        result = {
            "agentId": agent.id,
            "currentTier": agent.credibility_tier.value,
            "baseLTV": CREDIBILITY_TIERS[agent.credibility_tier].max_ltv,
            "maxLTV": calculate_max_ltv(agent, _number(collateral, "collateral"), market),
            "collateral": collateral,
            "marketConditions": market,
            "calculation": ltv_breakdown(agent, _number(collateral, "collateral"), market),
        }
    elif action == "check_upgrade_eligibility":
        days_active = agent.days_active()
        successful = _mock_successful_transactions()
        result = {
            "agentId": agent.id,
            "currentTier": agent.credibility_tier.value,
            "upgradeEligibility": check_tier_upgrade_eligibility(agent, days_active, successful),
            "metrics": {
                "daysActive": days_active,
                "successfulTransactions": successful,
                "score": agent.score.overall,
                "verification": agent.score.verification,
                "performance": agent.score.performance,
            },
        }
    elif action == "simulate_tier_change":
        if not body.get("tier"):
            raise ApiError("tier is required for tier change simulation")
        try:
            new_tier = CredibilityTier(body["tier"])
        except ValueError:
            raise ApiError("Invalid tier specified") from None
        amount = _number(collateral or 0, "collateral")
        regime = market or "normal"
        original_ltv = calculate_max_ltv(agent, amount, regime)
        simulated_ltv = calculate_max_ltv(
            agent.model_copy(update={"credibility_tier": new_tier}), amount, regime
        )
        result = {
            "agentId": agent.id,
            "originalTier": agent.credibility_tier.value,
            "simulatedTier": new_tier.value,
            "originalLTV": original_ltv,
            "simulatedLTV": simulated_ltv,
            "ltvChange": simulated_ltv - original_ltv,
            "tierInfo": CREDIBILITY_TIERS[new_tier].to_dict(),
        }
    elif action == "get_tier_recommendations":
        result = {
            "agentId": agent.id,
            "currentTier": agent.credibility_tier.value,
            "currentScore": agent.score.overall,
            "recommendations": tier_recommendations(agent),
        }
    else:
        raise ApiError("Invalid action specified")

    return _ok(result, status_code=201)


@_app.put("/api/credibility-tiers")
async def api_change_tier(body: dict):
    if not body.get("agentId") or not body.get("newTier"):
        raise ApiError("agentId and newTier are required")
    try:
        new_tier = CredibilityTier(body["newTier"])
    except ValueError:
        raise ApiError("Invalid tier specified") from None
    platform = _platform_or_503()
    agent = _agent_or_404(body["agentId"])
    old_tier = agent.credibility_tier
    reason = body.get("reason") or "Manual tier update"

    platform.store.upsert_agent(
        agent.model_copy(update={"credibility_tier": new_tier, "updated_at": utcnow()})
    )
    event_id = await platform.events.log_system_event(
        "tier_change",
        f"Agent {agent.id} tier changed from {old_tier.value} to {new_tier.value}",
        metadata={"agentId": agent.id, "oldTier": old_tier.value, "newTier": new_tier.value, "reason": reason},
    )
    return _ok({
        "agentId": agent.id,
        "oldTier": old_tier.value,
        "newTier": new_tier.value,
        "tierChangeLog": {
            "id": event_id,
            "agentId": agent.id,
            "oldTier": old_tier.value,
            "newTier": new_tier.value,
            "reason": reason,
            "timestamp": utcnow(),
            "updatedBy": "system",
        },
        "message": f"Agent {agent.name} tier updated from {old_tier.value} to {new_tier.value}",
    })


# ------------------------------------------------------------------
# Credit
# ------------------------------------------------------------------


@_app.get("/api/credit")
async def api_credit(agent_id: str | None = Query(None, alias="agentId")):
    if not agent_id:
        raise ApiError("agentId is required")
    return _ok(calculate_risk_metrics(_agent_or_404(agent_id)))


@_app.post("/api/credit")
async def api_credit_ltv(body: dict):
    _require(body, "agentId")
    agent = _agent_or_404(body["agentId"])
    adjustments = [LTVAdjustment.model_validate(a) for a in body.get("adjustments") or []]
    collateral = [Collateral.model_validate(c) for c in body.get("collateral") or []]
    market = body.get("marketConditions")
    calculation = calculate_ltv(
        base_ltv_for_tier(agent.credibility_tier),
        agent.score,
        adjustments,
        collateral,
        MarketConditions.model_validate(market) if market else None,
    )
    return _ok(calculation)


# ------------------------------------------------------------------
# Credit vaults
# ------------------------------------------------------------------


@_app.get("/api/credit-vaults")
async def api_vaults(
    chain_id: int | None = Query(None, alias="chainId"),
    status: str | None = Query(None),
    agent_id: str | None = Query(None, alias="agentId"),
):
    vaults = _platform_or_503().store.list_vaults()
    if chain_id is not None:
        vaults = [v for v in vaults if v.chain_id == chain_id]
    if status:
        vaults = [v for v in vaults if v.status.value == status]
    if agent_id:
        vaults = [v for v in vaults if v.agent_id == agent_id]
    return _ok(vaults)


@_app.post("/api/credit-vaults")
async def api_create_vault(body: dict):
    _require(body, "agentId", "chainId", "collateralToken", "collateralAmount", "collateralValueUSD")
    chain_id = _valid_chain(body["chainId"])
    platform = _platform_or_503()
    agent = _agent_or_404(body["agentId"])
    value = _number(body["collateralValueUSD"], "collateralValueUSD")

    max_ltv = calculate_dynamic_ltv(agent, chain_id, value)
    vault = create_credit_vault(
        agent.id, chain_id, body["collateralToken"], _number(body["collateralAmount"], "collateralAmount"), value, max_ltv
    )
    platform.store.upsert_vault(vault)
    await platform.events.log_system_event(
        "vault_created",
        f"Credit vault {vault.id} created for agent {agent.id}",
        metadata={"vaultId": vault.id, "chainId": chain_id, "maxLTV": max_ltv},
    )
    return _ok(vault, status_code=201, message="Credit vault created successfully")


@_app.get("/api/credit-vaults/{vault_id}")
async def api_vault(vault_id: str):
    return _ok(_vault_or_404(vault_id))


@_app.put("/api/credit-vaults/{vault_id}")
async def api_update_vault(vault_id: str, body: dict):
    platform = _platform_or_503()
    vault = _vault_or_404(vault_id)
    agent = _agent_or_404(vault.agent_id)
    if body.get("collateralValueUSD") is not None:
        vault = update_vault_collateral(
            vault,
            _number(body.get("collateralAmount", vault.collateral.amount), "collateralAmount"),
            _number(body["collateralValueUSD"], "collateralValueUSD"),
        )
    if body.get("debtValueUSD") is not None:
        vault = update_vault_debt(
            vault,
            _number(body.get("debtAmount", vault.debt.amount), "debtAmount"),
            _number(body["debtValueUSD"], "debtValueUSD"),
        )
    volatility = platform.risk_monitor.get_market_data(vault.chain_id)
    vault = recalculate_vault_metrics(vault, agent, volatility.volatility if volatility else 1.0)
    platform.store.upsert_vault(vault)
    return _ok(vault)


@_app.get("/api/credit-vaults/{vault_id}/risk")
async def api_vault_risk(vault_id: str):
    platform = _platform_or_503()
    vault = _vault_or_404(vault_id)
    result = await platform.risk_monitor.monitor_vault(vault, _agent_or_404(vault.agent_id))
    platform.store.upsert_vault(result.vault)
    return _ok(result)


# ------------------------------------------------------------------
# Liquidation protection
# ------------------------------------------------------------------


@_app.get("/api/liquidation-protection")
async def api_protection(action: str | None = Query(None)):
    if not action:
        raise ApiError("Action is required")
    platform = _platform_or_503()

    if action == "chain-configs":
        return _ok({str(cid): cfg.to_dict() for cid, cfg in CHAIN_CONFIGS.items()})
    if action == "protection-status":
        vaults = platform.store.list_vaults()
        return _ok({
            "totalVaults": len(vaults),
            "activeAlerts": len(platform.risk_monitor.get_active_alerts()),
            "protectionRules": len(platform.store.list_protection_rules()),
            "enabledVaults": sum(1 for v in vaults if v.liquidation_protection.enabled),
        })
    raise ApiError("Invalid action")


def _parse_rule(params: dict) -> VaultProtectionRule:
    _require(params, "vaultId", "name", "description", "conditions", "actions", "priority", "cooldown")
    if not isinstance(params.get("enabled"), bool):
        raise ApiError("enabled must be a boolean")
    for field in ("priority", "cooldown"):
        if not isinstance(params[field], (int, float)) or isinstance(params[field], bool):
            raise ApiError(f"{field} must be a number")

    conditions = _object(params["conditions"], "conditions")
    ltv = conditions.get("ltvThreshold")
    if ltv is not None and not 0 <= _number(ltv, "ltvThreshold") <= 100:
        raise ApiError("Invalid rule conditions")
    hf = conditions.get("healthFactorThreshold")
    if hf is not None and _number(hf, "healthFactorThreshold") < 0:
        raise ApiError("Invalid rule conditions")
    if not isinstance(params["actions"], list):
        raise ApiError("Invalid rule actions")
    try:
        actions = [ProtectionAction.model_validate(a) for a in params["actions"]]
    except ValueError:
        raise ApiError("Invalid rule actions") from None

    return VaultProtectionRule(
        vault_id=params["vaultId"],
        name=params["name"],
        description=params["description"],
        conditions=ProtectionConditions.model_validate(conditions),
        actions=actions,
        enabled=params["enabled"],
        priority=int(params["priority"]),
        cooldown=int(params["cooldown"]),
    )


@_app.post("/api/liquidation-protection")
async def api_protection_action(body: dict):
    action = body.get("action")
    if not action:
        raise ApiError("Action is required")
    platform = _platform_or_503()

    if action == "check-protection-trigger":
        _require(body, "vaultId")
        vault = _vault_or_404(body["vaultId"])
        agent = _agent_or_404(body.get("agentId") or vault.agent_id)
        volatility = _number(body.get("marketVolatility") or 1.0, "marketVolatility")
        return _ok({"shouldTrigger": should_trigger_liquidation_protection(vault, agent, volatility)})

    if action == "execute-protection-rules":
        _require(body, "vaultId")
        vault = _vault_or_404(body["vaultId"])
        agent = _agent_or_404(body.get("agentId") or vault.agent_id)
        if body.get("rules") is not None:
            if not isinstance(body["rules"], list):
                raise ApiError("rules must be a list")
            rules = [
                VaultProtectionRule.model_validate({"vaultId": vault.id, **_object(r, "rule")})
                for r in body["rules"]
            ]
        else:
            rules = platform.store.list_protection_rules(vault.id)
        volatility = _number(body.get("marketVolatility") or 1.0, "marketVolatility")
        return _ok({"results": execute_protection_rules(vault, rules, agent, volatility)})

    if action == "create-protection-rule":
        rule = _parse_rule(body)
        _vault_or_404(rule.vault_id)
        platform.store.add_protection_rule(rule)
        logger.info(f"Created protection rule {rule.id} for vault {rule.vault_id}")
        return _ok(rule, status_code=201)

    if action in ("enable-protection", "disable-protection"):
        _require(body, "vaultId")
        vault = _vault_or_404(body["vaultId"])
        settings = _object(body.get("settings") or {}, "settings")
        threshold = settings.get("threshold")
        cooldown = settings.get("cooldown")
        if threshold is not None:
            threshold = _number(threshold, "threshold")
            if not 0 <= threshold <= 100:
                raise ApiError("Invalid protection settings")
        if cooldown is not None:
            cooldown = _number(cooldown, "cooldown")
            if cooldown < 0:
                raise ApiError("Invalid protection settings")
        update: dict[str, Any] = {"enabled": action == "enable-protection"}
        if threshold is not None:
            update["threshold"] = threshold
        if cooldown is not None:
            update["cooldown"] = int(cooldown)
        protection = vault.liquidation_protection.model_copy(update=update)
        platform.store.upsert_vault(vault.model_copy(update={"liquidation_protection": protection}))
        state = "enabled" if update["enabled"] else "disabled"
        return _ok(protection, message=f"Protection {state}")

    if action == "simulate-liquidation":
        _require(body, "vaultId", "scenario")
        scenario = _object(body["scenario"], "scenario")
        ltv = _number(scenario.get("ltv", 0), "ltv")
        hf = _number(scenario.get("healthFactor", 0), "healthFactor")
        volatility = _number(scenario.get("marketVolatility", 1.0), "marketVolatility")
        if not 0 <= ltv <= 100 or hf < 0 or volatility <= 0:
            raise ApiError("Invalid liquidation scenario")
        triggered = ltv > 80 or hf < 1.1
        if triggered:
            recommendations = [
                "Immediate action required: LTV exceeds critical threshold",
                "Consider reducing debt or increasing collateral",
                "Monitor market conditions closely",
            ]
        else:
            recommendations = [
                "Vault is currently within safe parameters",
                "Continue monitoring for any changes",
            ]
        return _ok({
            "triggered": triggered,
            "scenario": scenario,
            "recommendations": recommendations,
            "timestamp": utcnow(),
        })

    raise ApiError("Invalid action")


# ------------------------------------------------------------------
# Risk monitor
# ------------------------------------------------------------------


@_app.get("/api/risk-monitor")
async def api_risk_monitor(
    action: str | None = Query(None),
    vault_id: str | None = Query(None, alias="vaultId"),
    chain_id: int | None = Query(None, alias="chainId"),
):
    if not action:
        raise ApiError("Action is required")
    monitor = _platform_or_503().risk_monitor

    if action == "status":
        return _ok(monitor.get_status())
    if action == "alerts":
        return _ok(monitor.get_active_alerts())
    if action == "summary":
        return _ok(monitor.get_risk_summary())
    if action == "market-data":
        if chain_id is not None:
            return _ok(monitor.get_market_data(_valid_chain(chain_id)))
        return _ok(monitor.all_market_data())
    if action == "vault-alerts":
        if not vault_id:
            raise ApiError("Vault ID is required")
        return _ok(monitor.get_vault_alerts(vault_id))
    raise ApiError("Invalid action")


@_app.post("/api/risk-monitor")
async def api_risk_monitor_action(body: dict):
    action = body.get("action")
    if not action:
        raise ApiError("Action is required")
    platform = _platform_or_503()
    monitor = platform.risk_monitor

    if action == "start-monitoring":
        monitor.start()
        return _ok(monitor.get_status(), message="Risk monitoring started")
    if action == "stop-monitoring":
        await monitor.stop()
        return _ok(monitor.get_status(), message="Risk monitoring stopped")
    if action == "run-check":
        results = await monitor.perform_risk_check()
        return _ok(results)
    if action == "refresh-market-data":
        return _ok(await platform.market_feed.refresh())
    if action == "update-market-data":
        _require(body, "chainId", "marketData")
        chain_id = _valid_chain(body["chainId"])
        market = body["marketData"]
        data = monitor.update_market_data(
            chain_id,
            volatility=market.get("volatility"),
            gas_price=market.get("gasPrice"),
            block_number=market.get("blockNumber"),
            price_feeds=market.get("priceFeeds"),
        )
        return _ok(data, message="Market data updated")
    if action == "acknowledge-alert":
        _require(body, "alertId")
        if not monitor.acknowledge_alert(body["alertId"], body.get("acknowledgedBy") or "User acknowledged"):
            raise ApiError("Alert not found", 404)
        return _ok(None, message="Alert acknowledged")
    if action == "simulate-volatility":
        _require(body, "chainId")
        if body.get("minVolatility") is None or body.get("maxVolatility") is None:
            raise ApiError("Missing required fields")
        chain_id = _valid_chain(body["chainId"])
        volatility = monitor.simulate_market_volatility(
            chain_id, _number(body["minVolatility"], "minVolatility"), _number(body["maxVolatility"], "maxVolatility")
        )
        return _ok({"newVolatility": volatility})
    if action == "simulate-price-update":
        _require(body, "chainId")
        if body.get("volatilityFactor") is None:
            raise ApiError("Missing required fields")
        chain_id = _valid_chain(body["chainId"])
        prices = monitor.simulate_price_update(chain_id, _number(body["volatilityFactor"], "volatilityFactor"))
        return _ok({"newPrices": prices})
    raise ApiError("Invalid action")


# ------------------------------------------------------------------
# Opportunities
# ------------------------------------------------------------------


@_app.get("/api/opportunities")
async def api_opportunities(
    category: str | None = Query(None),
    min_apy: float | None = Query(None, alias="minApy"),
    max_risk: str | None = Query(None, alias="maxRisk"),
):
    opportunities = _platform_or_503().store.list_opportunities()
    if category:
        opportunities = [o for o in opportunities if o.category == category]
    if min_apy is not None:
        opportunities = [o for o in opportunities if o.apy >= min_apy]
    if max_risk:
        ceiling = _RISK_RANK.get(max_risk, 3)
        opportunities = [o for o in opportunities if _RISK_RANK.get(o.risk_level.value, 3) <= ceiling]
    return _ok(opportunities, total=len(opportunities))


@_app.post("/api/opportunities")
async def api_opportunity_action(body: dict):
    action = body.get("action")
    if action not in ("deposit", "allocate", "withdraw"):
        raise ApiError("Invalid action")
    _require(body, "opportunityId", "amount", "accountId")
    platform = _platform_or_503()
    opportunity = platform.store.get_opportunity(int(_number(body["opportunityId"], "opportunityId")))
    if opportunity is None:
        raise ApiError("Opportunity not found", 404)

    account_id = body["accountId"]
    amount = str(body["amount"])
    tx_hash = f"sim-{uuid.uuid4().hex}"
    if action == "deposit":
        event_id = await platform.events.log_deposit(
            account_id, opportunity.token_address, amount, amount, tx_hash,
            opportunity_id=opportunity.id,
        )
        message = "Deposit initiated"
    elif action == "allocate":
        event_id = await platform.events.log_allocation(
            account_id, opportunity.id, amount, tx_hash, gas_used=0, latency_ms=0,
        )
        message = "Allocation successful"
    else:
        event_id = await platform.events.log_withdrawal(
            account_id, opportunity.token_address, amount, amount, 0, tx_hash,
        )
        message = "Withdrawal successful"

    logger.info(f"{action} of {amount} by {account_id} on opportunity {opportunity.id}")
    return _ok({"eventId": event_id, "transactionHash": tx_hash}, message=message)


@_app.get("/api/opportunities/scoring")
async def api_scoring_explanation():
    return _ok(_platform_or_503().scorer.explanation())


@_app.post("/api/opportunities/scoring")
async def api_score_opportunities(body: dict):
    entries = body.get("opportunities") or []
    if not isinstance(entries, list):
        raise ApiError("opportunities must be a non-empty list")
    batch = [OpportunityMetrics.model_validate(m) for m in entries]
    if not batch:
        raise ApiError("opportunities must be a non-empty list")
    scores = await _platform_or_503().rescore_opportunities(batch)
    return _ok([s.model_dump() for s in scores])


# ------------------------------------------------------------------
# Verification and compliance
# ------------------------------------------------------------------


def _verification_summary(agent: Agent) -> dict:
    methods = agent.metadata.verification_methods
    passed = [m for m in methods if m.status == VerificationStatus.PASSED]
    pending = (VerificationStatus.PENDING, VerificationStatus.IN_PROGRESS)
    return {
        "agentId": agent.id,
        "agentName": agent.name,
        "totalMethods": len(methods),
        "passedMethods": len(passed),
        "failedMethods": sum(1 for m in methods if m.status == VerificationStatus.FAILED),
        "pendingMethods": sum(1 for m in methods if m.status in pending),
        # Averaged over all methods, so failed ones pull the score down.
        "overallScore": round_half_up(sum(m.score for m in passed) / len(methods)) if methods else 0,
        "lastVerified": max(m.last_verified for m in methods) if methods else None,
        "nextDue": min(m.next_verification_due for m in methods) if methods else None,
    }


@_app.get("/api/verification")
async def api_verification(
    agent_id: str | None = Query(None, alias="agentId"),
    type: str | None = Query(None),
    status: str | None = Query(None),
):
    agents = _platform_or_503().store.list_agents()
    if agent_id:
        agents = [a for a in agents if a.id == agent_id]
    if type and type != "all":
        agents = [a for a in agents if any(m.type.value == type for m in a.metadata.verification_methods)]
    if status and status != "all":
        agents = [a for a in agents if any(m.status.value == status for m in a.metadata.verification_methods)]
    return _ok([_verification_summary(a) for a in agents])


@_app.post("/api/verification")
async def api_add_verification(body: dict):
    if not body.get("agentId") or not body.get("type") or not body.get("status"):
        raise ApiError("agentId, type, and status are required")
    agent = _agent_or_404(body["agentId"])
    score = _number(body.get("score") or 0, "score")
    method = VerificationMethod(
        type=VerificationType(body["type"]),
        status=VerificationStatus(body["status"]),
        score=score,
        next_verification_due=utcnow() + timedelta(days=180),
        details=VerificationDetails.model_validate(body.get("details") or {}),
    )

    metadata = agent.metadata.model_copy(
        update={"verification_methods": [*agent.metadata.verification_methods, method]}
    )
    agent_score = agent.score
    if method.status == VerificationStatus.PASSED and score > 80:
        agent_score = agent_score.model_copy(
            update={"verification": min(100, agent_score.verification + 5)}
        )
    agent = agent.model_copy(update={"metadata": metadata, "score": agent_score, "updated_at": utcnow()})
    _platform_or_503().store.upsert_agent(agent)
    return _ok({"verificationMethod": method, "agent": agent}, status_code=201)


def _compliance_score(agent: Agent) -> int:
    return round_half_up(
        agent.score.provenance * 0.4
        + agent.score.performance * 0.3
        + agent.score.verification * 0.3
    )


@_app.get("/api/compliance")
async def api_compliance(
    agent_id: str | None = Query(None, alias="agentId"),
    category: str | None = Query(None),
    status: str | None = Query(None),
):
    agents = _platform_or_503().store.list_agents()
    if agent_id:
        agents = [a for a in agents if a.id == agent_id]
    if category and category != "all":
        agents = [a for a in agents if a.metadata.category.lower() == category.lower()]
    if status and status != "all":
        agents = [a for a in agents if a.verification.value == status]

    data = []
    for agent in agents:
        score = _compliance_score(agent)
        last_audit = utcnow() - timedelta(days=random.uniform(0, 30))
        data.append({
            "agentId": agent.id,
            "agentName": agent.name,
            "category": agent.metadata.category,
            "complianceScore": score,
            "complianceStatus": "compliant" if score >= 80 else "under-review" if score >= 60 else "non-compliant",
            "lastAudit": last_audit,
            "nextAudit": last_audit + timedelta(days=90),
            "riskLevel": "high" if score < 60 else "medium" if score < 80 else "low",
            "verificationMethods": len(agent.metadata.verification_methods),
            "passedVerifications": sum(
                1 for m in agent.metadata.verification_methods if m.status == VerificationStatus.PASSED
            ),
        })
    return _ok(data)


@_app.post("/api/compliance")
async def api_add_compliance(body: dict):
    if not body.get("agentId") or not body.get("complianceType") or not body.get("status"):
        raise ApiError("agentId, complianceType, and status are required")
    platform = _platform_or_503()
    agent = _agent_or_404(body["agentId"])
    now = utcnow()
    record = {
        "id": f"comp_{uuid.uuid4().hex[:12]}",
        "agentId": agent.id,
        "complianceType": body["complianceType"],
        "status": body["status"],
        "notes": body.get("notes") or "",
        "auditor": body.get("auditor") or "System",
        "timestamp": now,
        "nextReview": now + timedelta(days=90),
    }
    if body["status"] == "FAILED" and agent.verification == VerificationStatus.PASSED:
        agent = agent.model_copy(update={"verification": VerificationStatus.UNDER_REVIEW, "updated_at": now})
        platform.store.upsert_agent(agent)
        logger.warning(f"Agent {agent.id} moved to under_review after failed compliance check")
    return _ok({"complianceRecord": record, "agent": agent}, status_code=201)


# ------------------------------------------------------------------
# Global stats
# ------------------------------------------------------------------


def _jitter(value: float) -> float:
    return value * (1 + random.uniform(-0.05, 0.05))


@_app.get("/api/global-stats")
async def api_global_stats():
    base = _GLOBAL_STATS
    stats = {
        "tvl": _jitter(base["tvl"]),
        "users": int(_jitter(base["users"])),
        "activeVaults": int(_jitter(base["activeVaults"])),
        "totalYield": _jitter(base["totalYield"]),
        "dailyVolume": _jitter(base["dailyVolume"]),
        "averageApy": _jitter(base["averageApy"]),
        "riskDistribution": dict(base["riskDistribution"]),
    }
    return _ok(stats, timestamp=utcnow().isoformat())


# ------------------------------------------------------------------
# Event log
# ------------------------------------------------------------------


@_app.get("/api/events")
async def api_events(
    type: str = Query("system"),
    user_id: str | None = Query(None, alias="userId"),
    opportunity_id: int | None = Query(None, alias="opportunityId"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    events = _platform_or_503().events
    if type == "deposits":
        rows = await events.get_deposit_events(user_id, limit, offset)
    elif type == "withdrawals":
        rows = await events.get_withdrawal_events(user_id, limit, offset)
    elif type == "allocations":
        rows = await events.get_allocation_events(user_id, opportunity_id, limit, offset)
    elif type == "intents":
        rows = await events.get_intent_events(user_id, limit, offset)
    elif type == "scores":
        rows = await events.get_score_events(opportunity_id, limit, offset)
    elif type == "system":
        rows = await events.get_system_events(limit, offset)
    else:
        raise ApiError(f"Unknown event type '{type}'")
    return _ok(rows, total=len(rows))


@_app.get("/api/events/stats")
async def api_event_stats():
    return _ok(await _platform_or_503().events.get_event_stats())


# ------------------------------------------------------------------
# Wallet API (read-only)
# ------------------------------------------------------------------


@_app.get("/api/wallet/accounts")
async def api_wallet_accounts():
    return _ok(_platform_or_503().wallet_manager.accounts)


@_app.get("/api/wallet/balance")
async def api_wallet_balance(account_id: str | None = Query(None, alias="accountId")):
    balance = await _platform_or_503().wallet_manager.get_balance(account_id)
    if "accountId" not in balance:
        raise ApiError(balance["error"], 404)
    return _ok(balance)


@_app.get("/api/wallet/transfers")
async def api_wallet_transfers(
    sender_id: str | None = Query(None, alias="senderId"),
    run_id: str | None = Query(None, alias="runId"),
    limit: int = Query(100, ge=1, le=1000),
):
    transfers = await _platform_or_503().wallet_manager.list_transfers(sender_id, run_id, limit)
    return _ok(transfers, total=len(transfers))


# ------------------------------------------------------------------
# WebSocket
# ------------------------------------------------------------------


@_app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    _websockets.append(ws)
    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
                if msg.get("action") == "status" and _platform:
                    await ws.send_text(json.dumps({
                        "event": "status",
                        "data": jsonable_encoder(_platform.status()),
                    }))
            except (json.JSONDecodeError, AttributeError):
                pass
    except WebSocketDisconnect:
        _websockets.remove(ws)


# ------------------------------------------------------------------
# Runner
# ------------------------------------------------------------------


def run_dashboard(host: str = "127.0.0.1", port: int = 8430, base_path: Path | None = None) -> None:
    configure(base_path)
    uvicorn.run(_app, host=host, port=port, log_level="info")
