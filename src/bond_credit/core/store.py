"""In-memory store for agents, reputation events, vaults and opportunities."""

from __future__ import annotations

from typing import TYPE_CHECKING

from bond_credit.core.models import Agent, Opportunity, ReputationEvent

if TYPE_CHECKING:
    from bond_credit.vaults.credit_vault import CreditVault, VaultProtectionRule


class InMemoryStore:
    """Process-local state shared by the API, the CLI and the risk monitor.

    Lookups for unknown ids return ``None`` or an empty list.
    """

    def __init__(self) -> None:
        self._agents: dict[str, Agent] = {}
        self._reputation: dict[str, list[ReputationEvent]] = {}
        self._vaults: dict[str, CreditVault] = {}
        self._rules: dict[str, VaultProtectionRule] = {}
        self._opportunities: dict[int, Opportunity] = {}

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def upsert_agent(self, agent: Agent) -> None:
        self._agents[agent.id] = agent

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def list_agents(self) -> list[Agent]:
        return list(self._agents.values())

    # ------------------------------------------------------------------
    # Reputation
    # ------------------------------------------------------------------

    def add_reputation_event(self, event: ReputationEvent) -> None:
        self._reputation.setdefault(event.agent_id, []).append(event)

    def get_reputation_events(self, agent_id: str) -> list[ReputationEvent]:
        """Return an agent's events, newest first."""
        events = self._reputation.get(agent_id, [])
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    # ------------------------------------------------------------------
    # Vaults and protection rules
    # ------------------------------------------------------------------

    def upsert_vault(self, vault: CreditVault) -> None:
        self._vaults[vault.id] = vault

    def get_vault(self, vault_id: str) -> CreditVault | None:
        return self._vaults.get(vault_id)

    def list_vaults(self) -> list[CreditVault]:
        return list(self._vaults.values())

    def add_protection_rule(self, rule: VaultProtectionRule) -> None:
        self._rules[rule.id] = rule

    def list_protection_rules(self, vault_id: str | None = None) -> list[VaultProtectionRule]:
        rules = list(self._rules.values())
        if vault_id is not None:
            rules = [r for r in rules if r.vault_id == vault_id]
        return rules

    # ------------------------------------------------------------------
    # Opportunities
    # ------------------------------------------------------------------

    def upsert_opportunity(self, opportunity: Opportunity) -> None:
        self._opportunities[opportunity.id] = opportunity

    def get_opportunity(self, opportunity_id: int) -> Opportunity | None:
        return self._opportunities.get(opportunity_id)

    def list_opportunities(self) -> list[Opportunity]:
        return sorted(self._opportunities.values(), key=lambda o: o.id)

    def clear(self) -> None:
        self._agents.clear()
        self._reputation.clear()
        self._vaults.clear()
        self._rules.clear()
        self._opportunities.clear()
