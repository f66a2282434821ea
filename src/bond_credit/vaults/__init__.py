"""Credit vaults on EVM chains.

Dynamic LTV and health factor per chain, vault risk metrics, liquidation
protection rules, and a risk monitor that raises alerts from periodic checks.
"""
