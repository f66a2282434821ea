"""NEAR network definitions."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class NearNetwork:
    """A NEAR network and its public endpoints."""

    network_id: str
    node_url: str
    wallet_url: str
    helper_url: str
    explorer_url: str
    account_suffix: str = ""  # appended to implicit account ids

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/txns/{tx_hash}" if self.explorer_url else tx_hash


NETWORKS: dict[str, NearNetwork] = {
    "mainnet": NearNetwork(
        network_id="mainnet",
        node_url="https://free.rpc.fastnear.com",
        wallet_url="https://wallet.near.org",
        helper_url="https://helper.mainnet.near.org",
        explorer_url="https://nearblocks.io",
    ),
    "testnet": NearNetwork(
        network_id="testnet",
        node_url="https://rpc.testnet.near.org",
        wallet_url="https://testnet.mynearwallet.com",
        helper_url="https://helper.testnet.near.org",
        explorer_url="https://testnet.nearblocks.io",
        account_suffix=".testnet",
    ),
    "localnet": NearNetwork(
        network_id="localnet",
        node_url="http://localhost:3030",
        wallet_url="",
        helper_url="",
        explorer_url="",
    ),
}


def get_network(name: str) -> NearNetwork:
    """Get a network by id. Raises ``KeyError`` if not found."""
    if name not in NETWORKS:
        raise KeyError(
            f"Unknown network '{name}'. Available: {list_network_names()}"
        )
    return NETWORKS[name]


def list_network_names() -> list[str]:
    return list(NETWORKS.keys())
