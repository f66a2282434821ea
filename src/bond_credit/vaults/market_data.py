"""On-chain market data (gas price, latest block) for the risk monitor."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from bond_credit.vaults.chains import CHAIN_CONFIGS, get_chain
from bond_credit.vaults.risk_monitor import RiskMonitor

logger = logging.getLogger("bond_credit.vaults.market_data")


class MarketDataFeed:
    """Polls EVM chains through web3 and pushes readings into a :class:`RiskMonitor`."""

    def __init__(self, monitor: RiskMonitor, chain_ids: list[int] | None = None) -> None:
        self.monitor = monitor
        self.chain_ids = chain_ids or list(CHAIN_CONFIGS)
        self._instances: dict[int, Web3] = {}

    def get_web3(self, chain_id: int) -> Web3:
        """Return a (cached) Web3 instance for the chain.

        Injects POA middleware for non-mainnet chains.
        """
        if chain_id in self._instances:
            return self._instances[chain_id]

        chain = get_chain(chain_id)
        w3 = Web3(Web3.HTTPProvider(chain.rpc_url))
        if chain.chain_id != 1:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        self._instances[chain_id] = w3
        return w3

    def fetch(self, chain_id: int) -> dict:
        """Read gas price (gwei) and block number. Blocking."""
        w3 = self.get_web3(chain_id)
        gas_price = Decimal(str(Web3.from_wei(w3.eth.gas_price, "gwei")))
        return {"gas_price": float(gas_price), "block_number": int(w3.eth.block_number)}

    async def refresh(self, chain_ids: list[int] | None = None) -> dict[int, dict]:
        """Update market data for each chain.

        Returns a dict mapping chain id to ``{gasPrice, blockNumber, error}``.
        A failing RPC is reported for that chain only.
        """
        results: dict[int, dict] = {}
        for chain_id in chain_ids or self.chain_ids:
            try:
                reading = await asyncio.to_thread(self.fetch, chain_id)
            except Exception as e:
                logger.warning(f"Failed to fetch market data for chain {chain_id}: {e}")
                results[chain_id] = {"gasPrice": None, "blockNumber": None, "error": str(e)}
                continue
            self.monitor.update_market_data(chain_id, **reading)
            results[chain_id] = {
                "gasPrice": reading["gas_price"],
                "blockNumber": reading["block_number"],
                "error": None,
            }
        return results
