"""EVM chains that can host credit vaults, with their LTV and liquidation settings."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ChainId(IntEnum):
    ETHEREUM = 1
    ARBITRUM = 42161
    POLYGON = 137
    ETHEREUM_SEPOLIA = 11155111
    ARBITRUM_SEPOLIA = 421614
    POLYGON_MUMBAI = 80001


@dataclass(frozen=True)
class LTVAdjustments:
    base_multiplier: float
    score_multiplier: float
    volatility_multiplier: float


@dataclass(frozen=True)
class LiquidationSettings:
    min_health_factor: float
    liquidation_penalty: float
    grace_period: int  # seconds


@dataclass(frozen=True)
class ChainConfig:
    """An EVM network and the vault parameters that apply on it."""

    chain_id: int
    name: str
    rpc_url: str
    explorer_url: str
    native_token: str
    gas_token: str
    ltv_adjustments: LTVAdjustments
    liquidation: LiquidationSettings

    def to_dict(self) -> dict:
        return {
            "chainId": self.chain_id,
            "name": self.name,
            "rpcUrl": self.rpc_url,
            "blockExplorer": self.explorer_url,
            "nativeToken": self.native_token,
            "gasToken": self.gas_token,
            "ltvAdjustments": {
                "baseMultiplier": self.ltv_adjustments.base_multiplier,
                "scoreMultiplier": self.ltv_adjustments.score_multiplier,
                "volatilityMultiplier": self.ltv_adjustments.volatility_multiplier,
            },
            "liquidationSettings": {
                "minHealthFactor": self.liquidation.min_health_factor,
                "liquidationPenalty": self.liquidation.liquidation_penalty,
                "gracePeriod": self.liquidation.grace_period,
            },
        }


CHAIN_CONFIGS: dict[int, ChainConfig] = {
    ChainId.ETHEREUM: ChainConfig(
        chain_id=ChainId.ETHEREUM,
        name="Ethereum",
        rpc_url="https://eth.llamarpc.com",
        explorer_url="https://etherscan.io",
        native_token="ETH",
        gas_token="ETH",
        ltv_adjustments=LTVAdjustments(1.0, 0.1, 0.95),
        liquidation=LiquidationSettings(1.1, 0.05, 3600),
    ),
    ChainId.ARBITRUM: ChainConfig(
        chain_id=ChainId.ARBITRUM,
        name="Arbitrum",
        rpc_url="https://arb1.arbitrum.io/rpc",
        explorer_url="https://arbiscan.io",
        native_token="ETH",
        gas_token="ETH",
        ltv_adjustments=LTVAdjustments(0.95, 0.1, 0.90),
        liquidation=LiquidationSettings(1.15, 0.06, 1800),
    ),
    ChainId.POLYGON: ChainConfig(
        chain_id=ChainId.POLYGON,
        name="Polygon",
        rpc_url="https://polygon-rpc.com",
        explorer_url="https://polygonscan.com",
        native_token="MATIC",
        gas_token="MATIC",
        ltv_adjustments=LTVAdjustments(0.90, 0.1, 0.85),
        liquidation=LiquidationSettings(1.2, 0.07, 1200),
    ),
}


def get_chain(chain_id: int) -> ChainConfig:
    """Get a chain config by id. Raises ``KeyError`` if unsupported."""
    if chain_id not in CHAIN_CONFIGS:
        raise KeyError(
            f"Unsupported chain ID: {chain_id}. Available: {list_chain_ids()}"
        )
    return CHAIN_CONFIGS[chain_id]


def is_supported(chain_id: int) -> bool:
    return chain_id in CHAIN_CONFIGS


def list_chain_ids() -> list[int]:
    """Return the ids of all chains with a vault configuration."""
    return [int(cid) for cid in CHAIN_CONFIGS]
