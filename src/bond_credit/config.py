"""Configuration system for bond.credit.

Loads settings from `.bond-credit/config.yaml`, supports environment variable
expansion, and validates everything into pydantic models.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    Unset variables are left in place so :func:`validate_config` can
    report them.
    """

    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class NearConfig(BaseModel):
    """NEAR network and signing account."""

    network_id: str = "${NEAR_NETWORK_ID}"
    node_url: Optional[str] = None      # falls back to the network default
    account_id: str = ""                # ${NEAR_ACCOUNT_ID}
    private_key: str = ""               # ${NEAR_PRIVATE_KEY}, "ed25519:..."
    receiver_id: str = ""               # default transfer receiver
    timeout_seconds: float = 30.0

    @property
    def resolved_network_id(self) -> str:
        if not self.network_id or self.network_id.startswith("${"):
            return "mainnet"
        return self.network_id


class DashboardConfig(BaseModel):
    """Web API settings."""

    port: int = 8430
    host: str = "127.0.0.1"


class RiskMonitorConfig(BaseModel):
    """Thresholds and cadence for the vault risk monitor."""

    check_interval_seconds: float = 30.0
    ltv_warning: float = 70.0
    ltv_alert: float = 80.0
    ltv_critical: float = 90.0
    health_factor_warning: float = 1.5
    health_factor_alert: float = 1.3
    health_factor_critical: float = 1.1
    auto_protection_enabled: bool = True
    max_protection_triggers: int = 3
    protection_cooldown_seconds: int = 3600
    max_alerts: int = 1000            # oldest alerts are dropped beyond this
    autostart: bool = False
    market_data_chains: list[int] = Field(default_factory=list)


class TransferConfig(BaseModel):
    """Pacing for bulk transfer runs."""

    count: int = 10                   # transfers per wallet
    amount_near: str = "0.001"
    delay_seconds: float = 1.0        # between transfers of one wallet
    error_delay_seconds: float = 5.0  # extra pause after rate limit / timeout
    batch_size: int = 10
    batch_delay_seconds: float = 2.0


class LoggingConfig(BaseModel):
    """Console and file logging."""

    level: str = "INFO"
    file: Optional[str] = "logs/bond-credit.log"


class BondConfig(BaseModel):
    """Root configuration object."""

    name: str = "bond.credit"
    near: NearConfig = Field(default_factory=NearConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)
    risk_monitor: RiskMonitorConfig = Field(default_factory=RiskMonitorConfig)
    transfers: TransferConfig = Field(default_factory=TransferConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def get_root_dir(base: Path | None = None) -> Path:
    """Return the ``.bond-credit/`` root directory (no auto-create).

    Parameters
    ----------
    base:
        Parent directory that contains (or will contain) the root folder.
        Defaults to the current working directory.
    """
    if base is None:
        base = Path.cwd()
    return base / ".bond-credit"


def load_config(path: Path) -> BondConfig:
    """Load and validate the configuration from a YAML file.

    A missing file yields the defaults. Environment variable placeholders
    (``${VAR}``) are expanded before validation.
    """
    if not path.exists():
        return BondConfig.model_validate(_expand_env_recursive(BondConfig().model_dump()))
    raw_data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return BondConfig.model_validate(_expand_env_recursive(raw_data))


def save_config(config: BondConfig, path: Path) -> None:
    """Serialize a :class:`BondConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)


def validate_config(config: BondConfig) -> list[str]:
    """Return human-readable problems that would block signing transfers."""
    errors: list[str] = []
    near = config.near
    if near.resolved_network_id not in ("mainnet", "testnet", "localnet"):
        errors.append(f"Unknown NEAR network '{near.network_id}'")
    if not near.account_id or near.account_id.startswith("${"):
        errors.append("near.account_id is not set")
    if not near.private_key or near.private_key.startswith("${"):
        errors.append("near.private_key is not set")
    elif not near.private_key.startswith("ed25519:"):
        errors.append("near.private_key must start with 'ed25519:'")
    if config.transfers.count < 1:
        errors.append("transfers.count must be at least 1")
    if config.transfers.delay_seconds < 0:
        errors.append("transfers.delay_seconds cannot be negative")
    return errors
