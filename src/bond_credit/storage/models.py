"""Pydantic models mapping to the bond.credit database tables."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Optional

from pydantic import Field, field_validator

from bond_credit.core.models import ApiModel


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TransferStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Event log records
# ---------------------------------------------------------------------------

class DepositEvent(ApiModel):
    """Maps to the ``deposit_events`` table."""

    id: int
    user_id: str
    token_type: str
    amount: str
    shares_received: str
    tx_hash: str
    timestamp: int  # epoch milliseconds
    opportunity_id: Optional[int] = None


class WithdrawalEvent(ApiModel):
    """Maps to the ``withdrawal_events`` table."""

    id: int
    user_id: str
    token_type: str
    shares_burned: str
    tokens_received: str
    yield_earned: str
    tx_hash: str
    timestamp: int


class AllocationEvent(ApiModel):
    """Maps to the ``allocation_events`` table."""

    id: int
    user_id: str
    opportunity_id: int
    amount: str
    tx_hash: str
    gas_used: str
    latency_ms: int
    success: bool
    timestamp: int


class IntentEvent(ApiModel):
    """Maps to the ``intent_events`` table."""

    id: int
    intent_id: str
    user_id: str
    opportunity_id: int
    action_type: str
    amount: str
    success: bool
    gas_used: str
    latency_ms: int
    tx_hash: str
    error_message: Optional[str] = None
    timestamp: int


class ScoreEvent(ApiModel):
    """Maps to the ``score_events`` table."""

    id: int
    opportunity_id: int
    opportunity_name: str
    old_score: int
    new_score: int
    score_change: int
    update_type: str = "manual"
    timestamp: int


class SystemEvent(ApiModel):
    """Maps to the ``system_events`` table."""

    id: int
    event_type: str
    message: str
    severity: Severity = Severity.INFO
    metadata: Optional[dict[str, Any]] = None
    timestamp: int

    @field_validator("metadata", mode="before")
    @classmethod
    def _decode_metadata(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value)
        return value


class EventStats(ApiModel):
    deposits: int = 0
    withdrawals: int = 0
    allocations: int = 0
    intents: int = 0
    score_updates: int = 0
    recent_deposits: int = 0
    recent_withdrawals: int = 0
    recent_allocations: int = 0


# ---------------------------------------------------------------------------
# Wallet records
# ---------------------------------------------------------------------------

class WalletRecord(ApiModel):
    """Maps to the ``wallets`` table."""

    account_id: str
    network: str
    public_key: str
    derivation_path: str = ""
    wallet_index: Optional[int] = None


class TransferRecord(ApiModel):
    """Maps to the ``transfers`` table."""

    id: Optional[int] = None
    run_id: Optional[str] = None
    sender_id: str
    receiver_id: str
    amount_yocto: str
    network: str
    status: TransferStatus
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    timestamp: int = Field(default=0)
