"""bond.credit storage layer -- async SQLite database and Pydantic models."""

from bond_credit.storage.database import Database, get_database
from bond_credit.storage.models import (
    AllocationEvent,
    DepositEvent,
    EventStats,
    IntentEvent,
    ScoreEvent,
    Severity,
    SystemEvent,
    TransferRecord,
    TransferStatus,
    WalletRecord,
    WithdrawalEvent,
)

__all__ = [
    "Database",
    "get_database",
    "AllocationEvent",
    "DepositEvent",
    "EventStats",
    "IntentEvent",
    "ScoreEvent",
    "Severity",
    "SystemEvent",
    "TransferRecord",
    "TransferStatus",
    "WalletRecord",
    "WithdrawalEvent",
]
