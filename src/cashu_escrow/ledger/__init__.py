"""ledger module init"""
from cashu_escrow.ledger.storage import (
    InMemoryStorage,
    JsonFileStorage,
    WalletStorage,
    reserve_counters,
)
from cashu_escrow.ledger.pending import LedgerError, PendingOperationLedger

__all__ = [
    "InMemoryStorage",
    "JsonFileStorage",
    "LedgerError",
    "PendingOperationLedger",
    "WalletStorage",
    "reserve_counters",
]
