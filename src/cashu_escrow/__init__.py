"""
cashu-escrow: client-side Cashu ecash engine for hash-locked escrow.

Usage:
    from cashu_escrow import CashuWallet, HtlcEscrow, JsonFileStorage
    from cashu_escrow.crypto import SchnorrSigner, mnemonic_to_seed
"""

from cashu_escrow.errors import (
    CashuError,
    CryptoFailure,
    Err,
    HttpError,
    Ok,
    RecoveryRequired,
    TransportFailure,
    VerificationFailure,
)
from cashu_escrow.core.config import WalletConfig
from cashu_escrow.core.mint import MintClient
from cashu_escrow.core.models import Proof
from cashu_escrow.core.wallet import CashuWallet
from cashu_escrow.escrow.htlc import HtlcEscrow
from cashu_escrow.ledger.pending import PendingOperationLedger
from cashu_escrow.ledger.storage import InMemoryStorage, JsonFileStorage
from cashu_escrow.reconcile import ReconciliationResult, WalletAdapter, reconcile_balance

__version__ = "0.1.0"
__all__ = [
    "CashuError",
    "CashuWallet",
    "CryptoFailure",
    "Err",
    "HtlcEscrow",
    "HttpError",
    "InMemoryStorage",
    "JsonFileStorage",
    "MintClient",
    "Ok",
    "PendingOperationLedger",
    "Proof",
    "RecoveryRequired",
    "ReconciliationResult",
    "TransportFailure",
    "VerificationFailure",
    "WalletAdapter",
    "WalletConfig",
    "reconcile_balance",
]
