"""escrow module init"""
from cashu_escrow.escrow.htlc import (
    EscrowLock,
    HtlcEscrow,
    HtlcSettlement,
    HtlcStatus,
    compute_payment_hash,
    generate_preimage,
)

__all__ = [
    "EscrowLock",
    "HtlcEscrow",
    "HtlcSettlement",
    "HtlcStatus",
    "compute_payment_hash",
    "generate_preimage",
]
