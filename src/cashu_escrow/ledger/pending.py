"""
Pending-operation ledger: crash recovery for blinded operations.

Every operation that sends blinded outputs to the mint is recorded here
*before* the request goes out:

    STARTED --(mint reports in-flight)--> PENDING
    STARTED/PENDING --(signatures unblinded)--> COMPLETED --acknowledge()--> removed
    STARTED/PENDING --(definitive rejection)--> FAILED --acknowledge()--> removed

A COMPLETED record holds the new proofs and is kept until the caller
confirms they are stored elsewhere; dropping it earlier and then crashing
would lose those proofs.
"""

from __future__ import annotations

import logging

from cashu_escrow.core.config import WalletConfig
from cashu_escrow.core.models import (
    OperationStatus,
    OperationType,
    PendingBlindedOperation,
    PreMintSecret,
    Proof,
    now_ms,
)
from cashu_escrow.errors import CashuError, RecoveryRequired
from cashu_escrow.ledger.storage import WalletStorage

logger = logging.getLogger("cashu_escrow.ledger")


class LedgerError(CashuError):
    """Raised on an invalid ledger transition (unknown id, illegal status change)."""
    pass


class PendingOperationLedger:
    def __init__(self, storage: WalletStorage, config: WalletConfig | None = None) -> None:
        self.storage = storage
        self.config = config or WalletConfig()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def begin(
        self,
        operation_type: OperationType,
        mint_url: str,
        amount: int,
        output_premints: list[PreMintSecret],
        inputs: list[Proof] | None = None,
        keyset_id: str | None = None,
        quote_id: str | None = None,
    ) -> PendingBlindedOperation:
        """
        Persist a STARTED record. Must return before the request is sent.

        Returns:
            The saved record; its ``id`` drives the later transitions.
        """
        created = now_ms()
        op = PendingBlindedOperation(
            operation_type=operation_type,
            mint_url=mint_url.rstrip("/"),
            keyset_id=keyset_id,
            quote_id=quote_id,
            input_secrets=[p.secret for p in inputs or []],
            output_premints=list(output_premints),
            amount=amount,
            created_at=created,
            expires_at=created + self.config.pending_ttl * 1000,
        )
        self.storage.save_pending_operation(op)
        logger.debug(f"Saved pending {operation_type.value} operation {op.id} ({amount} sats)")
        return op

    def mark_pending(self, op_id: str) -> PendingBlindedOperation:
        return self._transition(op_id, OperationStatus.PENDING)

    def complete(self, op_id: str, proofs: list[Proof]) -> PendingBlindedOperation:
        """Record the unblinded proofs; the record stays until acknowledged."""
        return self._transition(op_id, OperationStatus.COMPLETED, proofs=proofs)

    def fail(self, op_id: str, reason: str = "") -> PendingBlindedOperation:
        """Mark a definitive rejection; the inputs are still spendable."""
        op = self._transition(op_id, OperationStatus.FAILED)
        logger.warning(f"Pending operation {op_id} failed: {reason}")
        return op

    def acknowledge(self, op_id: str) -> None:
        """
        Remove a terminal record once its outcome is durably stored elsewhere.

        Raises:
            LedgerError: If the record is still STARTED or PENDING.
        """
        op = self.storage.get_pending_operation(op_id)
        if op is None:
            return
        if not op.status.is_terminal:
            raise LedgerError(f"Cannot acknowledge {op.status.value} operation {op_id}")
        self.storage.remove_pending_operation(op_id)
        logger.debug(f"Removed {op.status.value} operation {op_id}")

    def _transition(
        self,
        op_id: str,
        status: OperationStatus,
        proofs: list[Proof] | None = None,
    ) -> PendingBlindedOperation:
        op = self.storage.get_pending_operation(op_id)
        if op is None:
            raise LedgerError(f"Unknown pending operation {op_id}")
        if op.status.is_terminal and op.status != status:
            raise LedgerError(f"Operation {op_id} is already {op.status.value}")
        op.status = status
        if proofs is not None:
            op.proofs = list(proofs)
        self.storage.save_pending_operation(op)
        return op

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, op_id: str) -> PendingBlindedOperation | None:
        return self.storage.get_pending_operation(op_id)

    def all(self) -> list[PendingBlindedOperation]:
        return sorted(self.storage.list_pending_operations(), key=lambda op: op.created_at)

    def unresolved(self) -> list[PendingBlindedOperation]:
        """Records that are STARTED or PENDING."""
        return [op for op in self.all() if not op.status.is_terminal]

    def unacknowledged(self) -> list[PendingBlindedOperation]:
        """COMPLETED records whose proofs the caller has not yet confirmed storing."""
        return [op for op in self.all() if op.status is OperationStatus.COMPLETED]

    def startup_check(self) -> None:
        """
        Raise if any operation was interrupted mid-flight.

        Raises:
            RecoveryRequired: Listing the STARTED/PENDING records.
        """
        unresolved = self.unresolved()
        if unresolved:
            logger.warning(f"{len(unresolved)} pending operation(s) require recovery")
            raise RecoveryRequired(unresolved)

    def purge_expired(self, at_ms: int | None = None) -> int:
        """Drop expired FAILED records. Returns how many were removed."""
        removed = 0
        for op in self.all():
            if op.status is OperationStatus.FAILED and op.is_expired(at_ms):
                self.storage.remove_pending_operation(op.id)
                removed += 1
        return removed
