"""
Hash time-locked escrow (NUT-14) built on ledgered swaps.

    NONE --lock()--> LOCKED --claim(preimage)--> CLAIMED
                            --refund() after locktime--> REFUNDED
                            (mint rejection) --> FAILED

lock():   plain proofs -> HTLC proofs whose secret is
          ["HTLC", {"nonce", "data": payment_hash, "tags": [["pubkeys", K_counterparty],
                                                           ["locktime", t], ["refund", K_owner]]}]
claim():  preimage + signature of the ``pubkeys`` key  -> plain proofs
refund(): after locktime + clock skew, signature of a ``refund`` key -> plain proofs

Preimage, locktime and key checks run locally and reject before any
request reaches the mint.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from cashu_escrow.core.models import HtlcSecret, HtlcWitness, OperationType, PreMintSecret, Proof, ProofState
from cashu_escrow.core.token import Token, decode_token, encode_token
from cashu_escrow.core.wallet import CashuWallet
from cashu_escrow.crypto.blind import generate_blinding_factor
from cashu_escrow.crypto.derivation import split_amount
from cashu_escrow.crypto.signer import Signer
from cashu_escrow.errors import HttpError, VerificationFailure

logger = logging.getLogger("cashu_escrow.htlc")

_HEX64 = re.compile(r"^[0-9a-fA-F]{64}$")


class HtlcStatus(str, Enum):
    NONE = "NONE"
    LOCKED = "LOCKED"
    CLAIMED = "CLAIMED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


@dataclass
class EscrowLock:
    """Outcome of a successful lock: the HTLC token to hand to the counterparty."""
    token: str
    htlc_proofs: list[Proof]
    change: list[Proof]
    payment_hash: str
    amount: int
    locktime: int | None
    operation_id: str
    status: HtlcStatus = HtlcStatus.LOCKED


@dataclass
class HtlcSettlement:
    """Plain proofs received from a claim or a refund."""
    status: HtlcStatus
    proofs: list[Proof]
    payment_hash: str
    operation_id: str
    preimage: str | None = None
    settled_at: float = field(default_factory=time.time)

    @property
    def amount(self) -> int:
        return sum(p.amount for p in self.proofs)


def compute_payment_hash(preimage: str) -> str:
    """SHA256 of the hex-decoded preimage, as lowercase hex."""
    return hashlib.sha256(bytes.fromhex(preimage)).hexdigest()


def generate_preimage() -> tuple[str, str]:
    """Return a fresh (preimage, payment_hash) pair."""
    preimage = secrets.token_bytes(32).hex()
    return preimage, compute_payment_hash(preimage)


def _same_key(a: str, b: str) -> bool:
    # Compare on the x coordinate; BIP-340 keys are x-only
    return a[-64:].lower() == b[-64:].lower()


class HtlcEscrow:
    """
    Usage:
        escrow = HtlcEscrow(wallet, signer)
        lock = await escrow.lock(proofs, 13, payment_hash, driver_pubkey,
                                 locktime=int(time.time()) + 3600,
                                 refund_pubkey=signer.public_key)
        # counterparty side:
        settlement = await HtlcEscrow(their_wallet, their_signer).claim(lock.token, preimage)
    """

    def __init__(
        self,
        wallet: CashuWallet,
        signer: Signer,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.wallet = wallet
        self.signer = signer
        self.clock = clock

    # ------------------------------------------------------------------
    # Lock
    # ------------------------------------------------------------------

    async def lock(
        self,
        proofs: list[Proof],
        amount: int,
        payment_hash: str,
        counterparty_pubkey: str,
        locktime: int | None = None,
        refund_pubkey: str | None = None,
    ) -> EscrowLock:
        """
        Swap ``proofs`` into HTLC proofs worth ``amount`` plus plain change.

        Raises:
            VerificationFailure: Bad payment hash, insufficient or spent proofs.
            HttpError: If the mint rejects the swap.
        """
        if not _HEX64.match(payment_hash):
            raise VerificationFailure("payment_hash must be 64 hex characters")
        if amount <= 0:
            raise VerificationFailure(f"Lock amount must be positive, got {amount}")
        total = sum(p.amount for p in proofs)
        if total < amount:
            raise VerificationFailure(f"Insufficient balance: required {amount}, available {total}")

        states = await self.wallet.check_proof_states(proofs)
        spent = [p for p in proofs if states.get(p.secret) is ProofState.SPENT]
        if spent:
            raise VerificationFailure(f"{len(spent)} of {len(proofs)} selected proofs already spent")

        keyset = await self.wallet.client.get_active_keyset()
        htlc_outputs = [
            PreMintSecret.create(
                amt,
                HtlcSecret(
                    nonce=secrets.token_hex(16),
                    data=payment_hash.lower(),
                    pubkeys=[counterparty_pubkey],
                    locktime=locktime,
                    refund_pubkeys=[refund_pubkey] if refund_pubkey else [],
                ).to_secret(),
                generate_blinding_factor(),
            )
            for amt in split_amount(amount)
        ]
        change_outputs = self.wallet.generator.create(split_amount(total - amount), keyset.id)

        op_id, new_proofs = await self.wallet.execute_swap(
            OperationType.LOCK_HTLC, proofs, htlc_outputs + change_outputs, keyset.id
        )
        htlc_proofs = new_proofs[: len(htlc_outputs)]
        change = new_proofs[len(htlc_outputs):]
        token = encode_token(htlc_proofs, self.wallet.mint_url, self.wallet.config.unit)
        logger.info(f"Locked {amount} sats under payment hash {payment_hash[:16]}... ({len(change)} change proofs)")
        return EscrowLock(
            token=token,
            htlc_proofs=htlc_proofs,
            change=change,
            payment_hash=payment_hash.lower(),
            amount=amount,
            locktime=locktime,
            operation_id=op_id,
        )

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def claim(self, token: str | Token, preimage: str) -> HtlcSettlement:
        """
        Redeem HTLC proofs with the preimage.

        Raises:
            VerificationFailure: Malformed preimage, hash mismatch or a signer
                key absent from the ``pubkeys`` tag (no request is sent).
            HttpError: If the mint rejects the claim.
        """
        if not _HEX64.match(preimage):
            raise VerificationFailure("Invalid preimage format (expected 64-char hex)")

        proofs, condition = self._parse(token)
        computed = compute_payment_hash(preimage)
        for proof in proofs:
            if HtlcSecret.parse(proof.secret).data.lower() != computed:
                logger.error(f"Preimage does not match payment hash {condition.data[:16]}")
                raise VerificationFailure("Preimage does not match payment hash")
        if condition.pubkeys and not any(_same_key(k, self.signer.public_key) for k in condition.pubkeys):
            raise VerificationFailure("Wallet key is not listed in the HTLC pubkeys tag")

        inputs = [
            p.model_copy(update={
                "witness": HtlcWitness(preimage=preimage, signatures=[self._sign(p.secret)]).to_json()
            })
            for p in proofs
        ]
        return await self._redeem(OperationType.CLAIM_HTLC, inputs, condition, preimage)

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    async def refund(self, token: str | Token) -> HtlcSettlement:
        """
        Reclaim expired HTLC proofs.

        Raises:
            VerificationFailure: No locktime, locktime + skew not yet passed,
                or the signer key is absent from the ``refund`` tag.
            HttpError: If the mint rejects the refund.
        """
        proofs, condition = self._parse(token)
        if condition.locktime is None:
            raise VerificationFailure("HTLC has no locktime; refund path unavailable")
        now = self.clock()
        unlock_at = condition.locktime + self.wallet.config.refund_clock_skew
        if now <= unlock_at:
            raise VerificationFailure(
                f"Locktime not expired (now={int(now)}, refundable after {unlock_at})"
            )
        if not any(_same_key(k, self.signer.public_key) for k in condition.refund_pubkeys):
            raise VerificationFailure("Wallet key is not listed in the HTLC refund tag")

        inputs = [
            p.model_copy(update={"witness": HtlcWitness(signatures=[self._sign(p.secret)]).to_json()})
            for p in proofs
        ]
        return await self._redeem(OperationType.REFUND_HTLC, inputs, condition, None)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _parse(self, token: str | Token) -> tuple[list[Proof], HtlcSecret]:
        decoded = decode_token(token) if isinstance(token, str) else token
        if decoded.mint_url.rstrip("/") != self.wallet.mint_url:
            raise VerificationFailure(
                f"Token belongs to {decoded.mint_url}, wallet is bound to {self.wallet.mint_url}"
            )
        proofs = decoded.proofs
        if not proofs:
            raise VerificationFailure("Token contains no proofs")
        return proofs, HtlcSecret.parse(proofs[0].secret)

    def _sign(self, secret: str) -> str:
        # NUT-11 signs SHA256(secret) only, not secret || C
        return self.signer.sign(hashlib.sha256(secret.encode("utf-8")).digest())

    async def _redeem(
        self,
        operation_type: OperationType,
        inputs: list[Proof],
        condition: HtlcSecret,
        preimage: str | None,
    ) -> HtlcSettlement:
        total = sum(p.amount for p in inputs)
        keyset = await self.wallet.client.get_active_keyset()
        outputs = self.wallet.generator.create(split_amount(total), keyset.id)
        try:
            op_id, proofs = await self.wallet.execute_swap(operation_type, inputs, outputs, keyset.id)
        except HttpError as e:
            logger.error(f"{operation_type.value} rejected by mint: {e}")
            raise

        status = HtlcStatus.CLAIMED if operation_type is OperationType.CLAIM_HTLC else HtlcStatus.REFUNDED
        logger.info(f"HTLC {status.value.lower()}: {total} sats for payment hash {condition.data[:16]}...")
        return HtlcSettlement(
            status=status,
            proofs=proofs,
            payment_hash=condition.data,
            operation_id=op_id,
            preimage=preimage,
        )
