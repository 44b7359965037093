"""
Output secret generation.

With a wallet seed, secrets and blinding factors come from NUT-13
derivation and the per-keyset counter is advanced in storage before the
outputs are used. Without a seed, fresh random material is used and the
outputs are only recoverable through the pending-operation ledger.
"""

from __future__ import annotations

import logging

from cashu_escrow.core.models import PreMintSecret
from cashu_escrow.crypto.blind import generate_blinding_factor, generate_secret
from cashu_escrow.crypto.derivation import derive_secrets
from cashu_escrow.ledger.storage import WalletStorage, reserve_counters

logger = logging.getLogger("cashu_escrow.premint")


class SecretGenerator:
    def __init__(self, storage: WalletStorage, seed: bytes | None = None) -> None:
        if seed is not None and len(seed) != 64:
            raise ValueError(f"Seed must be 64 bytes, got {len(seed)}")
        self.storage = storage
        self.seed = seed

    @property
    def is_deterministic(self) -> bool:
        return self.seed is not None

    def create(self, amounts: list[int], keyset_id: str) -> list[PreMintSecret]:
        """Pre-mint secrets for ``amounts``, deterministic when a seed is set."""
        if not amounts:
            return []
        if self.seed is None:
            return self.create_random(amounts)
        start = reserve_counters(self.storage, keyset_id, len(amounts))
        logger.debug(f"Derived {len(amounts)} outputs for keyset {keyset_id} at counter {start}")
        return [
            PreMintSecret.create(amount, *derive_secrets(self.seed, keyset_id, start + i))
            for i, amount in enumerate(amounts)
        ]

    @staticmethod
    def create_random(amounts: list[int]) -> list[PreMintSecret]:
        return [
            PreMintSecret.create(amount, generate_secret(), generate_blinding_factor())
            for amount in amounts
        ]

    def derive_range(self, keyset_id: str, start: int, count: int) -> list[PreMintSecret]:
        """
        Regenerate outputs for counters ``start .. start+count-1`` without
        touching the stored counter. Amounts are placeholders; the mint
        reports the real ones on restore.
        """
        if self.seed is None:
            raise ValueError("Restore requires a wallet seed")
        return [
            PreMintSecret.create(1, *derive_secrets(self.seed, keyset_id, counter))
            for counter in range(start, start + count)
        ]
