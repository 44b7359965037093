"""
NUT-13 deterministic secret derivation.

A wallet seed (BIP-39 mnemonic -> PBKDF2) plus a keyset id and a per-keyset
counter fully determines each output's secret and blinding factor, which is
what makes funds recoverable from the mnemonic alone.
"""

from __future__ import annotations

import hashlib
import hmac
import unicodedata

from cashu_escrow.crypto.curve import SECP256K1_N

KDF_DOMAIN = b"Cashu_KDF_HMAC_SHA256"

PURPOSE_SECRET = 0x00
PURPOSE_BLINDING_FACTOR = 0x01

_PBKDF2_ROUNDS = 2048


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Derive the 64-byte BIP-39 seed from a mnemonic.

    Args:
        mnemonic: space separated words (extra whitespace is collapsed)
        passphrase: optional BIP-39 passphrase

    Returns:
        64-byte seed.
    """
    words = unicodedata.normalize("NFKD", " ".join(mnemonic.split()))
    salt = unicodedata.normalize("NFKD", "mnemonic" + passphrase)
    return hashlib.pbkdf2_hmac("sha512", words.encode("utf-8"), salt.encode("utf-8"), _PBKDF2_ROUNDS)


def hmac_sha256(key: bytes, data: bytes) -> bytes:
    return hmac.new(key, data, hashlib.sha256).digest()


def _kdf_message(keyset_id: str, counter: int) -> bytes:
    if counter < 0:
        raise ValueError(f"Counter must be non-negative, got {counter}")
    try:
        keyset_bytes = bytes.fromhex(keyset_id)
    except ValueError as e:
        raise ValueError(f"Keyset id must be hex: {keyset_id!r}") from e
    return KDF_DOMAIN + keyset_bytes + counter.to_bytes(8, "big")


def derive_secret(seed: bytes, keyset_id: str, counter: int) -> str:
    """HMAC-SHA256(seed, message || 0x00) as hex."""
    message = _kdf_message(keyset_id, counter) + bytes([PURPOSE_SECRET])
    return hmac_sha256(seed, message).hex()


def derive_blinding_factor(seed: bytes, keyset_id: str, counter: int) -> str:
    """HMAC-SHA256(seed, message || 0x01) mod n as 64-char hex."""
    message = _kdf_message(keyset_id, counter) + bytes([PURPOSE_BLINDING_FACTOR])
    r = int.from_bytes(hmac_sha256(seed, message), "big") % SECP256K1_N
    return f"{r:064x}"


def derive_secrets(seed: bytes, keyset_id: str, counter: int) -> tuple[str, str]:
    """Return the deterministic (secret, blinding_factor) pair for a counter."""
    return (
        derive_secret(seed, keyset_id, counter),
        derive_blinding_factor(seed, keyset_id, counter),
    )


def split_amount(amount: int) -> list[int]:
    """
    Split an amount into its powers of two, ascending.

    >>> split_amount(13)
    [1, 4, 8]
    """
    if amount < 0:
        raise ValueError(f"Amount must be non-negative, got {amount}")
    return [1 << i for i in range(amount.bit_length()) if amount >> i & 1]
