"""
Blind Diffie-Hellman key exchange (BDHKE) as used by Cashu mints.

    Y  = hash_to_curve(secret)
    B_ = Y + r·G              (wallet blinds)
    C_ = k·B_                 (mint signs)
    C  = C_ - r·K = k·Y       (wallet unblinds, K = k·G)

All points cross the API boundary as 66-char compressed hex strings.
"""

from __future__ import annotations

import hashlib
import secrets

from cashu_escrow.crypto.curve import (
    G,
    SECP256K1_N,
    SECP256K1_P,
    decompress,
    lift_x,
    point_add,
    point_negate,
    point_to_hex,
    scalar_multiply,
)
from cashu_escrow.errors import CryptoFailure

DOMAIN_SEPARATOR = b"Secp256k1_HashToCurve_Cashu_"

_MAX_COUNTER = 2**16


# ==============================================================================
# hash_to_curve
# ==============================================================================


def hash_to_curve(secret: bytes | str) -> str:
    """
    Map a secret to a curve point with the domain-separated try-and-increment
    method.

    Algorithm:
        1. msg_hash = SHA256(DOMAIN_SEPARATOR || secret)
        2. For counter in 0..65535 (uint32 little-endian):
               x = SHA256(msg_hash || counter)
               if x < p and lift_x(x) exists, return it

    Args:
        secret: raw bytes, or a str which is UTF-8 encoded first.

    Returns:
        66-char compressed hex of Y (always 02-prefixed).

    Raises:
        CryptoFailure: If no valid point is found in the counter space.
    """
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    msg_hash = hashlib.sha256(DOMAIN_SEPARATOR + secret).digest()

    for counter in range(_MAX_COUNTER):
        digest = hashlib.sha256(msg_hash + counter.to_bytes(4, "little")).digest()
        x = int.from_bytes(digest, "big")
        if x >= SECP256K1_P:
            continue
        pt = lift_x(x)
        if pt is not None:
            return point_to_hex(pt)

    raise CryptoFailure("hash_to_curve: no valid point found in counter space")


# ==============================================================================
# Blinding
# ==============================================================================


def _scalar(hex_str: str) -> int:
    try:
        value = int(hex_str, 16)
    except ValueError as e:
        raise CryptoFailure(f"Invalid scalar hex: {e}") from e
    value %= SECP256K1_N
    if value == 0:
        raise CryptoFailure("Scalar must be non-zero mod n")
    return value


def blind(Y: str, r: str) -> str:
    """Compute B_ = Y + r·G."""
    result = point_add(decompress(Y), scalar_multiply(_scalar(r), G))
    return point_to_hex(result)


def unblind(C_: str, r: str, K: str) -> str:
    """
    Compute C = C_ - r·K.

    Args:
        C_: blinded signature returned by the mint
        r:  blinding factor used for the matching B_
        K:  mint public key for the signature's amount

    Raises:
        CryptoFailure: On invalid inputs or an identity result.
    """
    rK = scalar_multiply(_scalar(r), decompress(K))
    return point_to_hex(point_add(decompress(C_), point_negate(rK)))


def blind_message(secret: str, r: str) -> tuple[str, str]:
    """Return (Y, B_) for a secret and blinding factor."""
    Y = hash_to_curve(secret)
    return Y, blind(Y, r)


# ==============================================================================
# Mint-side signing (used to verify proofs against a known private key)
# ==============================================================================


def sign_blinded(B_: str, k: int) -> str:
    """C_ = k·B_"""
    return point_to_hex(scalar_multiply(k, decompress(B_)))


def verify_signature(secret: str, C: str, k: int) -> bool:
    """Check C == k·hash_to_curve(secret)."""
    expected = scalar_multiply(k, decompress(hash_to_curve(secret)))
    return point_to_hex(expected) == C.lower()


def public_key(k: int) -> str:
    """Compressed hex of k·G."""
    return point_to_hex(scalar_multiply(k, G))


# ==============================================================================
# Random material
# ==============================================================================


def generate_secret() -> str:
    """32 random bytes as a 64-char hex string."""
    return secrets.token_bytes(32).hex()


def generate_blinding_factor() -> str:
    """A random non-zero scalar mod n, as 64-char hex."""
    while True:
        r = int.from_bytes(secrets.token_bytes(32), "big") % SECP256K1_N
        if r != 0:
            return f"{r:064x}"
