"""
cashu_escrow.crypto: secp256k1 primitives for blind-signature ecash.

Provides:
- Affine curve arithmetic with an explicit point at infinity
- hash_to_curve / blind / unblind (BDHKE)
- NUT-13 deterministic secret derivation and amount splitting
- BIP-340 Schnorr signing for spending-condition witnesses
"""

from cashu_escrow.crypto.blind import (
    DOMAIN_SEPARATOR,
    blind,
    blind_message,
    generate_blinding_factor,
    generate_secret,
    hash_to_curve,
    public_key,
    sign_blinded,
    unblind,
    verify_signature,
)
from cashu_escrow.crypto.curve import (
    G,
    INFINITY,
    SECP256K1_N,
    SECP256K1_P,
    Point,
    compress,
    decompress,
    lift_x,
    point_add,
    point_negate,
    scalar_multiply,
)
from cashu_escrow.crypto.derivation import (
    derive_secrets,
    mnemonic_to_seed,
    split_amount,
)
from cashu_escrow.crypto.signer import SchnorrSigner, Signer, verify_schnorr

__all__ = [
    # Curve
    "G",
    "INFINITY",
    "SECP256K1_N",
    "SECP256K1_P",
    "Point",
    "compress",
    "decompress",
    "lift_x",
    "point_add",
    "point_negate",
    "scalar_multiply",
    # BDHKE
    "DOMAIN_SEPARATOR",
    "blind",
    "blind_message",
    "generate_blinding_factor",
    "generate_secret",
    "hash_to_curve",
    "public_key",
    "sign_blinded",
    "unblind",
    "verify_signature",
    # NUT-13
    "derive_secrets",
    "mnemonic_to_seed",
    "split_amount",
    # Signing
    "SchnorrSigner",
    "Signer",
    "verify_schnorr",
]
