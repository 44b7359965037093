"""
Schnorr signing collaborator for NUT-11/NUT-14 witnesses.

The escrow layer only needs ``public_key`` and ``sign(message_hash)``; the
host application may supply any object with that shape (e.g. a hardware
key or a Nostr key manager). ``SchnorrSigner`` is the in-process default,
backed by libsecp256k1 through coincurve.
"""

from __future__ import annotations

import hashlib
from typing import Protocol, runtime_checkable

from coincurve import PrivateKey, PublicKey, PublicKeyXOnly

from cashu_escrow.errors import CryptoFailure


@runtime_checkable
class Signer(Protocol):
    @property
    def public_key(self) -> str:
        """33-byte compressed public key as hex."""
        ...

    def sign(self, message_hash: bytes) -> str:
        """BIP-340 signature over a 32-byte digest, as 128-char hex."""
        ...


class SchnorrSigner:
    """
    BIP-340 signer holding a secp256k1 private key.

    Usage:
        signer = SchnorrSigner.generate()
        sig = signer.sign(hashlib.sha256(secret.encode()).digest())
    """

    def __init__(self, private_key: bytes | str) -> None:
        if isinstance(private_key, str):
            private_key = bytes.fromhex(private_key)
        if len(private_key) != 32:
            raise CryptoFailure(f"Private key must be 32 bytes, got {len(private_key)}")
        self._sk = PrivateKey(private_key)
        self._pubkey = self._sk.public_key.format(compressed=True).hex()

    @classmethod
    def generate(cls) -> SchnorrSigner:
        return cls(PrivateKey().secret)

    @property
    def public_key(self) -> str:
        return self._pubkey

    def sign(self, message_hash: bytes) -> str:
        if len(message_hash) != 32:
            raise CryptoFailure(
                f"Schnorr sign requires a 32-byte digest, got {len(message_hash)} bytes"
            )
        return self._sk.sign_schnorr(message_hash).hex()

    def sign_secret(self, secret: str) -> str:
        """Sign SHA256(secret), the NUT-11 message for proof witnesses."""
        return self.sign(hashlib.sha256(secret.encode("utf-8")).digest())


def verify_schnorr(public_key: str, message_hash: bytes, signature: str) -> bool:
    """
    Verify a BIP-340 signature against a compressed or x-only public key.

    Returns False for malformed keys or signatures instead of raising.
    """
    try:
        raw = bytes.fromhex(public_key)
        if len(raw) == 33:
            raw = PublicKey(raw).format(compressed=True)[1:]
        return PublicKeyXOnly(raw).verify(bytes.fromhex(signature), message_hash)
    except ValueError:
        return False
