"""
Unit tests for the BIP-340 signing collaborator.
"""

import hashlib

import pytest

from cashu_escrow.crypto.blind import public_key
from cashu_escrow.crypto.signer import SchnorrSigner, Signer, verify_schnorr
from cashu_escrow.errors import CryptoFailure

PRIVATE_KEY = "01" * 32


def test_public_key_matches_curve_arithmetic():
    """The public key is the private scalar times G."""
    signer = SchnorrSigner(PRIVATE_KEY)
    assert signer.public_key == public_key(int(PRIVATE_KEY, 16))


def test_satisfies_protocol():
    """The in-memory signer satisfies the Signer protocol."""
    assert isinstance(SchnorrSigner.generate(), Signer)


def test_sign_and_verify():
    """Schnorr signatures verify against the signer's key."""
    signer = SchnorrSigner.generate()
    digest = hashlib.sha256(b"message").digest()
    sig = signer.sign(digest)
    assert len(sig) == 128
    assert verify_schnorr(signer.public_key, digest, sig)
    # x-only form is accepted too
    assert verify_schnorr(signer.public_key[2:], digest, sig)


def test_sign_secret_signs_sha256_of_secret():
    """sign_secret signs SHA256 of the secret string."""
    signer = SchnorrSigner(PRIVATE_KEY)
    secret = '["HTLC",{"nonce":"00","data":"ab","tags":[]}]'
    sig = signer.sign_secret(secret)
    assert verify_schnorr(signer.public_key, hashlib.sha256(secret.encode()).digest(), sig)


def test_verify_rejects_other_key_and_message():
    """Signatures fail for another key or message."""
    a, b = SchnorrSigner.generate(), SchnorrSigner.generate()
    digest = hashlib.sha256(b"message").digest()
    sig = a.sign(digest)
    assert not verify_schnorr(b.public_key, digest, sig)
    assert not verify_schnorr(a.public_key, hashlib.sha256(b"other").digest(), sig)


def test_verify_malformed_input_returns_false():
    """Malformed signatures return False."""
    digest = hashlib.sha256(b"message").digest()
    assert not verify_schnorr("zz", digest, "00" * 64)


def test_sign_requires_32_byte_digest():
    """Only 32-byte digests are signed."""
    with pytest.raises(CryptoFailure, match="32-byte"):
        SchnorrSigner.generate().sign(b"short")


def test_private_key_length_checked():
    """Private keys must be 32 bytes."""
    with pytest.raises(CryptoFailure, match="32 bytes"):
        SchnorrSigner("01" * 16)
