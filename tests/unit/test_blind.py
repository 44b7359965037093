"""
Unit tests for hash_to_curve and the BDHKE blind/sign/unblind round trip.
"""

import pytest

from cashu_escrow.crypto.blind import (
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
from cashu_escrow.crypto.curve import SECP256K1_N
from cashu_escrow.errors import CryptoFailure

# ==============================================================================
# hash_to_curve test vectors (NUT-00)
# ==============================================================================


@pytest.mark.parametrize(
    "message, expected",
    [
        (
            "0000000000000000000000000000000000000000000000000000000000000000",
            "024cce997d3b518f739663b757deaec95bcd9473c30a14ac2fd04023a739d1a725",
        ),
        (
            "0000000000000000000000000000000000000000000000000000000000000001",
            "022e7158e11c9506f1aa4248bf531298daa7febd6194f003edcd9b93ade6253acf",
        ),
        (
            "0000000000000000000000000000000000000000000000000000000000000002",
            "026cdbe15362df59cd1dd3c9c11de8aedac2106eca69236ecd9fbe117af897be4f",
        ),
    ],
)
def test_hash_to_curve_vectors(message, expected):
    """NUT-00 hash_to_curve test vectors."""
    assert hash_to_curve(bytes.fromhex(message)) == expected


def test_hash_to_curve_encodes_str_as_utf8():
    """String secrets hash as their UTF-8 bytes."""
    assert hash_to_curve("hello") == hash_to_curve(b"hello")


def test_hash_to_curve_is_deterministic_and_distinct():
    """Same message maps to the same point, different messages do not."""
    assert hash_to_curve("a") == hash_to_curve("a")
    assert hash_to_curve("a") != hash_to_curve("b")


# ==============================================================================
# Blind signatures
# ==============================================================================


class TestBlindSignatures:
    """Blind, sign and unblind against a known mint key."""

    def setup_method(self):
        self.k = 0x7F1A2B3C4D5E6F708192A3B4C5D6E7F8091A2B3C4D5E6F708192A3B4C5D6E7F8 % SECP256K1_N
        self.K = public_key(self.k)

    def test_round_trip_gives_k_times_y(self):
        """Unblinding k*B_ yields k*Y for the original secret."""
        secret = generate_secret()
        r = generate_blinding_factor()
        Y, B_ = blind_message(secret, r)
        C_ = sign_blinded(B_, self.k)
        C = unblind(C_, r, self.K)
        assert C == sign_blinded(Y, self.k)
        assert verify_signature(secret, C, self.k)

    def test_wrong_key_fails_verification(self):
        """A signature does not verify under a different mint key."""
        secret = generate_secret()
        r = generate_blinding_factor()
        _, B_ = blind_message(secret, r)
        C = unblind(sign_blinded(B_, self.k), r, self.K)
        assert not verify_signature(secret, C, self.k + 1)

    def test_blinding_hides_y(self):
        """The blinded message differs from Y."""
        Y = hash_to_curve("secret")
        assert blind(Y, generate_blinding_factor()) != Y
        assert blind(Y, "01") != blind(Y, "02")

    def test_zero_blinding_factor_rejected(self):
        """r = 0 would leave B_ equal to Y."""
        with pytest.raises(CryptoFailure, match="non-zero"):
            blind(hash_to_curve("secret"), "00")

    def test_blinding_factor_multiple_of_n_rejected(self):
        """r = n reduces to zero and is rejected too."""
        with pytest.raises(CryptoFailure):
            blind(hash_to_curve("secret"), f"{SECP256K1_N:064x}")

    def test_bad_scalar_hex_rejected(self):
        """Non-hex scalars raise CryptoFailure."""
        with pytest.raises(CryptoFailure, match="scalar"):
            blind(hash_to_curve("secret"), "not-hex")

    def test_unblind_rejects_invalid_point(self):
        """A malformed C_ cannot be unblinded."""
        with pytest.raises(CryptoFailure):
            unblind("05" + "00" * 32, "01", self.K)

    def test_unblind_identity_raises(self):
        """An unblinded signature at infinity is an error, not a proof."""
        # C_ = r*K makes C the point at infinity
        r = "03"
        C_ = sign_blinded(public_key(3), self.k)
        with pytest.raises(CryptoFailure, match="infinity"):
            unblind(C_, r, self.K)


def test_generated_material_shapes():
    """Random secrets are 32 bytes and blinding factors lie in [1, n)."""
    assert len(generate_secret()) == 64
    r = int(generate_blinding_factor(), 16)
    assert 0 < r < SECP256K1_N
