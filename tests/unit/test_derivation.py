"""
Unit tests for NUT-13 deterministic derivation and amount splitting.
"""

import hashlib

import pytest

from cashu_escrow.crypto.curve import SECP256K1_N
from cashu_escrow.crypto.derivation import (
    KDF_DOMAIN,
    derive_blinding_factor,
    derive_secret,
    derive_secrets,
    hmac_sha256,
    mnemonic_to_seed,
    split_amount,
)

KEYSET_ID = "009a1f293253e41e"
SEED = bytes(range(64))


class TestPrimitives:
    """BIP-39 seed and HMAC building blocks."""

    def test_bip39_seed_vector(self):
        """The reference mnemonic gives the published BIP-39 seed."""
        seed = mnemonic_to_seed(" ".join(["abandon"] * 11 + ["about"]))
        assert len(seed) == 64
        assert seed.hex().startswith(
            "5eb00bbddcf069084889a8ab9155568165f5c453ccb85e70811aaed6f6da5fc1"
        )

    def test_mnemonic_whitespace_is_collapsed(self):
        """Extra spaces in the mnemonic do not change the seed."""
        words = " ".join(["abandon"] * 11 + ["about"])
        assert mnemonic_to_seed("  " + words.replace(" ", "   ") + "\n") == mnemonic_to_seed(words)

    def test_passphrase_changes_seed(self):
        """A passphrase yields a different seed."""
        words = " ".join(["abandon"] * 11 + ["about"])
        assert mnemonic_to_seed(words, "TREZOR") != mnemonic_to_seed(words)

    def test_hmac_rfc4231_case_1(self):
        """HMAC-SHA256 matches RFC 4231 test case 1."""
        digest = hmac_sha256(b"\x0b" * 20, b"Hi There")
        assert digest.hex() == "b0344c61d8db38535ca8afceaf0bf12b881dc200c9833da726e9376c2e32cff7"


class TestDerivation:
    """NUT-13 secret and blinding factor derivation."""

    def test_secret_matches_kdf_layout(self):
        """The secret is HMAC(seed, domain | keyset | counter | 0x00)."""
        message = KDF_DOMAIN + bytes.fromhex(KEYSET_ID) + (7).to_bytes(8, "big") + b"\x00"
        assert derive_secret(SEED, KEYSET_ID, 7) == hmac_sha256(SEED, message).hex()

    def test_blinding_factor_reduced_mod_n(self):
        """The blinding factor is the HMAC output mod n."""
        message = KDF_DOMAIN + bytes.fromhex(KEYSET_ID) + (7).to_bytes(8, "big") + b"\x01"
        expected = int.from_bytes(hmac_sha256(SEED, message), "big") % SECP256K1_N
        r = derive_blinding_factor(SEED, KEYSET_ID, 7)
        assert len(r) == 64
        assert int(r, 16) == expected

    def test_deterministic(self):
        """Same inputs derive the same pair."""
        assert derive_secrets(SEED, KEYSET_ID, 3) == derive_secrets(SEED, KEYSET_ID, 3)

    def test_counter_keyset_and_seed_all_matter(self):
        """Changing any input changes the derived secret."""
        base = derive_secrets(SEED, KEYSET_ID, 0)
        assert derive_secrets(SEED, KEYSET_ID, 1) != base
        assert derive_secrets(SEED, "00ad268c4d1f5826", 0) != base
        assert derive_secrets(hashlib.sha512(SEED).digest(), KEYSET_ID, 0) != base

    def test_secret_and_blinding_factor_differ(self):
        """Secret and blinding factor use different purpose bytes."""
        secret, r = derive_secrets(SEED, KEYSET_ID, 0)
        assert secret != r

    def test_negative_counter_rejected(self):
        """Counters cannot be negative."""
        with pytest.raises(ValueError, match="non-negative"):
            derive_secret(SEED, KEYSET_ID, -1)

    def test_non_hex_keyset_rejected(self):
        """Keyset ids must be hex."""
        with pytest.raises(ValueError, match="hex"):
            derive_secret(SEED, "not-a-keyset", 0)


class TestSplitAmount:
    """Splitting amounts into power-of-two denominations."""

    @pytest.mark.parametrize(
        "amount, expected",
        [
            (0, []),
            (1, [1]),
            (13, [1, 4, 8]),
            (64, [64]),
            (100, [4, 32, 64]),
            (255, [1, 2, 4, 8, 16, 32, 64, 128]),
        ],
    )
    def test_powers_of_two(self, amount, expected):
        """Amounts split into ascending powers of two."""
        assert split_amount(amount) == expected

    def test_sum_preserved(self):
        """The parts always add back up to the amount."""
        for amount in (3, 21, 1000, 123456):
            assert sum(split_amount(amount)) == amount

    def test_negative_rejected(self):
        """Negative amounts cannot be split."""
        with pytest.raises(ValueError):
            split_amount(-5)
