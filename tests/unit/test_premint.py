"""
Unit tests for output secret generation.
"""

import pytest

from cashu_escrow.core.premint import SecretGenerator
from cashu_escrow.crypto.derivation import derive_secrets
from cashu_escrow.ledger.storage import InMemoryStorage

KEYSET_ID = "009a1f293253e41e"
SEED = bytes(range(64))


def test_deterministic_outputs_advance_counter():
    """Seeded outputs reserve counters and derive repeatable secrets."""
    storage = InMemoryStorage()
    gen = SecretGenerator(storage, SEED)
    first = gen.create([1, 2], KEYSET_ID)
    second = gen.create([4], KEYSET_ID)
    assert storage.get_counter(KEYSET_ID) == 3
    assert (first[0].secret, first[0].blinding_factor) == derive_secrets(SEED, KEYSET_ID, 0)
    assert second[0].secret == derive_secrets(SEED, KEYSET_ID, 2)[0]
    assert [p.amount for p in first] == [1, 2]


def test_counters_are_per_keyset():
    """Each keyset has its own counter."""
    storage = InMemoryStorage()
    gen = SecretGenerator(storage, SEED)
    gen.create([1], KEYSET_ID)
    gen.create([1], "00ad268c4d1f5826")
    assert storage.get_counter(KEYSET_ID) == 1
    assert storage.get_counter("00ad268c4d1f5826") == 1


def test_random_outputs_leave_counter_alone():
    """Random outputs do not reserve counters."""
    storage = InMemoryStorage()
    gen = SecretGenerator(storage)
    assert not gen.is_deterministic
    a, b = gen.create([1, 1], KEYSET_ID)
    assert a.secret != b.secret
    assert storage.get_counter(KEYSET_ID) == 0


def test_empty_amounts():
    """No amounts gives no outputs."""
    storage = InMemoryStorage()
    assert SecretGenerator(storage, SEED).create([], KEYSET_ID) == []
    assert storage.get_counter(KEYSET_ID) == 0


def test_derive_range_matches_create_without_reserving():
    """derive_range regenerates the same outputs without moving the counter."""
    storage = InMemoryStorage()
    gen = SecretGenerator(storage, SEED)
    created = gen.create([8, 8, 8], KEYSET_ID)
    derived = gen.derive_range(KEYSET_ID, 0, 3)
    assert [p.B_ for p in derived] == [p.B_ for p in created]
    assert storage.get_counter(KEYSET_ID) == 3


def test_derive_range_requires_seed():
    """Deriving a range needs a seed."""
    with pytest.raises(ValueError, match="seed"):
        SecretGenerator(InMemoryStorage()).derive_range(KEYSET_ID, 0, 1)


def test_seed_length_checked():
    """Seeds must be 64 bytes."""
    with pytest.raises(ValueError, match="64 bytes"):
        SecretGenerator(InMemoryStorage(), b"short")
