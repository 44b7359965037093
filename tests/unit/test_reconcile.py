"""
Unit tests for balance reconciliation via NUT-07.
"""

import pytest

from cashu_escrow.core.models import Proof
from cashu_escrow.errors import VerificationFailure
from cashu_escrow.reconcile import WalletAdapter, reconcile_adapter, reconcile_balance


class ListWallet:
    """Minimal proof holder for reconciliation."""

    def __init__(self, proofs, reported):
        self._proofs = proofs
        self._reported = reported

    def balance(self):
        return self._reported

    def list_tokens(self):
        return self._proofs


def _foreign_proof():
    return Proof(amount=64, id="009a1f293253e41e", secret="never-minted", C="02" + "aa" * 32)


async def test_empty_proofs(mint_client, fake_mint):
    """No proofs means zero balance and no request."""
    result = await reconcile_balance(mint_client, [])
    assert result.balance == 0
    assert fake_mint.count("/v1/checkstate") == 0


async def test_counts_only_unspent(wallet, fund, mint_client):
    """Spent proofs drop out of the verified balance."""
    spent, kept = await fund(2), await fund(12)
    await wallet.swap_to_exact(spent, 1)

    result = await reconcile_balance(mint_client, spent + kept)
    assert result.balance == 12
    assert result.spent == spent
    assert result.unspent == kept
    assert not result.is_partial


async def test_pending_not_counted(wallet, fund, mint_client, fake_mint):
    """Pending proofs are reported apart from the balance."""
    proofs = await fund(6)
    fake_mint.pending_ys.add(proofs[0].Y)
    result = await reconcile_balance(mint_client, proofs)
    assert result.pending == [proofs[0]]
    assert result.balance == 6 - proofs[0].amount


async def test_batches(fund, mint_client, fake_mint):
    """State checks are split into batches."""
    proofs = await fund(15)
    result = await reconcile_balance(mint_client, proofs, batch_size=2)
    assert result.balance == 15
    assert fake_mint.count("/v1/checkstate") == 2


async def test_partial_match_reported_unverified(fund, mint_client, fake_mint, monkeypatch):
    """Proofs the mint did not answer for are listed as unverified."""
    proofs = await fund(3)
    missing = proofs[0].Y
    original = mint_client.check_state

    async def drop_one(ys):
        states = await original(ys)
        states.pop(missing, None)
        return states

    monkeypatch.setattr(mint_client, "check_state", drop_one)
    result = await reconcile_balance(mint_client, proofs)
    assert result.is_partial
    assert result.unverified == [proofs[0]]
    assert result.balance == 3 - proofs[0].amount


async def test_nothing_matched_raises(fund, mint_client, fake_mint):
    """A state answer matching no proof raises."""
    proofs = await fund(3)
    fake_mint.omit_states = True
    with pytest.raises(VerificationFailure, match="matched none"):
        await reconcile_balance(mint_client, proofs)


async def test_unknown_proof_is_unspent_per_mint(mint_client):
    """A proof the mint never signed reports as unspent."""
    # The mint has no record of the secret, so it answers UNSPENT
    result = await reconcile_balance(mint_client, [_foreign_proof()])
    assert result.balance == 64


async def test_adapter(wallet, fund, mint_client):
    """The wallet adapter reconciles its own proofs."""
    proofs = await fund(5)
    adapter = ListWallet(proofs, reported=9)
    assert isinstance(adapter, WalletAdapter)
    result = await reconcile_adapter(mint_client, adapter)
    assert result.balance == 5
