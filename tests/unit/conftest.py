"""
Shared fixtures: an in-process fake mint and a wallet wired to it.
"""

import httpx
import pytest

from cashu_escrow.core.config import WalletConfig
from cashu_escrow.core.mint import MintClient
from cashu_escrow.core.premint import SecretGenerator
from cashu_escrow.core.wallet import CashuWallet
from cashu_escrow.ledger.pending import PendingOperationLedger
from cashu_escrow.ledger.storage import InMemoryStorage
from fake_mint import MINT_URL, SEED, FakeMint



@pytest.fixture
def fake_mint():
    return FakeMint()


@pytest.fixture
def config():
    # Fast polling so quote waits finish in milliseconds
    return WalletConfig(poll_schedule=(0.01,), quote_timeout=0.5, restore_batch_size=5)


@pytest.fixture
async def mint_client(fake_mint, config):
    transport = httpx.ASGITransport(app=fake_mint.app)
    async with httpx.AsyncClient(transport=transport) as http:
        yield MintClient(MINT_URL, config, client=http)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def wallet(mint_client, storage, config):
    return CashuWallet(
        mint_client,
        PendingOperationLedger(storage, config),
        SecretGenerator(storage, SEED),
        config=config,
    )


@pytest.fixture
def fund(wallet, fake_mint):
    """Mint ``amount`` sats into fresh proofs and retire the ledger record."""

    async def _fund(amount):
        quote = await wallet.request_deposit(amount)
        fake_mint.pay_mint_quote(quote.quote)
        result = await wallet.mint_tokens(quote.quote, amount)
        wallet.acknowledge(result.operation_id)
        return result.proofs

    return _fund
