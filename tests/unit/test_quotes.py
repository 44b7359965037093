"""
Unit tests for QuoteWaiter: polling, push notifications and timeouts.
"""

import asyncio

import pytest

from cashu_escrow.core.models import MeltQuoteState, MintQuoteState
from cashu_escrow.core.quotes import QuoteWaiter
from cashu_escrow.core.websocket import MintWebSocket
from fake_mint import MINT_URL
from fake_socket import FakeConnector


async def _later(delay, fn, *args):
    await asyncio.sleep(delay)
    fn(*args)


class TestPolling:
    """Waiting on quotes by polling."""

    async def test_resolves_when_paid(self, mint_client, fake_mint):
        """Polling returns once the quote is paid."""
        quote = await mint_client.create_mint_quote(10)
        waiter = QuoteWaiter(mint_client)
        payer = asyncio.create_task(_later(0.05, fake_mint.pay_mint_quote, quote.quote))
        result = await waiter.wait_for_mint_quote(quote.quote, timeout=2)
        await payer
        assert result.state is MintQuoteState.PAID

    async def test_timeout_returns_last_known_state(self, mint_client):
        """On timeout the last observed quote is returned."""
        quote = await mint_client.create_mint_quote(10)
        result = await QuoteWaiter(mint_client).wait_for_mint_quote(quote.quote, timeout=0.1)
        assert result is not None
        assert result.state is MintQuoteState.UNPAID

    async def test_timeout_without_any_answer(self, mint_client):
        """On timeout with no answer the result is None."""
        result = await QuoteWaiter(mint_client).wait_for_mint_quote("unknown", timeout=0.1)
        assert result is None

    async def test_custom_targets(self, mint_client, fake_mint):
        """Custom target states end the wait."""
        quote = await mint_client.create_mint_quote(10)
        fake_mint.pay_mint_quote(quote.quote)
        result = await QuoteWaiter(mint_client).wait_for_mint_quote(
            quote.quote, timeout=0.1, targets=(MintQuoteState.ISSUED,)
        )
        assert result.state is MintQuoteState.PAID

    async def test_melt_quote_failed_is_terminal(self, mint_client, fake_mint):
        """A FAILED melt quote ends the default wait."""
        quote = await mint_client.create_melt_quote("lnbc10fake")
        fake_mint.set_melt_state(quote.quote, "FAILED")
        result = await QuoteWaiter(mint_client).wait_for_melt_quote(quote.quote, timeout=1)
        assert result.state is MeltQuoteState.FAILED

    async def test_uses_config_timeout(self, mint_client, config):
        """The configured quote timeout applies when none is given."""
        config.quote_timeout = 0.05
        quote = await mint_client.create_mint_quote(10)
        result = await QuoteWaiter(mint_client).wait_for_mint_quote(quote.quote)
        assert result.state is MintQuoteState.UNPAID


class TestPush:
    """Waiting on quotes through websocket notifications."""

    @pytest.fixture
    async def ws(self, config):
        connector = FakeConnector()
        socket = MintWebSocket(MINT_URL, config, connector=connector)
        await socket.connect()
        socket.connector = connector
        yield socket
        await socket.disconnect()

    async def test_push_resolves_before_poll(self, mint_client, ws, config):
        """A pushed update resolves the wait before the next poll."""
        # Mint never changes state; only the notification can finish the wait
        config.poll_schedule = (10.0,)
        quote = await mint_client.create_mint_quote(10)
        waiter = QuoteWaiter(mint_client, ws, config)
        task = asyncio.create_task(waiter.wait_for_mint_quote(quote.quote, timeout=2))

        while not ws.active_subscriptions:
            await asyncio.sleep(0.005)
        [sub_id] = ws.active_subscriptions
        ws.connector.current.notify(sub_id, {**quote.to_wire(), "state": "PAID"})

        result = await asyncio.wait_for(task, 1)
        assert result.state is MintQuoteState.PAID
        assert ws.active_subscriptions == []

    async def test_listener_removed_after_wait(self, mint_client, ws, fake_mint):
        """The websocket listener is removed once waiting ends."""
        quote = await mint_client.create_mint_quote(10)
        fake_mint.pay_mint_quote(quote.quote)
        await QuoteWaiter(mint_client, ws).wait_for_mint_quote(quote.quote, timeout=1)
        assert all(not listeners for listeners in ws._listeners.values())

    async def test_no_subscription_when_kind_unsupported(self, mint_client, ws, fake_mint):
        """No subscription is made when the mint lacks the kind."""
        fake_mint.nuts["17"]["supported"][0]["commands"] = ["proof_state"]
        quote = await mint_client.create_mint_quote(10)
        fake_mint.pay_mint_quote(quote.quote)
        await QuoteWaiter(mint_client, ws).wait_for_mint_quote(quote.quote, timeout=1)
        assert ws.connector.current.sent == []
