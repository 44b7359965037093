"""
Waiting for a quote to reach a terminal state.

A push subscription (NUT-17) completes the wait as soon as the mint
announces the change; a polling loop runs alongside it with the configured
backoff so that a silent or missing websocket never stalls the caller.
Whichever source sees the terminal state first resolves a single-assignment
future. On timeout the last known state is returned: a quote that has not
finished is still pending, not failed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from cashu_escrow.core.config import WalletConfig
from cashu_escrow.core.mint import MintClient
from cashu_escrow.core.models import MeltQuote, MeltQuoteState, MintQuote, MintQuoteState
from cashu_escrow.core.websocket import MintWebSocket, SubscriptionKind
from cashu_escrow.errors import CashuError

logger = logging.getLogger("cashu_escrow.quotes")

Q = TypeVar("Q", MintQuote, MeltQuote)


class QuoteWaiter:
    """
    Usage:
        waiter = QuoteWaiter(mint, websocket=ws)
        quote = await waiter.wait_for_mint_quote(quote_id, timeout=120)
        if quote and quote.state is MintQuoteState.PAID:
            ...
    """

    def __init__(
        self,
        client: MintClient,
        websocket: MintWebSocket | None = None,
        config: WalletConfig | None = None,
    ) -> None:
        self.client = client
        self.websocket = websocket
        self.config = config or client.config

    async def wait_for_mint_quote(
        self,
        quote_id: str,
        timeout: float | None = None,
        targets: tuple[MintQuoteState, ...] = (
            MintQuoteState.PAID,
            MintQuoteState.ISSUED,
            MintQuoteState.EXPIRED,
        ),
    ) -> MintQuote | None:
        """Wait until the deposit quote is paid, issued or expired."""
        return await self._wait(
            SubscriptionKind.BOLT11_MINT_QUOTE,
            quote_id,
            self.client.get_mint_quote,
            lambda q: q.state in targets,
            timeout,
        )

    async def wait_for_melt_quote(
        self,
        quote_id: str,
        timeout: float | None = None,
        targets: tuple[MeltQuoteState, ...] = (MeltQuoteState.PAID, MeltQuoteState.FAILED),
    ) -> MeltQuote | None:
        """Wait until the withdrawal quote is paid or failed."""
        return await self._wait(
            SubscriptionKind.BOLT11_MELT_QUOTE,
            quote_id,
            self.client.get_melt_quote,
            lambda q: q.state in targets,
            timeout,
        )

    async def _wait(
        self,
        kind: SubscriptionKind,
        quote_id: str,
        fetch: Callable[[str], Awaitable[Q]],
        is_done: Callable[[Q], bool],
        timeout: float | None,
    ) -> Q | None:
        timeout = self.config.quote_timeout if timeout is None else timeout
        done: asyncio.Future = asyncio.get_running_loop().create_future()
        last: list[Q] = []

        def observe(quote: Q) -> None:
            last[:] = [quote]
            if is_done(quote) and not done.done():
                done.set_result(quote)

        def on_push(key: str, payload: Any) -> None:
            if key == quote_id:
                observe(payload)

        sub_id = await self._subscribe(kind, quote_id, on_push)
        poller = asyncio.create_task(self._poll(quote_id, fetch, observe, done))
        try:
            return await asyncio.wait_for(asyncio.shield(done), timeout)
        except asyncio.TimeoutError:
            current = last[0] if last else None
            logger.warning(
                f"Timed out after {timeout:.0f}s waiting for {kind.value} {quote_id}; "
                f"last state {current.state.value if current else 'unknown'}"
            )
            return current
        finally:
            poller.cancel()
            try:
                await poller
            except asyncio.CancelledError:
                pass
            if self.websocket is not None:
                self.websocket.remove_listener(kind, on_push)
                if sub_id is not None:
                    await self.websocket.unsubscribe(sub_id)

    async def _subscribe(
        self, kind: SubscriptionKind, quote_id: str, listener: Callable[[str, Any], None]
    ) -> str | None:
        ws = self.websocket
        if ws is None or not ws.is_connected:
            return None
        caps = await self.client.get_capabilities()
        if not caps.supports_websocket_kind(kind.value):
            logger.debug(f"Mint does not push {kind.value}; polling only")
            return None
        ws.add_listener(kind, listener)
        sub_id = await ws.subscribe(kind, [quote_id])
        if sub_id is None:
            ws.remove_listener(kind, listener)
        return sub_id

    async def _poll(
        self,
        quote_id: str,
        fetch: Callable[[str], Awaitable[Q]],
        observe: Callable[[Q], None],
        done: asyncio.Future,
    ) -> None:
        attempt = 0
        while not done.done():
            try:
                observe(await fetch(quote_id))
            except CashuError as e:
                logger.warning(f"Quote {quote_id} poll #{attempt} failed: {e}")
            if done.done():
                return
            await asyncio.sleep(self.config.poll_delay(attempt))
            attempt += 1
