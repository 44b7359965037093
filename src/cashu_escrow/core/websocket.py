"""
NUT-17 push channel: JSON-RPC 2.0 subscriptions over a websocket.

    -> {"jsonrpc": "2.0", "method": "subscribe",
        "params": {"kind": "bolt11_mint_quote", "subId": "...", "filters": ["<quote id>"]},
        "id": 1}
    <- {"jsonrpc": "2.0", "result": {"status": "OK", "subId": "..."}, "id": 1}
    <- {"jsonrpc": "2.0", "method": "subscribe",
        "params": {"subId": "...", "payload": {...}}}          (notification, no id)
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable

import websockets
from pydantic import BaseModel, Field, ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from cashu_escrow.core.config import WalletConfig
from cashu_escrow.core.models import MeltQuote, MintQuote, ProofStateCheck

logger = logging.getLogger("cashu_escrow.websocket")

_BASE_RECONNECT_DELAY = 1.0


class WebSocketState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    DISCONNECTING = "DISCONNECTING"


class SubscriptionKind(str, Enum):
    BOLT11_MINT_QUOTE = "bolt11_mint_quote"
    BOLT11_MELT_QUOTE = "bolt11_melt_quote"
    PROOF_STATE = "proof_state"


# ==============================================================================
# JSON-RPC messages
# ==============================================================================


class WsRequestParams(BaseModel):
    kind: str | None = None
    subId: str
    filters: list[str] | None = None


class WsRequest(BaseModel):
    jsonrpc: str = "2.0"
    method: str
    params: WsRequestParams
    id: int

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class WsErrorBody(BaseModel):
    code: int
    message: str = ""


class WsResult(BaseModel):
    status: str
    subId: str


class WsResponse(BaseModel):
    jsonrpc: str = "2.0"
    result: WsResult | None = None
    error: WsErrorBody | None = None
    id: int

    @property
    def is_success(self) -> bool:
        return self.result is not None and self.error is None


class WsNotificationParams(BaseModel):
    subId: str
    payload: dict[str, Any] = Field(default_factory=dict)


class WsNotification(BaseModel):
    jsonrpc: str = "2.0"
    method: str = "subscribe"
    params: WsNotificationParams


def parse_message(text: str) -> WsResponse | WsNotification:
    """
    Classify an incoming frame: responses carry an ``id``, notifications don't.

    Raises:
        ValueError: If the frame is not valid JSON-RPC.
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("JSON-RPC frame must be an object")
    if data.get("id") is not None:
        return WsResponse.model_validate(data)
    return WsNotification.model_validate(data)


class Subscription(BaseModel):
    subId: str
    kind: SubscriptionKind
    filters: list[str]


Listener = Callable[[str, Any], None]
Connector = Callable[[str], Awaitable[Any]]


async def _default_connect(url: str) -> Any:
    return await websockets.connect(url, ping_interval=30, open_timeout=15, close_timeout=10)


# ==============================================================================
# Client
# ==============================================================================


class MintWebSocket:
    """
    Long-lived subscription manager for one mint.

    Listeners registered with ``add_listener`` receive ``(key, payload)``
    where key is the quote id (quote kinds) or Y (proof_state) and payload
    is the parsed MintQuote / MeltQuote / ProofStateCheck.

    Usage:
        ws = MintWebSocket("https://mint.example.com")
        await ws.connect()
        sub_id = await ws.subscribe(SubscriptionKind.BOLT11_MINT_QUOTE, [quote_id])
    """

    def __init__(
        self,
        mint_url: str,
        config: WalletConfig | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.mint_url = mint_url.rstrip("/")
        self.config = config or WalletConfig()
        self._connector = connector or _default_connect
        self._socket: Any = None
        self._reader: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._reconnect_attempts = 0
        self._should_reconnect = True
        self._ids = itertools.count(1)
        self._subscriptions: dict[str, Subscription] = {}
        self._pending: dict[int, asyncio.Future] = {}
        self._listeners: dict[SubscriptionKind, list[Listener]] = {k: [] for k in SubscriptionKind}
        self.state = WebSocketState.DISCONNECTED
        self.on_state_change: Callable[[WebSocketState], None] | None = None

    @property
    def url(self) -> str:
        base = self.mint_url.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
        return f"{base}/v1/ws"

    @property
    def is_connected(self) -> bool:
        return self.state == WebSocketState.CONNECTED

    def _set_state(self, state: WebSocketState) -> None:
        self.state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """
        Open the socket and start the reader task.

        Returns:
            False if already connecting/connected or the connection failed.
        """
        if self.state in (WebSocketState.CONNECTING, WebSocketState.CONNECTED):
            logger.debug(f"Already {self.state.value.lower()}, skipping connect")
            return False

        self._should_reconnect = True
        self._set_state(WebSocketState.CONNECTING)
        logger.debug(f"Connecting to {self.url}")
        try:
            self._socket = await self._connector(self.url)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.warning(f"Websocket connection to {self.url} failed: {e}")
            self._set_state(WebSocketState.DISCONNECTED)
            self._schedule_reconnect()
            return False

        self._set_state(WebSocketState.CONNECTED)
        self._reconnect_attempts = 0
        self._reader = asyncio.create_task(self._read_loop())
        await self._resubscribe_all()
        return True

    async def disconnect(self) -> None:
        self._should_reconnect = False
        self._set_state(WebSocketState.DISCONNECTING)
        self._fail_pending()
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        socket, self._socket = self._socket, None
        if socket is not None:
            await socket.close()
        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._reader = None
        self._set_state(WebSocketState.DISCONNECTED)
        logger.debug(f"Disconnected from {self.url}")

    async def _read_loop(self) -> None:
        socket = self._socket
        try:
            async for message in socket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                self.handle_message(message)
        except ConnectionClosed as e:
            logger.debug(f"Websocket closed: {e}")
        except OSError as e:
            logger.warning(f"Websocket read failed: {e}")

        if self._socket is socket:
            self._socket = None
            self._set_state(WebSocketState.DISCONNECTED)
            self._fail_pending()
            self._schedule_reconnect()

    def _fail_pending(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionResetError("websocket closed"))
        self._pending.clear()

    def _schedule_reconnect(self) -> None:
        if not self._should_reconnect:
            return
        self._reconnect_attempts += 1
        delay = min(
            _BASE_RECONNECT_DELAY * self._reconnect_attempts,
            self.config.websocket_max_reconnect_delay,
        )
        logger.debug(f"Scheduling reconnect in {delay:.1f}s (attempt {self._reconnect_attempts})")
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._should_reconnect and self.state == WebSocketState.DISCONNECTED:
            await self.connect()

    async def _resubscribe_all(self) -> None:
        for sub in list(self._subscriptions.values()):
            request = WsRequest(
                method="subscribe",
                params=WsRequestParams(kind=sub.kind.value, subId=sub.subId, filters=sub.filters),
                id=next(self._ids),
            )
            response = await self._send_and_wait(request)
            if response is None:
                logger.warning(f"No answer resubscribing {sub.kind.value} ({sub.subId}); keeping it")
            elif not response.is_success:
                err = response.error
                logger.error(
                    f"Mint refused resubscription {sub.subId}: {err.message if err else '?'}; dropping it"
                )
                self._subscriptions.pop(sub.subId, None)
            else:
                logger.debug(f"Resubscribed: {sub.kind.value} ({sub.subId})")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(self, kind: SubscriptionKind, filters: list[str]) -> str | None:
        """
        Subscribe to updates for ``filters`` (quote ids or Ys).

        Returns:
            The subscription id, or None if not connected, timed out or refused.
        """
        if not self.is_connected:
            logger.warning("Cannot subscribe: not connected")
            return None

        sub_id = str(uuid.uuid4())
        request = WsRequest(
            method="subscribe",
            params=WsRequestParams(kind=kind.value, subId=sub_id, filters=filters),
            id=next(self._ids),
        )
        response = await self._send_and_wait(request)
        if response is None:
            logger.error(f"Subscribe timeout for {kind.value}")
            return None
        if not response.is_success:
            err = response.error
            logger.error(f"Subscribe failed: {err.message if err else '?'} (code {err.code if err else '?'})")
            return None

        self._subscriptions[sub_id] = Subscription(subId=sub_id, kind=kind, filters=filters)
        logger.debug(f"Subscribed to {kind.value} with {len(filters)} filters, subId={sub_id}")
        return sub_id

    async def unsubscribe(self, sub_id: str) -> bool:
        if not self.is_connected:
            self._subscriptions.pop(sub_id, None)
            return True

        request = WsRequest(method="unsubscribe", params=WsRequestParams(subId=sub_id), id=next(self._ids))
        response = await self._send_and_wait(request)
        self._subscriptions.pop(sub_id, None)
        if response is None or not response.is_success:
            logger.warning(f"Unsubscribe failed for subId={sub_id}")
            return False
        return True

    @property
    def active_subscriptions(self) -> list[str]:
        return list(self._subscriptions)

    def add_listener(self, kind: SubscriptionKind, listener: Listener) -> None:
        self._listeners[kind].append(listener)

    def remove_listener(self, kind: SubscriptionKind, listener: Listener) -> None:
        if listener in self._listeners[kind]:
            self._listeners[kind].remove(listener)

    async def _send_and_wait(self, request: WsRequest) -> WsResponse | None:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request.id] = future
        try:
            await self._socket.send(request.to_json())
            logger.debug(f"Sent: {request.method} id={request.id}")
            return await asyncio.wait_for(future, self.config.websocket_request_timeout)
        except asyncio.TimeoutError:
            return None
        except (OSError, WebSocketException) as e:
            logger.error(f"Failed to send request {request.method}: {e}")
            return None
        finally:
            self._pending.pop(request.id, None)

    # ------------------------------------------------------------------
    # Incoming frames
    # ------------------------------------------------------------------

    def handle_message(self, text: str) -> None:
        """Route one incoming frame to its pending request or listeners."""
        try:
            message = parse_message(text)
        except (ValueError, ValidationError) as e:
            logger.error(f"Failed to parse message: {e}")
            return

        if isinstance(message, WsResponse):
            future = self._pending.pop(message.id, None)
            if future is None:
                logger.warning(f"Received response for unknown request id={message.id}")
            elif not future.done():
                future.set_result(message)
            return

        sub = self._subscriptions.get(message.params.subId)
        if sub is None:
            logger.warning(f"Received notification for unknown subscription: {message.params.subId}")
            return

        payload = message.params.payload
        try:
            if sub.kind is SubscriptionKind.BOLT11_MINT_QUOTE:
                parsed: Any = MintQuote.model_validate(payload)
                key = parsed.quote
            elif sub.kind is SubscriptionKind.BOLT11_MELT_QUOTE:
                parsed = MeltQuote.model_validate(payload)
                key = parsed.quote
            else:
                parsed = ProofStateCheck.model_validate(payload)
                key = parsed.Y
        except ValidationError as e:
            logger.warning(f"Failed to parse {sub.kind.value} payload: {e}")
            return

        logger.debug(f"{sub.kind.value} update: {key[:16]} -> {parsed.state.value}")
        for listener in list(self._listeners[sub.kind]):
            listener(key, parsed)
