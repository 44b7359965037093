"""
MintClient: async REST client for a Cashu mint (NUT-01 .. NUT-09).

Docs: https://github.com/cashubtc/nuts
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from cashu_escrow.core.config import WalletConfig
from cashu_escrow.core.models import (
    BlindedMessage,
    BlindedSignature,
    KeysetInfo,
    KeysetsResponse,
    KeysResponse,
    MeltQuote,
    MintCapabilities,
    MintInfo,
    MintKeyset,
    MintQuote,
    PostCheckStateRequest,
    PostCheckStateResponse,
    PostMeltQuoteRequest,
    PostMeltRequest,
    PostMintQuoteRequest,
    PostMintRequest,
    PostMintResponse,
    PostRestoreRequest,
    PostRestoreResponse,
    PostSwapRequest,
    PostSwapResponse,
    PreMintSecret,
    Proof,
    ProofStateCheck,
)
from cashu_escrow.crypto.blind import unblind
from cashu_escrow.errors import CashuError, HttpError, TransportFailure

logger = logging.getLogger("cashu_escrow.mint")

M = TypeVar("M", bound=BaseModel)


# ==============================================================================
# Tagged quote lookup result
# ==============================================================================


@dataclass(frozen=True)
class QuoteFound:
    quote: MintQuote


@dataclass(frozen=True)
class QuoteNotFound:
    """The mint answered 404: it does not know this quote id."""
    quote_id: str


@dataclass(frozen=True)
class QuoteLookupError:
    """The lookup failed for another reason (network, 5xx, bad payload)."""
    error: CashuError


MintQuoteResult = Union[QuoteFound, QuoteNotFound, QuoteLookupError]


class MintClient:
    """
    Asynchronous client for one Cashu mint.

    Usage:
        async with MintClient("https://mint.example.com") as mint:
            keyset = await mint.get_active_keyset()
            sigs = await mint.swap(inputs, outputs)
    """

    def __init__(
        self,
        mint_url: str,
        config: WalletConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.mint_url = mint_url.rstrip("/")
        self.config = config or WalletConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=self.config.request_timeout,
        )
        self._keysets: dict[str, MintKeyset] = {}
        self._capabilities: MintCapabilities | None = None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> MintClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Info (NUT-06)
    # ------------------------------------------------------------------

    async def get_info(self) -> MintInfo:
        return self._parse(MintInfo, await self._get("/v1/info"))

    async def get_capabilities(self, refresh: bool = False) -> MintCapabilities:
        """
        Discover which NUTs the mint supports.

        Returns:
            MintCapabilities: cached after the first call unless ``refresh``.
        """
        if self._capabilities is None or refresh:
            info = await self.get_info()
            caps = MintCapabilities.from_info(self.mint_url, info)
            logger.debug(
                f"Mint {self.mint_url} capabilities: NUTs={sorted(caps.supported_nuts)}, "
                f"escrow={caps.supports_escrow}, ws={caps.supports_websocket}"
            )
            self._capabilities = caps
        return self._capabilities

    # ------------------------------------------------------------------
    # Keysets (NUT-01 / NUT-02)
    # ------------------------------------------------------------------

    async def get_keysets(self) -> list[KeysetInfo]:
        return self._parse(KeysetsResponse, await self._get("/v1/keysets")).keysets

    async def get_active_keyset_ids(self) -> list[str]:
        return [k.id for k in await self.get_keysets() if k.active]

    async def get_keyset(self, keyset_id: str) -> MintKeyset:
        """Return a keyset's public keys, fetching it on a cache miss."""
        cached = self._keysets.get(keyset_id)
        if cached is not None:
            return cached
        resp = self._parse(KeysResponse, await self._get(f"/v1/keys/{keyset_id}"))
        for keyset in resp.keysets:
            self._keysets[keyset.id] = keyset
        if keyset_id not in self._keysets:
            raise TransportFailure(f"Mint did not return keyset {keyset_id}")
        return self._keysets[keyset_id]

    async def get_active_keyset(self, unit: str | None = None) -> MintKeyset:
        """
        Return the active keyset for ``unit`` (default: the configured unit).

        Raises:
            TransportFailure: If the mint has no active keyset for the unit.
        """
        unit = unit or self.config.unit
        for info in await self.get_keysets():
            if info.active and info.unit == unit:
                return await self.get_keyset(info.id)
        raise TransportFailure(f"Mint {self.mint_url} has no active '{unit}' keyset")

    # ------------------------------------------------------------------
    # Mint quotes (NUT-04)
    # ------------------------------------------------------------------

    async def create_mint_quote(self, amount: int) -> MintQuote:
        body = PostMintQuoteRequest(amount=amount, unit=self.config.unit).to_wire()
        quote = self._parse(MintQuote, await self._post("/v1/mint/quote/bolt11", body))
        if quote.amount is None:
            quote.amount = amount
        logger.info(f"Created mint quote {quote.quote} for {amount} {self.config.unit}")
        return quote

    async def get_mint_quote(self, quote_id: str) -> MintQuote:
        return self._parse(MintQuote, await self._get(f"/v1/mint/quote/bolt11/{quote_id}"))

    async def check_mint_quote(self, quote_id: str) -> MintQuoteResult:
        """Look up a mint quote, distinguishing "unknown" from "lookup failed"."""
        try:
            return QuoteFound(await self.get_mint_quote(quote_id))
        except HttpError as e:
            if e.is_not_found:
                logger.warning(f"Mint quote {quote_id} not found at {self.mint_url}")
                return QuoteNotFound(quote_id)
            return QuoteLookupError(e)
        except TransportFailure as e:
            return QuoteLookupError(e)

    async def mint(self, quote_id: str, outputs: list[BlindedMessage]) -> list[BlindedSignature]:
        body = PostMintRequest(quote=quote_id, outputs=outputs).to_wire()
        return self._parse(PostMintResponse, await self._post("/v1/mint/bolt11", body)).signatures

    # ------------------------------------------------------------------
    # Melt quotes (NUT-05)
    # ------------------------------------------------------------------

    async def create_melt_quote(self, bolt11: str) -> MeltQuote:
        body = PostMeltQuoteRequest(request=bolt11, unit=self.config.unit).to_wire()
        quote = self._parse(MeltQuote, await self._post("/v1/melt/quote/bolt11", body))
        if quote.request is None:
            quote.request = bolt11
        logger.info(f"Created melt quote {quote.quote}: {quote.amount} + {quote.fee_reserve} reserve")
        return quote

    async def get_melt_quote(self, quote_id: str) -> MeltQuote:
        return self._parse(MeltQuote, await self._get(f"/v1/melt/quote/bolt11/{quote_id}"))

    async def melt(
        self,
        quote_id: str,
        inputs: list[Proof],
        outputs: list[BlindedMessage] | None = None,
    ) -> MeltQuote:
        """Pay the quote's invoice with ``inputs``; ``outputs`` are NUT-08 blanks for change."""
        body = PostMeltRequest(quote=quote_id, inputs=inputs, outputs=outputs or None).to_wire()
        return self._parse(MeltQuote, await self._post("/v1/melt/bolt11", body))

    # ------------------------------------------------------------------
    # Swap / state / restore (NUT-03, NUT-07, NUT-09)
    # ------------------------------------------------------------------

    async def swap(self, inputs: list[Proof], outputs: list[BlindedMessage]) -> list[BlindedSignature]:
        """
        Exchange ``inputs`` for signatures on ``outputs``.

        The mint either rejects the whole request or returns one signature
        per output, in order.

        Raises:
            HttpError: If the mint rejects the swap (spent input, bad witness...).
            TransportFailure: On network failure or an unexpected response.
        """
        body = PostSwapRequest(inputs=inputs, outputs=outputs).to_wire()
        sigs = self._parse(PostSwapResponse, await self._post("/v1/swap", body)).signatures
        if len(sigs) != len(outputs):
            raise TransportFailure(f"Swap returned {len(sigs)} signatures for {len(outputs)} outputs")
        return sigs

    async def check_state(self, Ys: list[str]) -> dict[str, ProofStateCheck]:
        """
        Return proof states keyed by Y.

        Mints are not required to preserve request order, so results are
        matched by value.
        """
        if not Ys:
            return {}
        body = PostCheckStateRequest(Ys=Ys).to_wire()
        resp = self._parse(PostCheckStateResponse, await self._post("/v1/checkstate", body))
        wanted = {y.lower() for y in Ys}
        states: dict[str, ProofStateCheck] = {}
        for state in resp.states:
            if state.Y.lower() in wanted:
                states[state.Y.lower()] = state
        return states

    async def restore(
        self, outputs: list[BlindedMessage]
    ) -> tuple[list[BlindedMessage], list[BlindedSignature]]:
        if not outputs:
            return [], []
        body = PostRestoreRequest(outputs=outputs).to_wire()
        resp = self._parse(PostRestoreResponse, await self._post("/v1/restore", body))
        return resp.outputs, resp.signatures

    # ------------------------------------------------------------------
    # Unblinding
    # ------------------------------------------------------------------

    async def unblind_signatures(
        self,
        signatures: list[BlindedSignature],
        premints: list[PreMintSecret],
    ) -> list[Proof]:
        """
        Turn blinded signatures into proofs, pairing them positionally.

        The keyset id and amount are taken from each signature, not from the
        request, since a mint may sign with a different (newer) keyset.
        """
        if len(signatures) != len(premints):
            logger.warning(
                f"Signature count mismatch: got {len(signatures)}, expected {len(premints)}"
            )
        proofs: list[Proof] = []
        for sig, pms in zip(signatures, premints):
            keyset = await self.get_keyset(sig.id)
            C = unblind(sig.C_, pms.blinding_factor, keyset.key_for(sig.amount))
            proofs.append(Proof(amount=sig.amount, id=sig.id, secret=pms.secret, C=C))
        return proofs

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get(self, path: str) -> Any:
        return await self._request("GET", path)

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        return await self._request("POST", path, body)

    async def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> Any:
        url = f"{self.mint_url}{path}"
        logger.debug(f"{method} {url}")
        try:
            response = await self._client.request(method, url, json=body)
        except httpx.HTTPError as e:
            raise TransportFailure(f"{method} {url} failed: {e}") from e
        if response.status_code >= 400:
            raise HttpError(response.status_code, response.text)
        try:
            return response.json()
        except ValueError as e:
            raise TransportFailure(f"Invalid JSON from {url}: {e}") from e

    @staticmethod
    def _parse(model: type[M], data: Any) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise TransportFailure(f"Unexpected {model.__name__} payload: {e}") from e
