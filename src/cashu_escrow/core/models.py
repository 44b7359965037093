"""
Typed schemas for Cashu mint messages and wallet records.

Field names match the mint HTTP API bit-for-bit (``B_``, ``C_``, ``Ys``,
``fee_reserve``...). Use ``to_wire()`` to build request bodies and
``model_validate()`` to parse responses.
"""

from __future__ import annotations

import json
import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cashu_escrow.crypto.blind import blind_message, hash_to_curve
from cashu_escrow.errors import VerificationFailure

PENDING_OPERATION_TTL_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


class WireModel(BaseModel):
    """Base for models that travel over the mint API."""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ==============================================================================
# Proofs and blinded messages (NUT-00)
# ==============================================================================


class Proof(WireModel):
    """A spendable token: the mint's unblinded signature C over secret."""
    amount: int
    id: str
    secret: str
    C: str
    witness: str | None = None

    @property
    def Y(self) -> str:
        """hash_to_curve(secret), the value the mint indexes spent state by."""
        return hash_to_curve(self.secret)


class BlindedMessage(WireModel):
    amount: int
    id: str
    B_: str


class BlindedSignature(WireModel):
    amount: int
    id: str
    C_: str


class PreMintSecret(BaseModel):
    """Blinding material for one output, kept until its signature is unblinded."""
    amount: int
    secret: str
    blinding_factor: str
    Y: str
    B_: str

    @classmethod
    def create(cls, amount: int, secret: str, blinding_factor: str) -> PreMintSecret:
        Y, B_ = blind_message(secret, blinding_factor)
        return cls(amount=amount, secret=secret, blinding_factor=blinding_factor, Y=Y, B_=B_)

    def to_blinded_message(self, keyset_id: str) -> BlindedMessage:
        return BlindedMessage(amount=self.amount, id=keyset_id, B_=self.B_)


# ==============================================================================
# Keysets (NUT-01 / NUT-02)
# ==============================================================================


class KeysetInfo(WireModel):
    id: str
    unit: str = "sat"
    active: bool = True
    input_fee_ppk: int = 0


class MintKeyset(WireModel):
    """Per-denomination public keys of one keyset (amount -> compressed pubkey)."""
    id: str
    unit: str = "sat"
    keys: dict[int, str] = Field(default_factory=dict)

    def key_for(self, amount: int) -> str:
        try:
            return self.keys[amount]
        except KeyError:
            raise VerificationFailure(f"No key for amount {amount} in keyset {self.id}") from None


class KeysetsResponse(WireModel):
    keysets: list[KeysetInfo] = Field(default_factory=list)


class KeysResponse(WireModel):
    keysets: list[MintKeyset] = Field(default_factory=list)


# ==============================================================================
# Quotes (NUT-04 / NUT-05)
# ==============================================================================


class MintQuoteState(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    ISSUED = "ISSUED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in (MintQuoteState.PAID, MintQuoteState.ISSUED, MintQuoteState.EXPIRED)


class MeltQuoteState(str, Enum):
    UNPAID = "UNPAID"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (MeltQuoteState.PAID, MeltQuoteState.FAILED)


def _normalize_state(data: Any, enum_cls: type[Enum], default: Enum) -> Any:
    if not isinstance(data, dict):
        return data
    data = dict(data)
    state = data.get("state")
    if state is None and "paid" in data:
        # Pre-state mints only report a boolean
        state = "PAID" if data.get("paid") else default.value
    if isinstance(state, str):
        state = state.upper()
        if state not in enum_cls.__members__:
            state = default.value
    data["state"] = state if state is not None else default.value
    data.pop("paid", None)
    return data


class MintQuote(WireModel):
    quote: str
    request: str
    amount: int | None = None
    unit: str = "sat"
    state: MintQuoteState = MintQuoteState.UNPAID
    expiry: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _state(cls, data: Any) -> Any:
        return _normalize_state(data, MintQuoteState, MintQuoteState.UNPAID)


class MeltQuote(WireModel):
    quote: str
    request: str | None = None
    amount: int = 0
    unit: str = "sat"
    fee_reserve: int = 0
    state: MeltQuoteState = MeltQuoteState.UNPAID
    expiry: int | None = None
    payment_preimage: str | None = None
    change: list[BlindedSignature] | None = None

    @model_validator(mode="before")
    @classmethod
    def _state(cls, data: Any) -> Any:
        return _normalize_state(data, MeltQuoteState, MeltQuoteState.UNPAID)


class PostMintQuoteRequest(WireModel):
    amount: int
    unit: str = "sat"


class PostMintRequest(WireModel):
    quote: str
    outputs: list[BlindedMessage]


class PostMintResponse(WireModel):
    signatures: list[BlindedSignature] = Field(default_factory=list)


class PostMeltQuoteRequest(WireModel):
    request: str
    unit: str = "sat"


class PostMeltRequest(WireModel):
    quote: str
    inputs: list[Proof]
    outputs: list[BlindedMessage] | None = None


# ==============================================================================
# Swap / state / restore (NUT-03, NUT-07, NUT-09)
# ==============================================================================


class PostSwapRequest(WireModel):
    inputs: list[Proof]
    outputs: list[BlindedMessage]


class PostSwapResponse(WireModel):
    signatures: list[BlindedSignature] = Field(default_factory=list)


class ProofState(str, Enum):
    UNSPENT = "UNSPENT"
    PENDING = "PENDING"
    SPENT = "SPENT"


class ProofStateCheck(WireModel):
    Y: str
    state: ProofState
    witness: str | None = None

    @field_validator("state", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class PostCheckStateRequest(WireModel):
    Ys: list[str]


class PostCheckStateResponse(WireModel):
    states: list[ProofStateCheck] = Field(default_factory=list)


class PostRestoreRequest(WireModel):
    outputs: list[BlindedMessage]


class PostRestoreResponse(WireModel):
    outputs: list[BlindedMessage] = Field(default_factory=list)
    signatures: list[BlindedSignature] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _legacy_promises(cls, data: Any) -> Any:
        if isinstance(data, dict) and "signatures" not in data and "promises" in data:
            data = dict(data)
            data["signatures"] = data.pop("promises")
        return data


# ==============================================================================
# Mint info (NUT-06)
# ==============================================================================


class MintInfo(WireModel):
    name: str | None = None
    pubkey: str | None = None
    version: str | None = None
    description: str | None = None
    nuts: dict[str, Any] = Field(default_factory=dict)


class MintCapabilities(BaseModel):
    """What a mint supports, as derived from its /v1/info document."""
    mint_url: str
    name: str | None = None
    version: str | None = None
    description: str | None = None
    supported_nuts: set[int] = Field(default_factory=set)
    supports_websocket: bool = False
    websocket_commands: set[str] = Field(default_factory=set)

    @classmethod
    def from_info(cls, mint_url: str, info: MintInfo) -> MintCapabilities:
        supported: set[int] = set()
        for key in info.nuts:
            if key.isdigit():
                supported.add(int(key))

        supports_ws = False
        commands: set[str] = set()
        nut17 = info.nuts.get("17")
        if isinstance(nut17, dict):
            for entry in nut17.get("supported") or []:
                if not isinstance(entry, dict):
                    continue
                if entry.get("method") == "bolt11" and entry.get("unit") == "sat":
                    supports_ws = True
                    commands.update(str(c) for c in entry.get("commands") or [])

        return cls(
            mint_url=mint_url,
            name=info.name or None,
            version=info.version or None,
            description=info.description or None,
            supported_nuts=supported,
            supports_websocket=supports_ws,
            websocket_commands=commands,
        )

    @property
    def supports_htlc(self) -> bool:
        return 14 in self.supported_nuts

    @property
    def supports_melt(self) -> bool:
        return 5 in self.supported_nuts

    @property
    def supports_proof_state(self) -> bool:
        return 7 in self.supported_nuts

    @property
    def supports_escrow(self) -> bool:
        """HTLC escrow needs NUT-14, NUT-05 and NUT-07 at the same mint."""
        return self.supports_htlc and self.supports_melt and self.supports_proof_state

    def supports_websocket_kind(self, kind: str) -> bool:
        return self.supports_websocket and kind in self.websocket_commands

    def missing_capabilities(self) -> list[str]:
        missing = []
        if not self.supports_htlc:
            missing.append("HTLC (NUT-14)")
        if not self.supports_melt:
            missing.append("Melt (NUT-05)")
        if not self.supports_proof_state:
            missing.append("Proof State (NUT-07)")
        return missing


# ==============================================================================
# HTLC spending conditions (NUT-10 / NUT-14)
# ==============================================================================


class HtlcSecret(BaseModel):
    """
    The well-known secret ``["HTLC", {"nonce", "data", "tags"}]``.

    ``data`` is the payment hash; ``tags`` carry the claim pubkeys, an
    optional locktime and the refund pubkeys.
    """
    nonce: str
    data: str
    pubkeys: list[str] = Field(default_factory=list)
    locktime: int | None = None
    refund_pubkeys: list[str] = Field(default_factory=list)

    def tags(self) -> list[list[str]]:
        tags: list[list[str]] = []
        if self.pubkeys:
            tags.append(["pubkeys", *self.pubkeys])
        if self.locktime is not None:
            tags.append(["locktime", str(self.locktime)])
        if self.refund_pubkeys:
            tags.append(["refund", *self.refund_pubkeys])
        return tags

    def to_secret(self) -> str:
        body = {"nonce": self.nonce, "data": self.data, "tags": self.tags()}
        return json.dumps(["HTLC", body], separators=(",", ":"))

    @classmethod
    def parse(cls, secret: str) -> HtlcSecret:
        """
        Parse a NUT-10 HTLC secret.

        Raises:
            VerificationFailure: If the secret is not a well-formed HTLC secret.
        """
        try:
            kind, body = json.loads(secret)
        except (ValueError, TypeError) as e:
            raise VerificationFailure(f"Not a NUT-10 secret: {e}") from e
        if kind != "HTLC" or not isinstance(body, dict) or "data" not in body:
            raise VerificationFailure(f"Not an HTLC secret (kind={kind!r})")

        pubkeys: list[str] = []
        refund: list[str] = []
        locktime: int | None = None
        for tag in body.get("tags") or []:
            if not isinstance(tag, list) or len(tag) < 2:
                continue
            name, values = tag[0], [str(v) for v in tag[1:]]
            if name == "pubkeys":
                pubkeys.extend(values)
            elif name == "refund":
                refund.extend(values)
            elif name == "locktime":
                try:
                    locktime = int(values[0])
                except ValueError:
                    locktime = None

        return cls(
            nonce=str(body.get("nonce", "")),
            data=str(body["data"]),
            pubkeys=pubkeys,
            locktime=locktime,
            refund_pubkeys=refund,
        )


class HtlcWitness(BaseModel):
    """Witness for an HTLC input; the refund path carries no preimage."""
    preimage: str | None = None
    signatures: list[str] = Field(default_factory=list)

    def to_json(self) -> str:
        body: dict[str, Any] = {}
        if self.preimage is not None:
            body["preimage"] = self.preimage
        body["signatures"] = self.signatures
        return json.dumps(body, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> HtlcWitness:
        return cls.model_validate_json(raw)


# ==============================================================================
# Pending blinded operations (crash recovery)
# ==============================================================================


class OperationType(str, Enum):
    MINT = "MINT"
    MELT = "MELT"
    SWAP = "SWAP"
    LOCK_HTLC = "LOCK_HTLC"
    CLAIM_HTLC = "CLAIM_HTLC"
    REFUND_HTLC = "REFUND_HTLC"


class OperationStatus(str, Enum):
    STARTED = "STARTED"
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationStatus.COMPLETED, OperationStatus.FAILED)


class PendingBlindedOperation(BaseModel):
    """
    Durable record of an in-flight blinded operation.

    Holds everything needed to retry the exact request or, after an
    ambiguous failure, to ask the mint whether the inputs were spent and
    recover the outputs through restore.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    operation_type: OperationType
    mint_url: str
    keyset_id: str | None = None
    quote_id: str | None = None
    input_secrets: list[str] = Field(default_factory=list)
    output_premints: list[PreMintSecret] = Field(default_factory=list)
    amount: int
    created_at: int = Field(default_factory=now_ms)
    expires_at: int = 0
    status: OperationStatus = OperationStatus.STARTED
    proofs: list[Proof] = Field(default_factory=list)

    @model_validator(mode="after")
    def _default_expiry(self) -> PendingBlindedOperation:
        if not self.expires_at:
            self.expires_at = self.created_at + PENDING_OPERATION_TTL_MS
        return self

    def is_expired(self, at_ms: int | None = None) -> bool:
        return (at_ms if at_ms is not None else now_ms()) > self.expires_at
