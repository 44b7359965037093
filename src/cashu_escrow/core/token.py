"""
Serialized token formats.

    cashuA + base64url(JSON {"token": [{"mint": url, "proofs": [...]}], "unit": "sat"})
    cashuB + base64url(CBOR {"m": url, "u": "sat", "t": [{"i": keyset bytes, "p": [...]}]})

Encoding defaults to V3; decoding accepts both.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

import cbor2
from pydantic import BaseModel, Field, ValidationError

from cashu_escrow.core.models import Proof
from cashu_escrow.errors import VerificationFailure

logger = logging.getLogger("cashu_escrow.token")

TOKEN_PREFIX_V3 = "cashuA"
TOKEN_PREFIX_V4 = "cashuB"


class TokenEntry(BaseModel):
    mint: str
    proofs: list[Proof] = Field(default_factory=list)


class Token(BaseModel):
    token: list[TokenEntry] = Field(default_factory=list)
    unit: str = "sat"
    memo: str | None = None

    @property
    def mint_url(self) -> str:
        if not self.token:
            raise VerificationFailure("Token has no mint entries")
        return self.token[0].mint

    @property
    def proofs(self) -> list[Proof]:
        return [p for entry in self.token for p in entry.proofs]

    @property
    def amount(self) -> int:
        return sum(p.amount for p in self.proofs)


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(body: str) -> bytes:
    body = body.replace("+", "-").replace("/", "_")
    return base64.urlsafe_b64decode(body + "=" * (-len(body) % 4))


def encode_token(proofs: list[Proof], mint_url: str, unit: str = "sat") -> str:
    """Serialize proofs from a single mint into a ``cashuA`` string."""
    token = Token(token=[TokenEntry(mint=mint_url, proofs=proofs)], unit=unit)
    payload = token.model_dump(mode="json", exclude_none=True)
    return TOKEN_PREFIX_V3 + _b64url(json.dumps(payload, separators=(",", ":")).encode("utf-8"))


def encode_token_v4(proofs: list[Proof], mint_url: str, unit: str = "sat", memo: str | None = None) -> str:
    """Serialize proofs into a ``cashuB`` (CBOR) string, grouped by keyset."""
    by_keyset: dict[str, list[dict[str, Any]]] = {}
    for p in proofs:
        entry: dict[str, Any] = {"a": p.amount, "s": p.secret, "c": bytes.fromhex(p.C)}
        if p.witness:
            entry["w"] = p.witness
        by_keyset.setdefault(p.id, []).append(entry)

    payload: dict[str, Any] = {
        "m": mint_url,
        "u": unit,
        "t": [{"i": bytes.fromhex(kid), "p": entries} for kid, entries in by_keyset.items()],
    }
    if memo:
        payload["d"] = memo
    return TOKEN_PREFIX_V4 + _b64url(cbor2.dumps(payload))


def _from_v4(data: Any) -> Token:
    if not isinstance(data, dict) or "m" not in data or "t" not in data:
        raise ValueError("V4 token needs 'm' and 't' fields")
    proofs = [
        Proof(
            amount=p["a"],
            id=group["i"].hex(),
            secret=p["s"],
            C=p["c"].hex(),
            witness=p.get("w"),
        )
        for group in data["t"]
        for p in group["p"]
    ]
    return Token(
        token=[TokenEntry(mint=data["m"], proofs=proofs)],
        unit=data.get("u") or "sat",
        memo=data.get("d"),
    )


def decode_token(serialized: str) -> Token:
    """
    Parse a ``cashuA`` (JSON) or ``cashuB`` (CBOR) token.

    Padding is optional and standard base64 characters are tolerated.

    Raises:
        VerificationFailure: On an unknown prefix or a malformed payload.
    """
    serialized = serialized.strip()
    prefix = serialized[:len(TOKEN_PREFIX_V3)]
    if prefix not in (TOKEN_PREFIX_V3, TOKEN_PREFIX_V4):
        logger.error(f"Invalid token prefix: {serialized[:10]}")
        raise VerificationFailure(f"Unsupported token prefix: {serialized[:6]!r}")

    try:
        raw = _b64url_decode(serialized[len(prefix):])
        if prefix == TOKEN_PREFIX_V3:
            token = Token.model_validate_json(raw)
        else:
            token = _from_v4(cbor2.loads(raw))
    except (ValueError, ValidationError, KeyError, TypeError, AttributeError) as e:
        raise VerificationFailure(f"Malformed token: {e}") from e

    if not token.token or not token.proofs:
        raise VerificationFailure("Token contains no proofs")
    return token
