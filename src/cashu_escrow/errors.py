"""
Error taxonomy for the ecash wallet engine.

Every failure raised by this package derives from ``CashuError``:

- TransportFailure:    network/IO problem, safe to retry
- HttpError:           the mint rejected the request (spent input, bad quote...)
- CryptoFailure:       invalid point, failed unblind, hash-to-curve exhaustion
- VerificationFailure: local precondition failed before any network call
- RecoveryRequired:    non-terminal ledger records found at startup

``Result`` lets callers branch on the cause without catching exceptions.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, TypeVar, Union

T = TypeVar("T")


class CashuError(Exception):
    """Base class for all wallet engine errors."""
    pass


class TransportFailure(CashuError):
    """Raised when the mint could not be reached or returned garbage."""
    pass


class HttpError(CashuError):
    """
    Raised when the mint answers with an error status.

    Args:
        status_code: HTTP status returned by the mint
        body:        raw response body
    """

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        self.code: int | None = None
        self.detail: str | None = None
        try:
            parsed = json.loads(body) if body else None
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            code = parsed.get("code")
            if isinstance(code, int) or (isinstance(code, str) and code.isdigit()):
                self.code = int(code)
            detail = parsed.get("detail") or parsed.get("error")
            self.detail = str(detail) if detail is not None else None
        super().__init__(f"Mint returned {status_code}: {self.detail or body}")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class CryptoFailure(CashuError):
    """Raised on invalid curve data; fatal for the current operation."""
    pass


class VerificationFailure(CashuError):
    """Raised when a local check (preimage, locktime, pubkey...) fails."""
    pass


class RecoveryRequired(CashuError):
    """Raised at startup when pending operations must be reconciled first."""

    def __init__(self, operations: list[Any]) -> None:
        self.operations = operations
        ids = ", ".join(op.id[:8] for op in operations)
        super().__init__(f"{len(operations)} pending operation(s) need recovery: {ids}")


# ==============================================================================
# Tagged result
# ==============================================================================


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: CashuError

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> str:
        """Name of the failure class, e.g. ``"HttpError"``."""
        return type(self.error).__name__


Result = Union[Ok[T], Err]


async def capture(awaitable: Awaitable[T]) -> Result[T]:
    """
    Await ``awaitable`` and wrap its outcome in a Result.

    Only ``CashuError`` is captured; anything else propagates.
    """
    try:
        return Ok(await awaitable)
    except CashuError as e:
        return Err(e)
