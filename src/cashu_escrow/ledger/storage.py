"""
Persistence collaborators for the pending-operation ledger.

The ledger only needs a small key-value surface: pending operation records
keyed by id, and one monotonically increasing derivation counter per keyset.
``JsonFileStorage`` writes atomically and fsyncs before returning, so a
record saved before a network call survives a crash during that call.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from cashu_escrow.core.models import PendingBlindedOperation

logger = logging.getLogger("cashu_escrow.storage")


@runtime_checkable
class WalletStorage(Protocol):
    def save_pending_operation(self, op: PendingBlindedOperation) -> None: ...

    def get_pending_operation(self, op_id: str) -> PendingBlindedOperation | None: ...

    def list_pending_operations(self) -> list[PendingBlindedOperation]: ...

    def remove_pending_operation(self, op_id: str) -> None: ...

    def get_counter(self, keyset_id: str) -> int: ...

    def set_counter(self, keyset_id: str, value: int) -> None: ...


def reserve_counters(storage: WalletStorage, keyset_id: str, count: int) -> int:
    """
    Claim ``count`` consecutive counters for a keyset and persist the new value.

    Returns:
        The first reserved counter.
    """
    start = storage.get_counter(keyset_id)
    storage.set_counter(keyset_id, start + count)
    return start


class InMemoryStorage:
    """Volatile storage for tests and short-lived tools."""

    def __init__(self) -> None:
        self._ops: dict[str, PendingBlindedOperation] = {}
        self._counters: dict[str, int] = {}

    def save_pending_operation(self, op: PendingBlindedOperation) -> None:
        self._ops[op.id] = op.model_copy(deep=True)

    def get_pending_operation(self, op_id: str) -> PendingBlindedOperation | None:
        op = self._ops.get(op_id)
        return op.model_copy(deep=True) if op is not None else None

    def list_pending_operations(self) -> list[PendingBlindedOperation]:
        return [op.model_copy(deep=True) for op in self._ops.values()]

    def remove_pending_operation(self, op_id: str) -> None:
        self._ops.pop(op_id, None)

    def get_counter(self, keyset_id: str) -> int:
        return self._counters.get(keyset_id, 0)

    def set_counter(self, keyset_id: str, value: int) -> None:
        self._counters[keyset_id] = value


class JsonFileStorage:
    """
    Single-file JSON storage.

    Layout:
        {"pending_operations": {"<id>": {...}}, "counters": {"<keyset id>": n}}
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, Any] = {"pending_operations": {}, "counters": {}}
        if self.path.exists():
            with self.path.open("r", encoding="utf-8") as fh:
                loaded = json.load(fh)
            self._data["pending_operations"] = dict(loaded.get("pending_operations", {}))
            self._data["counters"] = {k: int(v) for k, v in loaded.get("counters", {}).items()}
            logger.debug(
                f"Loaded {len(self._data['pending_operations'])} pending operation(s) from {self.path}"
            )

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2, sort_keys=True)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def save_pending_operation(self, op: PendingBlindedOperation) -> None:
        with self._lock:
            self._data["pending_operations"][op.id] = op.model_dump(mode="json")
            self._flush()

    def get_pending_operation(self, op_id: str) -> PendingBlindedOperation | None:
        raw = self._data["pending_operations"].get(op_id)
        return PendingBlindedOperation.model_validate(raw) if raw is not None else None

    def list_pending_operations(self) -> list[PendingBlindedOperation]:
        return [PendingBlindedOperation.model_validate(raw) for raw in self._data["pending_operations"].values()]

    def remove_pending_operation(self, op_id: str) -> None:
        with self._lock:
            if self._data["pending_operations"].pop(op_id, None) is not None:
                self._flush()

    def get_counter(self, keyset_id: str) -> int:
        return int(self._data["counters"].get(keyset_id, 0))

    def set_counter(self, keyset_id: str, value: int) -> None:
        with self._lock:
            self._data["counters"][keyset_id] = int(value)
            self._flush()
