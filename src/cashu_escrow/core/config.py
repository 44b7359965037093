"""
Runtime configuration for the wallet engine.

Defaults match public Cashu mints; override per deployment or via
``CASHU_ESCROW_*`` environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_POLL_SCHEDULE: tuple[float, ...] = (0.5, 1.0, 2.0, 3.0, 4.0, 5.0)


@dataclass
class WalletConfig:
    """
    Configuration for mint access, quote waiting and recovery.

    Args:
        unit:                     currency unit requested from the mint
        request_timeout:          per-request HTTP timeout in seconds
        quote_timeout:            overall bound when waiting on a quote state
        poll_schedule:            polling delays; the last one repeats
        refund_clock_skew:        seconds added to an HTLC locktime before refunding
        pending_ttl:              seconds a pending operation record stays valid
        restore_batch_size:       counters scanned per restore request
        restore_empty_batches:    consecutive empty batches that end a restore
        websocket_request_timeout: seconds to wait for a JSON-RPC response
        websocket_max_reconnect_delay: cap on the linear reconnect backoff
    """
    unit: str = "sat"
    request_timeout: float = 30.0
    quote_timeout: float = 60.0
    poll_schedule: tuple[float, ...] = field(default_factory=lambda: DEFAULT_POLL_SCHEDULE)
    refund_clock_skew: int = 120
    pending_ttl: int = 24 * 60 * 60
    restore_batch_size: int = 25
    restore_empty_batches: int = 2
    websocket_request_timeout: float = 10.0
    websocket_max_reconnect_delay: float = 60.0

    def __post_init__(self) -> None:
        if not self.poll_schedule:
            raise ValueError("poll_schedule must contain at least one delay")
        if self.restore_batch_size < 1:
            raise ValueError("restore_batch_size must be positive")

    def poll_delay(self, attempt: int) -> float:
        """Delay before poll number ``attempt`` (0-based); the last delay repeats."""
        return self.poll_schedule[min(attempt, len(self.poll_schedule) - 1)]

    @classmethod
    def from_env(cls, prefix: str = "CASHU_ESCROW_") -> WalletConfig:
        """Build a config from environment variables, falling back to defaults."""
        cfg = cls()
        env = os.environ
        if f"{prefix}UNIT" in env:
            cfg.unit = env[f"{prefix}UNIT"]
        for name in ("request_timeout", "quote_timeout", "websocket_request_timeout",
                     "websocket_max_reconnect_delay"):
            key = f"{prefix}{name.upper()}"
            if key in env:
                setattr(cfg, name, float(env[key]))
        for name in ("refund_clock_skew", "pending_ttl", "restore_batch_size",
                     "restore_empty_batches"):
            key = f"{prefix}{name.upper()}"
            if key in env:
                setattr(cfg, name, int(env[key]))
        if f"{prefix}POLL_SCHEDULE" in env:
            cfg.poll_schedule = tuple(
                float(v) for v in env[f"{prefix}POLL_SCHEDULE"].split(",") if v.strip()
            )
        cfg.__post_init__()
        return cfg
