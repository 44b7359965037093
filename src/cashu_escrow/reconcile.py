"""
Authoritative balance via NUT-07 state checks.

Local proof stores can drift from the mint (spent on another device, lost
publish, stale backup). ``reconcile_balance`` asks the mint about every
proof and only counts the ones it reports UNSPENT.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from cashu_escrow.core.mint import MintClient
from cashu_escrow.core.models import Proof, ProofState
from cashu_escrow.errors import VerificationFailure

logger = logging.getLogger("cashu_escrow.reconcile")


@runtime_checkable
class WalletAdapter(Protocol):
    """
    Narrow view of an external wallet SDK: implement once per SDK instead of
    probing its objects at call sites.
    """

    def balance(self) -> int: ...

    def list_tokens(self) -> list[Proof]: ...


@dataclass
class ReconciliationResult:
    """
    Args:
        balance:     sum of amounts the mint reports UNSPENT
        unspent:     proofs counted in ``balance``
        pending:     proofs the mint reports PENDING (in-flight, not counted)
        spent:       proofs the mint reports SPENT
        unverified:  proofs missing from the mint's answer (not counted)
    """
    balance: int = 0
    unspent: list[Proof] = field(default_factory=list)
    pending: list[Proof] = field(default_factory=list)
    spent: list[Proof] = field(default_factory=list)
    unverified: list[Proof] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.unverified)


async def reconcile_balance(
    client: MintClient,
    proofs: list[Proof],
    batch_size: int = 100,
) -> ReconciliationResult:
    """
    Classify ``proofs`` by mint state and sum the UNSPENT ones.

    Responses are matched by Y, not position. Proofs the mint does not
    mention are excluded from the balance and reported as ``unverified``.

    Raises:
        VerificationFailure: If proofs were given but none could be matched;
            that points at a wrong mint or hash function, not an empty wallet.
    """
    result = ReconciliationResult()
    if not proofs:
        return result

    ys = [p.Y for p in proofs]
    states = {}
    for i in range(0, len(ys), batch_size):
        states.update(await client.check_state(ys[i:i + batch_size]))

    for proof, y in zip(proofs, ys):
        check = states.get(y)
        if check is None:
            result.unverified.append(proof)
        elif check.state is ProofState.UNSPENT:
            result.unspent.append(proof)
        elif check.state is ProofState.PENDING:
            result.pending.append(proof)
        else:
            result.spent.append(proof)

    if len(result.unverified) == len(proofs):
        raise VerificationFailure(
            f"Mint matched none of {len(proofs)} proofs; wrong mint or incompatible hash_to_curve?"
        )
    if result.unverified:
        logger.warning(f"{len(result.unverified)} of {len(proofs)} proofs could not be verified")

    result.balance = sum(p.amount for p in result.unspent)
    logger.info(
        f"Verified balance {result.balance} sats "
        f"({len(result.unspent)} unspent, {len(result.spent)} spent, {len(result.pending)} pending)"
    )
    return result


async def reconcile_adapter(client: MintClient, wallet: WalletAdapter) -> ReconciliationResult:
    """Reconcile an external wallet's proofs and log drift from its own balance."""
    result = await reconcile_balance(client, wallet.list_tokens())
    reported = wallet.balance()
    if reported != result.balance:
        logger.warning(f"Wallet reports {reported} sats, mint verifies {result.balance}")
    return result
