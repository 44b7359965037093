"""
CashuWallet: deposit, withdraw, swap and recover against one mint.

Every operation that creates blinded outputs goes through the same path:
derive outputs, save a ledger record, send, unblind, mark COMPLETED. The
resulting proofs are handed back to the caller, who stores them and then
calls ``acknowledge(operation_id)`` to retire the record.
"""

from __future__ import annotations

import asyncio
import logging
import math
import weakref
from dataclasses import dataclass, field

from cashu_escrow.core.config import WalletConfig
from cashu_escrow.core.mint import MintClient, QuoteFound, QuoteNotFound
from cashu_escrow.core.models import (
    BlindedMessage,
    MeltQuote,
    MeltQuoteState,
    MintCapabilities,
    MintQuote,
    MintQuoteState,
    OperationStatus,
    OperationType,
    PendingBlindedOperation,
    PreMintSecret,
    Proof,
    ProofState,
)
from cashu_escrow.core.premint import SecretGenerator
from cashu_escrow.core.quotes import QuoteWaiter
from cashu_escrow.core.websocket import MintWebSocket
from cashu_escrow.crypto.blind import hash_to_curve
from cashu_escrow.crypto.derivation import split_amount
from cashu_escrow.errors import CashuError, HttpError, VerificationFailure
from cashu_escrow.ledger.pending import PendingOperationLedger
from cashu_escrow.ledger.storage import WalletStorage

logger = logging.getLogger("cashu_escrow.wallet")

# Mint error codes meaning "this payment is still in flight"
PENDING_ERROR_CODES = frozenset({20005, 11002, 11000})

# States a PENDING payment can settle into; UNPAID means the payment was abandoned
MELT_SETTLED_STATES = (MeltQuoteState.PAID, MeltQuoteState.FAILED, MeltQuoteState.UNPAID)

_MINT_LOCKS: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[str, asyncio.Lock]] = (
    weakref.WeakKeyDictionary()
)


def mint_lock(mint_url: str) -> asyncio.Lock:
    """Single-flight lock shared by every spend against ``mint_url`` on this event loop."""
    locks = _MINT_LOCKS.setdefault(asyncio.get_running_loop(), {})
    key = mint_url.rstrip("/")
    if key not in locks:
        locks[key] = asyncio.Lock()
    return locks[key]


def is_pending_error(error: HttpError) -> bool:
    if error.code in PENDING_ERROR_CODES:
        return True
    return "pending" in (error.detail or error.body or "").lower()


def is_definitive_rejection(error: HttpError) -> bool:
    """4xx answers mean the mint refused the request and spent nothing."""
    return 400 <= error.status_code < 500 and not is_pending_error(error)


def blank_output_count(fee_reserve: int) -> int:
    """NUT-08: enough blank outputs to return any change up to ``fee_reserve``."""
    if fee_reserve <= 0:
        return 0
    return max(math.ceil(math.log2(fee_reserve)), 1)


# ==============================================================================
# Results
# ==============================================================================


@dataclass
class MintResult:
    proofs: list[Proof]
    operation_id: str

    @property
    def amount(self) -> int:
        return sum(p.amount for p in self.proofs)


@dataclass
class MeltResult:
    state: MeltQuoteState
    operation_id: str
    payment_preimage: str | None = None
    change: list[Proof] = field(default_factory=list)

    @property
    def paid(self) -> bool:
        return self.state is MeltQuoteState.PAID

    @property
    def pending(self) -> bool:
        return self.state is MeltQuoteState.PENDING


@dataclass
class SwapToExactResult:
    exact: list[Proof]
    remaining: list[Proof]
    operation_id: str | None = None


@dataclass
class RecoveryReport:
    completed: list[PendingBlindedOperation] = field(default_factory=list)
    failed: list[PendingBlindedOperation] = field(default_factory=list)
    unresolved: list[PendingBlindedOperation] = field(default_factory=list)

    @property
    def recovered_proofs(self) -> list[Proof]:
        return [p for op in self.completed for p in op.proofs]


class CashuWallet:
    """
    Usage:
        storage = JsonFileStorage("wallet.json")
        wallet = CashuWallet.create("https://mint.example.com", storage, seed=seed)
        quote = await wallet.request_deposit(100)
        ...
        result = await wallet.mint_tokens(quote.quote, 100)
        proof_store.add(result.proofs)
        wallet.acknowledge(result.operation_id)
    """

    def __init__(
        self,
        client: MintClient,
        ledger: PendingOperationLedger,
        generator: SecretGenerator,
        websocket: MintWebSocket | None = None,
        config: WalletConfig | None = None,
    ) -> None:
        self.client = client
        self.ledger = ledger
        self.generator = generator
        self.websocket = websocket
        self.config = config or client.config
        self.quotes = QuoteWaiter(client, websocket, self.config)

    @classmethod
    def create(
        cls,
        mint_url: str,
        storage: WalletStorage,
        seed: bytes | None = None,
        config: WalletConfig | None = None,
    ) -> CashuWallet:
        config = config or WalletConfig()
        return cls(
            MintClient(mint_url, config),
            PendingOperationLedger(storage, config),
            SecretGenerator(storage, seed),
            config=config,
        )

    @property
    def mint_url(self) -> str:
        return self.client.mint_url

    async def connect(self, require_escrow: bool = True) -> MintCapabilities:
        """
        Check the mint's capabilities and open the push channel if offered.

        Raises:
            VerificationFailure: If escrow is required but unsupported.
        """
        caps = await self.client.get_capabilities(refresh=True)
        if require_escrow and not caps.supports_escrow:
            raise VerificationFailure(
                f"Mint {self.mint_url} lacks: {', '.join(caps.missing_capabilities())}"
            )
        if caps.supports_websocket:
            if self.websocket is None:
                self.websocket = MintWebSocket(self.mint_url, self.config)
                self.quotes.websocket = self.websocket
            await self.websocket.connect()
        logger.info(f"Connected to mint {self.mint_url} (ws={caps.supports_websocket})")
        return caps

    async def close(self) -> None:
        if self.websocket is not None:
            await self.websocket.disconnect()
        await self.client.aclose()

    def acknowledge(self, operation_id: str) -> None:
        """Retire a ledger record once its proofs are stored by the caller."""
        self.ledger.acknowledge(operation_id)

    # ------------------------------------------------------------------
    # The universal primitive: ledgered swap
    # ------------------------------------------------------------------

    async def execute_swap(
        self,
        operation_type: OperationType,
        inputs: list[Proof],
        premints: list[PreMintSecret],
        keyset_id: str,
        outputs: list[BlindedMessage] | None = None,
    ) -> tuple[str, list[Proof]]:
        """
        Swap ``inputs`` for signatures on ``premints`` with crash recovery.

        The ledger record is saved before the request. A 4xx rejection marks
        it FAILED; transport errors and 5xx answers leave it STARTED since
        the mint may have processed the swap.

        Returns:
            (operation id, new proofs in output order)
        """
        outputs = outputs or [p.to_blinded_message(keyset_id) for p in premints]
        amount = sum(p.amount for p in inputs)
        async with mint_lock(self.mint_url):
            op = self.ledger.begin(operation_type, self.mint_url, amount, premints, inputs, keyset_id)
            try:
                sigs = await self.client.swap(inputs, outputs)
            except HttpError as e:
                if is_pending_error(e):
                    self.ledger.mark_pending(op.id)
                elif is_definitive_rejection(e):
                    self.ledger.fail(op.id, str(e))
                raise
            proofs = await self.client.unblind_signatures(sigs, premints)
            self.ledger.complete(op.id, proofs)
        logger.info(f"{operation_type.value} swap {op.id[:8]}: {len(inputs)} in -> {len(proofs)} out")
        return op.id, proofs

    # ------------------------------------------------------------------
    # Deposits (NUT-04)
    # ------------------------------------------------------------------

    async def request_deposit(self, amount: int) -> MintQuote:
        if amount <= 0:
            raise VerificationFailure(f"Deposit amount must be positive, got {amount}")
        return await self.client.create_mint_quote(amount)

    async def wait_for_deposit(self, quote_id: str, timeout: float | None = None) -> MintQuote | None:
        return await self.quotes.wait_for_mint_quote(quote_id, timeout)

    async def mint_tokens(self, quote_id: str, amount: int) -> MintResult:
        """Issue proofs for a paid mint quote."""
        keyset = await self.client.get_active_keyset()
        premints = self.generator.create(split_amount(amount), keyset.id)
        outputs = [p.to_blinded_message(keyset.id) for p in premints]

        async with mint_lock(self.mint_url):
            op = self.ledger.begin(
                OperationType.MINT, self.mint_url, amount, premints,
                keyset_id=keyset.id, quote_id=quote_id,
            )
            try:
                sigs = await self.client.mint(quote_id, outputs)
            except HttpError as e:
                if is_definitive_rejection(e):
                    self.ledger.fail(op.id, str(e))
                raise
            proofs = await self.client.unblind_signatures(sigs, premints)
            self.ledger.complete(op.id, proofs)

        logger.info(f"Minted {sum(p.amount for p in proofs)} sats from quote {quote_id}")
        return MintResult(proofs, op.id)

    async def recover_deposit(self, quote_id: str, amount: int) -> MintResult:
        """
        Mint a quote that was paid but never claimed (e.g. after a crash).

        Raises:
            VerificationFailure: If the quote is unknown or not PAID.
        """
        result = await self.client.check_mint_quote(quote_id)
        if isinstance(result, QuoteNotFound):
            raise VerificationFailure(f"Mint quote {quote_id} not found")
        if not isinstance(result, QuoteFound):
            raise result.error
        if result.quote.state is not MintQuoteState.PAID:
            raise VerificationFailure(f"Mint quote {quote_id} is {result.quote.state.value}, not PAID")
        return await self.mint_tokens(quote_id, amount)

    # ------------------------------------------------------------------
    # Withdrawals (NUT-05 / NUT-08)
    # ------------------------------------------------------------------

    async def melt(self, quote: MeltQuote | str, proofs: list[Proof]) -> MeltResult:
        """
        Pay a melt quote with ``proofs``; fee-reserve overpayment comes back
        as change through blank outputs.

        A mint that reports the payment as in flight leaves the record
        PENDING and the quote is awaited; if it is still unresolved at the
        timeout the result is ``pending`` and recovery picks it up later.
        """
        if isinstance(quote, str):
            quote = await self.client.get_melt_quote(quote)
        needed = quote.amount + quote.fee_reserve
        total = sum(p.amount for p in proofs)
        if total < needed:
            raise VerificationFailure(f"Insufficient proofs for melt: {total} < {needed}")

        keyset = await self.client.get_active_keyset()
        blanks = self.generator.create([1] * blank_output_count(quote.fee_reserve), keyset.id)
        outputs = [p.to_blinded_message(keyset.id) for p in blanks]

        async with mint_lock(self.mint_url):
            op = self.ledger.begin(
                OperationType.MELT, self.mint_url, total, blanks, proofs,
                keyset_id=keyset.id, quote_id=quote.quote,
            )
            try:
                response = await self.client.melt(quote.quote, proofs, outputs)
            except HttpError as e:
                if not is_pending_error(e):
                    if is_definitive_rejection(e):
                        self.ledger.fail(op.id, str(e))
                    raise
                logger.warning(f"Melt {quote.quote} reported pending: {e}")
                response = quote.model_copy(update={"state": MeltQuoteState.PENDING})

            if response.state is MeltQuoteState.PENDING:
                self.ledger.mark_pending(op.id)
                waited = await self.quotes.wait_for_melt_quote(
                    quote.quote, targets=MELT_SETTLED_STATES
                )
                if waited is not None:
                    response = waited

            return await self._settle_melt(op.id, response, blanks)

    async def _settle_melt(
        self, op_id: str, response: MeltQuote, blanks: list[PreMintSecret]
    ) -> MeltResult:
        if response.state is MeltQuoteState.PAID:
            change = await self.client.unblind_signatures(response.change or [], blanks)
            self.ledger.complete(op_id, change)
            logger.info(f"Melt {response.quote} paid; {sum(p.amount for p in change)} sats change")
            return MeltResult(response.state, op_id, response.payment_preimage, change)
        if response.state is MeltQuoteState.PENDING:
            logger.warning(f"Melt {response.quote} still pending; kept for recovery")
            return MeltResult(response.state, op_id)
        self.ledger.fail(op_id, f"melt quote {response.state.value}")
        return MeltResult(response.state, op_id)

    # ------------------------------------------------------------------
    # Swaps
    # ------------------------------------------------------------------

    async def swap_to_exact(self, proofs: list[Proof], amount: int) -> SwapToExactResult:
        """
        Split ``proofs`` into a set worth exactly ``amount`` plus the rest.

        Raises:
            VerificationFailure: If the proofs are worth less than ``amount``.
        """
        total = sum(p.amount for p in proofs)
        if total < amount:
            raise VerificationFailure(f"Insufficient funds ({total} < {amount})")
        if total == amount:
            return SwapToExactResult(exact=list(proofs), remaining=[])

        keyset = await self.client.get_active_keyset()
        exact_amounts = split_amount(amount)
        premints = self.generator.create(exact_amounts + split_amount(total - amount), keyset.id)
        op_id, new_proofs = await self.execute_swap(OperationType.SWAP, proofs, premints, keyset.id)
        n = len(exact_amounts)
        return SwapToExactResult(exact=new_proofs[:n], remaining=new_proofs[n:], operation_id=op_id)

    # ------------------------------------------------------------------
    # Proof state (NUT-07)
    # ------------------------------------------------------------------

    async def check_proof_states(self, proofs: list[Proof]) -> dict[str, ProofState]:
        """Map each proof's secret to its state; proofs the mint omitted are absent."""
        by_y = {p.Y: p.secret for p in proofs}
        states = await self.client.check_state(list(by_y))
        return {by_y[y]: check.state for y, check in states.items() if y in by_y}

    async def filter_unspent(self, proofs: list[Proof]) -> list[Proof]:
        if not proofs:
            return []
        states = await self.check_proof_states(proofs)
        return [p for p in proofs if states.get(p.secret) is ProofState.UNSPENT]

    # ------------------------------------------------------------------
    # Seed restore (NUT-09)
    # ------------------------------------------------------------------

    async def restore_from_seed(self, keyset_ids: list[str] | None = None) -> list[Proof]:
        """
        Recover unspent proofs from the wallet seed alone.

        Scans counters in batches per keyset until
        ``config.restore_empty_batches`` consecutive batches come back empty,
        then moves each keyset counter past the last recovered output.
        """
        keyset_ids = keyset_ids or await self.client.get_active_keyset_ids()
        batch = self.config.restore_batch_size
        recovered: list[Proof] = []

        for keyset_id in keyset_ids:
            counter, empty, last_used = 0, 0, -1
            while empty < self.config.restore_empty_batches:
                premints = self.generator.derive_range(keyset_id, counter, batch)
                found = await self._restore_outputs(keyset_id, premints)
                if found:
                    empty = 0
                    last_used = counter + max(i for i, _ in found)
                    recovered.extend(p for _, p in found)
                else:
                    empty += 1
                counter += batch
            if last_used >= 0 and self.generator.storage.get_counter(keyset_id) <= last_used:
                self.generator.storage.set_counter(keyset_id, last_used + 1)
            logger.info(f"Restore scanned keyset {keyset_id} up to counter {counter}")

        unspent = await self.filter_unspent(recovered)
        logger.info(f"Restored {len(recovered)} proofs, {len(unspent)} unspent")
        return unspent

    async def _restore_outputs(
        self, keyset_id: str, premints: list[PreMintSecret]
    ) -> list[tuple[int, Proof]]:
        """Ask the mint to re-sign known outputs; match results by B_."""
        outputs = [p.to_blinded_message(keyset_id) for p in premints]
        returned, sigs = await self.client.restore(outputs)
        index = {p.B_.lower(): (i, p) for i, p in enumerate(premints)}
        found: list[tuple[int, Proof]] = []
        for out, sig in zip(returned, sigs):
            match = index.get(out.B_.lower())
            if match is None:
                continue
            i, pms = match
            proof = (await self.client.unblind_signatures([sig], [pms]))[0]
            found.append((i, proof))
        return found

    # ------------------------------------------------------------------
    # Crash recovery
    # ------------------------------------------------------------------

    async def recover_pending(self) -> RecoveryReport:
        """
        Resolve every STARTED/PENDING ledger record for this mint.

        Records are completed when the mint shows the request was processed
        (outputs are recovered through restore), failed when it clearly was
        not, and left untouched while anything is still ambiguous.
        """
        report = RecoveryReport()
        for op in self.ledger.unresolved():
            if op.mint_url != self.mint_url:
                continue
            try:
                resolved = await self._recover_operation(op)
            except CashuError as e:
                logger.warning(f"Recovery of {op.id[:8]} deferred: {e}")
                resolved = op
            if resolved.status is OperationStatus.COMPLETED:
                report.completed.append(resolved)
            elif resolved.status is OperationStatus.FAILED:
                report.failed.append(resolved)
            else:
                report.unresolved.append(resolved)
        return report

    async def _recover_operation(self, op: PendingBlindedOperation) -> PendingBlindedOperation:
        if op.operation_type is OperationType.MINT:
            return await self._recover_mint(op)
        if op.operation_type is OperationType.MELT and op.quote_id:
            quote = await self.client.get_melt_quote(op.quote_id)
            if quote.state is MeltQuoteState.PENDING:
                return self.ledger.mark_pending(op.id)
            if quote.state is MeltQuoteState.PAID:
                return self.ledger.complete(op.id, await self._recover_outputs(op))

        states = await self.client.check_state([hash_to_curve(s) for s in op.input_secrets])
        if any(s.state is ProofState.PENDING for s in states.values()):
            return self.ledger.mark_pending(op.id)
        if states and all(s.state is ProofState.UNSPENT for s in states.values()):
            return self.ledger.fail(op.id, "inputs unspent; request was not processed")
        if any(s.state is ProofState.SPENT for s in states.values()):
            proofs = await self._recover_outputs(op)
            if proofs or not op.output_premints:
                return self.ledger.complete(op.id, proofs)
        logger.warning(f"Operation {op.id[:8]} could not be resolved yet")
        return op

    async def _recover_mint(self, op: PendingBlindedOperation) -> PendingBlindedOperation:
        result = await self.client.check_mint_quote(op.quote_id or "")
        if isinstance(result, QuoteNotFound):
            return self.ledger.fail(op.id, "mint quote not found")
        if not isinstance(result, QuoteFound):
            raise result.error
        state = result.quote.state
        if state is MintQuoteState.ISSUED:
            return self.ledger.complete(op.id, await self._recover_outputs(op))
        if state is MintQuoteState.PAID:
            outputs = [p.to_blinded_message(op.keyset_id or "") for p in op.output_premints]
            sigs = await self.client.mint(op.quote_id or "", outputs)
            return self.ledger.complete(op.id, await self.client.unblind_signatures(sigs, op.output_premints))
        return self.ledger.fail(op.id, f"mint quote {state.value}")

    async def _recover_outputs(self, op: PendingBlindedOperation) -> list[Proof]:
        if not op.output_premints or not op.keyset_id:
            return []
        found = await self._restore_outputs(op.keyset_id, op.output_premints)
        return [p for _, p in sorted(found, key=lambda item: item[0])]
