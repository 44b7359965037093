"""core module init"""
from cashu_escrow.core.config import WalletConfig
from cashu_escrow.core.models import (
    BlindedMessage,
    BlindedSignature,
    HtlcSecret,
    HtlcWitness,
    MeltQuote,
    MeltQuoteState,
    MintCapabilities,
    MintKeyset,
    MintQuote,
    MintQuoteState,
    OperationStatus,
    OperationType,
    PendingBlindedOperation,
    PreMintSecret,
    Proof,
    ProofState,
    ProofStateCheck,
)
from cashu_escrow.core.token import Token, decode_token, encode_token, encode_token_v4
from cashu_escrow.core.mint import MintClient, MintQuoteResult, QuoteFound, QuoteLookupError, QuoteNotFound
from cashu_escrow.core.websocket import MintWebSocket, SubscriptionKind, WebSocketState
from cashu_escrow.core.quotes import QuoteWaiter
from cashu_escrow.core.premint import SecretGenerator
from cashu_escrow.core.wallet import CashuWallet, MeltResult, MintResult, RecoveryReport, SwapToExactResult

__all__ = [
    "BlindedMessage",
    "BlindedSignature",
    "CashuWallet",
    "HtlcSecret",
    "HtlcWitness",
    "MeltQuote",
    "MeltQuoteState",
    "MeltResult",
    "MintCapabilities",
    "MintClient",
    "MintKeyset",
    "MintQuote",
    "MintQuoteResult",
    "MintQuoteState",
    "MintResult",
    "MintWebSocket",
    "OperationStatus",
    "OperationType",
    "PendingBlindedOperation",
    "PreMintSecret",
    "Proof",
    "ProofState",
    "ProofStateCheck",
    "QuoteFound",
    "QuoteLookupError",
    "QuoteNotFound",
    "QuoteWaiter",
    "RecoveryReport",
    "SecretGenerator",
    "SubscriptionKind",
    "SwapToExactResult",
    "Token",
    "WalletConfig",
    "WebSocketState",
    "decode_token",
    "encode_token",
    "encode_token_v4",
]
