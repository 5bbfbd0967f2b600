"""
Fee-sponsored transaction exchange.

A customer with coins but no fee budget hands a zero-fee PSBT to a
sponsor, which adds fee inputs and broadcasts, without either side able
to alter the other's commitments.

Public API:

    Pure layer (no I/O):
        - ``decode_psbt()``: minimal BIP-174 decoder.
        - ``CommitmentVerifier``: record equality + customer-subset diff.
        - ``ExchangeRun``: local state machine for one exchange.
        - ``parse_mode()``: closed mode selector.

    Impure layer (network I/O):
        - ``TransactionBuilder``: candidate PSBTs via the wallet.
        - ``SigningOrchestrator``: ALL / ALL|ANYONECANPAY per step.
        - ``ExchangeClient``: submit / fetch / resubmit against the sponsor.
        - ``ProtocolRunner``: sequences a full run.

    Protocols (for dependency injection):
        - ``WalletClient``, ``SponsorClient``, ``JsonTransport``.

    Concrete clients:
        - ``BitcoinCoreWallet`` (JSON-RPC), ``GraphQLSponsorClient``,
          ``HttpxTransport``.
"""

from fee_sponsor.builder import TransactionBuilder
from fee_sponsor.config import ConfigError, ExchangeConfig, NodeConfig, SponsorConfig
from fee_sponsor.errors import (
    ExchangeError,
    ExchangeRejected,
    InvalidCandidate,
    InvalidMode,
    InvalidTransition,
    NetworkFailure,
    NoFundsAvailable,
    SigningFailed,
    TamperDetected,
    WalletError,
)
from fee_sponsor.exchange import ExchangeClient
from fee_sponsor.models import (
    ASSET_BTC,
    PAIR_BTC_USD,
    CandidateTransaction,
    Coin,
    ExchangeRecord,
    ExchangeState,
    Mode,
    SighashPolicy,
)
from fee_sponsor.psbt import Psbt, PsbtDecodeError, decode_psbt
from fee_sponsor.runner import (
    AccountSummary,
    ExchangeRun,
    FlowResult,
    ProtocolRunner,
    RunReport,
    parse_mode,
)
from fee_sponsor.signing import SigningOrchestrator
from fee_sponsor.sponsor import GraphQLSponsorClient, SponsorClient
from fee_sponsor.transport import HttpxTransport, JsonTransport
from fee_sponsor.verifier import CommitmentVerifier
from fee_sponsor.wallet import BitcoinCoreWallet, ProcessedPsbt, WalletClient

__version__ = "0.1.0"

__all__ = [
    "ASSET_BTC",
    "PAIR_BTC_USD",
    "AccountSummary",
    "BitcoinCoreWallet",
    "CandidateTransaction",
    "Coin",
    "CommitmentVerifier",
    "ConfigError",
    "ExchangeClient",
    "ExchangeConfig",
    "ExchangeError",
    "ExchangeRecord",
    "ExchangeRejected",
    "ExchangeRun",
    "ExchangeState",
    "FlowResult",
    "GraphQLSponsorClient",
    "HttpxTransport",
    "InvalidCandidate",
    "InvalidMode",
    "InvalidTransition",
    "JsonTransport",
    "Mode",
    "NetworkFailure",
    "NoFundsAvailable",
    "NodeConfig",
    "ProcessedPsbt",
    "ProtocolRunner",
    "Psbt",
    "PsbtDecodeError",
    "RunReport",
    "SighashPolicy",
    "SigningFailed",
    "SigningOrchestrator",
    "SponsorClient",
    "SponsorConfig",
    "TamperDetected",
    "TransactionBuilder",
    "WalletClient",
    "WalletError",
    "decode_psbt",
    "parse_mode",
]
