"""
Protocol runner: one sequential await chain per run.

    parse_mode() → read_account() → flow (psbt | psbtni | none) → listings

Flows raise on the first error; ``_run_flow`` is the single place that
turns an ExchangeError into a FAILED result. No retries, no rollback:
whatever the sponsor reports for a failed exchange stays as it is.

State machine (``ExchangeRun``):

    interactive:      CREATED → FEE_ADDED → CUSTOMER_SIGNED → BROADCAST
    non-interactive:  PRE_SIGNED → BROADCAST
    any non-terminal → FAILED

FEE_ADDED must be confirmed by the verifier before CUSTOMER_SIGNED.
BROADCAST counts as success only once the final re-read is confirmed.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal

from fee_sponsor.builder import TransactionBuilder
from fee_sponsor.config import ExchangeConfig
from fee_sponsor.errors import ExchangeError, ExchangeRejected, InvalidMode, InvalidTransition
from fee_sponsor.exchange import ExchangeClient
from fee_sponsor.models import ExchangeRecord, ExchangeState, Mode
from fee_sponsor.signing import SigningOrchestrator
from fee_sponsor.sponsor import GraphQLSponsorClient, SponsorClient
from fee_sponsor.verifier import CommitmentVerifier
from fee_sponsor.wallet import BitcoinCoreWallet, WalletClient

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[Mode, dict[ExchangeState | None, ExchangeState]] = {
    Mode.INTERACTIVE: {
        None: ExchangeState.CREATED,
        ExchangeState.CREATED: ExchangeState.FEE_ADDED,
        ExchangeState.FEE_ADDED: ExchangeState.CUSTOMER_SIGNED,
        ExchangeState.CUSTOMER_SIGNED: ExchangeState.BROADCAST,
    },
    Mode.NON_INTERACTIVE: {
        None: ExchangeState.PRE_SIGNED,
        ExchangeState.PRE_SIGNED: ExchangeState.BROADCAST,
    },
}

_TERMINAL = frozenset({ExchangeState.BROADCAST, ExchangeState.FAILED})
_CONFIRMABLE = frozenset({ExchangeState.FEE_ADDED, ExchangeState.BROADCAST})


def parse_mode(value: Mode | str) -> Mode:
    """Resolve the operator's mode string, before any side effect."""
    try:
        return Mode(value)
    except ValueError:
        choices = ", ".join(m.value for m in Mode)
        raise InvalidMode(
            f"invalid mode {value!r}, expected one of: {choices}",
            step="parse_mode",
        ) from None


# =========================================================================
# State machine
# =========================================================================


class ExchangeRun:
    """Local state of one exchange as the customer has seen it."""

    def __init__(self, mode: Mode) -> None:
        if mode not in _TRANSITIONS:
            raise InvalidMode(f"mode {mode} has no exchange flow", step="start")
        self.mode = mode
        self.state: ExchangeState | None = None
        self.confirmed = False
        self.history: list[ExchangeState] = []
        self.record: ExchangeRecord | None = None
        self.error: ExchangeError | None = None

    @property
    def done(self) -> bool:
        return self.state == ExchangeState.BROADCAST and self.confirmed

    def advance(self, to: ExchangeState) -> None:
        """Move to the next state in this mode's path."""
        expected = _TRANSITIONS[self.mode].get(self.state)
        if self.state in _TERMINAL or to != expected:
            raise InvalidTransition(
                f"{self.mode} run cannot go {self.state} -> {to}",
                step=str(to),
                **self._context(),
            )
        if to == ExchangeState.CUSTOMER_SIGNED and not self.confirmed:
            raise InvalidTransition(
                "cannot sign before the fee-added record is verified",
                step=str(to),
                **self._context(),
            )
        self.state = to
        self.confirmed = False
        self.history.append(to)

    def bind(self, record: ExchangeRecord) -> None:
        self.record = record

    def confirm(self) -> None:
        """Mark the current state as verified."""
        if self.state not in _CONFIRMABLE:
            raise InvalidTransition(
                f"nothing to confirm in state {self.state}",
                step="confirm",
                **self._context(),
            )
        self.confirmed = True

    def fail(self, error: ExchangeError) -> None:
        self.error = error
        self.state = ExchangeState.FAILED
        self.confirmed = False
        self.history.append(ExchangeState.FAILED)

    def result(self) -> FlowResult:
        return FlowResult(
            mode=self.mode,
            state=self.state,
            history=tuple(self.history),
            record=self.record,
            error=self.error,
            confirmed=self.confirmed,
        )

    def _context(self) -> dict[str, str | None]:
        if self.record is None:
            return {}
        return {"asset": self.record.asset, "exchange_id": self.record.id}


# =========================================================================
# Results
# =========================================================================


@dataclass(frozen=True)
class FlowResult:
    """Outcome of one exchange flow.

    Attributes:
        mode: Which flow ran.
        state: Final local state (BROADCAST or FAILED).
        history: Every state entered, in order.
        record: Last sponsor record seen, if any.
        error: The error that aborted the flow, if any.
        confirmed: Final re-read passed the verifier.
    """

    mode: Mode
    state: ExchangeState | None
    history: tuple[ExchangeState, ...] = ()
    record: ExchangeRecord | None = None
    error: ExchangeError | None = None
    confirmed: bool = False

    @property
    def ok(self) -> bool:
        return self.state == ExchangeState.BROADCAST and self.confirmed

    @property
    def failed_step(self) -> str | None:
        return self.error.step if self.error is not None else None


@dataclass(frozen=True)
class AccountSummary:
    credit: Decimal
    fee: Decimal
    rate: Decimal
    asset: str
    pair: str


@dataclass(frozen=True)
class RunReport:
    """Everything a run produced, for the operator."""

    mode: Mode
    account: AccountSummary
    flow: FlowResult | None = None
    exchanges: list[ExchangeRecord] = field(default_factory=list)
    final_exchanges: list[ExchangeRecord] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.flow is None or self.flow.ok


# =========================================================================
# Runner
# =========================================================================


class ProtocolRunner:
    """Wires the components together and sequences one run.

    Args:
        config: Run configuration (destination, asset, pair, API key).
        wallet: Wallet collaborator.
        sponsor: Sponsor collaborator.
    """

    def __init__(
        self,
        config: ExchangeConfig,
        wallet: WalletClient,
        sponsor: SponsorClient,
    ) -> None:
        self._config = config
        self._sponsor = sponsor
        self._builder = TransactionBuilder(
            wallet, destination=config.destination, asset=config.asset
        )
        self._exchange = ExchangeClient(sponsor)
        self._verifier = CommitmentVerifier()
        self._signer = SigningOrchestrator(self._builder)

    @classmethod
    def from_config(cls, config: ExchangeConfig) -> ProtocolRunner:
        """Runner talking to a real node and the real sponsor."""
        return cls(
            config,
            BitcoinCoreWallet(config.node),
            GraphQLSponsorClient(config.sponsor),
        )

    async def run(self, mode: Mode | str) -> RunReport:
        """Run the selected mode end to end.

        Raises:
            InvalidMode: Before any collaborator call.
            ExchangeError: If the account queries fail, or the listings
                fail after a successful flow. Flow failures are reported
                in ``RunReport.flow`` instead; listings are still read.
        """
        selected = parse_mode(mode)
        account = await self.read_account()

        flow: FlowResult | None = None
        if selected == Mode.INTERACTIVE:
            flow = await self._run_flow(Mode.INTERACTIVE, self._interactive)
        elif selected == Mode.NON_INTERACTIVE:
            flow = await self._run_flow(Mode.NON_INTERACTIVE, self._non_interactive)

        exchanges, final_exchanges = await self._read_listings(flow)
        return RunReport(
            mode=selected,
            account=account,
            flow=flow,
            exchanges=exchanges,
            final_exchanges=final_exchanges,
        )

    async def read_account(self) -> AccountSummary:
        """API-key echo check plus credit, fee and rate."""
        key = await self._sponsor.read_api_key()
        if key != self._config.sponsor.api_key:
            raise ExchangeRejected(
                "sponsor does not recognize the configured API key",
                step="read_api_key",
            )
        return AccountSummary(
            credit=await self._sponsor.read_credit(),
            fee=await self._sponsor.read_fee(self._config.asset),
            rate=await self._sponsor.read_rate(self._config.pair),
            asset=self._config.asset,
            pair=self._config.pair,
        )

    async def _read_listings(
        self, flow: FlowResult | None
    ) -> tuple[list[ExchangeRecord], list[ExchangeRecord]]:
        """Both listings, also after a failed flow.

        A listing error after a failed flow is logged, not raised, so
        the report still carries the flow's own error.
        """
        try:
            return (
                await self._exchange.list_exchanges(),
                await self._exchange.list_exchanges_final(),
            )
        except ExchangeError as exc:
            if flow is None or flow.ok:
                raise
            logger.warning("Could not list exchanges after failed flow: %s", exc)
            return [], []

    async def run_interactive(self) -> FlowResult:
        return await self._run_flow(Mode.INTERACTIVE, self._interactive)

    async def run_non_interactive(self) -> FlowResult:
        return await self._run_flow(Mode.NON_INTERACTIVE, self._non_interactive)

    # -----------------------------------------------------------------
    # Flows
    # -----------------------------------------------------------------

    async def _run_flow(
        self,
        mode: Mode,
        flow: Callable[[ExchangeRun], Awaitable[None]],
    ) -> FlowResult:
        run = ExchangeRun(mode)
        logger.info("Starting %s exchange", mode)
        try:
            await flow(run)
        except ExchangeError as exc:
            logger.warning("%s exchange failed: %s", mode, exc)
            run.fail(exc)
        else:
            logger.info("%s exchange broadcast", mode)
        return run.result()

    async def _interactive(self, run: ExchangeRun) -> None:
        candidate = await self._builder.build_candidate(sign=False)
        run.advance(ExchangeState.CREATED)

        fee_added = await self._exchange.submit(candidate)
        run.bind(fee_added)
        run.advance(ExchangeState.FEE_ADDED)

        read = await self._exchange.fetch(fee_added.asset, fee_added.id)
        verified = self._verifier.verify(candidate, fee_added, read, step="fee_added")
        run.confirm()

        signed = await self._signer.sign_full(verified)
        run.advance(ExchangeState.CUSTOMER_SIGNED)

        broadcast = await self._exchange.resubmit(fee_added.asset, fee_added.id, signed)
        run.bind(broadcast)
        run.advance(ExchangeState.BROADCAST)

        final = await self._exchange.fetch(broadcast.asset, broadcast.id)
        self._verifier.verify(candidate, broadcast, final, step="broadcast")
        run.bind(final)
        run.confirm()

    async def _non_interactive(self, run: ExchangeRun) -> None:
        candidate = await self._signer.presign()
        run.advance(ExchangeState.PRE_SIGNED)

        broadcast = await self._exchange.submit_signed(candidate)
        run.bind(broadcast)
        run.advance(ExchangeState.BROADCAST)

        final = await self._exchange.fetch_final(broadcast.asset, broadcast.id)
        self._verifier.verify(candidate, broadcast, final, step="broadcast")
        run.bind(final)
        run.confirm()
