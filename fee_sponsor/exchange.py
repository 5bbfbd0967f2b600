"""
Exchange client: one request/response per operation against the sponsor.

Interactive:
    submit(candidate) → record in FEE_ADDED
    fetch(asset, id) → record
    resubmit(asset, id, signed_blob) → record in BROADCAST

Non-interactive:
    submit_signed(candidate) → record in BROADCAST
    fetch_final(asset, id) → record

No local transaction state is kept: the sponsor is the source of truth
and is re-queried by id. A mutation response in the wrong state or for
the wrong asset raises ExchangeRejected. Re-reads are returned untouched
for the verifier to judge.
"""

from __future__ import annotations

import logging

from fee_sponsor.errors import ExchangeRejected, InvalidCandidate
from fee_sponsor.models import (
    CandidateTransaction,
    ExchangeRecord,
    ExchangeState,
    SighashPolicy,
)
from fee_sponsor.psbt import Psbt, PsbtDecodeError, decode_psbt
from fee_sponsor.sponsor import SponsorClient

logger = logging.getLogger(__name__)


class ExchangeClient:
    def __init__(self, sponsor: SponsorClient) -> None:
        self._sponsor = sponsor

    # -----------------------------------------------------------------
    # Interactive
    # -----------------------------------------------------------------

    async def submit(self, candidate: CandidateTransaction) -> ExchangeRecord:
        """Hand an unsigned zero-fee candidate to the sponsor for fees."""
        if candidate.signed:
            raise InvalidCandidate(
                "interactive candidate must be unsigned",
                step="submit",
                asset=candidate.asset,
            )
        psbt = _check_candidate(candidate, step="submit")
        if any(psbt.is_finalized(i) for i in range(len(psbt.inputs))):
            raise InvalidCandidate(
                "candidate inputs must not be finalized",
                step="submit",
                asset=candidate.asset,
            )
        logger.info("Submitting candidate TX (%s)", candidate.asset)
        record = await self._sponsor.create_exchange(candidate.asset, candidate.blob)
        return _expect(record, candidate.asset, ExchangeState.FEE_ADDED, step="submit")

    async def fetch(self, asset: str, exchange_id: str) -> ExchangeRecord:
        """Re-read a record. Drift is the verifier's call, not ours."""
        logger.info("Retrieving TX %s:%s", asset, exchange_id)
        return await self._sponsor.read_exchange(asset, exchange_id)

    async def resubmit(
        self, asset: str, exchange_id: str, signed_blob: str
    ) -> ExchangeRecord:
        """Return the customer-signed blob; the sponsor signs and broadcasts."""
        logger.info("Submitting customer-signed TX %s:%s", asset, exchange_id)
        record = await self._sponsor.update_exchange(asset, exchange_id, signed_blob)
        return _expect(
            record, asset, ExchangeState.BROADCAST, step="resubmit", exchange_id=exchange_id
        )

    async def list_exchanges(self) -> list[ExchangeRecord]:
        return await self._sponsor.list_exchanges()

    # -----------------------------------------------------------------
    # Non-interactive
    # -----------------------------------------------------------------

    async def submit_signed(self, candidate: CandidateTransaction) -> ExchangeRecord:
        """Hand an ALL|ANYONECANPAY pre-signed candidate to the sponsor."""
        if candidate.policy != SighashPolicy.ALL_ANYONECANPAY:
            raise InvalidCandidate(
                f"non-interactive candidate must be signed with "
                f"{SighashPolicy.ALL_ANYONECANPAY}, got {candidate.policy}",
                step="submit_signed",
                asset=candidate.asset,
            )
        # the wallet finalizes an input it can fully sign; both shapes count
        psbt = _check_candidate(candidate, step="submit_signed")
        if not psbt.has_signatures(0):
            raise InvalidCandidate(
                "pre-signed candidate carries no customer signature",
                step="submit_signed",
                asset=candidate.asset,
            )
        logger.info("Submitting pre-signed TX (%s)", candidate.policy)
        record = await self._sponsor.create_exchange_final(candidate.asset, candidate.blob)
        return _expect(
            record, candidate.asset, ExchangeState.BROADCAST, step="submit_signed"
        )

    async def fetch_final(self, asset: str, exchange_id: str) -> ExchangeRecord:
        logger.info("Retrieving TX %s:%s", asset, exchange_id)
        return await self._sponsor.read_exchange_final(asset, exchange_id)

    async def list_exchanges_final(self) -> list[ExchangeRecord]:
        return await self._sponsor.list_exchanges_final()


# =====================================================================
# Guards
# =====================================================================


def _check_candidate(candidate: CandidateTransaction, *, step: str) -> Psbt:
    """Zero fee, customer coin only. Returns the decoded PSBT."""
    try:
        psbt = decode_psbt(candidate.blob)
    except PsbtDecodeError as exc:
        raise InvalidCandidate(
            f"candidate PSBT is malformed: {exc}", step=step, asset=candidate.asset
        ) from exc

    outpoints = [i.outpoint for i in psbt.inputs]
    if outpoints != [(candidate.coin.txid, candidate.coin.vout)]:
        raise InvalidCandidate(
            "candidate must spend exactly the customer's coin",
            step=step,
            asset=candidate.asset,
            details={"inputs": [f"{t}:{v}" for t, v in outpoints]},
        )

    fee = psbt.fee()
    if fee is not None and fee != 0:
        raise InvalidCandidate(
            f"candidate must carry zero fee, found {fee} sat",
            step=step,
            asset=candidate.asset,
        )
    return psbt


def _expect(
    record: ExchangeRecord,
    asset: str,
    state: ExchangeState,
    *,
    step: str,
    exchange_id: str | None = None,
) -> ExchangeRecord:
    if record.asset != asset:
        raise ExchangeRejected(
            f"sponsor answered for asset {record.asset}, expected {asset}",
            step=step,
            asset=asset,
            exchange_id=record.id,
        )
    if exchange_id is not None and record.id != exchange_id:
        raise ExchangeRejected(
            f"sponsor answered for id {record.id}, expected {exchange_id}",
            step=step,
            asset=asset,
            exchange_id=exchange_id,
        )
    if record.state != state:
        raise ExchangeRejected(
            f"sponsor returned state {record.state}, expected {state}",
            step=step,
            asset=asset,
            exchange_id=record.id,
        )
    logger.debug("%s -> %s:%s %s", step, record.asset, record.id, record.state)
    return record
