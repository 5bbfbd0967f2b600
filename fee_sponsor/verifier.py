"""
Commitment verifier: the only defense against a sponsor rewriting the
customer's commitments.

Two checks, both run after every sponsor response and before any
further signing:

    1. ``verify_unchanged``: whole-record equality between what the
       sponsor returned from a mutation and what it reports on re-read
       (asset, id, state, blob, txid).
    2. ``verify_customer_commitments``: every input (prevout + sequence)
       and output (value + script) of the customer's candidate is
       present, unchanged, in the sponsor's transaction. Extra sponsor
       inputs/outputs are allowed; ordering is ignored.

A successful ``verify`` returns a ``VerifiedRecord``. The signing
orchestrator only applies a full commitment to a VerifiedRecord.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field

from fee_sponsor.errors import TamperDetected
from fee_sponsor.models import CandidateTransaction, ExchangeRecord
from fee_sponsor.psbt import Psbt, PsbtDecodeError, decode_psbt

logger = logging.getLogger(__name__)

_RECORD_FIELDS = ("asset", "id", "state", "blob", "txid")


_ISSUED = object()


@dataclass(frozen=True)
class VerifiedRecord:
    """A sponsor record that passed both checks for one protocol step.

    Only ``CommitmentVerifier.verify`` issues one. A hand-built instance
    reports ``issued`` as False and the signer refuses it.
    """

    record: ExchangeRecord
    candidate: CandidateTransaction
    step: str
    _issuer: object = field(default=None, repr=False, compare=False)

    @property
    def issued(self) -> bool:
        return self._issuer is _ISSUED


class CommitmentVerifier:
    """Stateless checker for sponsor responses."""

    def verify_unchanged(
        self,
        expected: ExchangeRecord,
        observed: ExchangeRecord,
        *,
        step: str,
    ) -> None:
        """Raise TamperDetected unless the two records are identical."""
        mismatched = [
            name
            for name in _RECORD_FIELDS
            if getattr(expected, name) != getattr(observed, name)
        ]
        if mismatched:
            raise TamperDetected(
                f"record changed between responses: {', '.join(mismatched)}",
                step=step,
                asset=expected.asset,
                exchange_id=expected.id,
                details={
                    "fields": mismatched,
                    "expected_digest": expected.digest(),
                    "observed_digest": observed.digest(),
                },
            )

    def verify_customer_commitments(
        self,
        candidate: CandidateTransaction,
        observed: ExchangeRecord,
        *,
        step: str,
    ) -> None:
        """Raise TamperDetected unless the candidate's inputs/outputs survive."""
        ours = _decode(candidate.blob, "candidate", step, observed)
        theirs = _decode(observed.blob, "sponsor", step, observed)

        problems: list[str] = []

        their_inputs = {i.outpoint: i for i in theirs.inputs}
        for tx_in in ours.inputs:
            match = their_inputs.get(tx_in.outpoint)
            if match is None:
                problems.append(f"input {tx_in.txid}:{tx_in.vout} missing")
            elif match.sequence != tx_in.sequence:
                problems.append(
                    f"input {tx_in.txid}:{tx_in.vout} sequence "
                    f"{tx_in.sequence:#x} -> {match.sequence:#x}"
                )

        # multiset: a duplicated customer output must appear as often
        remaining = Counter(theirs.outputs)
        for tx_out in ours.outputs:
            if remaining[tx_out] > 0:
                remaining[tx_out] -= 1
            else:
                problems.append(
                    f"output {tx_out.value} sat to script {tx_out.script_pubkey} missing"
                )

        if ours.tx.locktime != theirs.tx.locktime:
            problems.append(f"locktime {ours.tx.locktime} -> {theirs.tx.locktime}")

        if problems:
            raise TamperDetected(
                "customer commitments altered: " + "; ".join(problems),
                step=step,
                asset=observed.asset,
                exchange_id=observed.id,
                details={"problems": problems},
            )

    def verify(
        self,
        candidate: CandidateTransaction,
        expected: ExchangeRecord,
        observed: ExchangeRecord,
        *,
        step: str,
    ) -> VerifiedRecord:
        """Run both checks and return the verified record."""
        self.verify_unchanged(expected, observed, step=step)
        self.verify_customer_commitments(candidate, observed, step=step)
        logger.info("Verified %s:%s at %s", observed.asset, observed.id, step)
        logger.debug("record digest %s", observed.digest())
        return VerifiedRecord(
            record=observed, candidate=candidate, step=step, _issuer=_ISSUED
        )


def _decode(blob: str, owner: str, step: str, record: ExchangeRecord) -> Psbt:
    try:
        return decode_psbt(blob)
    except PsbtDecodeError as exc:
        raise TamperDetected(
            f"{owner} PSBT could not be decoded: {exc}",
            step=step,
            asset=record.asset,
            exchange_id=record.id,
        ) from exc
