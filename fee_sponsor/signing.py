"""
Signing orchestrator: picks the signature commitment for each step.

    - Non-interactive, round 1 (``presign``): ALL|ANYONECANPAY. Signs the
      customer's input before the sponsor adds anything; the signature
      stays valid when sponsor inputs are appended and still pins every
      output present at signing time.
    - Interactive, round 2 (``sign_full``): ALL. Signs everything the
      customer can see, sponsor additions included. Only accepted for a
      VerifiedRecord in FEE_ADDED state.

Any failure is fatal to the run and surfaces as SigningFailed.
"""

from __future__ import annotations

import dataclasses
import logging

from fee_sponsor.builder import TransactionBuilder
from fee_sponsor.errors import ExchangeError, SigningFailed
from fee_sponsor.models import CandidateTransaction, ExchangeState, SighashPolicy
from fee_sponsor.verifier import VerifiedRecord

logger = logging.getLogger(__name__)


class SigningOrchestrator:
    def __init__(self, builder: TransactionBuilder) -> None:
        self._builder = builder

    async def presign(self) -> CandidateTransaction:
        """Build the candidate and sign it with ALL|ANYONECANPAY."""
        candidate = await self._builder.build_candidate(sign=False)
        policy = SighashPolicy.ALL_ANYONECANPAY
        blob = await self._sign(
            candidate.blob, policy, step="presign", asset=candidate.asset
        )
        logger.info("Pre-signed candidate with %s", policy)
        return dataclasses.replace(candidate, blob=blob, policy=policy)

    async def sign_full(self, verified: VerifiedRecord) -> str:
        """Sign a verified, fee-augmented record with ALL."""
        if not isinstance(verified, VerifiedRecord) or not verified.issued:
            raise SigningFailed(
                "full commitment requires a verified record",
                step="sign_full",
            )
        record = verified.record
        if record.state != ExchangeState.FEE_ADDED:
            raise SigningFailed(
                f"cannot sign record in state {record.state}",
                step="sign_full",
                asset=record.asset,
                exchange_id=record.id,
            )
        blob = await self._sign(
            record.blob,
            SighashPolicy.ALL,
            step="sign_full",
            asset=record.asset,
            exchange_id=record.id,
        )
        logger.info("Signed %s:%s with %s", record.asset, record.id, SighashPolicy.ALL)
        return blob

    async def _sign(
        self,
        blob: str,
        policy: SighashPolicy,
        *,
        step: str,
        asset: str | None = None,
        exchange_id: str | None = None,
    ) -> str:
        try:
            signed = await self._builder.process(blob, sign=True, policy=policy)
        except ExchangeError as exc:
            raise SigningFailed(
                f"wallet could not sign with {policy}: {exc.message}",
                step=step,
                asset=asset,
                exchange_id=exchange_id,
                details={"cause": exc.error_code},
            ) from exc
        if signed == blob:
            raise SigningFailed(
                f"wallet added no signature with {policy}",
                step=step,
                asset=asset,
                exchange_id=exchange_id,
            )
        return signed
