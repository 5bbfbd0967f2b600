"""
Transaction builder: turns the wallet's first spendable coin into a
zero-fee candidate PSBT.

The recipe is fixed:
    - exactly one input: the first coin ``listunspent`` reports;
    - exactly one output: the full coin amount back to the destination;
    - locktime 0, replaceable (sequence allows fee bumping).

No coin selection, no fee estimation. Holds no state beyond its
collaborators.
"""

from __future__ import annotations

import logging

from fee_sponsor.errors import NoFundsAvailable
from fee_sponsor.models import ASSET_BTC, CandidateTransaction, SighashPolicy
from fee_sponsor.wallet import WalletClient

logger = logging.getLogger(__name__)


class TransactionBuilder:
    """Builds and processes customer PSBTs through the wallet.

    Args:
        wallet: Wallet collaborator.
        destination: Address that receives the customer's funds.
        asset: Ledger asset identifier stamped on candidates.
    """

    def __init__(
        self,
        wallet: WalletClient,
        *,
        destination: str,
        asset: str = ASSET_BTC,
    ) -> None:
        if not destination:
            raise ValueError("destination must be non-empty")
        self._wallet = wallet
        self._destination = destination
        self._asset = asset

    @property
    def destination(self) -> str:
        return self._destination

    async def build_candidate(
        self,
        *,
        sign: bool = False,
        policy: SighashPolicy = SighashPolicy.ALL,
    ) -> CandidateTransaction:
        """Build the candidate, optionally signing it with ``policy``.

        Raises:
            NoFundsAvailable: The wallet reports no spendable coin for
                the destination.
        """
        coins = await self._wallet.list_unspent(minconf=0, addresses=[self._destination])
        if not coins:
            raise NoFundsAvailable(
                f"no spendable coin for {self._destination}",
                step="listunspent",
                asset=self._asset,
            )

        coin = coins[0]
        logger.info("Building candidate from %s:%d (%s)", coin.txid, coin.vout, coin.amount)

        unsigned = await self._wallet.create_psbt(
            [{"txid": coin.txid, "vout": coin.vout}],
            # amount as a string keeps Decimal precision on the wire
            [{self._destination: str(coin.amount)}],
            locktime=0,
            replaceable=True,
        )
        blob = await self.process(unsigned, sign=sign, policy=policy)

        return CandidateTransaction(
            asset=self._asset,
            blob=blob,
            coin=coin,
            destination=self._destination,
            amount=coin.amount,
            policy=policy if sign else None,
        )

    async def process(
        self,
        blob: str,
        *,
        sign: bool,
        policy: SighashPolicy = SighashPolicy.ALL,
    ) -> str:
        """Run the blob through the wallet without changing its structure."""
        processed = await self._wallet.process_psbt(
            blob,
            sign=sign,
            sighash_type=policy,
            bip32derivs=True,
        )
        return processed.psbt
