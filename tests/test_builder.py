"""
Tests for TransactionBuilder: fake wallet, no network.

Test plan:
- No coins → NoFundsAvailable, no PSBT created
- First coin only, full amount to destination, zero fee
- locktime 0, replaceable
- Unsigned by default; sign + policy passed through to the wallet
- process() leaves structure to the wallet, always bip32derivs
"""

from decimal import Decimal

import pytest

from conftest import CUSTOMER_TXID, DEST_ADDR, FakeWallet
from fee_sponsor.builder import TransactionBuilder
from fee_sponsor.errors import NoFundsAvailable
from fee_sponsor.models import ASSET_BTC, Coin, SighashPolicy


@pytest.fixture
def builder(wallet: FakeWallet) -> TransactionBuilder:
    return TransactionBuilder(wallet, destination=DEST_ADDR)


class TestBuildCandidate:
    @pytest.mark.asyncio
    async def test_no_funds(self, wallet: FakeWallet, builder: TransactionBuilder) -> None:
        wallet.coins = []
        with pytest.raises(NoFundsAvailable) as exc_info:
            await builder.build_candidate()
        assert exc_info.value.error_code == "NO_FUNDS"
        assert [name for name, _ in wallet.calls] == ["list_unspent"]

    @pytest.mark.asyncio
    async def test_queries_destination_with_zero_minconf(
        self, wallet: FakeWallet, builder: TransactionBuilder
    ) -> None:
        await builder.build_candidate()
        assert wallet.calls[0] == ("list_unspent", {"minconf": 0, "addresses": [DEST_ADDR]})

    @pytest.mark.asyncio
    async def test_spends_first_coin_in_full(
        self, wallet: FakeWallet, builder: TransactionBuilder
    ) -> None:
        wallet.coins.append(Coin(txid="cc" * 32, vout=4, amount=Decimal("9")))
        await builder.build_candidate()
        _, create = wallet.calls[1]
        assert create["inputs"] == [{"txid": CUSTOMER_TXID, "vout": 0}]
        assert create["outputs"] == [{DEST_ADDR: "0.5"}]

    @pytest.mark.asyncio
    async def test_replaceable_with_zero_locktime(
        self, wallet: FakeWallet, builder: TransactionBuilder
    ) -> None:
        await builder.build_candidate()
        _, create = wallet.calls[1]
        assert create["locktime"] == 0
        assert create["replaceable"] is True

    @pytest.mark.asyncio
    async def test_candidate_fields(
        self, wallet: FakeWallet, builder: TransactionBuilder
    ) -> None:
        candidate = await builder.build_candidate()
        assert candidate.asset == ASSET_BTC
        assert candidate.blob == wallet.unsigned
        assert candidate.coin == wallet.coins[0]
        assert candidate.amount == Decimal("0.5")
        assert candidate.destination == DEST_ADDR
        assert candidate.policy is None
        assert not candidate.signed

    @pytest.mark.asyncio
    async def test_unsigned_by_default(
        self, wallet: FakeWallet, builder: TransactionBuilder
    ) -> None:
        await builder.build_candidate()
        assert wallet.sign_calls == []

    @pytest.mark.asyncio
    async def test_signed_with_policy(
        self, wallet: FakeWallet, builder: TransactionBuilder
    ) -> None:
        candidate = await builder.build_candidate(
            sign=True, policy=SighashPolicy.ALL_ANYONECANPAY
        )
        assert wallet.sign_calls[0]["sighash_type"] == SighashPolicy.ALL_ANYONECANPAY
        assert candidate.policy == SighashPolicy.ALL_ANYONECANPAY
        assert candidate.blob != wallet.unsigned


class TestProcess:
    @pytest.mark.asyncio
    async def test_delegates_to_wallet(
        self, wallet: FakeWallet, builder: TransactionBuilder
    ) -> None:
        result = await builder.process("cHNidP8=", sign=False)
        assert result == "cHNidP8="
        name, kwargs = wallet.calls[-1]
        assert name == "process_psbt"
        assert kwargs["bip32derivs"] is True
        assert kwargs["sign"] is False


class TestConstruction:
    def test_empty_destination_rejected(self, wallet: FakeWallet) -> None:
        with pytest.raises(ValueError):
            TransactionBuilder(wallet, destination="")
