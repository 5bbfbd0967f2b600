"""
Shared fixtures: PSBT construction plus fake wallet and sponsor.

The fakes behave like well-behaved collaborators by default. Tests make
them misbehave by overriding attributes (``coins``, ``on_read``,
``fail``, ...).
"""

from __future__ import annotations

import base64
import struct
from decimal import Decimal
from typing import Any, Callable

import pytest

from fee_sponsor.config import ExchangeConfig, NodeConfig, SponsorConfig
from fee_sponsor.models import (
    ASSET_BTC,
    Coin,
    ExchangeRecord,
    ExchangeState,
    SighashPolicy,
)
from fee_sponsor.wallet import ProcessedPsbt

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

API_KEY = "test-api-key"
DEST_ADDR = "tb1qcustomerdestination0000000000000000000"
CUSTOMER_TXID = "a1" * 32
SPONSOR_TXID = "b2" * 32
SEQ_RBF = 0xFFFFFFFD
DEST_SCRIPT = "0014" + "11" * 20
CHANGE_SCRIPT = "0014" + "22" * 20
ATTACKER_SCRIPT = "0014" + "ee" * 20
AMOUNT_SATS = 50_000_000
SPONSOR_IN_SATS = 100_000
SPONSOR_CHANGE_SATS = 99_000

SIGHASH_ALL = 0x01
SIGHASH_ALL_ANYONECANPAY = 0x81

CUSTOMER_PUBKEY = b"\x02" + b"\x33" * 32
SPONSOR_PUBKEY = b"\x03" + b"\x44" * 32


# ---------------------------------------------------------------------------
# PSBT construction
# ---------------------------------------------------------------------------


def _varint(n: int) -> bytes:
    if n < 0xFD:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    return b"\xfe" + struct.pack("<I", n)


def _var_bytes(data: bytes) -> bytes:
    return _varint(len(data)) + data


def _serialize_output(value: int, script_hex: str) -> bytes:
    return struct.pack("<q", value) + _var_bytes(bytes.fromhex(script_hex))


def serialize_tx(
    inputs: list[tuple[str, int, int]],
    outputs: list[tuple[int, str]],
    *,
    locktime: int = 0,
    version: int = 2,
) -> bytes:
    """Legacy-serialized transaction with empty scriptSigs."""
    raw = struct.pack("<I", version) + _varint(len(inputs))
    for txid, vout, sequence in inputs:
        raw += bytes.fromhex(txid)[::-1] + struct.pack("<I", vout)
        raw += _var_bytes(b"") + struct.pack("<I", sequence)
    raw += _varint(len(outputs))
    for value, script in outputs:
        raw += _serialize_output(value, script)
    return raw + struct.pack("<I", locktime)


def _serialize_map(entries: dict[bytes, bytes]) -> bytes:
    raw = b""
    for key, value in entries.items():
        raw += _var_bytes(key) + _var_bytes(value)
    return raw + b"\x00"


def witness_utxo(value: int, script_hex: str = DEST_SCRIPT) -> dict[bytes, bytes]:
    return {b"\x01": _serialize_output(value, script_hex)}


def partial_sig(pubkey: bytes, sighash: int) -> dict[bytes, bytes]:
    return {b"\x02" + pubkey: b"\x30\x44" + b"\x55" * 68 + bytes([sighash])}


def final_witness(pubkey: bytes, sighash: int) -> dict[bytes, bytes]:
    """Finalized input: witness stack [signature, pubkey], no partial sigs."""
    signature = b"\x30\x44" + b"\x55" * 68 + bytes([sighash])
    stack = _varint(2) + _var_bytes(signature) + _var_bytes(pubkey)
    return {b"\x08": stack}


def make_psbt(
    inputs: list[tuple[str, int, int]],
    outputs: list[tuple[int, str]],
    *,
    input_maps: list[dict[bytes, bytes]] | None = None,
    locktime: int = 0,
) -> str:
    """Base64 PSBT around an unsigned tx with the given per-input maps."""
    maps = input_maps if input_maps is not None else [{} for _ in inputs]
    raw = b"psbt\xff"
    raw += _serialize_map({b"\x00": serialize_tx(inputs, outputs, locktime=locktime)})
    for entries in maps:
        raw += _serialize_map(entries)
    for _ in outputs:
        raw += _serialize_map({})
    return base64.b64encode(raw).decode("ascii")


class PsbtKit:
    """Canned PSBTs for the customer's candidate and the sponsor's versions."""

    customer_input = (CUSTOMER_TXID, 0, SEQ_RBF)
    sponsor_input = (SPONSOR_TXID, 1, SEQ_RBF)

    def candidate(self, *, sighash: int | None = None, finalized: bool = False) -> str:
        fields = witness_utxo(AMOUNT_SATS)
        if sighash is not None:
            sign = final_witness if finalized else partial_sig
            fields.update(sign(CUSTOMER_PUBKEY, sighash))
        return make_psbt(
            [self.customer_input],
            [(AMOUNT_SATS, DEST_SCRIPT)],
            input_maps=[fields],
        )

    def augmented(
        self,
        *,
        sighash: int | None = None,
        sponsor_signed: bool = False,
        dest_script: str = DEST_SCRIPT,
        amount: int = AMOUNT_SATS,
        customer_sequence: int = SEQ_RBF,
        customer_finalized: bool = False,
    ) -> str:
        customer = witness_utxo(AMOUNT_SATS)
        if sighash is not None:
            sign = final_witness if customer_finalized else partial_sig
            customer.update(sign(CUSTOMER_PUBKEY, sighash))
        sponsor = witness_utxo(SPONSOR_IN_SATS, CHANGE_SCRIPT)
        if sponsor_signed:
            sponsor.update(partial_sig(SPONSOR_PUBKEY, SIGHASH_ALL))
        return make_psbt(
            [(CUSTOMER_TXID, 0, customer_sequence), self.sponsor_input],
            [(amount, dest_script), (SPONSOR_CHANGE_SATS, CHANGE_SCRIPT)],
            input_maps=[customer, sponsor],
        )


# ---------------------------------------------------------------------------
# Fake wallet
# ---------------------------------------------------------------------------


class FakeWallet:
    """WalletClient with one 0.5 coin that signs the canned PSBTs."""

    def __init__(self, kit: PsbtKit) -> None:
        self.coins = [
            Coin(
                txid=CUSTOMER_TXID,
                vout=0,
                amount=Decimal("0.5"),
                address=DEST_ADDR,
                confirmations=1,
            )
        ]
        self.unsigned = kit.candidate()
        self.signatures: dict[tuple[str, SighashPolicy], str] = {
            (kit.candidate(), SighashPolicy.ALL_ANYONECANPAY): kit.candidate(
                sighash=SIGHASH_ALL_ANYONECANPAY
            ),
            (kit.augmented(), SighashPolicy.ALL): kit.augmented(sighash=SIGHASH_ALL),
        }
        self.fail_signing: Exception | None = None
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @property
    def sign_calls(self) -> list[dict[str, Any]]:
        return [kw for name, kw in self.calls if name == "process_psbt" and kw["sign"]]

    async def list_unspent(
        self, *, minconf: int = 0, addresses: list[str] | None = None
    ) -> list[Coin]:
        self.calls.append(("list_unspent", {"minconf": minconf, "addresses": addresses}))
        return list(self.coins)

    async def create_psbt(
        self,
        inputs: list[dict[str, Any]],
        outputs: list[dict[str, Any]],
        *,
        locktime: int = 0,
        replaceable: bool = True,
    ) -> str:
        self.calls.append(
            (
                "create_psbt",
                {
                    "inputs": inputs,
                    "outputs": outputs,
                    "locktime": locktime,
                    "replaceable": replaceable,
                },
            )
        )
        return self.unsigned

    async def process_psbt(
        self,
        psbt: str,
        *,
        sign: bool,
        sighash_type: SighashPolicy = SighashPolicy.ALL,
        bip32derivs: bool = True,
    ) -> ProcessedPsbt:
        self.calls.append(
            (
                "process_psbt",
                {
                    "psbt": psbt,
                    "sign": sign,
                    "sighash_type": sighash_type,
                    "bip32derivs": bip32derivs,
                },
            )
        )
        if not sign:
            return ProcessedPsbt(psbt=psbt)
        if self.fail_signing is not None:
            raise self.fail_signing
        return ProcessedPsbt(psbt=self.signatures.get((psbt, sighash_type), psbt))


# ---------------------------------------------------------------------------
# Fake sponsor
# ---------------------------------------------------------------------------


class FakeSponsor:
    """SponsorClient backed by two in-memory record stores."""

    def __init__(self, kit: PsbtKit) -> None:
        self.api_key = API_KEY
        self.credit = Decimal("12.5")
        self.fee = Decimal("3")
        self.rate = Decimal("61000.25")

        self.fee_added = ExchangeRecord(
            asset=ASSET_BTC,
            id="psbt-1",
            state=ExchangeState.FEE_ADDED,
            blob=kit.augmented(),
        )
        self.broadcast = ExchangeRecord(
            asset=ASSET_BTC,
            id="psbt-1",
            state=ExchangeState.BROADCAST,
            blob=kit.augmented(sighash=SIGHASH_ALL, sponsor_signed=True),
            txid="f" * 64,
        )
        self.broadcast_final = ExchangeRecord(
            asset=ASSET_BTC,
            id="psbtni-1",
            state=ExchangeState.BROADCAST,
            blob=kit.augmented(sighash=SIGHASH_ALL_ANYONECANPAY, sponsor_signed=True),
            txid="e" * 64,
        )

        self.store: dict[str, ExchangeRecord] = {}
        self.final_store: dict[str, ExchangeRecord] = {}
        self.on_read: Callable[[ExchangeRecord], ExchangeRecord] | None = None
        self.fail: dict[str, Exception] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    def _enter(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if name in self.fail:
            raise self.fail[name]

    def _read(self, record: ExchangeRecord) -> ExchangeRecord:
        return self.on_read(record) if self.on_read is not None else record

    async def read_api_key(self) -> str:
        self._enter("read_api_key")
        return self.api_key

    async def read_credit(self) -> Decimal:
        self._enter("read_credit")
        return self.credit

    async def read_fee(self, asset: str) -> Decimal:
        self._enter("read_fee", asset)
        return self.fee

    async def read_rate(self, pair: str) -> Decimal:
        self._enter("read_rate", pair)
        return self.rate

    async def create_exchange(self, asset: str, blob: str) -> ExchangeRecord:
        self._enter("create_exchange", asset, blob)
        self.store[self.fee_added.id] = self.fee_added
        return self.fee_added

    async def read_exchange(self, asset: str, exchange_id: str) -> ExchangeRecord:
        self._enter("read_exchange", asset, exchange_id)
        return self._read(self.store[exchange_id])

    async def update_exchange(
        self, asset: str, exchange_id: str, blob: str
    ) -> ExchangeRecord:
        self._enter("update_exchange", asset, exchange_id, blob)
        self.store[exchange_id] = self.broadcast
        return self.broadcast

    async def list_exchanges(self) -> list[ExchangeRecord]:
        self._enter("list_exchanges")
        return list(self.store.values())

    async def create_exchange_final(self, asset: str, blob: str) -> ExchangeRecord:
        self._enter("create_exchange_final", asset, blob)
        self.final_store[self.broadcast_final.id] = self.broadcast_final
        return self.broadcast_final

    async def read_exchange_final(
        self, asset: str, exchange_id: str
    ) -> ExchangeRecord:
        self._enter("read_exchange_final", asset, exchange_id)
        return self._read(self.final_store[exchange_id])

    async def list_exchanges_final(self) -> list[ExchangeRecord]:
        self._enter("list_exchanges_final")
        return list(self.final_store.values())


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def psbts() -> PsbtKit:
    return PsbtKit()


@pytest.fixture
def wallet(psbts: PsbtKit) -> FakeWallet:
    return FakeWallet(psbts)


@pytest.fixture
def sponsor(psbts: PsbtKit) -> FakeSponsor:
    return FakeSponsor(psbts)


@pytest.fixture
def config() -> ExchangeConfig:
    return ExchangeConfig(
        node=NodeConfig(user="rpc", password="secret", wallet_label="customer"),
        sponsor=SponsorConfig(api_key=API_KEY),
        destination=DEST_ADDR,
    )
