"""
Minimal PSBT (BIP-174, version 0) decoder.

Pure functions, no I/O, no signing. Extracts exactly what the commitment
verifier needs from a partially-signed transaction:

    - the unsigned transaction's inputs (prevout + sequence) and outputs
      (value + scriptPubKey);
    - per-input key/value maps, to read funding values (witness UTXO or
      non-witness UTXO) and finalization status.

Accepts base64 (what the wallet RPC and sponsor exchange) or hex.

Layout:
    magic "psbt" 0xff
    global map          (key type 0x00 = unsigned tx)
    one map per input   (0x00 non-witness UTXO, 0x01 witness UTXO,
                         0x02 partial sig, 0x03 sighash type,
                         0x07 final scriptSig, 0x08 final witness)
    one map per output
Each map is a sequence of <keylen><key><vallen><value>, closed by 0x00.
"""

from __future__ import annotations

import base64
import binascii
import struct
from dataclasses import dataclass, field

PSBT_MAGIC = b"psbt\xff"

GLOBAL_UNSIGNED_TX = 0x00
IN_NON_WITNESS_UTXO = 0x00
IN_WITNESS_UTXO = 0x01
IN_PARTIAL_SIG = 0x02
IN_FINAL_SCRIPTSIG = 0x07
IN_FINAL_SCRIPTWITNESS = 0x08


class PsbtDecodeError(ValueError):
    """The blob is not a well-formed version 0 PSBT."""


# =========================================================================
# Result types
# =========================================================================


@dataclass(frozen=True)
class TxInput:
    """An input of the unsigned transaction.

    ``txid`` is in display (big-endian) order, as wallets print it.
    """

    txid: str
    vout: int
    sequence: int

    @property
    def outpoint(self) -> tuple[str, int]:
        return (self.txid, self.vout)


@dataclass(frozen=True)
class TxOutput:
    """An output of the unsigned transaction (value in satoshis)."""

    value: int
    script_pubkey: str


@dataclass(frozen=True)
class Transaction:
    version: int
    inputs: tuple[TxInput, ...]
    outputs: tuple[TxOutput, ...]
    locktime: int


@dataclass(frozen=True)
class Psbt:
    """A decoded PSBT.

    Attributes:
        tx: The global unsigned transaction.
        input_maps: One {key bytes: value bytes} map per input.
        output_maps: One {key bytes: value bytes} map per output.
    """

    tx: Transaction
    input_maps: tuple[dict[bytes, bytes], ...] = field(default_factory=tuple)
    output_maps: tuple[dict[bytes, bytes], ...] = field(default_factory=tuple)

    @property
    def inputs(self) -> tuple[TxInput, ...]:
        return self.tx.inputs

    @property
    def outputs(self) -> tuple[TxOutput, ...]:
        return self.tx.outputs

    def input_value(self, index: int) -> int | None:
        """Value in satoshis of the coin spent by input ``index``.

        Read from the witness UTXO if present, otherwise from the
        non-witness UTXO. None when neither is attached.
        """
        fields = self.input_maps[index]
        for key, value in fields.items():
            if key[0] == IN_WITNESS_UTXO:
                return _read_output(_Reader(value)).value
        for key, value in fields.items():
            if key[0] == IN_NON_WITNESS_UTXO:
                prev = _read_tx(_Reader(value))
                vout = self.tx.inputs[index].vout
                if vout >= len(prev.outputs):
                    raise PsbtDecodeError(
                        f"input {index}: vout {vout} beyond funding tx outputs"
                    )
                return prev.outputs[vout].value
        return None

    def fee(self) -> int | None:
        """Inputs minus outputs in satoshis, or None if any input value is unknown."""
        total_in = 0
        for i in range(len(self.tx.inputs)):
            value = self.input_value(i)
            if value is None:
                return None
            total_in += value
        return total_in - sum(o.value for o in self.tx.outputs)

    def is_finalized(self, index: int) -> bool:
        return any(
            key[0] in (IN_FINAL_SCRIPTSIG, IN_FINAL_SCRIPTWITNESS)
            for key in self.input_maps[index]
        )

    def has_signatures(self, index: int) -> bool:
        return self.is_finalized(index) or any(
            key[0] == IN_PARTIAL_SIG for key in self.input_maps[index]
        )


# =========================================================================
# Byte reader
# =========================================================================


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    @property
    def exhausted(self) -> bool:
        return self._offset >= len(self._data)

    def read(self, n: int) -> bytes:
        if n < 0 or self._offset + n > len(self._data):
            raise PsbtDecodeError("unexpected end of data")
        chunk = self._data[self._offset : self._offset + n]
        self._offset += n
        return chunk

    def peek(self) -> int:
        if self.exhausted:
            raise PsbtDecodeError("unexpected end of data")
        return self._data[self._offset]

    def varint(self) -> int:
        first = self.read(1)[0]
        if first < 0xFD:
            return first
        if first == 0xFD:
            return struct.unpack("<H", self.read(2))[0]
        if first == 0xFE:
            return struct.unpack("<I", self.read(4))[0]
        return struct.unpack("<Q", self.read(8))[0]

    def uint32(self) -> int:
        return struct.unpack("<I", self.read(4))[0]

    def int64(self) -> int:
        return struct.unpack("<q", self.read(8))[0]

    def var_bytes(self) -> bytes:
        return self.read(self.varint())


# =========================================================================
# Parsing
# =========================================================================


def _read_output(reader: _Reader) -> TxOutput:
    value = reader.int64()
    script = reader.var_bytes()
    return TxOutput(value=value, script_pubkey=script.hex())


def _read_tx(reader: _Reader) -> Transaction:
    version = reader.uint32()
    segwit = False
    if reader.peek() == 0x00:
        # marker + flag; only legal in funding txs, never the unsigned tx
        marker_flag = reader.read(2)
        if marker_flag[1] != 0x01:
            raise PsbtDecodeError("bad segwit flag")
        segwit = True

    inputs = []
    for _ in range(reader.varint()):
        txid = reader.read(32)[::-1].hex()
        vout = reader.uint32()
        reader.var_bytes()  # scriptSig
        sequence = reader.uint32()
        inputs.append(TxInput(txid=txid, vout=vout, sequence=sequence))

    outputs = [_read_output(reader) for _ in range(reader.varint())]

    if segwit:
        for _ in inputs:
            for _ in range(reader.varint()):
                reader.var_bytes()

    locktime = reader.uint32()
    return Transaction(
        version=version,
        inputs=tuple(inputs),
        outputs=tuple(outputs),
        locktime=locktime,
    )


def _read_map(reader: _Reader) -> dict[bytes, bytes]:
    entries: dict[bytes, bytes] = {}
    while True:
        key_len = reader.varint()
        if key_len == 0:
            return entries
        key = reader.read(key_len)
        if key in entries:
            raise PsbtDecodeError(f"duplicate key {key.hex()}")
        entries[key] = reader.var_bytes()


def _to_bytes(blob: str | bytes) -> bytes:
    if isinstance(blob, bytes):
        return blob
    text = blob.strip()
    if text.startswith(PSBT_MAGIC.hex()):
        try:
            return bytes.fromhex(text)
        except ValueError as exc:
            raise PsbtDecodeError("invalid hex PSBT") from exc
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as exc:
        raise PsbtDecodeError("PSBT is neither base64 nor hex") from exc


def decode_psbt(blob: str | bytes) -> Psbt:
    """Decode a version 0 PSBT.

    Args:
        blob: Base64 or hex text, or raw bytes.

    Returns:
        Decoded Psbt.

    Raises:
        PsbtDecodeError: On bad magic, truncation, a missing unsigned
            transaction, or trailing bytes.
    """
    raw = _to_bytes(blob)
    if raw[:5] != PSBT_MAGIC:
        raise PsbtDecodeError("missing PSBT magic bytes")

    reader = _Reader(raw[5:])
    global_map = _read_map(reader)
    unsigned = global_map.get(bytes([GLOBAL_UNSIGNED_TX]))
    if unsigned is None:
        raise PsbtDecodeError("no unsigned transaction in global map")

    tx_reader = _Reader(unsigned)
    tx = _read_tx(tx_reader)
    if not tx_reader.exhausted:
        raise PsbtDecodeError("trailing bytes after unsigned transaction")

    input_maps = tuple(_read_map(reader) for _ in tx.inputs)
    output_maps = tuple(_read_map(reader) for _ in tx.outputs)
    if not reader.exhausted:
        raise PsbtDecodeError("trailing bytes after output maps")

    return Psbt(tx=tx, input_maps=input_maps, output_maps=output_maps)
