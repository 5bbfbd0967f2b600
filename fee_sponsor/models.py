"""
Data model for sponsored-transaction exchanges.

    - ``Coin``: one spendable output reported by the wallet.
    - ``CandidateTransaction``: the customer's own zero-fee PSBT.
    - ``ExchangeRecord``: the sponsor's view of an exchange (asset, id,
      state, blob, txid). The customer only ever holds a read-only mirror
      obtained by re-fetching via ``id``.

Enums are ``StrEnum`` so values go over the wire unchanged.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from typing import Any

ASSET_BTC = "BTC"
PAIR_BTC_USD = "BTC_USD"


# =========================================================================
# Enums
# =========================================================================


class ExchangeState(StrEnum):
    """Lifecycle state of a sponsored transaction."""

    CREATED = "CREATED"
    FEE_ADDED = "FEE_ADDED"
    CUSTOMER_SIGNED = "CUSTOMER_SIGNED"
    PRE_SIGNED = "PRE_SIGNED"
    BROADCAST = "BROADCAST"
    FAILED = "FAILED"


class SighashPolicy(StrEnum):
    """Signature commitment scope, spelled the way the wallet RPC wants it.

    ALL binds every input and output. ALL|ANYONECANPAY binds only the
    signed input plus all outputs present at signing time, so inputs
    added later by the sponsor do not invalidate it.
    """

    ALL = "ALL"
    ALL_ANYONECANPAY = "ALL|ANYONECANPAY"


class Mode(StrEnum):
    """Operator-selected run mode."""

    QUERY = "basic"
    INTERACTIVE = "psbt"
    NON_INTERACTIVE = "psbtni"


# =========================================================================
# Coin
# =========================================================================


@dataclass(frozen=True)
class Coin:
    """A spendable output as reported by ``listunspent``."""

    txid: str
    vout: int
    amount: Decimal
    address: str | None = None
    confirmations: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Coin:
        try:
            return cls(
                txid=str(data["txid"]),
                vout=int(data["vout"]),
                # str() first so float amounts keep their printed precision
                amount=Decimal(str(data["amount"])),
                address=data.get("address"),
                confirmations=int(data.get("confirmations", 0)),
            )
        except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
            raise ValueError(f"malformed unspent entry: {data!r}") from exc


# =========================================================================
# CandidateTransaction
# =========================================================================


@dataclass(frozen=True)
class CandidateTransaction:
    """The customer's own transaction, before the sponsor touches it.

    Attributes:
        asset: Ledger asset identifier.
        blob: Base64 PSBT carrying exactly the customer's input and output.
        coin: The funding coin spent by the single input.
        destination: Address receiving the full coin amount.
        amount: Output amount (equal to ``coin.amount``; zero fee).
        policy: Signature policy applied, or None when unsigned.
    """

    asset: str
    blob: str
    coin: Coin
    destination: str
    amount: Decimal
    policy: SighashPolicy | None = None

    @property
    def signed(self) -> bool:
        return self.policy is not None


# =========================================================================
# ExchangeRecord
# =========================================================================


@dataclass(frozen=True)
class ExchangeRecord:
    """A sponsored transaction as reported by the sponsor.

    Attributes:
        asset: Ledger asset identifier.
        id: Sponsor-assigned exchange handle.
        state: Current lifecycle state.
        blob: Base64 PSBT (wire field ``psbt``).
        txid: Transaction id, present once broadcast.
    """

    asset: str
    id: str
    state: ExchangeState
    blob: str
    txid: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExchangeRecord:
        """Parse a wire record.

        Raises:
            ValueError: On missing fields or an unrecognized state.
        """
        missing = [k for k in ("asset", "id", "state", "psbt") if data.get(k) is None]
        if missing:
            raise ValueError(f"record missing fields: {', '.join(missing)}")
        try:
            state = ExchangeState(data["state"])
        except ValueError as exc:
            raise ValueError(f"unrecognized exchange state: {data['state']!r}") from exc
        return cls(
            asset=str(data["asset"]),
            id=str(data["id"]),
            state=state,
            blob=str(data["psbt"]),
            txid=data.get("txid") or None,
        )

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {
            "asset": self.asset,
            "id": self.id,
            "state": str(self.state),
            "psbt": self.blob,
        }
        if self.txid is not None:
            result["txid"] = self.txid
        return result

    def digest(self) -> str:
        """``sha256:`` digest of the canonical JSON form, for log correlation."""
        canonical = json.dumps(
            self.to_dict(),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")
        return f"sha256:{hashlib.sha256(canonical).hexdigest()}"
