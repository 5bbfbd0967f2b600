"""
Sponsor collaborator: the fee-augmentation service boundary.

The sponsor is opaque: it adds fee-paying inputs and change outputs to a
customer's PSBT, signs its own inputs, and broadcasts. This module
defines the interface the exchange client depends on and a GraphQL
implementation of it.

Interactive exchanges (PSBT):
    - create_exchange(asset, blob) → record (FEE_ADDED)
    - read_exchange(asset, id) → record
    - update_exchange(asset, id, blob) → record (BROADCAST)
    - list_exchanges() → [record]

Non-interactive exchanges (PSBTNI):
    - create_exchange_final(asset, blob) → record (BROADCAST)
    - read_exchange_final(asset, id) → record
    - list_exchanges_final() → [record]

Account queries: read_api_key, read_credit, read_fee, read_rate.

GraphQL conventions:
    - {"data": {...}} on success
    - {"errors": [{"message": "..."}], "data": null} on failure
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol, runtime_checkable

from fee_sponsor.config import SponsorConfig
from fee_sponsor.errors import ExchangeRejected
from fee_sponsor.models import ExchangeRecord
from fee_sponsor.transport import HttpxTransport, JsonTransport

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"

_RECORD_FIELDS = "asset id state psbt txid"

Q_API_KEY = "query { apiKey }"
Q_CREDIT = "query { credit }"
Q_FEE = "query Fee($asset: String!) { fee(asset: $asset) }"
Q_RATE = "query Rate($pair: String!) { rate(pair: $pair) }"

M_CREATE_PSBT = (
    "mutation CreatePSBT($asset: String!, $psbt: String!) "
    f"{{ createPSBT(asset: $asset, psbt: $psbt) {{ {_RECORD_FIELDS} }} }}"
)
Q_READ_PSBT = (
    "query ReadPSBT($asset: String!, $id: ID!) "
    f"{{ psbt(asset: $asset, id: $id) {{ {_RECORD_FIELDS} }} }}"
)
M_UPDATE_PSBT = (
    "mutation UpdatePSBT($asset: String!, $id: ID!, $psbt: String!) "
    f"{{ updatePSBT(asset: $asset, id: $id, psbt: $psbt) {{ {_RECORD_FIELDS} }} }}"
)
Q_READ_PSBTS = f"query {{ psbts {{ {_RECORD_FIELDS} }} }}"

M_CREATE_PSBTNI = (
    "mutation CreatePSBTNI($asset: String!, $psbt: String!) "
    f"{{ createPSBTNI(asset: $asset, psbt: $psbt) {{ {_RECORD_FIELDS} }} }}"
)
Q_READ_PSBTNI = (
    "query ReadPSBTNI($asset: String!, $id: ID!) "
    f"{{ psbtni(asset: $asset, id: $id) {{ {_RECORD_FIELDS} }} }}"
)
Q_READ_PSBTNIS = f"query {{ psbtnis {{ {_RECORD_FIELDS} }} }}"


@runtime_checkable
class SponsorClient(Protocol):
    """Interface for sponsor operations."""

    async def read_api_key(self) -> str: ...

    async def read_credit(self) -> Decimal: ...

    async def read_fee(self, asset: str) -> Decimal: ...

    async def read_rate(self, pair: str) -> Decimal: ...

    async def create_exchange(self, asset: str, blob: str) -> ExchangeRecord: ...

    async def read_exchange(self, asset: str, exchange_id: str) -> ExchangeRecord: ...

    async def update_exchange(
        self, asset: str, exchange_id: str, blob: str
    ) -> ExchangeRecord: ...

    async def list_exchanges(self) -> list[ExchangeRecord]: ...

    async def create_exchange_final(self, asset: str, blob: str) -> ExchangeRecord: ...

    async def read_exchange_final(
        self, asset: str, exchange_id: str
    ) -> ExchangeRecord: ...

    async def list_exchanges_final(self) -> list[ExchangeRecord]: ...


class GraphQLSponsorClient:
    """GraphQL implementation of SponsorClient.

    Args:
        config: Sponsor endpoint, API key and timeout.
        transport: Injectable transport. Defaults to HttpxTransport.
    """

    def __init__(
        self,
        config: SponsorConfig,
        transport: JsonTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport or HttpxTransport(timeout=config.timeout)

    @property
    def url(self) -> str:
        return self._config.url

    @property
    def key(self) -> str:
        return self._config.api_key

    # -----------------------------------------------------------------
    # Account
    # -----------------------------------------------------------------

    async def read_api_key(self) -> str:
        data = await self._execute("apiKey", Q_API_KEY)
        return str(data)

    async def read_credit(self) -> Decimal:
        return _to_decimal("credit", await self._execute("credit", Q_CREDIT))

    async def read_fee(self, asset: str) -> Decimal:
        data = await self._execute("fee", Q_FEE, {"asset": asset})
        return _to_decimal("fee", data)

    async def read_rate(self, pair: str) -> Decimal:
        data = await self._execute("rate", Q_RATE, {"pair": pair})
        return _to_decimal("rate", data)

    # -----------------------------------------------------------------
    # Interactive
    # -----------------------------------------------------------------

    async def create_exchange(self, asset: str, blob: str) -> ExchangeRecord:
        data = await self._execute(
            "createPSBT", M_CREATE_PSBT, {"asset": asset, "psbt": blob}
        )
        return _to_record("createPSBT", data)

    async def read_exchange(self, asset: str, exchange_id: str) -> ExchangeRecord:
        data = await self._execute(
            "psbt", Q_READ_PSBT, {"asset": asset, "id": exchange_id}
        )
        return _to_record("psbt", data)

    async def update_exchange(
        self, asset: str, exchange_id: str, blob: str
    ) -> ExchangeRecord:
        data = await self._execute(
            "updatePSBT",
            M_UPDATE_PSBT,
            {"asset": asset, "id": exchange_id, "psbt": blob},
        )
        return _to_record("updatePSBT", data)

    async def list_exchanges(self) -> list[ExchangeRecord]:
        return _to_records("psbts", await self._execute("psbts", Q_READ_PSBTS))

    # -----------------------------------------------------------------
    # Non-interactive
    # -----------------------------------------------------------------

    async def create_exchange_final(self, asset: str, blob: str) -> ExchangeRecord:
        data = await self._execute(
            "createPSBTNI", M_CREATE_PSBTNI, {"asset": asset, "psbt": blob}
        )
        return _to_record("createPSBTNI", data)

    async def read_exchange_final(
        self, asset: str, exchange_id: str
    ) -> ExchangeRecord:
        data = await self._execute(
            "psbtni", Q_READ_PSBTNI, {"asset": asset, "id": exchange_id}
        )
        return _to_record("psbtni", data)

    async def list_exchanges_final(self) -> list[ExchangeRecord]:
        return _to_records("psbtnis", await self._execute("psbtnis", Q_READ_PSBTNIS))

    # -----------------------------------------------------------------
    # GraphQL plumbing
    # -----------------------------------------------------------------

    async def _execute(
        self,
        field: str,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> Any:
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        logger.debug("sponsor %s", field)
        response = await self._transport.post_json(
            self._config.url,
            payload,
            headers={API_KEY_HEADER: self._config.api_key},
        )
        return _extract_field(field, response, variables or {})


# =====================================================================
# Response parsing (pure functions, no I/O)
# =====================================================================


def _extract_field(field: str, response: dict[str, Any], variables: dict[str, Any]) -> Any:
    errors = response.get("errors")
    if errors:
        messages = [
            e.get("message", "unknown error") if isinstance(e, dict) else str(e)
            for e in errors
        ]
        raise ExchangeRejected(
            "; ".join(messages),
            step=field,
            asset=variables.get("asset"),
            exchange_id=variables.get("id"),
        )
    data = response.get("data")
    if not isinstance(data, dict) or data.get(field) is None:
        raise ExchangeRejected(
            f"response has no {field!r} field",
            step=field,
            asset=variables.get("asset"),
            exchange_id=variables.get("id"),
        )
    return data[field]


def _to_decimal(field: str, value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ExchangeRejected(f"{field} is not a number: {value!r}", step=field) from exc


def _to_record(field: str, value: Any) -> ExchangeRecord:
    if not isinstance(value, dict):
        raise ExchangeRejected(f"{field} is not a record", step=field)
    try:
        return ExchangeRecord.from_dict(value)
    except ValueError as exc:
        raise ExchangeRejected(
            str(exc),
            step=field,
            asset=value.get("asset"),
            exchange_id=value.get("id"),
        ) from exc


def _to_records(field: str, value: Any) -> list[ExchangeRecord]:
    if not isinstance(value, list):
        raise ExchangeRejected(f"{field} is not a list", step=field)
    return [_to_record(field, item) for item in value]
