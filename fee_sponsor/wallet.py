"""
Wallet collaborator: the signing and coin boundary.

Defines the interface the builder depends on, plus a Bitcoin Core
JSON-RPC implementation. Key management, coin selection and signature
production all live inside the wallet; this module only shapes requests
and parses responses.

The protocol has exactly three methods:
    - list_unspent(minconf, addresses) → list[Coin]
    - create_psbt(inputs, outputs, locktime, replaceable) → base64 PSBT
    - process_psbt(psbt, sign, sighash_type, bip32derivs) → ProcessedPsbt

Response parsing targets Bitcoin Core conventions:
    - {"result": ..., "error": null, "id": n} on success
    - {"result": null, "error": {"code": -n, "message": "..."}} on failure
      (often with HTTP 500; the transport hands the body through)
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from fee_sponsor.config import NodeConfig
from fee_sponsor.errors import WalletError
from fee_sponsor.models import Coin, SighashPolicy
from fee_sponsor.transport import HttpxTransport, JsonTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessedPsbt:
    """Result of ``walletprocesspsbt``.

    Attributes:
        psbt: Base64 PSBT after processing.
        complete: True once every input carries a final signature.
            Stays False while sponsor inputs are unsigned.
    """

    psbt: str
    complete: bool = False


@runtime_checkable
class WalletClient(Protocol):
    """Interface for wallet operations."""

    async def list_unspent(
        self,
        *,
        minconf: int = 0,
        addresses: list[str] | None = None,
    ) -> list[Coin]:
        """List spendable coins, optionally filtered by address."""
        ...

    async def create_psbt(
        self,
        inputs: list[dict[str, Any]],
        outputs: list[dict[str, Any]],
        *,
        locktime: int = 0,
        replaceable: bool = True,
    ) -> str:
        """Create an unsigned base64 PSBT with exactly these inputs/outputs."""
        ...

    async def process_psbt(
        self,
        psbt: str,
        *,
        sign: bool,
        sighash_type: SighashPolicy = SighashPolicy.ALL,
        bip32derivs: bool = True,
    ) -> ProcessedPsbt:
        """Fill in wallet data and optionally sign with the given policy."""
        ...


class BitcoinCoreWallet:
    """Bitcoin Core JSON-RPC client implementing WalletClient.

    Args:
        config: Node settings (endpoint, credentials, timeout).
        transport: Injectable transport. Defaults to HttpxTransport
            with the configured timeout.
    """

    def __init__(
        self,
        config: NodeConfig,
        transport: JsonTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport or HttpxTransport(timeout=config.timeout)
        self._ids = itertools.count(1)

    @property
    def endpoint(self) -> str:
        return self._config.endpoint

    async def list_unspent(
        self,
        *,
        minconf: int = 0,
        addresses: list[str] | None = None,
    ) -> list[Coin]:
        params: dict[str, Any] = {"minconf": minconf}
        if addresses:
            params["addresses"] = list(addresses)
        result = await self._call("listunspent", params)
        if not isinstance(result, list):
            raise WalletError(
                "listunspent did not return a list",
                step="listunspent",
                details={"type": type(result).__name__},
            )
        try:
            return [Coin.from_dict(row) for row in result]
        except ValueError as exc:
            raise WalletError(str(exc), step="listunspent") from exc

    async def create_psbt(
        self,
        inputs: list[dict[str, Any]],
        outputs: list[dict[str, Any]],
        *,
        locktime: int = 0,
        replaceable: bool = True,
    ) -> str:
        result = await self._call(
            "createpsbt",
            {
                "inputs": inputs,
                "outputs": outputs,
                "locktime": locktime,
                "replaceable": replaceable,
            },
        )
        if not isinstance(result, str) or not result:
            raise WalletError("createpsbt returned no PSBT", step="createpsbt")
        return result

    async def process_psbt(
        self,
        psbt: str,
        *,
        sign: bool,
        sighash_type: SighashPolicy = SighashPolicy.ALL,
        bip32derivs: bool = True,
    ) -> ProcessedPsbt:
        result = await self._call(
            "walletprocesspsbt",
            {
                "psbt": psbt,
                "sign": sign,
                "sighashtype": str(sighash_type),
                "bip32derivs": bip32derivs,
            },
        )
        if not isinstance(result, dict) or not result.get("psbt"):
            raise WalletError("walletprocesspsbt returned no PSBT", step="walletprocesspsbt")
        return ProcessedPsbt(psbt=result["psbt"], complete=bool(result.get("complete", False)))

    # -----------------------------------------------------------------
    # JSON-RPC plumbing
    # -----------------------------------------------------------------

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        payload = {
            "jsonrpc": "1.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        logger.debug("wallet rpc %s", method)
        auth = None
        if self._config.user:
            auth = (self._config.user, self._config.password)
        response = await self._transport.post_json(self.endpoint, payload, auth=auth)
        return _parse_rpc_response(method, response)


def _parse_rpc_response(method: str, response: dict[str, Any]) -> Any:
    """Return ``result`` or raise WalletError for an RPC error object."""
    error = response.get("error")
    if error:
        if isinstance(error, dict):
            message = error.get("message") or "unknown wallet error"
            code = error.get("code")
        else:
            message, code = str(error), None
        raise WalletError(
            f"{method} failed: {message}",
            step=method,
            details={"rpc_code": code} if code is not None else None,
        )
    if "result" not in response:
        raise WalletError(f"{method} response has no result", step=method)
    return response["result"]
