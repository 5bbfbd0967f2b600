"""
Error taxonomy for sponsored-transaction exchanges.

Every failure in a run is terminal: nothing here is retried. Each error
carries a machine-readable ``error_code`` plus the context an operator
needs to investigate by hand (failing step, asset, exchange id).

Codes:
    - NO_FUNDS: the wallet has no eligible coin.
    - INVALID_MODE: the operator asked for an unknown mode.
    - INVALID_CANDIDATE: the candidate does not meet submission guards.
    - INVALID_TRANSITION: out-of-order state change in a run.
    - TAMPER_DETECTED: a sponsor response altered customer commitments.
    - SIGNING_FAILED: the wallet could not apply the signature policy.
    - REJECTED: the sponsor declined or returned an unexpected record.
    - WALLET_ERROR: the wallet RPC returned an error object.
    - TIMEOUT / CONNECTION_FAILED / HTTP_ERROR / INVALID_JSON:
      transport-level failures (NetworkFailure).
"""

from __future__ import annotations

from typing import Any


class ExchangeError(Exception):
    """Base class for all protocol errors."""

    default_code = "UNKNOWN"

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        step: str | None = None,
        asset: str | None = None,
        exchange_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.step = step
        self.asset = asset
        self.exchange_id = exchange_id
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render for reports. None-valued context is omitted."""
        result: dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.step is not None:
            result["step"] = self.step
        if self.asset is not None:
            result["asset"] = self.asset
        if self.exchange_id is not None:
            result["exchange_id"] = self.exchange_id
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        context = [
            f"{name}={value}"
            for name, value in (
                ("step", self.step),
                ("asset", self.asset),
                ("id", self.exchange_id),
            )
            if value is not None
        ]
        if not context:
            return f"[{self.error_code}] {self.message}"
        return f"[{self.error_code}] {self.message} ({', '.join(context)})"


class NoFundsAvailable(ExchangeError):
    default_code = "NO_FUNDS"


class InvalidMode(ExchangeError):
    default_code = "INVALID_MODE"


class InvalidCandidate(ExchangeError):
    default_code = "INVALID_CANDIDATE"


class InvalidTransition(ExchangeError):
    default_code = "INVALID_TRANSITION"


class TamperDetected(ExchangeError):
    default_code = "TAMPER_DETECTED"


class SigningFailed(ExchangeError):
    default_code = "SIGNING_FAILED"


class ExchangeRejected(ExchangeError):
    default_code = "REJECTED"


class WalletError(ExchangeError):
    """The wallet RPC answered with an error object."""

    default_code = "WALLET_ERROR"


class NetworkFailure(ExchangeError):
    """A collaborator was unreachable, timed out, or answered garbage."""

    default_code = "CONNECTION_FAILED"


# ---------------------------------------------------------------------------
# Transport failure classification
# ---------------------------------------------------------------------------


def classify_transport_error(exc: Exception, *, url: str) -> NetworkFailure:
    """Map an httpx exception to a NetworkFailure with a stable code.

    Args:
        exc: The exception raised by the HTTP client.
        url: Endpoint that was being called (credentials never included).

    Returns:
        NetworkFailure with code TIMEOUT, CONNECTION_FAILED or HTTP_ERROR.
        The caller raises it ``from exc``.
    """
    import httpx

    if isinstance(exc, httpx.TimeoutException):
        return NetworkFailure(
            f"request to {url} timed out",
            error_code="TIMEOUT",
            details={"url": url},
        )
    if isinstance(exc, httpx.ConnectError):
        return NetworkFailure(
            f"failed to connect to {url}",
            error_code="CONNECTION_FAILED",
            details={"url": url},
        )
    if isinstance(exc, httpx.HTTPStatusError):
        return NetworkFailure(
            f"HTTP {exc.response.status_code}: {exc.response.reason_phrase}",
            error_code="HTTP_ERROR",
            details={"url": url, "status_code": exc.response.status_code},
        )
    return NetworkFailure(
        f"HTTP error: {exc}",
        error_code="HTTP_ERROR",
        details={"url": url, "error": str(exc)},
    )
