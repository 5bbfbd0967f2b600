"""
Transport protocol for JSON-over-HTTP calls.

Both collaborators speak JSON over HTTP POST: the wallet node uses
JSON-RPC, the sponsor uses GraphQL. The clients depend on this protocol,
not on httpx directly, so tests can swap in fakes without touching the
parsing logic.

Concrete implementations:
    - HttpxTransport (default, uses httpx.AsyncClient)
    - FakeTransport (tests, returns canned responses)

Error contract:
    Transport-level failures raise NetworkFailure. Both protocols carry
    application errors in the response body, so a non-2xx response whose
    body is a JSON-RPC or GraphQL object is returned as-is for the client
    to parse. Any other non-2xx body is an HTTP_ERROR.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol, runtime_checkable

from fee_sponsor.errors import NetworkFailure, classify_transport_error

logger = logging.getLogger(__name__)

# JSON-RPC and GraphQL response members
_ENVELOPE_KEYS = frozenset({"result", "error", "data", "errors"})


@runtime_checkable
class JsonTransport(Protocol):
    """Async transport for JSON POST requests."""

    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send a JSON request and return the parsed JSON object.

        Args:
            url: Endpoint URL.
            payload: Request body.
            headers: Extra headers (e.g. API key).
            auth: Optional basic-auth (user, password).

        Raises:
            NetworkFailure: Timeout, connection failure, HTTP error
                without a JSON body, or a body that is not a JSON object.
        """
        ...


class HttpxTransport:
    """Default transport using httpx.AsyncClient.

    Lazily imports httpx so the pure layers can be used without it.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout

    @property
    def timeout(self) -> float:
        return self._timeout

    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send the request via httpx."""
        import httpx

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={
                        "Content-Type": "application/json",
                        "Accept": "application/json",
                        **(headers or {}),
                    },
                    auth=auth,
                )
        except httpx.HTTPError as exc:
            raise classify_transport_error(exc, url=url) from exc

        try:
            result = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            if response.is_error:
                try:
                    response.raise_for_status()
                except httpx.HTTPStatusError as status_exc:
                    raise classify_transport_error(status_exc, url=url) from status_exc
            raise NetworkFailure(
                "response was not valid JSON",
                error_code="INVALID_JSON",
                details={
                    "url": url,
                    "status_code": response.status_code,
                    "body_preview": response.text[:200] if response.text else "",
                },
            ) from exc

        if not isinstance(result, dict):
            raise NetworkFailure(
                "response JSON was not an object",
                error_code="INVALID_JSON",
                details={"url": url, "type": type(result).__name__},
            )

        if response.is_error:
            if not _ENVELOPE_KEYS & result.keys():
                # e.g. a proxy's JSON error page
                raise NetworkFailure(
                    f"HTTP {response.status_code}: {response.reason_phrase}",
                    error_code="HTTP_ERROR",
                    details={
                        "url": url,
                        "status_code": response.status_code,
                        "body_preview": response.text[:200],
                    },
                )
            logger.debug("HTTP %s from %s with JSON body", response.status_code, url)
        return result
