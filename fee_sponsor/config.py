"""
Explicit configuration for the wallet node and the sponsor service.

Values are passed to constructors; nothing here is process-global.
``ExchangeConfig.from_env`` is a convenience for the CLI and reads the
``FEE_SPONSOR_*`` environment variables.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from fee_sponsor.models import ASSET_BTC, PAIR_BTC_USD

DEFAULT_NODE_URL = "http://127.0.0.1"
DEFAULT_NODE_PORT = 18332
DEFAULT_TIMEOUT_S = 10.0
DEFAULT_SPONSOR_URL = "https://graphql.frictionless.money/"

ENV_PREFIX = "FEE_SPONSOR_"


class ConfigError(ValueError):
    """A required configuration value is missing or malformed."""


@dataclass(frozen=True)
class NodeConfig:
    """Wallet node (Bitcoin Core) connection settings.

    Attributes:
        url: Scheme and host of the node RPC server.
        port: RPC port (18332 is testnet).
        user: RPC user name.
        password: RPC password. Never logged.
        wallet_label: Name of the loaded wallet able to spend the funds.
        timeout: Request timeout in seconds.
    """

    url: str = DEFAULT_NODE_URL
    port: int = DEFAULT_NODE_PORT
    user: str = ""
    password: str = field(default="", repr=False)
    wallet_label: str = ""
    timeout: float = DEFAULT_TIMEOUT_S

    @property
    def endpoint(self) -> str:
        """Wallet-scoped JSON-RPC URL."""
        base = f"{self.url.rstrip('/')}:{self.port}"
        if self.wallet_label:
            return f"{base}/wallet/{self.wallet_label}"
        return base


@dataclass(frozen=True)
class SponsorConfig:
    """Sponsor GraphQL endpoint and account key."""

    url: str = DEFAULT_SPONSOR_URL
    api_key: str = field(default="", repr=False)
    timeout: float = DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class ExchangeConfig:
    """Everything a protocol run needs.

    Attributes:
        node: Wallet node settings.
        sponsor: Sponsor service settings.
        destination: Address that receives the customer's own funds back.
        asset: Ledger asset identifier used with the sponsor.
        pair: Rate pair queried for the account summary.
    """

    node: NodeConfig
    sponsor: SponsorConfig
    destination: str
    asset: str = ASSET_BTC
    pair: str = PAIR_BTC_USD

    def __post_init__(self) -> None:
        if not self.destination:
            raise ConfigError("destination must be non-empty")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ExchangeConfig:
        """Build a config from ``FEE_SPONSOR_*`` variables.

        Required: ``FEE_SPONSOR_DESTINATION``, ``FEE_SPONSOR_API_KEY``.
        Everything else falls back to the defaults above.

        Raises:
            ConfigError: If a required variable is missing or a numeric
                variable does not parse.
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: str = "") -> str:
            return env.get(ENV_PREFIX + name, default)

        def require(name: str) -> str:
            value = get(name)
            if not value:
                raise ConfigError(f"{ENV_PREFIX}{name} must be set")
            return value

        try:
            port = int(get("NODE_PORT", str(DEFAULT_NODE_PORT)))
            timeout = float(get("TIMEOUT", str(DEFAULT_TIMEOUT_S)))
        except ValueError as exc:
            raise ConfigError(f"invalid numeric setting: {exc}") from exc

        node = NodeConfig(
            url=get("NODE_URL", DEFAULT_NODE_URL),
            port=port,
            user=get("NODE_USER"),
            password=get("NODE_PASSWORD"),
            wallet_label=get("WALLET_LABEL"),
            timeout=timeout,
        )
        sponsor = SponsorConfig(
            url=get("SPONSOR_URL", DEFAULT_SPONSOR_URL),
            api_key=require("API_KEY"),
            timeout=timeout,
        )
        return cls(
            node=node,
            sponsor=sponsor,
            destination=require("DESTINATION"),
            asset=get("ASSET", ASSET_BTC),
            pair=get("PAIR", PAIR_BTC_USD),
        )
