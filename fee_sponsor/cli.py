"""
fee-sponsor command line entry point.

Usage:
    fee-sponsor [OPTIONS] {basic|psbt|psbtni}

Options override the matching ``FEE_SPONSOR_*`` environment variables.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

import click

from fee_sponsor.config import ENV_PREFIX, ConfigError, ExchangeConfig
from fee_sponsor.errors import ExchangeError, InvalidMode
from fee_sponsor.models import ExchangeRecord
from fee_sponsor.runner import ProtocolRunner, RunReport, parse_mode


@click.command()
@click.argument("mode")
@click.option("--node-url", help="Wallet node RPC URL (scheme and host)")
@click.option("--node-port", type=int, help="Wallet node RPC port")
@click.option("--node-user", help="Wallet node RPC user")
@click.option("--wallet-label", help="Wallet able to spend the funds")
@click.option("--destination", help="Address receiving our own funds back")
@click.option("--sponsor-url", help="Sponsor GraphQL endpoint")
@click.option("--timeout", type=float, help="Request timeout in seconds")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(
    mode: str,
    node_url: str | None,
    node_port: int | None,
    node_user: str | None,
    wallet_label: str | None,
    destination: str | None,
    sponsor_url: str | None,
    timeout: float | None,
    verbose: bool,
) -> None:
    """Run a fee-sponsored exchange in MODE (basic, psbt or psbtni)."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        selected = parse_mode(mode)
    except InvalidMode as exc:
        raise click.UsageError(str(exc)) from exc

    overrides = {
        "NODE_URL": node_url,
        "NODE_PORT": node_port,
        "NODE_USER": node_user,
        "WALLET_LABEL": wallet_label,
        "DESTINATION": destination,
        "SPONSOR_URL": sponsor_url,
        "TIMEOUT": timeout,
    }
    environ = dict(os.environ)
    environ.update({ENV_PREFIX + k: str(v) for k, v in overrides.items() if v is not None})
    try:
        config = ExchangeConfig.from_env(environ)
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc

    runner = ProtocolRunner.from_config(config)
    try:
        report = asyncio.run(runner.run(selected))
    except ExchangeError as exc:
        raise click.ClickException(str(exc)) from exc

    _print_report(report)
    if not report.ok:
        sys.exit(1)
    click.echo("Done.")


def _print_report(report: RunReport) -> None:
    account = report.account
    click.echo(f"Available Credit          : {account.credit}")
    click.echo(f"Current {account.asset} Fee (s/vB)    : {account.fee}")
    click.echo(f"Current {account.pair} Rate     : {account.rate}")

    flow = report.flow
    if flow is not None:
        if flow.ok and flow.record is not None:
            click.echo(f"{flow.mode} exchange broadcast: {flow.record.id} {flow.record.txid or ''}")
        elif flow.error is not None:
            click.echo(f"{flow.mode} failed: {flow.error}", err=True)

    _print_records("PSBTs", report.exchanges)
    _print_records("PSBTNIs", report.final_exchanges)


def _print_records(title: str, records: list[ExchangeRecord]) -> None:
    click.echo(title)
    for i, record in enumerate(records):
        click.echo(f"{i}  {record.asset} : {record.id} : {record.state}")
        click.echo(f"    {record.txid or '-'}")


if __name__ == "__main__":
    main()
