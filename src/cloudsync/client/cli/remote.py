"""Remote commands for the cloudsync CLI.

Commands:
- configure: Save server, container and zone settings
- check: Verify the record store is reachable and the account is usable
"""

from __future__ import annotations

import asyncio
import sys

import click

from cloudsync.client.api import RecordStoreClient, RecordStoreError
from cloudsync.client.cli.config import load_config, save_config, server_config_from
from cloudsync.core.config import ServerConfig
from cloudsync.core.types import AccountStatus


@click.command()
@click.option("--server", default=None, help="Record store URL (e.g., https://records.example.com).")
@click.option("--token", default=None, help="API token.")
@click.option("--container", default=None, help="Container identifier.")
@click.option("--zone", default=None, help="Custom zone name.")
@click.option("--owner", default=None, help="Zone owner (default: the authenticated user).")
def configure(
    server: str | None,
    token: str | None,
    container: str | None,
    zone: str | None,
    owner: str | None,
) -> None:
    """Save connection settings to ~/.cloudsync/config.json.

    Only the options given are changed.
    """
    config = load_config()
    updates = {
        "server_url": server.rstrip("/") if server else None,
        "token": token,
        "container": container,
        "zone": zone,
        "owner": owner,
    }
    changed = {key: value for key, value in updates.items() if value}
    if not changed:
        click.echo("Nothing to configure. Pass at least one option.", err=True)
        sys.exit(1)

    config.update(changed)
    save_config(config)
    for key in sorted(changed):
        shown = "********" if key == "token" else changed[key]
        click.echo(f"{key}: {shown}")


async def _check(server_config: ServerConfig, container: str) -> AccountStatus | None:
    """Account status, or None if the server is unreachable."""
    async with RecordStoreClient(server_config, container) as client:
        if not await client.health_check():
            return None
        return await client.account_status()


@click.command()
@click.option("--server", default=None, help="Record store URL (overrides config).")
@click.option("--token", default=None, help="API token (overrides config).")
@click.pass_context
def check(ctx: click.Context, server: str | None, token: str | None) -> None:
    """Check that the record store is reachable and the account is usable."""
    server_config = server_config_from({"server": server, "token": token})
    container = ctx.obj.get("container") or load_config().get("container")
    if not container:
        click.echo("Error: container is required. Pass --container.", err=True)
        sys.exit(1)

    click.echo(f"Checking {server_config.server_url} ...")
    try:
        account = asyncio.run(_check(server_config, container))
    except RecordStoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if account is None:
        click.echo("Server: unreachable", err=True)
        sys.exit(1)
    click.echo("Server: reachable")

    click.echo(f"Account: {account.description}")
    if account != AccountStatus.AVAILABLE:
        click.echo(account.detailed_description, err=True)
        sys.exit(1)
