"""Command-line interface for cloudsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Save server, container and zone settings
- check: Verify the record store and account
- status: Show the local sync state of a zone
- reset-token: Force a full fetch on the next sync
- forget-zone: Force zone and subscription setup on the next sync
- pending list|clear: Inspect deletions queued while offline
"""

from __future__ import annotations

import logging

import click

from cloudsync.client.cli.config import (
    engine_config_from,
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
    server_config_from,
)
from cloudsync.client.cli.pending import pending
from cloudsync.client.cli.remote import check, configure
from cloudsync.client.cli.state import forget_zone, reset_token, status


@click.group()
@click.version_option(package_name="cloudsync")
@click.option("--container", default=None, help="Container identifier (overrides config).")
@click.option("--zone", default=None, help="Zone name (overrides config).")
@click.option("--owner", default=None, help="Zone owner (overrides config).")
@click.option(
    "--data-dir",
    default=None,
    type=click.Path(file_okay=False),
    help="Engine state directory (default: ~/.cloudsync/<container>).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(
    ctx: click.Context,
    container: str | None,
    zone: str | None,
    owner: str | None,
    data_dir: str | None,
    verbose: bool,
) -> None:
    """cloudsync - keep local models in sync with a remote record store."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {
        "container": container,
        "zone": zone,
        "owner": owner,
        "data_dir": data_dir,
    }


# Setup commands
cli.add_command(configure)
cli.add_command(check)

# Local state commands
cli.add_command(status)
cli.add_command(reset_token)
cli.add_command(forget_zone)
cli.add_command(pending)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "engine_config_from",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
    "server_config_from",
]
