"""Local sync state commands for the cloudsync CLI.

Commands:
- status: Show the durable sync state of the configured zone
- reset-token: Forget the change token so the next sync refetches everything
- forget-zone: Forget that the zone and its subscriptions were created
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator

import click

from cloudsync.client.cli.config import engine_config_from
from cloudsync.client.state import LocalSettings
from cloudsync.client.sync.pending import PendingOperationsManager
from cloudsync.client.sync.subscriptions import subscription_registry_key
from cloudsync.client.sync.tokens import token_key
from cloudsync.client.sync.zones import zone_flag_key
from cloudsync.core.config import SyncEngineConfig


@contextlib.contextmanager
def open_settings(config: SyncEngineConfig) -> Iterator[LocalSettings]:
    settings = LocalSettings(config.settings_path)
    try:
        yield settings
    finally:
        settings.close()


@click.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the local sync state of the configured zone."""
    config = engine_config_from(ctx.obj)
    zone = config.zone_name

    with open_settings(config) as settings:
        zone_created = settings.get_bool(zone_flag_key(zone))
        token = settings.get(token_key(zone))
        subscriptions = settings.get_json(subscription_registry_key(zone), {}) or {}

    pending = PendingOperationsManager(config.pending_operations_path)

    click.echo(f"Container: {config.container_identifier}")
    click.echo(f"Zone: {zone} (owner: {config.zone_id.owner_name})")
    click.echo(f"Data directory: {config.resolved_data_dir}")
    click.echo(f"Zone created: {'yes' if zone_created else 'no'}")
    click.echo(f"Change token: {'present' if token else 'none (full fetch on next sync)'}")
    if subscriptions:
        click.echo("Subscriptions:")
        for record_type, subscription_id in sorted(subscriptions.items()):
            click.echo(f"  {record_type}: {subscription_id}")
    else:
        click.echo("Subscriptions: none")
    click.echo(f"Pending deletions: {len(pending.get_pending_deletions())}")


@click.command("reset-token")
@click.pass_context
def reset_token(ctx: click.Context) -> None:
    """Forget the change token; the next sync fetches the whole zone."""
    config = engine_config_from(ctx.obj)
    with open_settings(config) as settings:
        settings.remove(token_key(config.zone_name))
    click.echo(f"Change token for zone '{config.zone_name}' cleared.")


@click.command("forget-zone")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def forget_zone(ctx: click.Context, yes: bool) -> None:
    """Forget that the zone and its subscriptions exist.

    The next sync re-creates them remotely. The change token is kept.
    """
    config = engine_config_from(ctx.obj)
    if not yes and not click.confirm(
        f"Forget zone '{config.zone_name}' and its subscriptions?"
    ):
        click.echo("Aborted.")
        return

    with open_settings(config) as settings:
        settings.remove(zone_flag_key(config.zone_name))
        settings.remove(subscription_registry_key(config.zone_name))
    click.echo(f"Zone '{config.zone_name}' will be set up again on the next sync.")
