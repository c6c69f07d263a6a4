"""Pending operation commands for the cloudsync CLI.

Commands:
- pending list: Show deletions queued while offline
- pending clear: Drop all queued deletions
"""

from __future__ import annotations

import click

from cloudsync.client.cli.config import engine_config_from
from cloudsync.client.sync.pending import PendingOperationsManager


@click.group()
def pending() -> None:
    """Inspect deferred operations."""


@pending.command("list")
@click.pass_context
def list_pending(ctx: click.Context) -> None:
    """Show deletions queued while sync was not possible."""
    config = engine_config_from(ctx.obj)
    manager = PendingOperationsManager(config.pending_operations_path)

    operations = manager.operations
    if not operations:
        click.echo("No pending operations.")
        return

    for index, operation in enumerate(operations, start=1):
        click.echo(f"{index}. {operation.kind.value}: {', '.join(operation.record_ids)}")
    click.echo(f"\n{len(manager.get_pending_deletions())} record(s) awaiting deletion.")


@pending.command("clear")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def clear_pending(ctx: click.Context, yes: bool) -> None:
    """Drop all queued deletions without sending them."""
    config = engine_config_from(ctx.obj)
    manager = PendingOperationsManager(config.pending_operations_path)

    if not len(manager):
        click.echo("No pending operations.")
        return
    if not yes and not click.confirm(
        "Queued deletions will never reach the server. Continue?"
    ):
        click.echo("Aborted.")
        return

    removed = manager.clear()
    click.echo(f"Removed {removed} pending operation(s).")
