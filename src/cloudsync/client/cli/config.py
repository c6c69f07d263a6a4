"""Configuration utilities for the cloudsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from cloudsync.core.config import CURRENT_USER, ServerConfig, SyncEngineConfig


def get_config_dir() -> Path:
    """Get the configuration directory for cloudsync.

    Returns:
        Path to ~/.cloudsync or equivalent.
    """
    return Path.home() / ".cloudsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def engine_config_from(options: dict[str, str | None]) -> SyncEngineConfig:
    """Build the engine configuration from CLI options and the config file.

    Options given on the command line win over the config file. Exits
    with an error if the container or zone is unknown.
    """
    config = load_config()
    container = options.get("container") or config.get("container")
    zone = options.get("zone") or config.get("zone")
    if not container or not zone:
        click.echo(
            "Error: container and zone are required. "
            "Pass --container/--zone or run 'cloudsync configure'.",
            err=True,
        )
        sys.exit(1)

    data_dir = options.get("data_dir") or config.get("data_dir")
    return SyncEngineConfig(
        container_identifier=container,
        zone_name=zone,
        owner_name=options.get("owner") or config.get("owner") or CURRENT_USER,
        data_dir=Path(data_dir).expanduser() if data_dir else get_config_dir() / container,
    )


def server_config_from(options: dict[str, str | None]) -> ServerConfig:
    """Build the server configuration from CLI options and the config file."""
    config = load_config()
    server_url = options.get("server") or config.get("server_url")
    token = options.get("token") or config.get("token")
    if not server_url or not token:
        click.echo(
            "Error: server URL and token are required. "
            "Pass --server/--token or run 'cloudsync configure'.",
            err=True,
        )
        sys.exit(1)
    return ServerConfig(server_url=server_url, token=token)
