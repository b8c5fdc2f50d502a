"""devicelink CLI.

Usage:
    devicelink serve                          # Listening mode on 0.0.0.0:8765
    devicelink serve --port 9000 --token s3   # Custom port and token
    devicelink serve --no-adb                 # No capability providers (ping only)
    devicelink relay --url wss://relay/ws     # Relay mode until Ctrl+C
    devicelink health                         # Check a Listening server
    devicelink config --json                  # Show resolved configuration
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click
import httpx

from . import __version__
from .capabilities.base import Capabilities
from .config import RuntimeConfig, load_config, warn_if_default_token
from .protocol.dispatcher import CommandDispatcher
from .protocol.errors import ConfigError

config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML configuration file",
)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _resolve_config(config_path: str | None, **overrides: Any) -> RuntimeConfig:
    """Load configuration and set up logging, or exit with a usage error."""
    try:
        config = load_config(config_path, **overrides)
    except ConfigError as e:
        raise click.ClickException(e.message) from e

    _setup_logging(config.log_level)
    return config


def _build_dispatcher(config: RuntimeConfig, use_adb: bool) -> CommandDispatcher:
    if not use_adb:
        return CommandDispatcher(Capabilities())

    from .capabilities.adb import adb_capabilities

    return CommandDispatcher(adb_capabilities(config.adb_serial))


@click.group()
@click.version_option(__version__, prog_name="devicelink")
def main() -> None:
    """devicelink - remote touch-screen control over WebSocket."""


@main.command()
@click.option("--host", default=None, help="Host to bind to [default: 0.0.0.0]")
@click.option("--port", type=int, default=None, help="Port to bind to [default: 8765]")
@click.option("--token", default=None, help="Shared auth token")
@click.option("--no-adb", is_flag=True, help="Run without the adb capability providers")
@config_option
def serve(
    host: str | None,
    port: int | None,
    token: str | None,
    no_adb: bool,
    config_path: str | None,
) -> None:
    """Run in Listening mode: accept controller connections."""
    import uvicorn

    from .app import create_app
    from .transport.listener import ListeningConnectionManager

    config = _resolve_config(config_path, host=host, port=port, auth_token=token)
    warn_if_default_token(config)

    manager = ListeningConnectionManager(
        config.auth_token,
        _build_dispatcher(config, use_adb=not no_adb),
        auth_timeout=config.auth_timeout,
    )

    click.echo(f"Starting devicelink on ws://{config.host}:{config.port}", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(
        create_app(manager),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


@main.command()
@click.option("--url", "relay_url", default=None, help="Relay endpoint (ws:// or wss://)")
@click.option("--token", default=None, help="Token presented to the relay")
@click.option("--reconnect-delay", type=float, default=None, help="Seconds between reconnects")
@click.option("--no-adb", is_flag=True, help="Run without the adb capability providers")
@config_option
def relay(
    relay_url: str | None,
    token: str | None,
    reconnect_delay: float | None,
    no_adb: bool,
    config_path: str | None,
) -> None:
    """Run in Relay mode: dial out to a relay and serve its commands."""
    config = _resolve_config(
        config_path,
        relay_url=relay_url,
        auth_token=token,
        reconnect_delay=reconnect_delay,
    )
    if not config.relay_url:
        raise click.UsageError("relay URL required (--url or DEVICELINK_RELAY_URL)")
    warn_if_default_token(config)

    dispatcher = _build_dispatcher(config, use_adb=not no_adb)

    click.echo("Starting devicelink in relay mode", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    try:
        started = asyncio.run(_run_relay(config.relay_url, config, dispatcher))
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)
        return

    if not started:
        sys.exit(1)


async def _run_relay(
    relay_url: str, config: RuntimeConfig, dispatcher: CommandDispatcher
) -> bool:
    from .transport.relay import RelayConnectionManager

    manager = RelayConnectionManager(
        relay_url,
        config.auth_token,
        dispatcher,
        reconnect_delay=config.reconnect_delay,
        on_status_changed=lambda state: click.echo(f"Relay: {state.value}", err=True),
    )

    if not await manager.start():
        return False
    try:
        await manager.wait()
    finally:
        await manager.stop()
    return True


@main.command()
@click.option("--url", default="http://localhost:8765", help="Server URL for health check")
def health(url: str) -> None:
    """Check the health of a Listening server."""

    async def check() -> None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url.rstrip('/')}/health")
                if response.status_code == 200:
                    data = response.json()
                    click.echo(f"Server is healthy: {data}")
                else:
                    click.echo(f"Server returned {response.status_code}", err=True)
                    sys.exit(1)
        except httpx.ConnectError:
            click.echo(f"Cannot connect to server at {url}", err=True)
            sys.exit(1)
        except httpx.HTTPError as e:
            click.echo(f"Health check failed: {e}", err=True)
            sys.exit(1)

    asyncio.run(check())


@main.command("config")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@config_option
def show_config(output_json: bool, config_path: str | None) -> None:
    """Show the resolved configuration (token masked).

    Examples:

        devicelink config
        devicelink config --json --config device.yaml
    """
    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(e.message) from e

    data = config.to_dict()

    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo("devicelink Configuration")
    click.echo("-" * 40)
    click.echo(f"Listen address:     {data['host']}:{data['port']}")
    click.echo(f"Auth token:         {data['auth_token']}")
    click.echo(f"Auth timeout:       {data['auth_timeout']:g}s")
    click.echo(f"Relay URL:          {data['relay_url'] or 'none'}")
    click.echo(f"Reconnect delay:    {data['reconnect_delay']:g}s")
    click.echo(f"ADB serial:         {data['adb_serial'] or 'default device'}")
    click.echo(f"Log level:          {data['log_level']}")
    if config.uses_default_token:
        click.echo("Warning: using the default auth token", err=True)


if __name__ == "__main__":
    main()
