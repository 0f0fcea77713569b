#!/usr/bin/env python3
"""
lanbeacon CLI

Command-line interface for UDP broadcast server discovery.

Usage:
    lanbeacon server                 # Answer discovery requests
    lanbeacon discover               # Find a server and print its address
    lanbeacon addresses              # List local addresses
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .config import Config, load_config
from .discovery import (
    DiscoveryClient,
    DiscoveryServer,
    describe_address,
    enumerate_local_addresses,
    select_address,
)
from .errors import DiscoveryError, DiscoveryTimeoutError

# stdout carries the discovered address only
console = Console(stderr=True)


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    if verbose:
        level = 'DEBUG'
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """Find a server on the local network by UDP broadcast."""
    config = load_config(Path(config_path) if config_path else None)
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--port', type=int, help='Discovery UDP port')
@click.option('--host', help='Address to bind (default: all interfaces)')
@click.option('--advertise', help='Address to advertise instead of auto-selecting one')
@click.pass_context
def server(ctx, port, host, advertise):
    """Answer discovery requests until interrupted."""
    config: Config = ctx.obj['config']
    if port is not None:
        config.port = port
    if host:
        config.host = host
    if advertise:
        config.advertise_address = advertise

    discovery_server = DiscoveryServer(config)
    try:
        discovery_server.start()
        console.print(Panel.fit(
            f"[bold green]Discovery Server Started[/bold green]\n\n"
            f"Listening: [yellow]{config.host}:{config.port}[/yellow]\n"
            f"Advertising: [cyan]{discovery_server.advertised_address}[/cyan]",
            title="Server Info"
        ))
        console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")
        discovery_server.serve_forever()
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")
    except DiscoveryError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        discovery_server.close()


@cli.command()
@click.option('--port', type=int, help='Discovery UDP port')
@click.option('--broadcast', help='Broadcast address to send requests to')
@click.option('--reply-timeout', type=float, help='Seconds to wait before resending')
@click.option('--deadline', type=float, default=None,
              help='Give up after this many seconds (default: never)')
@click.pass_context
def discover(ctx, port, broadcast, reply_timeout, deadline):
    """Find a server and print its address."""
    config: Config = ctx.obj['config']
    if port is not None:
        config.port = port
    if broadcast:
        config.broadcast_address = broadcast
    if reply_timeout is not None:
        config.reply_timeout = reply_timeout

    client = DiscoveryClient(config)
    try:
        address = client.discover(timeout=deadline)
    except KeyboardInterrupt:
        console.print("\n[yellow]Discovery interrupted[/yellow]")
        sys.exit(130)
    except DiscoveryTimeoutError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(2)
    except DiscoveryError as e:
        console.print(f"[red]Discovery failed: {e}[/red]")
        sys.exit(1)

    click.echo(address)


@cli.command()
def addresses():
    """List local addresses and the one a server would advertise."""
    local = enumerate_local_addresses()

    table = Table(title="Local Addresses")
    table.add_column("Interface", style="cyan")
    table.add_column("Address", style="yellow")

    for addr in local:
        table.add_row(addr.interface, describe_address(addr))

    console.print(table)

    chosen: Optional[str] = select_address(local)
    if chosen:
        click.echo(chosen)
    else:
        console.print("[red]No advertisable address[/red]")
        sys.exit(1)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
