"""
portwarden CLI - keep a NAT-PMP port mapping alive.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import Config, NOTIFIERS, set_config
from .keeper import PortFileNotifier, QBittorrentNotifier, QueuedNotifier, RenewalScheduler
from .natpmp import (
    NatPmpError,
    NatPmpTransport,
    NotifierFailed,
    PortMapping,
    Stopped,
    query_gateway,
    request_fresh_mapping,
    stoppable_sleep,
)

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler()]
    )


def run_async(coro):
    """Run an async function."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        return loop.run_until_complete(coro)


def fail(message: str):
    console.print(f"[red]✗ {escape(message)}[/red]")
    sys.exit(1)


def build_notifier(config: Config):
    """Create the downstream notifier named by the configuration."""
    if config.notifier == "file":
        return PortFileNotifier(config.port_file)
    return QBittorrentNotifier(config.qbittorrent_url)


def mapping_table(mapping: PortMapping) -> Table:
    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")

    table.add_row("Protocol", mapping.protocol.name)
    table.add_row("Internal port", str(mapping.internal_port))
    table.add_row("External port", f"[cyan]{mapping.external_port}[/cyan]")
    table.add_row("Lifetime", f"{mapping.lifetime}s")
    table.add_row("Epoch", str(mapping.epoch))
    return table


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='JSON config file')
@click.option('--gateway', '-g', help='Gateway IP address (env: NATPMP_GATEWAY_IP)')
@click.option('--lifetime', type=int, help='Requested mapping lifetime in seconds')
@click.pass_context
def main(ctx, verbose, config_path, gateway, lifetime):
    """portwarden - keep a NAT-PMP port mapping alive"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    setup_logging(verbose)

    try:
        config = Config.from_env(Path(config_path) if config_path else None)
    except ValueError as e:
        fail(f"Invalid configuration: {e}")
    ctx.obj['config'] = config.with_overrides(gateway=gateway, lifetime=lifetime)


def _resolve(ctx, **overrides) -> Config:
    config = ctx.obj['config'].with_overrides(**overrides)
    try:
        config.validate()
    except ValueError as e:
        fail(str(e))
    set_config(config)
    return config


@main.command()
@click.pass_context
def query(ctx):
    """Ask the gateway for its public address."""
    config = _resolve(ctx)

    async def _query():
        with NatPmpTransport(config.gateway_address) as transport:
            return await query_gateway(transport)

    try:
        info = run_async(_query())
    except NatPmpError as e:
        fail(f"Querying public IP failed: {e}")

    console.print(f"[green]✓ Public IP:[/green] [cyan]{info.address}[/cyan] (epoch {info.epoch})")


@main.command('map')
@click.pass_context
def map_port(ctx):
    """Request a single port mapping and print it."""
    config = _resolve(ctx)

    async def _map():
        with NatPmpTransport(config.gateway_address) as transport:
            return await request_fresh_mapping(
                transport,
                lifetime=config.lifetime,
                max_unexpected=config.max_unexpected,
            )

    try:
        mapping = run_async(_map())
    except NatPmpError as e:
        fail(f"Querying a port mapping failed: {e}")

    console.print("[bold green]✓ Port mapped[/bold green]\n")
    console.print(mapping_table(mapping))


@main.command()
@click.option('--notifier', type=click.Choice(NOTIFIERS), help='Downstream consumer')
@click.option('--qbittorrent-url', help='qBittorrent Web UI base URL')
@click.option('--port-file', type=click.Path(dir_okay=False), help='File to append "pid,port" lines to')
@click.option('--retry-delay', 'notify_retry_delay', type=float,
              help='Seconds between notifier retries (0 makes failures fatal)')
@click.pass_context
def run(ctx, notifier: Optional[str], qbittorrent_url: Optional[str],
        port_file: Optional[str], notify_retry_delay: Optional[float]):
    """Keep a port mapping alive and report port changes."""
    config = _resolve(
        ctx,
        notifier=notifier,
        qbittorrent_url=qbittorrent_url,
        port_file=port_file,
        notify_retry_delay=notify_retry_delay,
    )

    console.print(f"\n[bold blue]portwarden[/bold blue] gateway [cyan]{config.gateway}[/cyan]\n")

    try:
        run_async(_keep_mapping(config))
    except NatPmpError as e:
        fail(f"Keeping the port mapping failed: {e}")
    except NotifierFailed as e:
        fail(f"Failed to update downstream: {e}")


async def _keep_mapping(config: Config) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows
            pass

    downstream = build_notifier(config)
    notifier = downstream
    if config.notify_retry_delay > 0:
        notifier = QueuedNotifier(downstream, retry_delay=config.notify_retry_delay)
        notifier.start()

    try:
        with NatPmpTransport(config.gateway_address) as transport:
            info = await query_gateway(transport, sleep=stoppable_sleep(stop_event))
            console.print(f"[green]✓ Public IP:[/green] {info.address} (epoch {info.epoch})")

            scheduler = RenewalScheduler(
                transport,
                notifier,
                lifetime=config.lifetime,
                max_unexpected=config.max_unexpected,
                stop_event=stop_event,
            )
            mapping = await scheduler.start()
            console.print(mapping_table(mapping))

            await scheduler.run()
    except Stopped:
        logger.info("Stopped before a mapping was held")
    finally:
        if isinstance(notifier, QueuedNotifier):
            await notifier.stop()
        if isinstance(downstream, QBittorrentNotifier):
            await downstream.close()


if __name__ == '__main__':
    main()
