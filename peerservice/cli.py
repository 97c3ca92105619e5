"""
Peer service CLI - run a node and talk to other peer services.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from .client import PeerClient, PeerClientError
from .config import Config, get_config, set_config
from .registry.errors import InvalidPeerError, RegistryError
from .registry.models import Peer, normalize_url
from .registry.store import FilePeerStore

console = Console()


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
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


def parse_attributes(pairs: Tuple[str, ...]) -> dict:
    """Parse key=value pairs into an attribute map."""
    attributes = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--attr")
        key, value = pair.split("=", 1)
        attributes[key.strip()] = value
    return attributes


def peers_table(peers, title: Optional[str] = None) -> Table:
    table = Table(title=title)
    table.add_column("URL", style="cyan")
    table.add_column("Attributes", style="dim")
    for peer in peers:
        attrs = ", ".join(f"{k}={v}" for k, v in sorted(peer.attributes.items()))
        table.add_row(peer.url, attrs)
    return table


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--data-dir', type=click.Path(file_okay=False), help='Data directory')
@click.pass_context
def main(ctx, verbose, data_dir):
    """Peer service - voluntary peer discovery"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    setup_logging(verbose)
    if data_dir:
        set_config(Config.load(Path(data_dir)))


@main.command()
@click.option('--host', '-h', default=None, help='Host to bind to')
@click.option('--port', '-p', default=None, type=int, help='Port to bind to')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Start the peer service API server."""
    config = get_config()
    host = host or config.server.host
    port = port or config.server.port

    console.print(f"\n[bold blue]Starting peer service v{config.protocol_version}[/bold blue]")
    console.print(f"   Listening on: http://{host}:{port}{config.api_prefix}")
    console.print(f"   Store: {config.registry.backend}")
    console.print(f"   Press Ctrl+C to stop\n")

    from .api.server import run_server

    try:
        run_server(host=host, port=port, reload=reload, config=config)
    except RegistryError as e:
        console.print(f"[red]Failed to start: {e}[/red]")
        sys.exit(1)


# ============ Config ============

@main.group('config')
def config_group():
    """Configuration commands."""
    pass


@config_group.command('show')
def config_show():
    """Print the active configuration."""
    config = get_config()
    console.print(f"[dim]{config.config_path}[/dim]")
    console.print_json(json.dumps(config.to_dict()))


@config_group.command('init')
@click.option('--backend', type=click.Choice(['memory', 'file']), default='file', help='Peer store backend')
@click.option('--port', '-p', default=None, type=int, help='API port')
@click.option('--peer', 'initial_peers', multiple=True, help='Initial peer url (repeatable)')
@click.option('--attr', '-a', 'attrs', multiple=True, help='Info attribute key=value (repeatable)')
@click.option('--force', is_flag=True, help='Overwrite an existing configuration')
def config_init(backend: str, port: Optional[int], initial_peers, attrs, force: bool):
    """Write a configuration file."""
    config = get_config()

    if config.config_path.exists() and not force:
        console.print(f"[yellow]Configuration already exists at {config.config_path}[/yellow]")
        console.print("   Use --force to overwrite.")
        return

    config.registry.backend = backend
    if port:
        config.server.port = port
    for url in initial_peers:
        try:
            normalize_url(url)
        except InvalidPeerError as e:
            raise click.BadParameter(str(e), param_hint="--peer")
    config.registry.initial_peers = list(initial_peers)
    config.attributes.update(parse_attributes(attrs))
    config.ensure_token_secret()
    config.save()

    console.print(f"\n[bold green]✓ Configuration written to {config.config_path}[/bold green]\n")


# ============ Remote ============

@main.command('info')
@click.argument('url')
def remote_info(url: str):
    """Show the protocol version of a remote peer service."""

    async def do_info():
        async with PeerClient(url) as client:
            return await client.info()

    try:
        version, attributes = run_async(do_info())
    except PeerClientError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Protocol", f"[cyan]{version}[/cyan]")
    for key, value in sorted(attributes.items()):
        table.add_row(key, value)
    console.print(table)


@main.command('list')
@click.argument('url')
@click.option('--page-size', '-n', default=0, type=int, help='Peers per page (0 = server default)')
@click.option('--all', '-a', 'fetch_all', is_flag=True, help='Follow page tokens to the end')
@click.option('--token', '-t', default='', help='Page token from a previous listing')
def remote_list(url: str, page_size: int, fetch_all: bool, token: str):
    """List the peers known to a remote peer service."""

    async def do_list():
        async with PeerClient(url) as client:
            if fetch_all:
                return await client.all_peers(page_size=page_size), ""
            return await client.list_peers(page_size=page_size, page_token=token)

    try:
        peers, next_token = run_async(do_list())
    except PeerClientError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    console.print(peers_table(peers, title=f"Peers of {url}"))
    if next_token:
        console.print(f"\n[dim]Next page token:[/dim] {next_token}")


@main.command('announce')
@click.argument('url')
@click.argument('peer_url')
@click.option('--attr', '-a', 'attrs', multiple=True, help='Peer attribute key=value (repeatable)')
def remote_announce(url: str, peer_url: str, attrs):
    """Announce PEER_URL to the peer service at URL."""
    peer = Peer(url=peer_url, attributes=parse_attributes(attrs))

    async def do_announce():
        async with PeerClient(url) as client:
            return await client.announce(peer)

    try:
        success = run_async(do_announce())
    except PeerClientError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    if success:
        console.print(f"[bold green]✓ Announce accepted by {url}[/bold green]")
        console.print("[dim]  Use 'peerservice list' to check whether the peer is listed.[/dim]")
    else:
        console.print(f"[bold red]✗ Announce rejected by {url}[/bold red]")
        sys.exit(1)


# ============ Local store ============

@main.group()
def peers():
    """Administer the local peer store."""
    pass


def _local_store() -> FilePeerStore:
    config = get_config()
    if config.registry.backend != "file":
        console.print("[yellow]The configured store is in-memory; showing the file store anyway.[/yellow]")
    try:
        return FilePeerStore(config.data_dir)
    except RegistryError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)


@peers.command('list')
def peers_list():
    """List peers in the local store."""
    store = _local_store()
    stored = store.peers()
    if not stored:
        console.print("[dim]No peers stored.[/dim]")
        return
    console.print(peers_table(stored, title=f"{len(stored)} local peers"))


@peers.command('remove')
@click.argument('peer_url')
def peers_remove(peer_url: str):
    """Remove a peer from the local store."""
    store = _local_store()
    try:
        removed = store.remove(peer_url)
    except InvalidPeerError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    if removed:
        console.print(f"[green]✓ Removed {peer_url}[/green]")
    else:
        console.print(f"[yellow]Peer not found: {peer_url}[/yellow]")


if __name__ == '__main__':
    main()
