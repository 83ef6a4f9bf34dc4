from typing import Optional

import click

from scpilink.server.bg_killer import (
    cleanup_stale_servers,
    kill_scpilink_servers,
    list_running_servers,
)
from scpilink.server.server import start_server
from scpilink.util import (
    DEFAULT_HOST_ADDR,
    DEFAULT_LOGLEVEL,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    format_error_response,
)
from scpilink.util.check_hw import get_hw_ports


def print_tree(cmd, prefix="", parent_ctx=None):
    """Print command tree starting from given command."""
    ctx = click.Context(cmd, info_name=cmd.name, parent=parent_ctx)

    # Only print root name if no parent
    if not parent_ctx:
        click.echo(cmd.name)

    for sub in sorted(cmd.list_commands(ctx)):
        sub_cmd = cmd.get_command(ctx, sub)
        click.echo(f"{prefix}└── {sub}")
        if isinstance(sub_cmd, click.Group):
            print_tree(sub_cmd, prefix + "    ", ctx)


def tree_option(f):
    """Add --tree option to command."""

    def callback(ctx, param, value):
        if not value or ctx.resilient_parsing:
            return
        print_tree(ctx.command)
        ctx.exit()

    return click.option(
        "--tree",
        is_flag=True,
        help="Show command tree from this point",
        expose_value=False,
        is_eager=True,
        callback=callback,
    )(f)


@click.group()
@tree_option
def cli():
    """scpilink - sessions with SCPI instruments.

    - A session server that owns the instrument connections

    - Instrument configuration management

    - Quick queries from the command line
    """
    pass


@cli.command()
@click.option(
    "--instruments-config",
    "-i",
    default=None,
    help="Instrument INI file to serve (in addition to ~/.scpilink/instruments.ini)",
)
@click.option(
    "--host-address",
    "-ha",
    default=DEFAULT_HOST_ADDR,
    help="Network address to bind server to (default: localhost)",
)
@click.option(
    "--msg-port",
    "-mp",
    default=DEFAULT_PORT,
    type=int,
    help=f"Port for request/response messages (default: {DEFAULT_PORT})",
)
@click.option(
    "--notif-port",
    "-np",
    default=lambda: DEFAULT_PORT + 1,
    type=int,
    help=f"Port for server notifications (default: {DEFAULT_PORT + 1})",
)
@click.option(
    "--post-port",
    "-pp",
    default=lambda: DEFAULT_PORT + 2,
    type=int,
    help=f"Port for fire-and-forget requests (default: {DEFAULT_PORT + 2})",
)
@click.option(
    "--log-to-file/--no-log-to-file",
    "-ltf/",
    default=True,
    help="Enable/disable logging to file (default: enabled)",
)
@click.option(
    "--log-to-stdout/--no-log-to-stdout",
    "-lts/",
    default=True,
    help="Enable/disable console logging (default: enabled)",
)
@click.option(
    "--log-path",
    "-lp",
    default="",
    help="Custom path for log file (default: auto-generated)",
)
@click.option(
    "--clear-prev-log/--no-clear-prev-log",
    "-c/",
    default=True,
    help="Clear previous log file on startup (default: enabled)",
)
@click.option(
    "--log-level",
    "-ll",
    default=DEFAULT_LOGLEVEL,
    help="Logging level (TRACE, DEBUG, INFO, WARNING, ERROR) (default: INFO)",
)
@click.option(
    "--activity-log-path",
    "-al",
    default=None,
    help="Also append instrument activity to this JSON-lines file",
)
def server(**kwargs):
    """Start the scpilink server.

    Launches a server that owns the configured instruments' connections and
    lets other processes use them:

    - Connection state published per instrument

    - Commands and file transfers forwarded to the instruments

    - One owner at a time per instrument (acquire/release)
    """
    import asyncio

    # Convert host_address to host for start_server
    kwargs["host"] = kwargs.pop("host_address")
    asyncio.run(start_server(**kwargs))


@cli.command(name="list")
def list_servers():
    """List all running scpilink servers.

    Displays information about each registered server instance:

    - Process ID (PID)

    - Running status

    - Start time

    - Network configuration (host and ports)
    """
    servers = list_running_servers()

    click.echo("\nRunning scpilink servers:")
    click.echo("------------------------")

    if not servers:
        click.echo("No servers found")
        click.echo("")
        return

    for server in servers:
        status = "(RUNNING)" if server.get("running", False) else "(NOT RUNNING)"
        click.echo(f"\nPID: {server['pid']} {status}")
        click.echo(f"Started: {server['timestamp']}")
        click.echo(f"Host: {server['host']}")
        click.echo(
            f"Ports: msg={server['ports']['msg']}, "
            f"notif={server['ports']['notif']}, "
            f"post={server['ports']['post']}"
        )
    click.echo("")


@cli.command()
@click.option(
    "--stale-only",
    "-s",
    is_flag=True,
    default=False,
    help="Only remove records of servers that are no longer running",
)
def kill(stale_only: bool):
    """Kill all running scpilink servers.

    Forcefully terminates all registered scpilink server processes.
    Useful for cleaning up orphaned processes or resolving port conflicts.
    """
    if stale_only:
        removed = cleanup_stale_servers()
        click.echo(f"Removed {removed} stale server record(s)")
        click.echo("")
        return

    killed = kill_scpilink_servers()
    if killed:
        click.echo(f"Killed {killed} scpilink server(s)")
    else:
        click.echo("No running scpilink servers found")
    click.echo("")


@cli.command()
def ports():
    """List all available serial ports.

    Displays information about serial/COM ports:
    - Port name (e.g. COM1, /dev/ttyUSB0)
    - Device description
    - Hardware information
    """
    ports = get_hw_ports()

    click.echo("\nAvailable serial ports:")
    click.echo("----------------------")

    if not ports:
        click.echo("No serial ports found")
        click.echo("")
        return

    for port, info in ports.items():
        click.echo(f"\nPort: {port}")
        if len(info) >= 2:
            description, hwid = info
            click.echo(f"Description: {description}")
            click.echo(f"Hardware ID: {hwid}")

    click.echo("")


@cli.group()
@tree_option
def instruments():
    """Manage instrument configurations."""
    pass


@instruments.command(name="list")
@click.option(
    "--config", "-c", "config_path", default=None, help="Also read this instrument INI file"
)
def list_instruments(config_path: Optional[str]):
    """List the configured instruments."""
    from rich.console import Console
    from rich.table import Table

    from scpilink.instrument import list_available_instruments, load_instruments

    try:
        sources = list_available_instruments(config_path)
        valid = load_instruments(config_path)
    except FileNotFoundError:
        click.echo(f"Error: {format_error_response()}", err=True)
        raise SystemExit(1)

    if not sources:
        click.echo("No instruments configured")
        return

    table = Table(title="Configured instruments")
    table.add_column("Id", style="bold")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Address")
    table.add_column("Auto-connect")
    table.add_column("Source")

    for inst_id, source in sorted(sources.items()):
        inst = valid.get(inst_id)
        if inst is None:
            table.add_row(inst_id, "[red]invalid[/red]", "", "", "", source)
            continue
        info = inst.get_info()
        table.add_row(
            inst_id,
            info["name"],
            info["type"],
            info["address"],
            "yes" if info["auto_connect"] else "no",
            source,
        )

    Console().print(table)


@instruments.command()
@click.option("--path", "-p", default=None, help="File to write (default: user config)")
def init(path: Optional[str]):
    """Write a starter instruments.ini (existing sections are kept)."""
    from pathlib import Path

    from scpilink.instrument import create_default_instruments_file

    written = create_default_instruments_file(Path(path) if path else None)
    click.echo(f"Wrote instrument configuration to {written}")


@cli.command()
@click.argument("instrument")
@click.argument("commands", nargs=-1, required=True)
@click.option(
    "--host-address",
    "-ha",
    default=DEFAULT_HOST_ADDR,
    help="Server address to connect to (default: localhost)",
)
@click.option(
    "--msg-port",
    "-mp",
    default=DEFAULT_PORT,
    type=int,
    help=f"Server message port (default: {DEFAULT_PORT})",
)
@click.option("--owner", "-o", default="cli", help="Name to acquire the instrument as")
@click.option(
    "--timeout",
    "-t",
    default=DEFAULT_TIMEOUT,
    type=float,
    help=f"Seconds to wait for each answer (default: {DEFAULT_TIMEOUT})",
)
def query(
    instrument: str,
    commands: tuple[str, ...],
    host_address: str,
    msg_port: int,
    owner: str,
    timeout: float,
):
    """Send commands to an instrument through a running server.

    INSTRUMENT: Id of the instrument on the server
    COMMANDS: SCPI commands, sent in order. Answers to queries are printed
    """
    from scpilink.scripting import query as run_query
    from scpilink.server.connection_manager import ConnectionManager
    from scpilink.types import CommsError

    manager = ConnectionManager()
    try:
        manager.connect(host_address, msg_port, timeout=timeout)
        answers = run_query(manager, instrument, list(commands), owner=owner, timeout=timeout)
    except (CommsError, TimeoutError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    finally:
        manager.disconnect()

    for cmd, answer in zip(commands, answers):
        if answer is not None:
            click.echo(f"{cmd} -> {answer}")
