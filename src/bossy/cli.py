"""Command line front end for bossy."""

import argparse
import asyncio
import sys

from rich.console import Console
from rich.table import Table

from bossy.core import Bossy
from bossy.errors import BossyError, RangeExhaustedError
from bossy.logs import configure_logging
from bossy.models import (
    WELL_KNOWN_PORTS,
    PortRecord,
    ProcessRecord,
    suggest_alternative_ports,
)
from bossy.settings import Settings

console = Console()
err_console = Console(stderr=True)


def _port_number(text: str) -> int:
    value = int(text)
    if not 0 <= value <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {value}")
    return value


def _count(text: str) -> int:
    value = int(text)
    if value < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bossy",
        description="Inspect ports and processes, and kill the ones in your way.",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default from BOSSY_LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command")

    ports = sub.add_parser("ports", help="List ports")
    group = ports.add_mutually_exclusive_group()
    group.add_argument("--listening", action="store_true", help="Only listening sockets")
    group.add_argument("--common", action="store_true", help="Only development ports")

    port = sub.add_parser("port", help="Show what is using a port")
    port.add_argument("port", type=_port_number)

    kill_port = sub.add_parser("kill-port", help="Kill the process using a port")
    kill_port.add_argument("port", type=_port_number)

    kill = sub.add_parser("kill", help="Kill processes by name pattern")
    kill.add_argument("name")
    kill.add_argument("--force", action="store_true", help="Send SIGKILL right away")

    ps = sub.add_parser("ps", help="List processes")
    group = ps.add_mutually_exclusive_group()
    group.add_argument("--top-cpu", action="store_true")
    group.add_argument("--top-memory", action="store_true")
    ps.add_argument("--limit", type=_count, default=20)

    cleanup = sub.add_parser("cleanup", help="Kill common development processes")
    cleanup.add_argument("--dev", action="store_true")

    find_port = sub.add_parser("find-port", help="Find a free port in a range")
    find_port.add_argument("start", type=_port_number)
    find_port.add_argument("end", type=_port_number)

    sub.add_parser("dashboard", help="Interactive dashboard (default)")
    return parser


def ports_table(title: str, ports: list[PortRecord]) -> Table:
    table = Table(title=title)
    for column in ("Port", "Proto", "State", "PID", "Process", "Service"):
        table.add_column(column, justify="right" if column in ("Port", "PID") else "left")
    for record in ports:
        table.add_row(
            str(record.port),
            record.protocol.name,
            record.state.name,
            str(record.pid) if record.pid is not None else "-",
            record.process_name or "-",
            record.service_name or "-",
        )
    return table


def processes_table(title: str, processes: list[ProcessRecord]) -> Table:
    table = Table(title=title)
    table.add_column("PID", justify="right")
    table.add_column("Process", max_width=19, overflow="ellipsis")
    table.add_column("CPU %", justify="right")
    table.add_column("Memory", justify="right")
    table.add_column("Status", max_width=12, overflow="ellipsis")
    for record in processes:
        table.add_row(
            str(record.pid),
            record.name,
            f"{record.cpu_usage:.1f}",
            record.format_memory(),
            record.status,
        )
    return table


def show_ports(bossy: Bossy, args: argparse.Namespace) -> int:
    if args.listening:
        ports = bossy.get_listening_ports()
    elif args.common:
        ports = bossy.get_development_ports()
    else:
        ports = bossy.get_all_ports()
    if not ports:
        console.print("No ports found")
        return 0
    console.print(ports_table(f"Ports ({len(ports)})", ports))
    return 0


def show_port(bossy: Bossy, args: argparse.Namespace) -> int:
    ports = bossy.get_port_by_number(args.port)
    if not ports:
        console.print(f"No processes found using port {args.port}")
        return 0
    console.print(ports_table(f"Port {args.port}", ports))
    return 0


def show_processes(bossy: Bossy, args: argparse.Namespace) -> int:
    if args.top_cpu:
        processes = bossy.get_top_cpu_processes(args.limit)
        title = f"Top {args.limit} CPU Consumers"
    elif args.top_memory:
        processes = bossy.get_top_memory_processes(args.limit)
        title = f"Top {args.limit} Memory Consumers"
    else:
        processes = bossy.get_processes()[: args.limit]
        title = f"Processes (showing {args.limit})"
    if not processes:
        console.print("No processes found")
        return 0
    console.print(processes_table(title, processes))
    return 0


async def kill_port(bossy: Bossy, args: argparse.Namespace) -> int:
    console.print(f"Killing process using port {args.port}...")
    pid = await bossy.kill_process_by_port(args.port)
    console.print(f"Killed process {pid} using port {args.port}")
    return 0


async def kill_name(bossy: Bossy, args: argparse.Namespace) -> int:
    console.print(f"Killing processes matching '{args.name}'...")
    pids = await bossy.kill_processes_by_name(args.name, args.force)
    if pids:
        console.print(f"Killed {len(pids)} process(es): {pids}")
    else:
        console.print(f"No processes found matching '{args.name}'")
    return 0


async def cleanup(bossy: Bossy, args: argparse.Namespace) -> int:
    if not args.dev:
        console.print("Please specify --dev to clean up development processes")
        return 0
    pids = await bossy.cleanup_dev_processes()
    if pids:
        console.print(f"Cleaned up {len(pids)} development processes: {pids}")
    else:
        console.print("No development processes found to clean up")
    return 0


async def find_port(bossy: Bossy, args: argparse.Namespace) -> int:
    console.print(f"Searching for available ports in range {args.start}-{args.end}...")
    try:
        port = await bossy.find_available_port(args.start, args.end)
    except RangeExhaustedError:
        alternatives = suggest_alternative_ports(args.start)
        if alternatives:
            err_console.print(f"Consider trying these alternative ports: {alternatives}")
        raise
    console.print(f"Available port found: {port}")
    if port in WELL_KNOWN_PORTS:
        console.print(f"This port is commonly used for: {WELL_KNOWN_PORTS[port]}")
    return 0


SYNC_COMMANDS = {"ports": show_ports, "port": show_port, "ps": show_processes}
ASYNC_COMMANDS = {"kill-port": kill_port, "kill": kill_name, "cleanup": cleanup, "find-port": find_port}


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``bossy`` console script."""
    args = build_parser().parse_args(argv)
    try:
        settings = Settings.from_env()
        level = args.log_level or settings.log_level

        if args.command in (None, "dashboard"):
            from textual.logging import TextualHandler

            from bossy.app import BossyApp

            # Log lines would corrupt the full-screen UI
            configure_logging(level, handler=TextualHandler())
            BossyApp(settings=settings).run()
            return 0

        configure_logging(level)
        bossy = Bossy(settings=settings)
        if args.command in SYNC_COMMANDS:
            return SYNC_COMMANDS[args.command](bossy, args)
        return asyncio.run(ASYNC_COMMANDS[args.command](bossy, args))
    except BossyError as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        return 1
    except ValueError as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
