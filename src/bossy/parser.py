"""Parsers turning system tool output into bossy records.

Every parser works line by line and returns an optional record per line: a
line that does not fit the expected shape is skipped, never fatal.
"""

import os
import re
from datetime import datetime
from ipaddress import ip_address

import structlog

from bossy.models import (
    MAX_PORT,
    ConnectionRecord,
    ConnectionState,
    PortRecord,
    ProcessRecord,
    Protocol,
    SocketAddress,
)

logger = structlog.get_logger(__name__)

# ps -A -ww -o pid,ppid,uid,%cpu,rss,stat,lstart,args
PS_LINE = re.compile(
    r"""^\s*
    (?P<pid>\d+)\s+
    (?P<ppid>\d+)\s+
    (?P<uid>\d+)\s+
    (?P<cpu>\d+(?:\.\d+)?)\s+
    (?P<rss>\d+)\s+
    (?P<stat>\S+)\s+
    (?P<lstart>\S+\s+\S+\s+\d+\s+\d+:\d+:\d+\s+\d{4})\s+
    (?P<args>\S.*?)\s*$""",
    re.VERBOSE | re.ASCII,
)

# Short form: ps -A -o pid,%cpu,%mem,command
PS_SHORT_LINE = re.compile(
    r"""^\s*
    (?P<pid>\d+)\s+
    (?P<cpu>\d+(?:\.\d+)?)\s+
    (?P<mem>\d+(?:\.\d+)?)\s+
    (?P<args>\S.*?)\s*$""",
    re.VERBOSE | re.ASCII,
)

# Local port: the first ":digits" in NAME that ends at "->", whitespace or EOL
LSOF_LINE = re.compile(
    r"(\S+)\s+(\d+)\s+\S+\s+\S+\s+\S+\s+\S+\s+\S+\s+.*?(?<!\S)\S*?:(\d+)(?:->|\s|$)"
)

LSTART_FORMAT = "%a %b %d %H:%M:%S %Y"

STATUS_LABELS = {
    "R": "Running",
    "S": "Sleeping",
    "I": "Idle",
    "D": "Disk Sleep",
    "Z": "Zombie",
    "T": "Stopped",
    "t": "Tracing",
    "X": "Dead",
    "U": "Uninterruptible",
}

HEADER_TOKENS = ("Active", "Proto")


def status_label(stat: str) -> str:
    """Human label for a ``ps`` state column such as ``Ss`` or ``R+``."""
    if not stat:
        return "Unknown"
    return STATUS_LABELS.get(stat[0], stat)


def _parse_port(text: str) -> int | None:
    if not (text.isascii() and text.isdigit()):
        return None
    port = int(text)
    return port if port <= MAX_PORT else None


def _parse_start_time(text: str) -> datetime | None:
    try:
        return datetime.strptime(" ".join(text.split()), LSTART_FORMAT)
    except ValueError:
        return None


def _process_name(args: str) -> str:
    # Kernel threads are shown as "[kthreadd]"
    if args.startswith("["):
        return args
    return os.path.basename(args.split()[0]) or args


def parse_process_line(
    line: str,
    total_memory: int = 0,
    short: bool = False,
) -> ProcessRecord | None:
    """
    Parse one row of the process listing.

    Args:
        line: A single line of ``ps`` output.
        total_memory: Physical memory in bytes, used to turn the short form's
            ``%mem`` column into bytes.
        short: Parse the ``pid %cpu %mem command`` form instead of the full one.
    """
    match = None if short else PS_LINE.match(line)
    if match:
        pid = int(match["pid"])
        if pid <= 0:
            return None
        ppid = int(match["ppid"])
        args = match["args"]
        argv = tuple(args.split())
        return ProcessRecord(
            pid=pid,
            name=_process_name(args),
            cpu_usage=float(match["cpu"]),
            memory=int(match["rss"]) * 1024,
            status=status_label(match["stat"]),
            parent_pid=ppid if ppid > 0 else None,
            start_time=_parse_start_time(match["lstart"]),
            user_id=int(match["uid"]),
            executable_path=argv[0] if argv[0].startswith("/") else None,
            command_line=argv,
        )

    match = PS_SHORT_LINE.match(line) if short else None
    if match:
        pid = int(match["pid"])
        if pid <= 0:
            return None
        args = match["args"]
        argv = tuple(args.split())
        return ProcessRecord(
            pid=pid,
            name=_process_name(args),
            cpu_usage=float(match["cpu"]),
            memory=int(total_memory * float(match["mem"]) / 100),
            status="Unknown",
            executable_path=argv[0] if argv[0].startswith("/") else None,
            command_line=argv,
        )

    return None


def parse_processes(raw: str, total_memory: int = 0) -> list[ProcessRecord]:
    """Parse a whole process listing, skipping headers and malformed rows."""
    records: list[ProcessRecord] = []
    skipped = 0
    short: bool | None = None
    for line in raw.splitlines():
        tokens = line.split()
        if not tokens:
            continue
        if tokens[0] == "PID":
            # Header: the full form always carries a PPID column
            short = "PPID" not in tokens
            continue
        if short is None:
            # No header yet: the first row that fits either form decides
            record = parse_process_line(line, total_memory)
            if record is not None:
                short = False
            else:
                record = parse_process_line(line, total_memory, short=True)
                if record is not None:
                    short = True
        else:
            record = parse_process_line(line, total_memory, short)
        if record is None:
            skipped += 1
            continue
        records.append(record)
    logger.debug("processes_parsed", parsed=len(records), skipped=skipped)
    return records


def parse_socket_address(text: str) -> SocketAddress | None:
    """
    Parse a socket address as printed by netstat.

    Accepted forms: ``*.8080`` / ``*:8080`` (unspecified address),
    ``ip:port`` / ``[ipv6]:port``, and BSD dotted ``127.0.0.1.8080`` where the
    last dot-separated segment is the port. Anything else gives None.
    """
    if text.startswith("*"):
        port = _parse_port(re.split(r"[.:]", text)[-1])
        return None if port is None else SocketAddress.unspecified(port)

    host, sep, port_text = text.rpartition(":")
    if sep and host:
        port = _parse_port(port_text)
        if port is not None:
            try:
                return SocketAddress(ip_address(host.strip("[]")), port)
            except ValueError:
                pass

    host, sep, port_text = text.rpartition(".")
    if sep and host:
        port = _parse_port(port_text)
        if port is not None:
            try:
                return SocketAddress(ip_address(host), port)
            except ValueError:
                pass

    return None


def parse_socket_line(
    line: str,
    protocol: Protocol,
    pid_map: dict[int, tuple[int, str]] | None = None,
) -> PortRecord | None:
    """Parse one netstat row: proto, recv-q, send-q, local, remote[, state]."""
    parts = line.split()
    if len(parts) < 4 or parts[0] in HEADER_TOKENS:
        return None
    if not parts[0].lower().startswith(protocol.value):
        return None

    local = parse_socket_address(parts[3])
    if local is None:
        return None

    if protocol is Protocol.TCP:
        state = ConnectionState.from_token(parts[5] if len(parts) > 5 else "UNKNOWN")
    else:
        state = ConnectionState.LISTEN

    remote = None
    if len(parts) > 4 and parts[4] != "*.*":
        remote = parse_socket_address(parts[4])

    pid, process_name = (pid_map or {}).get(local.port, (None, None))
    return PortRecord(
        port=local.port,
        protocol=protocol,
        local_address=local,
        state=state,
        pid=pid,
        process_name=process_name,
        remote_address=remote,
    )


def parse_sockets(
    raw: str,
    protocol: Protocol,
    pid_map: dict[int, tuple[int, str]] | None = None,
) -> list[PortRecord]:
    """Parse a netstat listing for one protocol, enriching from ``pid_map``."""
    records = [
        record
        for record in (parse_socket_line(line, protocol, pid_map) for line in raw.splitlines())
        if record is not None
    ]
    logger.debug("sockets_parsed", protocol=protocol.value, parsed=len(records))
    return records


def build_pid_port_map(raw: str) -> dict[int, tuple[int, str]]:
    """Map port -> (pid, process name) from ``lsof -i -P -n`` output."""
    mapping: dict[int, tuple[int, str]] = {}
    for line in raw.splitlines():
        match = LSOF_LINE.search(line)
        if not match:
            continue
        pid = int(match.group(2))
        port = _parse_port(match.group(3))
        if pid <= 0 or port is None:
            continue
        mapping[port] = (pid, match.group(1))
    return mapping


def parse_pid_list(raw: str) -> list[int]:
    """Parse one-PID-per-line output as produced by ``pgrep`` and ``lsof -t``."""
    pids: list[int] = []
    for line in raw.splitlines():
        text = line.strip()
        if not text:
            continue
        if not (text.isascii() and text.isdigit()) or int(text) <= 0:
            logger.debug("pid_line_skipped", line=text)
            continue
        pids.append(int(text))
    return pids


def connections_from_ports(ports: list[PortRecord]) -> list[ConnectionRecord]:
    """Sockets that have a remote end, viewed as connections."""
    return [
        ConnectionRecord(
            protocol=port.protocol,
            local_address=port.local_address,
            remote_address=port.remote_address,
            pid=port.pid,
            process_name=port.process_name,
        )
        for port in ports
        if port.remote_address is not None
    ]
