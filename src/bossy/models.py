"""Data models for bossy."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from ipaddress import IPv4Address, IPv6Address, ip_address

MAX_PORT = 65535

WELL_KNOWN_PORTS: dict[int, str] = {
    21: "FTP",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    67: "DHCP Server",
    68: "DHCP Client",
    80: "HTTP",
    110: "POP3",
    143: "IMAP",
    443: "HTTPS",
    993: "IMAPS",
    995: "POP3S",
    # Databases
    1433: "SQL Server",
    1521: "Oracle",
    3306: "MySQL",
    5432: "PostgreSQL",
    6379: "Redis",
    27017: "MongoDB",
    # Web development
    3000: "React/Next.js Dev Server",
    3001: "Create React App",
    4200: "Angular Dev Server",
    5000: "Flask Dev Server",
    8000: "Django Dev Server",
    8080: "HTTP Alternate/Tomcat",
    8443: "HTTPS Alternate",
    # Message queues
    5672: "RabbitMQ",
    1883: "MQTT",
    9092: "Kafka",
    # Search and monitoring
    9200: "Elasticsearch",
    8983: "Solr",
    9090: "Prometheus",
    8086: "InfluxDB",
}

DEVELOPMENT_PORTS: frozenset[int] = frozenset(
    {3000, 3001, 3002, 5000, 5001, 5002, 8000, 8080, 8888, 4200}
    | {5432, 3306, 6379, 27017, 9200, 9300, 5672, 1433}
    | set(range(8081, 8091))
    | set(range(9000, 9011))
)

ALTERNATIVE_PORTS: dict[int, tuple[int, ...]] = {
    3000: (3001, 3002, 3003, 8000),
    8000: (8001, 8080, 3000),
    8080: (8081, 8000, 3000),
    5000: (5001, 5002, 8000),
    4200: (4201, 4202, 3000),
}


class Protocol(Enum):
    """Transport protocol of a socket."""

    TCP = "tcp"
    UDP = "udp"


class ConnectionState(Enum):
    """TCP connection state; UDP sockets are always LISTEN."""

    LISTEN = "LISTEN"
    ESTABLISHED = "ESTABLISHED"
    TIME_WAIT = "TIME_WAIT"
    CLOSE_WAIT = "CLOSE_WAIT"
    FIN_WAIT1 = "FIN_WAIT1"
    FIN_WAIT2 = "FIN_WAIT2"
    SYN_SENT = "SYN_SENT"
    SYN_RECEIVED = "SYN_RCVD"
    CLOSED = "CLOSED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_token(cls, token: str) -> "ConnectionState":
        """Map a netstat state column to a state; unrecognized text is UNKNOWN."""
        token = token.upper()
        # Linux netstat spells these differently from BSD
        token = {"FIN_WAIT_1": "FIN_WAIT1", "FIN_WAIT_2": "FIN_WAIT2", "SYN_RECV": "SYN_RCVD"}.get(
            token, token
        )
        try:
            return cls(token)
        except ValueError:
            return cls.UNKNOWN


@dataclass(slots=True, frozen=True)
class SocketAddress:
    """An IP address plus port, e.g. ``127.0.0.1:3000`` or ``[::1]:3000``."""

    ip: IPv4Address | IPv6Address
    port: int

    def __post_init__(self) -> None:
        if not 0 <= self.port <= MAX_PORT:
            raise ValueError(f"Port out of range: {self.port}")

    @classmethod
    def unspecified(cls, port: int) -> "SocketAddress":
        return cls(ip_address("0.0.0.0"), port)

    @property
    def sort_key(self) -> tuple[int, int, int]:
        return (self.ip.version, int(self.ip), self.port)

    def __str__(self) -> str:
        if self.ip.version == 6:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable snapshot of one row of the process listing."""

    pid: int
    name: str
    cpu_usage: float  # Percent; can exceed 100 on multi-core hosts
    memory: int  # Resident bytes
    status: str
    parent_pid: int | None = None
    start_time: datetime | None = None
    user_id: int | None = None
    executable_path: str | None = None
    command_line: tuple[str, ...] = field(default_factory=tuple)

    def format_memory(self) -> str:
        return format_memory(self.memory)


@dataclass(slots=True, frozen=True)
class PortRecord:
    """A socket bound to a local port, optionally correlated with its owner."""

    port: int
    protocol: Protocol
    local_address: SocketAddress
    state: ConnectionState
    pid: int | None = None
    process_name: str | None = None
    remote_address: SocketAddress | None = None

    @property
    def service_name(self) -> str | None:
        """Well-known service usually found on this port."""
        return WELL_KNOWN_PORTS.get(self.port)

    @property
    def is_development_port(self) -> bool:
        return self.port in DEVELOPMENT_PORTS


@dataclass(slots=True, frozen=True)
class ConnectionRecord:
    """An active connection; unlike a port both ends are known."""

    protocol: Protocol
    local_address: SocketAddress
    remote_address: SocketAddress
    pid: int | None = None
    process_name: str | None = None


def format_memory(size: int) -> str:
    """Format a byte count as KB, MB or GB (binary units)."""
    kb = size // 1024
    mb = kb // 1024
    if mb >= 1024:
        return f"{size / 1024**3:.1f}GB"
    if mb > 0:
        return f"{mb}MB"
    return f"{kb}KB"


def suggest_alternative_ports(port: int) -> list[int]:
    """Suggest ports to try when ``port`` is taken."""
    if port in ALTERNATIVE_PORTS:
        return list(ALTERNATIVE_PORTS[port])
    return [candidate for candidate in range(port + 1, port + 6) if candidate <= MAX_PORT]
