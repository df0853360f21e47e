"""Inventory of processes, ports and connections for bossy."""

import sys
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

import psutil
import structlog

from bossy.errors import BossyError
from bossy.models import (
    ConnectionRecord,
    ConnectionState,
    PortRecord,
    ProcessRecord,
    Protocol,
)
from bossy.parser import (
    build_pid_port_map,
    connections_from_ports,
    parse_processes,
    parse_sockets,
)
from bossy.runner import CommandRunner
from bossy.sorting import SortKey, SortOrder, sort_records

logger = structlog.get_logger(__name__)

PS_COMMAND = ("ps", "-A", "-ww", "-o", "pid,ppid,uid,%cpu,rss,stat,lstart,args")
LSOF_COMMAND = ("lsof", "-i", "-P", "-n")
MIN_REFRESH_INTERVAL = 0.1


def netstat_command(protocol: Protocol) -> tuple[str, ...]:
    """Socket listing command for one protocol on this platform."""
    if sys.platform == "darwin" or sys.platform.startswith(("freebsd", "openbsd", "netbsd")):
        return ("netstat", "-an", "-p", protocol.value)
    return ("netstat", "-an" + protocol.value[0])


@dataclass(slots=True, frozen=True)
class InventorySnapshot:
    """Point-in-time inventory; replaced wholesale on every refresh."""

    processes: tuple[ProcessRecord, ...] = ()
    ports: tuple[PortRecord, ...] = ()
    connections: tuple[ConnectionRecord, ...] = ()
    cpu_history: tuple[float, ...] = field(default_factory=tuple)
    taken_at: float | None = None


class InventoryStore:
    """
    Owns the current InventorySnapshot and rebuilds it from system tools.

    Readers always see one complete snapshot: refresh() builds the new one
    fully before installing it, and a failed refresh leaves the old one in
    place.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        refresh_interval: float = 2.0,
        history_size: int = 100,
        cpu_sampler: Callable[[], float] | None = None,
        clock: Callable[[], float] = time.monotonic,
        total_memory: int | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            runner: Executes the listing tools. Default runs them for real.
            refresh_interval: Minimum seconds between refreshes for
                should_refresh(). Default 2.0s.
            history_size: Number of aggregate CPU samples kept.
            cpu_sampler: Returns system-wide CPU percent. Default psutil.
            clock: Monotonic time source.
            total_memory: Physical memory in bytes, for listings that only
                report a memory percentage. Default from psutil.
        """
        self._runner = runner or CommandRunner()
        self._refresh_interval = max(MIN_REFRESH_INTERVAL, refresh_interval)
        self._clock = clock
        self._last_refresh: float | None = None
        self._cpu_history: deque[float] = deque([0.0] * history_size, maxlen=history_size)
        self._snapshot = InventorySnapshot(cpu_history=tuple(self._cpu_history))

        if cpu_sampler is None:
            # Initialize CPU percent (first call returns 0.0)
            psutil.cpu_percent()
            cpu_sampler = psutil.cpu_percent
        self._cpu_sampler = cpu_sampler
        if total_memory is None:
            total_memory = psutil.virtual_memory().total
        self._total_memory = total_memory

    @property
    def refresh_interval(self) -> float:
        return self._refresh_interval

    @refresh_interval.setter
    def refresh_interval(self, value: float) -> None:
        self._refresh_interval = max(MIN_REFRESH_INTERVAL, value)

    @property
    def snapshot(self) -> InventorySnapshot:
        """The installed snapshot, without refreshing."""
        return self._snapshot

    def should_refresh(self) -> bool:
        """True once the refresh interval has elapsed since the last refresh."""
        if self._last_refresh is None:
            return True
        return self._clock() - self._last_refresh >= self._refresh_interval

    def invalidate(self) -> None:
        """Make should_refresh() true, e.g. after killing a process."""
        self._last_refresh = None

    def refresh(self) -> InventorySnapshot:
        """
        Rebuild the inventory from the system tools and install it.

        Raises:
            CommandError: The process or socket listing could not be produced.
        """
        pid_map = self._load_pid_map()

        listing = self._runner.run(*PS_COMMAND).check()
        processes = parse_processes(listing.stdout, self._total_memory)

        ports: list[PortRecord] = []
        for protocol in Protocol:
            listing = self._runner.run(*netstat_command(protocol)).check()
            ports.extend(parse_sockets(listing.stdout, protocol, pid_map))

        self._cpu_history.append(float(self._cpu_sampler()))
        snapshot = InventorySnapshot(
            processes=tuple(processes),
            ports=tuple(ports),
            connections=tuple(connections_from_ports(ports)),
            cpu_history=tuple(self._cpu_history),
            taken_at=self._clock(),
        )
        self._snapshot = snapshot
        self._last_refresh = snapshot.taken_at
        logger.debug(
            "inventory_refreshed",
            processes=len(snapshot.processes),
            ports=len(snapshot.ports),
            connections=len(snapshot.connections),
        )
        return snapshot

    def _load_pid_map(self) -> dict[int, tuple[int, str]]:
        try:
            result = self._runner.run(*LSOF_COMMAND)
        except BossyError as exc:
            logger.info("pid_correlation_unavailable", error=str(exc))
            return {}
        if not result.ok:
            logger.info("pid_correlation_unavailable", returncode=result.returncode)
            return {}
        return build_pid_port_map(result.stdout)

    def _current(self) -> InventorySnapshot:
        return self._snapshot

    def get_cpu_history(self) -> list[float]:
        """Aggregate CPU samples, oldest first, for sparkline rendering."""
        return list(self._cpu_history)

    def all_ports(self) -> list[PortRecord]:
        return list(self._current().ports)

    def listening(self) -> list[PortRecord]:
        return [p for p in self._current().ports if p.state is ConnectionState.LISTEN]

    def by_port(self, port: int) -> list[PortRecord]:
        return [p for p in self._current().ports if p.port == port]

    def development_ports(self) -> list[PortRecord]:
        return [p for p in self._current().ports if p.is_development_port]

    def processes(self) -> list[ProcessRecord]:
        return list(self._current().processes)

    def connections(self) -> list[ConnectionRecord]:
        return list(self._current().connections)

    def top_by_cpu(self, limit: int) -> list[ProcessRecord]:
        ranked = sort_records(self._current().processes, SortKey.CPU, SortOrder.DESCENDING)
        return ranked[: max(0, limit)]

    def top_by_memory(self, limit: int) -> list[ProcessRecord]:
        ranked = sort_records(self._current().processes, SortKey.MEMORY, SortOrder.DESCENDING)
        return ranked[: max(0, limit)]


class MonitorStore(InventoryStore):
    """
    InventoryStore for polling callers.

    Every read first refreshes if the interval has elapsed, so callers never
    have to schedule refreshes themselves. Default interval 1.0s.
    """

    def __init__(self, runner: CommandRunner | None = None, refresh_interval: float = 1.0, **kwargs) -> None:
        super().__init__(runner, refresh_interval, **kwargs)

    def _current(self) -> InventorySnapshot:
        if self.should_refresh():
            self.refresh()
        return self._snapshot
