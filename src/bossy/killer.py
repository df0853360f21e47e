"""Process termination for bossy.

A kill runs as a small state machine:

    RUNNING --TERM--> WAITING_GRACEFUL --exit--> TERMINATED
                            |
                         timeout
                            v
                      --KILL--> WAITING_FORCED --exit--> TERMINATED
                                      |
                                   timeout --> FAILED

Each waiting state polls liveness a bounded number of times, so every attempt
finishes within (graceful_polls + forced_polls) * poll_interval plus the time
spent in the tools themselves.
"""

import asyncio
import os
from dataclasses import dataclass
from enum import Enum

import structlog

from bossy.errors import (
    BossyError,
    CommandError,
    KillTimeoutError,
    NotFoundError,
    RangeExhaustedError,
    SignalError,
)
from bossy.models import MAX_PORT
from bossy.parser import parse_pid_list
from bossy.runner import CommandRunner
from bossy.settings import Settings

logger = structlog.get_logger(__name__)

DEV_PROCESS_PATTERNS: tuple[str, ...] = (
    "node",
    "npm",
    "yarn",
    "webpack",
    "vite",
    "next",
    "python",
    "django",
    "flask",
    "rails",
    "ruby",
    "php",
    "artisan",
    "composer",
    "java",
    "gradle",
    "docker",
    "docker-compose",
    "redis-server",
    "postgres",
)


class DangerLevel(Enum):
    """How careful the dashboard should be before a kill."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def needs_typed_confirmation(self) -> bool:
        return self is DangerLevel.CRITICAL


def assess_process(pid: int, name: str = "", cpu_usage: float = 0.0, memory: int = 0) -> DangerLevel:
    """
    Danger of killing one process.

    Low PIDs and anything that looks like a system or kernel process are
    critical; heavy processes (over 50% CPU or 1GB resident) are high.
    """
    lowered = name.lower()
    if pid < 100 or "system" in lowered or "kernel" in lowered:
        return DangerLevel.CRITICAL
    if cpu_usage > 50.0 or memory > 1024**3:
        return DangerLevel.HIGH
    return DangerLevel.MEDIUM


def assess_port(port: int, development: bool = False) -> DangerLevel:
    """Danger of killing whatever holds ``port``: privileged ports are high."""
    if port < 1024:
        return DangerLevel.HIGH
    if development:
        return DangerLevel.LOW
    return DangerLevel.MEDIUM


def assess_batch(count: int) -> DangerLevel:
    if count > 10:
        return DangerLevel.CRITICAL
    if count > 5:
        return DangerLevel.HIGH
    return DangerLevel.MEDIUM


class KillState(Enum):
    """Where a kill attempt currently stands."""

    RUNNING = "running"
    WAITING_GRACEFUL = "waiting_graceful"
    WAITING_FORCED = "waiting_forced"
    TERMINATED = "terminated"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class KillResult:
    """Outcome of one kill attempt."""

    pid: int
    state: KillState
    escalated: bool = False
    signals: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.state is KillState.TERMINATED


def _check_port(port: int) -> None:
    if not 0 <= port <= MAX_PORT:
        raise ValueError(f"Port out of range: {port}")


class TerminationController:
    """
    Kills processes through the ``kill``/``ps``/``pgrep``/``lsof`` tools.

    Batch operations run one PID at a time and never let a single failure
    abort the rest of the batch.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        poll_interval: float = 0.1,
        graceful_polls: int = 50,
        forced_polls: int = 20,
        dev_patterns: tuple[str, ...] = DEV_PROCESS_PATTERNS,
    ) -> None:
        self._runner = runner or CommandRunner()
        self._poll_interval = poll_interval
        self._graceful_polls = graceful_polls
        self._forced_polls = forced_polls
        self._dev_patterns = dev_patterns

    @classmethod
    def from_settings(cls, settings: Settings, runner: CommandRunner | None = None) -> "TerminationController":
        return cls(
            runner or CommandRunner(settings.command_timeout),
            poll_interval=settings.kill_poll_interval,
            graceful_polls=settings.graceful_polls,
            forced_polls=settings.forced_polls,
        )

    async def kill_process_by_pid(self, pid: int, force: bool = False) -> KillResult:
        """
        Terminate one process, escalating from SIGTERM to SIGKILL.

        Args:
            pid: Process to terminate.
            force: Skip SIGTERM and send SIGKILL straight away.

        Raises:
            SignalError: The signal could not be delivered (no such process,
                permission denied).
            KillTimeoutError: The process survived SIGKILL.
        """
        if pid <= 0:
            raise ValueError(f"PID must be positive: {pid}")

        state = KillState.RUNNING
        signals: list[str] = []
        escalated = False

        while True:
            if state is KillState.RUNNING:
                if force:
                    state = await self._send(pid, "KILL", signals, KillState.WAITING_FORCED)
                else:
                    state = await self._send(pid, "TERM", signals, KillState.WAITING_GRACEFUL)
            elif state is KillState.WAITING_GRACEFUL:
                if await self._wait_for_exit(pid, self._graceful_polls):
                    state = KillState.TERMINATED
                else:
                    logger.warning("escalating_to_sigkill", pid=pid)
                    escalated = True
                    state = await self._send(pid, "KILL", signals, KillState.WAITING_FORCED)
            elif state is KillState.WAITING_FORCED:
                if await self._wait_for_exit(pid, self._forced_polls):
                    state = KillState.TERMINATED
                else:
                    state = KillState.FAILED
            else:
                break

        result = KillResult(pid, state, escalated, tuple(signals))
        if state is KillState.FAILED:
            raise KillTimeoutError(result)
        logger.debug("process_terminated", pid=pid, signals=result.signals)
        return result

    async def _send(self, pid: int, signal_name: str, signals: list[str], next_state: KillState) -> KillState:
        result = await self._runner.run_async("kill", f"-{signal_name}", str(pid))
        if not result.ok:
            raise SignalError(pid, signal_name, result.stderr)
        signals.append(signal_name)
        return next_state

    async def _wait_for_exit(self, pid: int, polls: int) -> bool:
        for _ in range(polls):
            if not await self.is_process_running(pid):
                return True
            await asyncio.sleep(self._poll_interval)
        return False

    async def is_process_running(self, pid: int) -> bool:
        result = await self._runner.run_async("ps", "-p", str(pid))
        return result.ok

    async def find_pids_by_name(self, pattern: str) -> list[int]:
        """PIDs whose command line matches ``pattern``, excluding our own."""
        result = await self._runner.run_async("pgrep", "-f", pattern)
        if not result.ok:
            # pgrep exits 1 when nothing matched; anything higher is a real error
            if result.returncode > 1:
                raise CommandError(result.args, result.returncode, result.stderr)
            return []
        own_pid = os.getpid()
        return [pid for pid in parse_pid_list(result.stdout) if pid != own_pid]

    async def kill_pids(self, pids: list[int], force: bool = False) -> list[int]:
        """
        Kill ``pids`` one after another, each attempt fully awaited.

        Returns the PIDs that were terminated. PIDs that could not be killed
        are logged and left out; they never abort the batch.
        """
        killed: list[int] = []
        for pid in pids:
            try:
                await self.kill_process_by_pid(pid, force)
            except (BossyError, ValueError) as exc:
                logger.warning("kill_failed", pid=pid, error=str(exc))
                continue
            killed.append(pid)
        return killed

    async def kill_processes_by_name(self, pattern: str, force: bool = False) -> list[int]:
        """Kill every process matching ``pattern``; see kill_pids."""
        pids = await self.find_pids_by_name(pattern)
        logger.debug("killing_by_name", pattern=pattern, pids=pids)
        return await self.kill_pids(pids, force)

    async def find_pid_by_port(self, port: int) -> int:
        """
        The PID holding ``port``.

        Raises:
            NotFoundError: Nothing is using the port.
        """
        _check_port(port)
        result = await self._runner.run_async("lsof", "-t", "-i", f":{port}")
        pids = parse_pid_list(result.stdout) if result.ok else []
        if not pids:
            raise NotFoundError(f"No process found using port {port}")
        return pids[0]

    async def kill_process_by_port(self, port: int, force: bool = False) -> int:
        """Kill whatever holds ``port`` (gracefully by default) and return its PID."""
        pid = await self.find_pid_by_port(port)
        await self.kill_process_by_pid(pid, force)
        return pid

    async def cleanup_dev_processes(self) -> list[int]:
        """Gracefully kill common development servers and tools."""
        killed: list[int] = []
        for pattern in self._dev_patterns:
            try:
                killed.extend(await self.kill_processes_by_name(pattern, force=False))
            except BossyError as exc:
                logger.warning("cleanup_pattern_failed", pattern=pattern, error=str(exc))
        return killed

    async def is_port_available(self, port: int) -> bool:
        _check_port(port)
        result = await self._runner.run_async("lsof", "-i", f":{port}")
        return not result.ok

    async def find_available_port(self, start: int, end: int) -> int:
        """
        First free port in the inclusive range ``start``..``end``.

        Raises:
            RangeExhaustedError: Every port in the range is taken, or the
                range is empty.
        """
        _check_port(start)
        _check_port(end)
        for port in range(start, end + 1):
            if await self.is_port_available(port):
                return port
        raise RangeExhaustedError(start, end)
