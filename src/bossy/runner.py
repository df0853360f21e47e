"""Execution of the external system tools bossy reads from and signals through."""

import asyncio
import subprocess
from dataclasses import dataclass

import structlog

from bossy.errors import CommandError

logger = structlog.get_logger(__name__)


@dataclass(slots=True, frozen=True)
class CommandResult:
    """Captured outcome of one tool invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self) -> "CommandResult":
        """Return self, or raise CommandError if the tool exited non-zero."""
        if not self.ok:
            raise CommandError(self.args, self.returncode, self.stderr)
        return self


class CommandRunner:
    """
    Runs external tools and captures their text output.

    A non-zero exit status is *not* an error here: several tools (``pgrep``,
    ``lsof``, ``ps -p``) report their answer through it. Only failing to start
    the tool at all, or exceeding the timeout, raises CommandError.
    """

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout

    @property
    def timeout(self) -> float:
        return self._timeout

    def run(self, *args: str) -> CommandResult:
        """Run a tool to completion, blocking the caller."""
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandError(args, message=f"Command timed out: {' '.join(args)}") from exc
        except OSError as exc:
            raise CommandError(args, message=f"Cannot run {args[0]}: {exc}") from exc

        result = CommandResult(args, completed.returncode, completed.stdout, completed.stderr)
        if not result.ok:
            logger.debug("command_nonzero", args=args, returncode=result.returncode)
        return result

    async def run_async(self, *args: str) -> CommandResult:
        """Run a tool without blocking the event loop."""
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise CommandError(args, message=f"Cannot run {args[0]}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), self._timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise CommandError(args, message=f"Command timed out: {' '.join(args)}") from exc

        result = CommandResult(
            args,
            process.returncode,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )
        if not result.ok:
            logger.debug("command_nonzero", args=args, returncode=result.returncode)
        return result
