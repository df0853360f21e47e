"""Error types raised by bossy."""


class BossyError(Exception):
    """Base class for every error bossy surfaces to a caller."""


class ConfigError(BossyError):
    """A configuration value could not be understood."""


class CommandError(BossyError):
    """A required external tool failed to run or exited non-zero."""

    def __init__(
        self,
        args: tuple[str, ...],
        returncode: int | None = None,
        stderr: str = "",
        message: str | None = None,
    ) -> None:
        self.command = tuple(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        if message is None:
            message = f"Command failed: {' '.join(self.command)}"
            if returncode is not None:
                message += f" (exit status {returncode})"
            if self.stderr:
                message += f": {self.stderr}"
        super().__init__(message)


class NotFoundError(BossyError):
    """No process could be resolved for a port or name."""


class SignalError(BossyError):
    """The signal-delivery tool refused to signal a process."""

    def __init__(self, pid: int, signal_name: str, detail: str = "") -> None:
        self.pid = pid
        self.signal_name = signal_name
        message = f"Failed to send SIG{signal_name} to process {pid}"
        if detail:
            message += f": {detail.strip()}"
        super().__init__(message)


class KillTimeoutError(BossyError):
    """A process was still alive after the forced kill budget ran out."""

    def __init__(self, result) -> None:
        self.result = result
        super().__init__(f"Process {result.pid} is still running after SIGKILL")


class RangeExhaustedError(BossyError):
    """Every port in a scanned range is in use."""

    def __init__(self, start: int, end: int) -> None:
        self.start = start
        self.end = end
        super().__init__(f"No available port found in range {start}-{end}")
