"""Shared fixtures: canned tool output and a scripted command runner."""

import pytest

from bossy.runner import CommandResult

PS_OUTPUT = """\
  PID  PPID   UID %CPU    RSS STAT                  STARTED COMMAND
    1     0     0  0.0  12288 Ss   Sat Oct 17 08:00:00 2026 /sbin/init splash
    2     0     0  0.0      0 S    Sat Oct 17 08:00:00 2026 [kthreadd]
  412     1   501 12.5 204800 S    Sat Oct 17 08:01:02 2026 /usr/local/bin/node server.js --port 3000
  913     1   501 55.0 1048576 R+  Sat Oct 17 09:15:00 2026 python3 manage.py runserver
this line is garbage
"""

PS_SHORT_OUTPUT = """\
  PID  %CPU %MEM COMMAND
  412  12.5  2.5 /usr/local/bin/node server.js
  913  55.0 12.5 python3 manage.py runserver
"""

NETSTAT_LINUX_TCP = """\
Active Internet connections (servers and established)
Proto Recv-Q Send-Q Local Address           Foreign Address         State
tcp        0      0 0.0.0.0:3000            0.0.0.0:*               LISTEN
tcp        0      0 127.0.0.1:5432          0.0.0.0:*               LISTEN
tcp        0      0 192.168.1.10:52344      140.82.112.3:443        ESTABLISHED
tcp6       0      0 :::8080                 :::*                    LISTEN
"""

NETSTAT_LINUX_UDP = """\
Active Internet connections (servers and established)
Proto Recv-Q Send-Q Local Address           Foreign Address         State
udp        0      0 0.0.0.0:5353            0.0.0.0:*
"""

NETSTAT_MAC_TCP = """\
Active Internet connections (including servers)
Proto Recv-Q Send-Q  Local Address          Foreign Address        (state)
tcp4       0      0  127.0.0.1.3000         *.*                    LISTEN
tcp4       0      0  192.168.1.10.52344     140.82.112.3.443       ESTABLISHED
tcp46      0      0  *.8080                 *.*                    LISTEN
tcp6       0      0  ::1.5432               *.*                    LISTEN
"""

NETSTAT_MAC_UDP = """\
Active Internet connections (including servers)
Proto Recv-Q Send-Q  Local Address          Foreign Address        (state)
udp4       0      0  *.5353                 *.*
"""

LSOF_OUTPUT = """\
COMMAND    PID USER   FD   TYPE             DEVICE SIZE/OFF NODE NAME
node       412  dev   23u  IPv4 0x1234567890abcdef      0t0  TCP *:3000 (LISTEN)
postgres    77  dev    5u  IPv4 0x2234567890abcdef      0t0  TCP 127.0.0.1:5432 (LISTEN)
firefox    555  dev   80u  IPv4 0x3234567890abcdef      0t0  TCP 192.168.1.10:52344->140.82.112.3:443 (ESTABLISHED)
"""


class FakeRunner:
    """
    Stand-in for CommandRunner that answers from a script.

    ``responses`` maps an argument tuple, or just the tool name, to a str
    (stdout of a successful run), a CommandResult, an exception to raise, or a
    callable taking the argument tuple and returning any of those. Commands
    without a response exit with status 1 and no output.
    """

    def __init__(self, responses=None) -> None:
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, ...]] = []

    def _answer(self, args: tuple[str, ...]) -> CommandResult:
        self.calls.append(args)
        response = self.responses.get(args, self.responses.get(args[0]))
        if callable(response):
            response = response(args)
        if isinstance(response, BaseException):
            raise response
        if response is None:
            return CommandResult(args, 1, "")
        if isinstance(response, str):
            return CommandResult(args, 0, response)
        return response

    def run(self, *args: str) -> CommandResult:
        return self._answer(args)

    async def run_async(self, *args: str) -> CommandResult:
        return self._answer(args)

    def commands(self, tool: str) -> list[tuple[str, ...]]:
        """Every recorded call of ``tool``."""
        return [call for call in self.calls if call[0] == tool]


class FakeProcessTable:
    """
    Simulated processes reacting to ``kill`` and ``ps -p``.

    ``ignores`` lists signals a PID survives; ``refuses`` lists PIDs the kill
    tool cannot signal.
    """

    def __init__(self, pids=(), ignores=None, refuses=()) -> None:
        self.alive = set(pids)
        self.ignores = dict(ignores or {})
        self.refuses = set(refuses)
        self.signals: list[tuple[int, str]] = []

    def kill(self, args: tuple[str, ...]) -> CommandResult:
        signal_name = args[1].lstrip("-")
        pid = int(args[2])
        if pid in self.refuses or pid not in self.alive:
            return CommandResult(args, 1, "", f"kill: ({pid}) - No such process")
        self.signals.append((pid, signal_name))
        if signal_name not in self.ignores.get(pid, ()):
            self.alive.discard(pid)
        return CommandResult(args, 0, "")

    def ps(self, args: tuple[str, ...]) -> CommandResult:
        pid = int(args[2])
        return CommandResult(args, 0 if pid in self.alive else 1, "")

    def responses(self) -> dict:
        return {"kill": self.kill, "ps": self.ps}


@pytest.fixture
def fake_runner():
    """An empty FakeRunner; tests add responses as needed."""
    return FakeRunner()


@pytest.fixture
def inventory_runner():
    """FakeRunner answering the inventory commands with Linux output."""
    from bossy.models import Protocol
    from bossy.monitor import LSOF_COMMAND, PS_COMMAND, netstat_command

    return FakeRunner(
        {
            PS_COMMAND: PS_OUTPUT,
            LSOF_COMMAND: LSOF_OUTPUT,
            netstat_command(Protocol.TCP): NETSTAT_LINUX_TCP,
            netstat_command(Protocol.UDP): NETSTAT_LINUX_UDP,
        }
    )


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
