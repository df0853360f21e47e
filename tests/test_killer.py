"""Tests for the TerminationController kill protocol."""

import os
import shutil

import pytest
from conftest import FakeProcessTable, FakeRunner

from bossy.errors import (
    CommandError,
    KillTimeoutError,
    NotFoundError,
    RangeExhaustedError,
    SignalError,
)
from bossy.killer import (
    DEV_PROCESS_PATTERNS,
    DangerLevel,
    KillState,
    TerminationController,
    assess_batch,
    assess_port,
    assess_process,
)
from bossy.runner import CommandResult, CommandRunner
from bossy.settings import Settings


def make_controller(runner, graceful_polls: int = 50, forced_polls: int = 20) -> TerminationController:
    return TerminationController(
        runner,
        poll_interval=0,
        graceful_polls=graceful_polls,
        forced_polls=forced_polls,
    )


def pgrep_answers(matches: dict[str, str], failing=()):
    """pgrep stand-in: stdout per pattern, exit 1 for no match, exit 2 for ``failing``."""

    def pgrep(args):
        pattern = args[-1]
        if pattern in failing:
            return CommandResult(args, 2, "", "pgrep: invalid option")
        if pattern in matches:
            return CommandResult(args, 0, matches[pattern])
        return CommandResult(args, 1, "")

    return pgrep


class TestKillProcessByPid:
    """Tests for the single-PID state machine."""

    @pytest.mark.asyncio
    async def test_graceful_exit(self):
        """Test a process exiting after SIGTERM is never force-killed."""
        table = FakeProcessTable([1234])
        controller = make_controller(FakeRunner(table.responses()))

        result = await controller.kill_process_by_pid(1234)

        assert result.succeeded
        assert result.state is KillState.TERMINATED
        assert not result.escalated
        assert result.signals == ("TERM",)
        assert table.signals == [(1234, "TERM")]

    @pytest.mark.asyncio
    async def test_escalates_after_graceful_budget(self):
        """Test a process ignoring SIGTERM is killed with SIGKILL."""
        table = FakeProcessTable([1234], ignores={1234: ("TERM",)})
        runner = FakeRunner(table.responses())
        controller = make_controller(runner)

        result = await controller.kill_process_by_pid(1234)

        assert result.succeeded
        assert result.escalated
        assert result.signals == ("TERM", "KILL")
        # Every graceful poll is spent before escalating, then one forced poll
        assert len(runner.commands("ps")) == 51

    @pytest.mark.asyncio
    async def test_unkillable_process_fails(self):
        """Test a process surviving both phases reports a failed result."""
        table = FakeProcessTable([1234], ignores={1234: ("TERM", "KILL")})
        runner = FakeRunner(table.responses())
        controller = make_controller(runner)

        with pytest.raises(KillTimeoutError) as excinfo:
            await controller.kill_process_by_pid(1234)

        result = excinfo.value.result
        assert result.state is KillState.FAILED
        assert not result.succeeded
        assert result.signals == ("TERM", "KILL")
        assert len(runner.commands("ps")) == 70
        assert "1234" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_polls_are_bounded_by_settings(self):
        """Test the poll counts come from the configured budgets."""
        table = FakeProcessTable([1234], ignores={1234: ("TERM", "KILL")})
        runner = FakeRunner(table.responses())
        controller = make_controller(runner, graceful_polls=3, forced_polls=2)

        with pytest.raises(KillTimeoutError):
            await controller.kill_process_by_pid(1234)
        assert len(runner.commands("ps")) == 5

    @pytest.mark.asyncio
    async def test_force_skips_graceful_phase(self):
        table = FakeProcessTable([1234])
        controller = make_controller(FakeRunner(table.responses()))

        result = await controller.kill_process_by_pid(1234, force=True)

        assert result.signals == ("KILL",)
        assert not result.escalated

    @pytest.mark.asyncio
    async def test_signal_refused(self):
        """Test a kill tool failure surfaces as SignalError."""
        table = FakeProcessTable([1234], refuses=[1234])
        controller = make_controller(FakeRunner(table.responses()))

        with pytest.raises(SignalError) as excinfo:
            await controller.kill_process_by_pid(1234)
        assert excinfo.value.pid == 1234
        assert excinfo.value.signal_name == "TERM"

    @pytest.mark.asyncio
    async def test_missing_process(self):
        controller = make_controller(FakeRunner(FakeProcessTable().responses()))
        with pytest.raises(SignalError):
            await controller.kill_process_by_pid(4242)

    @pytest.mark.asyncio
    async def test_invalid_pid(self):
        controller = make_controller(FakeRunner())
        with pytest.raises(ValueError):
            await controller.kill_process_by_pid(0)


class TestKillByName:
    """Tests for batch kills by name pattern."""

    @pytest.mark.asyncio
    async def test_no_match_is_empty(self):
        """Test an unmatched pattern returns an empty list, not an error."""
        runner = FakeRunner({"pgrep": pgrep_answers({})})
        controller = make_controller(runner)

        assert await controller.kill_processes_by_name("nonexistent_xyz") == []
        assert runner.calls == [("pgrep", "-f", "nonexistent_xyz")]

    @pytest.mark.asyncio
    async def test_partial_failure_continues(self):
        """Test one unkillable PID does not abort the batch."""
        table = FakeProcessTable([100, 200, 300], refuses=[200])
        runner = FakeRunner({**table.responses(), "pgrep": pgrep_answers({"node": "100\n200\n300\n"})})
        controller = make_controller(runner)

        assert await controller.kill_processes_by_name("node") == [100, 300]
        assert table.alive == {200}

    @pytest.mark.asyncio
    async def test_excludes_own_pid(self):
        own = os.getpid()
        table = FakeProcessTable([100, own])
        runner = FakeRunner({**table.responses(), "pgrep": pgrep_answers({"python": f"{own}\n100\n"})})
        controller = make_controller(runner)

        assert await controller.kill_processes_by_name("python") == [100]
        assert own in table.alive

    @pytest.mark.asyncio
    async def test_pgrep_error(self):
        """Test a pgrep failure other than 'no match' is raised."""
        runner = FakeRunner({"pgrep": pgrep_answers({}, failing=("[",))})
        controller = make_controller(runner)
        with pytest.raises(CommandError):
            await controller.kill_processes_by_name("[")

    @pytest.mark.asyncio
    async def test_force_is_passed_through(self):
        table = FakeProcessTable([100])
        runner = FakeRunner({**table.responses(), "pgrep": pgrep_answers({"vite": "100\n"})})
        controller = make_controller(runner)

        await controller.kill_processes_by_name("vite", force=True)
        assert table.signals == [(100, "KILL")]


class TestKillPids:
    """Tests for killing an explicit list of PIDs."""

    @pytest.mark.asyncio
    async def test_runs_in_order_and_awaits_each(self):
        """Test a stubborn PID is escalated before the next PID is touched."""
        table = FakeProcessTable([913, 412], ignores={913: ("TERM",)})
        controller = make_controller(FakeRunner(table.responses()), graceful_polls=3)

        assert await controller.kill_pids([913, 412]) == [913, 412]
        assert table.signals == [(913, "TERM"), (913, "KILL"), (412, "TERM")]
        assert table.alive == set()

    @pytest.mark.asyncio
    async def test_failures_are_left_out(self):
        table = FakeProcessTable([100, 300], refuses=[100])
        controller = make_controller(FakeRunner(table.responses()))

        assert await controller.kill_pids([100, 200, 0, 300], force=True) == [300]
        assert table.signals == [(300, "KILL")]

    @pytest.mark.asyncio
    async def test_empty(self):
        runner = FakeRunner()
        assert await make_controller(runner).kill_pids([]) == []
        assert runner.calls == []


class TestDangerLevels:
    """Tests for kill confirmation danger levels."""

    @pytest.mark.parametrize(
        "pid, name, cpu, memory, expected",
        [
            (1, "init", 0.0, 0, DangerLevel.CRITICAL),
            (4321, "systemd-resolved", 0.0, 0, DangerLevel.CRITICAL),
            (4321, "kernel_task", 0.0, 0, DangerLevel.CRITICAL),
            (913, "python3", 55.0, 0, DangerLevel.HIGH),
            (913, "java", 1.0, 2 * 1024**3, DangerLevel.HIGH),
            (412, "node", 12.5, 200 * 1024**2, DangerLevel.MEDIUM),
        ],
    )
    def test_process(self, pid, name, cpu, memory, expected):
        assert assess_process(pid, name, cpu, memory) is expected

    def test_port(self):
        assert assess_port(443) is DangerLevel.HIGH
        assert assess_port(443, development=True) is DangerLevel.HIGH
        assert assess_port(3000, development=True) is DangerLevel.LOW
        assert assess_port(12345) is DangerLevel.MEDIUM

    def test_batch(self):
        assert assess_batch(2) is DangerLevel.MEDIUM
        assert assess_batch(6) is DangerLevel.HIGH
        assert assess_batch(11) is DangerLevel.CRITICAL
        assert assess_batch(11).needs_typed_confirmation
        assert not assess_batch(6).needs_typed_confirmation


class TestKillByPort:
    """Tests for resolving and killing a port owner."""

    @pytest.mark.asyncio
    async def test_kills_owner_gracefully(self):
        table = FakeProcessTable([412])
        runner = FakeRunner({**table.responses(), ("lsof", "-t", "-i", ":3000"): "412\n"})
        controller = make_controller(runner)

        assert await controller.kill_process_by_port(3000) == 412
        assert table.signals == [(412, "TERM")]

    @pytest.mark.asyncio
    async def test_force_kills_owner(self):
        table = FakeProcessTable([412])
        runner = FakeRunner({**table.responses(), ("lsof", "-t", "-i", ":3000"): "412\n"})

        assert await make_controller(runner).kill_process_by_port(3000, force=True) == 412
        assert table.signals == [(412, "KILL")]

    @pytest.mark.asyncio
    async def test_nothing_on_port(self):
        controller = make_controller(FakeRunner())
        with pytest.raises(NotFoundError) as excinfo:
            await controller.kill_process_by_port(3000)
        assert str(excinfo.value) == "No process found using port 3000"

    @pytest.mark.asyncio
    async def test_first_pid_wins(self):
        runner = FakeRunner({("lsof", "-t", "-i", ":8080"): "500\n600\n"})
        controller = make_controller(runner)
        assert await controller.find_pid_by_port(8080) == 500


class TestCleanupDevProcesses:
    """Tests for the development process sweep."""

    @pytest.mark.asyncio
    async def test_aggregates_across_patterns(self):
        """Test kills from every pattern are collected and failures are skipped."""
        table = FakeProcessTable([10, 20])
        pgrep = pgrep_answers({"node": "10\n", "python": "20\n"}, failing=("java",))
        runner = FakeRunner({**table.responses(), "pgrep": pgrep})
        controller = make_controller(runner)

        assert await controller.cleanup_dev_processes() == [10, 20]
        assert len(runner.commands("pgrep")) == len(DEV_PROCESS_PATTERNS)
        assert all(signal == "TERM" for _, signal in table.signals)

    def test_catalog(self):
        assert "node" in DEV_PROCESS_PATTERNS
        assert "postgres" in DEV_PROCESS_PATTERNS
        assert len(DEV_PROCESS_PATTERNS) == 20


class TestFindAvailablePort:
    """Tests for the free port scan."""

    @pytest.mark.asyncio
    async def test_single_free_port(self):
        controller = make_controller(FakeRunner())
        assert await controller.find_available_port(50000, 50000) == 50000

    @pytest.mark.asyncio
    async def test_single_occupied_port(self):
        runner = FakeRunner({("lsof", "-i", ":50000"): "node 1 dev 3u IPv4 0x1 0t0 TCP *:50000 (LISTEN)\n"})
        controller = make_controller(runner)
        with pytest.raises(RangeExhaustedError) as excinfo:
            await controller.find_available_port(50000, 50000)
        assert str(excinfo.value) == "No available port found in range 50000-50000"

    @pytest.mark.asyncio
    async def test_first_free_in_range(self):
        runner = FakeRunner({("lsof", "-i", ":3000"): "busy", ("lsof", "-i", ":3001"): "busy"})
        controller = make_controller(runner)

        port = await controller.find_available_port(3000, 3010)

        assert port == 3002
        assert 3000 <= port <= 3010
        assert len(runner.calls) == 3

    @pytest.mark.asyncio
    async def test_empty_range(self):
        """Test a reversed range is exhausted without scanning."""
        runner = FakeRunner()
        controller = make_controller(runner)
        with pytest.raises(RangeExhaustedError):
            await controller.find_available_port(5001, 5000)
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_invalid_bounds(self):
        controller = make_controller(FakeRunner())
        with pytest.raises(ValueError):
            await controller.find_available_port(0, 70000)


def test_from_settings():
    """Test poll budgets come from Settings."""
    settings = Settings(kill_poll_interval=0.5, graceful_timeout=2.0, forced_timeout=1.0)
    controller = TerminationController.from_settings(settings)
    assert controller._poll_interval == 0.5
    assert controller._graceful_polls == 4
    assert controller._forced_polls == 2


@pytest.mark.asyncio
@pytest.mark.skipif(shutil.which("ps") is None, reason="ps not available")
async def test_is_process_running_real_tool():
    """Test liveness against the real ps tool."""
    controller = TerminationController(CommandRunner())
    assert await controller.is_process_running(os.getpid())
