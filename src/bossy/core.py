"""Public entry points shared by the command line and the dashboard."""

from bossy.killer import KillResult, TerminationController
from bossy.models import ConnectionRecord, PortRecord, ProcessRecord
from bossy.monitor import InventoryStore, MonitorStore
from bossy.runner import CommandRunner
from bossy.settings import Settings


class Bossy:
    """
    Inventory reads plus termination control behind one object.

    Reads go through a MonitorStore, so each call sees data at most
    ``monitor_refresh_interval`` seconds old. After a successful kill the
    store is refreshed on the next read.
    """

    def __init__(
        self,
        store: InventoryStore | None = None,
        controller: TerminationController | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or Settings()
        runner = CommandRunner(settings.command_timeout)
        self.settings = settings
        self.store = store or MonitorStore(
            runner,
            refresh_interval=settings.monitor_refresh_interval,
            history_size=settings.cpu_history_size,
        )
        self.controller = controller or TerminationController.from_settings(settings, runner)

    def get_all_ports(self) -> list[PortRecord]:
        return self.store.all_ports()

    def get_listening_ports(self) -> list[PortRecord]:
        return self.store.listening()

    def get_port_by_number(self, port: int) -> list[PortRecord]:
        return self.store.by_port(port)

    def get_development_ports(self) -> list[PortRecord]:
        return self.store.development_ports()

    def get_processes(self) -> list[ProcessRecord]:
        return self.store.processes()

    def get_connections(self) -> list[ConnectionRecord]:
        return self.store.connections()

    def get_top_cpu_processes(self, limit: int) -> list[ProcessRecord]:
        return self.store.top_by_cpu(limit)

    def get_top_memory_processes(self, limit: int) -> list[ProcessRecord]:
        return self.store.top_by_memory(limit)

    async def kill_process_by_pid(self, pid: int, force: bool = False) -> KillResult:
        result = await self.controller.kill_process_by_pid(pid, force)
        self._invalidate()
        return result

    async def kill_pids(self, pids: list[int], force: bool = False) -> list[int]:
        killed = await self.controller.kill_pids(pids, force)
        if killed:
            self._invalidate()
        return killed

    async def kill_processes_by_name(self, pattern: str, force: bool = False) -> list[int]:
        pids = await self.controller.kill_processes_by_name(pattern, force)
        if pids:
            self._invalidate()
        return pids

    async def kill_process_by_port(self, port: int, force: bool = False) -> int:
        pid = await self.controller.kill_process_by_port(port, force)
        self._invalidate()
        return pid

    async def cleanup_dev_processes(self) -> list[int]:
        pids = await self.controller.cleanup_dev_processes()
        if pids:
            self._invalidate()
        return pids

    async def find_available_port(self, start: int, end: int) -> int:
        return await self.controller.find_available_port(start, end)

    def _invalidate(self) -> None:
        self.store.invalidate()
