"""bossy - Interactive Textual dashboard."""

import asyncio
from functools import partial

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.logging import TextualHandler
from textual.screen import ModalScreen
from textual.widgets import DataTable, Footer, Input, Sparkline, Static

from bossy.errors import BossyError
from bossy.killer import (
    DangerLevel,
    TerminationController,
    assess_batch,
    assess_port,
    assess_process,
)
from bossy.logs import configure_logging
from bossy.models import ConnectionRecord, PortRecord, ProcessRecord
from bossy.monitor import InventorySnapshot, InventoryStore
from bossy.search import filter_records
from bossy.settings import Settings
from bossy.sorting import RecordKind, SortState

COLUMNS: dict[RecordKind, tuple[str, ...]] = {
    RecordKind.PROCESS: ("PID", "Process", "CPU%", "Memory", "Status"),
    RecordKind.PORT: ("Port", "Proto", "State", "PID", "Process", "Service"),
    RecordKind.CONNECTION: ("Proto", "Local", "Remote", "PID", "Process"),
}

TITLES = {
    RecordKind.PROCESS: "Processes",
    RecordKind.PORT: "Ports",
    RecordKind.CONNECTION: "Connections",
}

MARKER = "* "


def record_cells(record: ProcessRecord | PortRecord | ConnectionRecord) -> tuple[str, ...]:
    """Table cells for one record."""
    if isinstance(record, ProcessRecord):
        return (
            str(record.pid),
            record.name[:30],
            f"{record.cpu_usage:5.1f}",
            record.format_memory(),
            record.status,
        )
    pid = str(record.pid) if record.pid is not None else "-"
    if isinstance(record, PortRecord):
        return (
            str(record.port),
            record.protocol.name,
            record.state.name,
            pid,
            record.process_name or "-",
            record.service_name or "-",
        )
    return (
        record.protocol.name,
        str(record.local_address),
        str(record.remote_address),
        pid,
        record.process_name or "-",
    )


class HeaderStats(Horizontal):
    """Header showing inventory counts and the CPU history sparkline."""

    DEFAULT_CSS = """
    HeaderStats {
        height: 3;
        padding: 0 1;
        background: $surface;
    }

    #counts {
        width: 1fr;
    }

    #cpu-sparkline {
        width: 2fr;
    }
    """

    def compose(self) -> ComposeResult:
        yield Static("Loading...", id="counts")
        yield Sparkline([0.0], summary_function=max, id="cpu-sparkline")

    def update_stats(self, snapshot: InventorySnapshot) -> None:
        """Update counts and sparkline from a snapshot."""
        cpu = snapshot.cpu_history[-1] if snapshot.cpu_history else 0.0
        self.query_one("#counts", Static).update(
            f"{len(snapshot.processes)} processes  "
            f"{len(snapshot.ports)} ports  "
            f"{len(snapshot.connections)} connections\n"
            f"CPU {cpu:5.1f}%"
        )
        self.query_one("#cpu-sparkline", Sparkline).data = list(snapshot.cpu_history)


class InventoryTable(Container):
    """Container for the inventory data table."""

    DEFAULT_CSS = """
    InventoryTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._kind: RecordKind | None = None
        self._records: list = []

    @property
    def records(self) -> list:
        """Records currently shown, in display order."""
        return self._records

    def compose(self) -> ComposeResult:
        yield DataTable(id="inventory-table", cursor_type="row")

    def show(self, kind: RecordKind, records: list, marked: list[int] | None = None) -> None:
        """
        Replace the table contents.

        Columns are rebuilt only when the record kind changes; otherwise the
        cursor stays on the same row. Processes in ``marked`` get a marker in
        front of their PID.
        """
        table = self.query_one("#inventory-table", DataTable)
        row = 0
        if kind is not self._kind:
            table.clear(columns=True)
            table.add_columns(*COLUMNS[kind])
            self._kind = kind
        else:
            row = table.cursor_row
            table.clear()

        marked = set(marked or ())
        for index, record in enumerate(records):
            cells = record_cells(record)
            if isinstance(record, ProcessRecord) and record.pid in marked:
                cells = (MARKER + cells[0],) + cells[1:]
            table.add_row(*cells, key=str(index))
        self._records = records
        self.border_title = f"{TITLES[kind]} ({len(records)})"
        if records and row:
            table.move_cursor(row=min(row, len(records) - 1))

    def selected(self):
        """The record under the cursor, or None."""
        table = self.query_one("#inventory-table", DataTable)
        if not self._records or not 0 <= table.cursor_row < len(self._records):
            return None
        return self._records[table.cursor_row]


class ConfirmKill(ModalScreen[bool]):
    """
    Asks before a kill.

    Low to high danger kills are confirmed with ``y`` (or enter). Critical
    ones need ``YES`` typed into the dialog.
    """

    DEFAULT_CSS = """
    ConfirmKill {
        align: center middle;
    }

    #dialog {
        width: 64;
        height: auto;
        padding: 1 2;
        border: thick $warning;
        background: $surface;
    }

    ConfirmKill.critical #dialog {
        border: thick $error;
    }

    #dialog-message {
        margin: 1 0;
    }
    """

    BINDINGS = [
        ("y", "confirm", "Yes"),
        ("enter", "confirm", "Yes"),
        ("n", "cancel", "No"),
        ("escape", "cancel", "Cancel"),
    ]

    def __init__(self, title: str, message: str, danger: DangerLevel) -> None:
        super().__init__()
        self._title = title
        self._message = message
        self.danger = danger

    def compose(self) -> ComposeResult:
        with Vertical(id="dialog"):
            yield Static(f"[b]{self._title}[/b]  ({self.danger.value} risk)", id="dialog-title")
            yield Static(self._message, id="dialog-message")
            if self.danger.needs_typed_confirmation:
                yield Input(placeholder="Type YES to confirm", id="confirm-input")
            else:
                yield Static("y: yes   n: no", id="dialog-keys")

    def on_mount(self) -> None:
        if self.danger.needs_typed_confirmation:
            self.add_class("critical")
            self.query_one("#confirm-input", Input).focus()

    def action_confirm(self) -> None:
        if not self.danger.needs_typed_confirmation:
            self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        if event.value.strip().upper() == "YES":
            self.dismiss(True)
        else:
            event.input.value = ""
            self.notify("Type YES to confirm a critical kill", severity="warning")


class BossyApp(App):
    """Main bossy dashboard."""

    TITLE = "bossy"
    SUB_TITLE = "Ports & Processes"
    AUTO_FOCUS = "#inventory-table"

    CSS = """
    Screen {
        layout: vertical;
    }

    #search {
        dock: bottom;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("1", "view('process')", "Processes"),
        ("2", "view('port')", "Ports"),
        ("3", "view('connection')", "Connections"),
        ("s", "sort", "Sort"),
        ("slash", "search", "Search"),
        ("escape", "clear_search", "Clear"),
        ("r", "refresh", "Refresh"),
        ("space", "toggle_mark", "Mark"),
        ("k", "kill", "Kill"),
        ("ctrl+k", "kill(True)", "Force kill"),
    ]

    def __init__(
        self,
        store: InventoryStore | None = None,
        controller: TerminationController | None = None,
        settings: Settings | None = None,
    ) -> None:
        super().__init__()
        settings = settings or Settings()
        self._settings = settings
        self._store = store or InventoryStore(
            refresh_interval=settings.dashboard_refresh_interval,
            history_size=settings.cpu_history_size,
        )
        self._controller = controller or TerminationController.from_settings(settings)
        self._kind = RecordKind.PROCESS
        self._sort = SortState()
        self._query = ""
        self._marked: list[int] = []
        # One kill at a time; a running kill is never cancelled by the next
        self._kill_lock = asyncio.Lock()

    @property
    def kind(self) -> RecordKind:
        return self._kind

    @property
    def sort_state(self) -> SortState:
        return self._sort

    @property
    def marked(self) -> list[int]:
        """PIDs marked for a batch kill, in marking order."""
        return list(self._marked)

    def compose(self) -> ComposeResult:
        yield HeaderStats(id="header-stats")
        yield InventoryTable()
        yield Input(placeholder="Search: name, #pid, :port, :from-to, >50%, >1GB", id="search")
        yield Footer()

    def on_mount(self) -> None:
        """Load the first snapshot and schedule periodic refreshes."""
        self.query_one("#inventory-table", DataTable).focus()
        self.run_worker(self._refresh(), exclusive=True, group="refresh")
        self.set_interval(self._store.refresh_interval, self._check_for_updates)

    def _check_for_updates(self) -> None:
        if self._store.should_refresh():
            self.run_worker(self._refresh(), exclusive=True, group="refresh")

    async def _refresh(self) -> None:
        try:
            await asyncio.to_thread(self._store.refresh)
        except BossyError as exc:
            self.notify(str(exc), title="Refresh failed", severity="error")
            return
        self._update_ui()

    def _visible_records(self) -> list:
        snapshot = self._store.snapshot
        records = {
            RecordKind.PROCESS: snapshot.processes,
            RecordKind.PORT: snapshot.ports,
            RecordKind.CONNECTION: snapshot.connections,
        }[self._kind]
        if self._query:
            records = filter_records(records, self._query)
        return self._sort.apply(records)

    def _update_ui(self) -> None:
        """Redraw header and table from the current snapshot."""
        self.query_one("#header-stats", HeaderStats).update_stats(self._store.snapshot)
        self.query_one(InventoryTable).show(self._kind, self._visible_records(), self._marked)

    def action_view(self, kind: str) -> None:
        self._kind = RecordKind(kind)
        self._marked.clear()
        self._update_ui()

    def action_sort(self) -> None:
        """Cycle the sort key for the current view."""
        key = self._sort.cycle(self._kind)
        self._update_ui()
        self.notify(f"Sorted by {key.value} ({self._sort.order.value})")

    def action_search(self) -> None:
        self.query_one("#search", Input).focus()

    def action_clear_search(self) -> None:
        search = self.query_one("#search", Input)
        search.value = ""
        self.query_one("#inventory-table", DataTable).focus()

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id != "search":
            return
        self._query = event.value
        self._update_ui()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self.query_one("#inventory-table", DataTable).focus()

    def action_refresh(self) -> None:
        self.run_worker(self._refresh(), exclusive=True, group="refresh")

    def action_toggle_mark(self) -> None:
        """Mark or unmark the process under the cursor for a batch kill."""
        if self._kind is not RecordKind.PROCESS:
            self.notify("Marking works in the process view", severity="warning")
            return
        record = self.query_one(InventoryTable).selected()
        if record is None:
            return
        if record.pid in self._marked:
            self._marked.remove(record.pid)
        else:
            self._marked.append(record.pid)
        self._update_ui()

    def action_kill(self, force: bool = False) -> None:
        """Confirm, then kill the marked processes or the row under the cursor."""
        if isinstance(self.screen, ConfirmKill):
            return
        signal = "SIGKILL" if force else "SIGTERM"

        if self._marked and self._kind is RecordKind.PROCESS:
            pids = list(self._marked)
            names = {p.pid: p.name for p in self._store.snapshot.processes}
            listed = ", ".join(f"{names.get(pid, '?')} ({pid})" for pid in pids[:5])
            if len(pids) > 5:
                listed += f" and {len(pids) - 5} more"
            self._confirm(
                ConfirmKill(
                    "Terminate Multiple Processes",
                    f"Send {signal} to {len(pids)} processes?\n\n{listed}",
                    assess_batch(len(pids)),
                ),
                partial(self._kill_marked, pids, force),
            )
            return

        record = self.query_one(InventoryTable).selected()
        if record is None:
            return

        if isinstance(record, PortRecord) and self._kind is RecordKind.PORT:
            self._confirm(
                ConfirmKill(
                    "Terminate Port Process",
                    f"Send {signal} to the process using port {record.port}?\n\n"
                    f"Process: {record.process_name or 'Unknown'}",
                    assess_port(record.port, record.is_development_port),
                ),
                partial(self._kill_port, record.port, force),
            )
            return

        if record.pid is None:
            self.notify("No process is associated with this row", severity="warning")
            return
        if isinstance(record, ProcessRecord):
            danger = assess_process(record.pid, record.name, record.cpu_usage, record.memory)
            name = record.name
        else:
            danger = assess_process(record.pid, record.process_name or "")
            name = record.process_name or f"PID {record.pid}"
        self._confirm(
            ConfirmKill(
                "Terminate Process",
                f"Send {signal} to '{name}'?\n\nPID: {record.pid}",
                danger,
            ),
            partial(self._kill_pid, record.pid, force),
        )

    def _confirm(self, dialog: ConfirmKill, kill) -> None:
        def done(confirmed: bool | None) -> None:
            if confirmed:
                self.run_worker(self._run_kill(kill), group="kill")

        self.push_screen(dialog, done)

    async def _run_kill(self, kill) -> None:
        async with self._kill_lock:
            try:
                message = await kill()
            except BossyError as exc:
                self.notify(str(exc), title="Kill failed", severity="error")
                return
            self.notify(message)
            self._store.invalidate()
            await self._refresh()

    async def _kill_pid(self, pid: int, force: bool) -> str:
        result = await self._controller.kill_process_by_pid(pid, force)
        suffix = " (escalated to SIGKILL)" if result.escalated else ""
        return f"Process {pid} terminated{suffix}"

    async def _kill_port(self, port: int, force: bool) -> str:
        pid = await self._controller.kill_process_by_port(port, force)
        return f"Killed process {pid} using port {port}"

    async def _kill_marked(self, pids: list[int], force: bool) -> str:
        self._marked.clear()
        killed = await self._controller.kill_pids(pids, force)
        return f"Killed {len(killed)} of {len(pids)} processes"


def main() -> None:
    """Entry point for the bossy dashboard."""
    settings = Settings.from_env()
    configure_logging(settings.log_level, handler=TextualHandler())
    app = BossyApp(settings=settings)
    app.run()


if __name__ == "__main__":
    main()
