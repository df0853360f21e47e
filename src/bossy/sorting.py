"""Ordering of inventory records."""

from dataclasses import dataclass
from enum import Enum
from functools import cmp_to_key
from typing import Callable, Iterable, TypeVar

from bossy.models import ConnectionRecord, PortRecord, ProcessRecord

Record = TypeVar("Record", ProcessRecord, PortRecord, ConnectionRecord)


class RecordKind(Enum):
    """The three kinds of record a view can show."""

    PROCESS = "process"
    PORT = "port"
    CONNECTION = "connection"


class SortKey(Enum):
    """Sort keys across all record kinds."""

    NAME = "name"
    PID = "pid"
    CPU = "cpu"
    MEMORY = "memory"
    PORT = "port"
    LOCAL_ADDRESS = "local"
    REMOTE_ADDRESS = "remote"


class SortOrder(Enum):
    ASCENDING = "asc"
    DESCENDING = "desc"

    def toggled(self) -> "SortOrder":
        if self is SortOrder.ASCENDING:
            return SortOrder.DESCENDING
        return SortOrder.ASCENDING


KEY_CYCLES: dict[RecordKind, tuple[SortKey, ...]] = {
    RecordKind.PROCESS: (SortKey.NAME, SortKey.PID, SortKey.CPU, SortKey.MEMORY),
    RecordKind.PORT: (SortKey.PORT,),
    RecordKind.CONNECTION: (SortKey.LOCAL_ADDRESS, SortKey.REMOTE_ADDRESS, SortKey.PID),
}


def _compare_floats(a: float, b: float) -> int:
    # NaN compares neither lower nor higher, so it is treated as equal
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def _optional_pid(record: PortRecord | ConnectionRecord) -> tuple[bool, int]:
    # Records without a PID sort before those with one
    return (record.pid is not None, record.pid or 0)


_KEY_FUNCS: dict[type, dict[SortKey, Callable]] = {
    ProcessRecord: {
        SortKey.NAME: lambda p: p.name,
        SortKey.PID: lambda p: p.pid,
        SortKey.CPU: cmp_to_key(lambda a, b: _compare_floats(a.cpu_usage, b.cpu_usage)),
        SortKey.MEMORY: lambda p: p.memory,
    },
    PortRecord: {
        SortKey.PORT: lambda p: p.port,
    },
    ConnectionRecord: {
        SortKey.LOCAL_ADDRESS: lambda c: c.local_address.sort_key,
        SortKey.REMOTE_ADDRESS: lambda c: c.remote_address.sort_key,
        SortKey.PID: _optional_pid,
    },
}


def next_sort_key(kind: RecordKind, key: SortKey) -> SortKey:
    """The key that follows ``key`` in the cycle for ``kind``."""
    cycle = KEY_CYCLES[kind]
    if key not in cycle:
        return cycle[0]
    return cycle[(cycle.index(key) + 1) % len(cycle)]


def sort_records(
    records: Iterable[Record],
    key: SortKey,
    order: SortOrder = SortOrder.ASCENDING,
) -> list[Record]:
    """
    Stable sort of records by ``key``.

    A key that does not apply to the record kind (e.g. CPU for ports) leaves
    the input order untouched.
    """
    items = list(records)
    if not items:
        return items
    key_func = _KEY_FUNCS[type(items[0])].get(key)
    if key_func is None:
        return items
    return sorted(items, key=key_func, reverse=order is SortOrder.DESCENDING)


@dataclass(slots=True)
class SortState:
    """Current sort selection of a view; defaults to CPU, highest first."""

    key: SortKey = SortKey.CPU
    order: SortOrder = SortOrder.DESCENDING

    def cycle(self, kind: RecordKind) -> SortKey:
        """
        Advance to the next key for ``kind`` and return it.

        Ports have a single key, so cycling them flips the direction instead.
        """
        if kind is RecordKind.PORT:
            self.key = SortKey.PORT
            self.order = self.order.toggled()
        else:
            self.key = next_sort_key(kind, self.key)
        return self.key

    def toggle_order(self) -> SortOrder:
        self.order = self.order.toggled()
        return self.order

    def apply(self, records: Iterable[Record]) -> list[Record]:
        return sort_records(records, self.key, self.order)
