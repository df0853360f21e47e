"""Search language shared by every inventory view.

Patterns (case-insensitive):

    #1234        record's PID equals 1234
    :3000        port equals 3000
    :3000-3010   port within the inclusive range
    >50%         process CPU above 50 percent
    >512MB       process memory above 512 MiB (also GB)
    anything     substring of the record's names, PID or port

A pattern whose prefix is present but whose remainder is not the expected
number falls back to a substring search for the whole pattern, prefix
included, so ``#abc`` looks for the literal text ``#abc``.
"""

import re
from typing import Iterable, TypeVar

from bossy.models import MAX_PORT, ConnectionRecord, PortRecord, ProcessRecord

Record = TypeVar("Record", ProcessRecord, PortRecord, ConnectionRecord)

MAX_PID = 2**32 - 1
NUMBER = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:e[+-]?\d+)?", re.ASCII)


def _parse_uint(text: str, limit: int) -> int | None:
    if not (text.isascii() and text.isdigit()):
        return None
    value = int(text)
    return value if value <= limit else None


def _parse_number(text: str) -> float | None:
    if not NUMBER.fullmatch(text):
        return None
    return float(text)


def _record_port(record: PortRecord | ConnectionRecord) -> int:
    if isinstance(record, PortRecord):
        return record.port
    return record.local_address.port


def _match_pid(record, query: str) -> bool | None:
    pid = _parse_uint(query, MAX_PID)
    if pid is None:
        return None
    return record.pid == pid


def _match_port(record, query: str) -> bool | None:
    if isinstance(record, ProcessRecord):
        return None
    port = _record_port(record)
    if "-" in query:
        start_text, _, end_text = query.partition("-")
        start = _parse_uint(start_text, MAX_PORT)
        end = _parse_uint(end_text, MAX_PORT)
        if start is None or end is None:
            return None
        return start <= port <= end
    exact = _parse_uint(query, MAX_PORT)
    if exact is None:
        return None
    return port == exact


def _match_resource(record, query: str) -> bool | None:
    if not isinstance(record, ProcessRecord):
        return None
    if query.endswith("%"):
        threshold = _parse_number(query[:-1])
        if threshold is None:
            return None
        return record.cpu_usage > threshold
    for suffix, divisor in (("gb", 1024**3), ("mb", 1024**2)):
        if query.endswith(suffix):
            threshold = _parse_number(query[: -len(suffix)])
            if threshold is None:
                return None
            return record.memory / divisor > threshold
    return None


_PREFIX_MATCHERS = {
    "#": _match_pid,
    ":": _match_port,
    ">": _match_resource,
}


def _search_fields(record) -> list[str]:
    if isinstance(record, ProcessRecord):
        return [record.name.lower(), str(record.pid)]

    texts: list[str] = []
    if isinstance(record, ConnectionRecord):
        texts += [str(record.local_address), str(record.remote_address)]
    else:
        texts.append(str(record.port))
        if record.service_name:
            texts.append(record.service_name.lower())
    if record.process_name:
        texts.append(record.process_name.lower())
    if record.pid is not None:
        texts.append(str(record.pid))
    return texts


def matches(record: ProcessRecord | PortRecord | ConnectionRecord, pattern: str) -> bool:
    """True if ``record`` satisfies the search ``pattern``."""
    query = pattern.lower()
    matcher = _PREFIX_MATCHERS.get(query[:1])
    if matcher is not None:
        decided = matcher(record, query[1:])
        if decided is not None:
            return decided
    return any(query in text for text in _search_fields(record))


def filter_records(records: Iterable[Record], pattern: str) -> list[Record]:
    """The records matching ``pattern``, in their original order."""
    return [record for record in records if matches(record, pattern)]
