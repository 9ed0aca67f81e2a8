"""Recent log lines for `/api/logs`."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass

from audioshelf.core.log_bus import LogRecord, get_log_bus

MAX_LINES = 2000


@dataclass(frozen=True)
class TappedLine:
    id: int
    level: str
    line: str


class LogTap:
    """Ring buffer of the most recent log records, with increasing ids.

    Clients poll with `since_id` set to the last id they saw.
    """

    def __init__(self, maxlen: int = MAX_LINES) -> None:
        self.maxlen = maxlen
        self._lock = threading.Lock()
        self._lines: deque[TappedLine] = deque(maxlen=maxlen)
        self._next_id = 1
        self._installed = False

    def install(self) -> None:
        with self._lock:
            if self._installed:
                return
            self._installed = True
        get_log_bus().subscribe_all(self.record)

    def record(self, rec: LogRecord) -> None:
        with self._lock:
            self._lines.append(TappedLine(self._next_id, rec.level_name, rec.plain.rstrip("\n")))
            self._next_id += 1

    def lines(self, *, since_id: int = 0, limit: int = 200) -> list[TappedLine]:
        limit = max(1, min(limit, self.maxlen))
        with self._lock:
            newer = [t for t in self._lines if t.id > since_id]
        return newer[-limit:]


_TAP = LogTap()


def get_log_tap() -> LogTap:
    return _TAP
