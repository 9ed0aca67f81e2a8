"""In-process fan-out of log records.

The logger publishes every emitted record here. Consumers are the optional
line sink (`set_log_sink`) and the web log tap behind `/api/logs`. A failing
subscriber is reported on stderr and skipped.
"""

from __future__ import annotations

import sys
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

Subscriber = Callable[["LogRecord"], None]


@dataclass(frozen=True)
class LogRecord:
    level_name: str
    plain: str
    logger_name: str
    created: float = field(default_factory=time.time)


class LogBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        # (level filter or None for every level, callback)
        self._subs: list[tuple[str | None, Subscriber]] = []

    def subscribe(self, level_name: str, cb: Subscriber) -> None:
        with self._lock:
            self._subs.append((level_name.upper(), cb))

    def subscribe_all(self, cb: Subscriber) -> None:
        with self._lock:
            self._subs.append((None, cb))

    def unsubscribe(self, level_name: str, cb: Subscriber) -> None:
        self._remove((level_name.upper(), cb))

    def unsubscribe_all(self, cb: Subscriber) -> None:
        self._remove((None, cb))

    def _remove(self, entry: tuple[str | None, Subscriber]) -> None:
        with self._lock:
            if entry in self._subs:
                self._subs.remove(entry)

    def publish(self, record: LogRecord) -> None:
        with self._lock:
            targets = [cb for level, cb in self._subs if level is None or level == record.level_name]

        for cb in targets:
            try:
                cb(record)
            except Exception as e:
                # The logger publishes here, so report without it.
                sys.stderr.write(f"log subscriber {cb!r} failed: {type(e).__name__}: {e}\n")

    def clear(self) -> None:
        with self._lock:
            self._subs.clear()


_LOG_BUS = LogBus()


def get_log_bus() -> LogBus:
    return _LOG_BUS
