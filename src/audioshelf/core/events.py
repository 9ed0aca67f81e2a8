"""Diagnostic event bus.

Event names are dotted (`conversion.file`, `boundary.start`). A subscription
names one event exactly or a whole family with a trailing `.*`
(`conversion.*`). The JSONL sink uses `subscribe_all`.
"""

from __future__ import annotations

import threading
import traceback
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from audioshelf.core.logging import get_logger

_logger = get_logger(__name__)

Handler = Callable[[dict[str, Any]], None]
AnyHandler = Callable[[str, dict[str, Any]], None]

CONVERSION_START = "conversion.start"
CONVERSION_FILE = "conversion.file"
CONVERSION_END = "conversion.end"
OPERATION_START = "operation.start"
OPERATION_END = "operation.end"
BOUNDARY_START = "boundary.start"
BOUNDARY_END = "boundary.end"


def _matches(pattern: str, event: str) -> bool:
    if pattern.endswith(".*"):
        return event.startswith(pattern[:-1])
    return pattern == event


class EventBus:
    """Thread-safe publish/subscribe.

    Example:
        bus = get_event_bus()
        bus.subscribe("conversion.*", lambda env: print(env["event"]))
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: list[tuple[str, Handler]] = []
        self._any_handlers: list[AnyHandler] = []

    def subscribe(self, pattern: str, callback: Handler) -> None:
        with self._lock:
            self._handlers.append((pattern, callback))

    def unsubscribe(self, pattern: str, callback: Handler) -> None:
        with self._lock:
            if (pattern, callback) in self._handlers:
                self._handlers.remove((pattern, callback))

    def subscribe_all(self, callback: AnyHandler) -> None:
        """Receive every event as `callback(event_name, data)`."""
        with self._lock:
            self._any_handlers.append(callback)

    def unsubscribe_all(self, callback: AnyHandler) -> None:
        with self._lock:
            if callback in self._any_handlers:
                self._any_handlers.remove(callback)

    @contextmanager
    def subscribed(self, pattern: str, callback: Handler) -> Iterator[None]:
        self.subscribe(pattern, callback)
        try:
            yield
        finally:
            self.unsubscribe(pattern, callback)

    def publish(self, event: str, data: dict[str, Any] | None = None) -> None:
        """Deliver `data` to matching handlers.

        A raising handler is logged with its traceback and does not stop
        delivery to the others.
        """
        payload = data if data is not None else {}
        with self._lock:
            handlers = [cb for pattern, cb in self._handlers if _matches(pattern, event)]
            any_handlers = list(self._any_handlers)

        for cb in handlers:
            self._call(event, cb, payload)
        for cb_any in any_handlers:
            self._call(event, lambda d, cb_any=cb_any: cb_any(event, d), payload)

    def _call(self, event: str, cb: Handler, payload: dict[str, Any]) -> None:
        try:
            cb(payload)
        except Exception as e:
            _logger.error(
                f"event handler failed for '{event}': {type(e).__name__}: {e}\n{traceback.format_exc()}"
            )

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
            self._any_handlers.clear()


_BUS = EventBus()


def get_event_bus() -> EventBus:
    """Process-wide event bus."""
    return _BUS
