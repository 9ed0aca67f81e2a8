"""Diagnostic envelopes and the optional JSONL sink.

Every diagnostic event travels on the EventBus as an envelope:

    {"event": "conversion.file", "component": "conversion",
     "operation": "convert", "timestamp": "2024-01-01T00:00:00Z",
     "data": {...}}

When `diagnostics.enabled` is set, `install_jsonl_sink` appends each
envelope to `<data_dir>/diagnostics/diagnostics.jsonl`.
"""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from audioshelf.core.events import get_event_bus
from audioshelf.core.logging import get_logger

_logger = get_logger(__name__)

ENVELOPE_KEYS = frozenset({"event", "component", "operation", "timestamp", "data"})


def utcnow_iso() -> str:
    """UTC timestamp, second precision, trailing 'Z'."""
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_envelope(*, event: str, component: str, operation: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "event": event,
        "component": component,
        "operation": operation,
        "timestamp": utcnow_iso(),
        "data": data,
    }


def emit(event: str, *, component: str, operation: str, data: dict[str, Any]) -> None:
    """Publish an envelope. Failures are logged, never raised."""
    envelope = build_envelope(event=event, component=component, operation=operation, data=data)
    try:
        get_event_bus().publish(event, envelope)
    except Exception as e:
        _logger.warning(f"diagnostic emission failed: {type(e).__name__}: {e}")


class JsonlSink:
    """Appends envelopes to a JSON-lines file, one object per line."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def __call__(self, event: str, data: dict[str, Any]) -> None:
        if isinstance(data, dict) and set(data) == ENVELOPE_KEYS:
            envelope = data
        else:
            envelope = build_envelope(event=event, component="unknown", operation="unknown", data=data)

        try:
            line = json.dumps(envelope, ensure_ascii=True, separators=(",", ":"), sort_keys=True, default=str)
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            _logger.warning(f"diagnostics sink write failed ({self.path}): {e}")


_SINKS: dict[Path, JsonlSink] = {}
_SINKS_LOCK = threading.Lock()


def install_jsonl_sink(path: Path) -> JsonlSink:
    """Subscribe a JsonlSink for `path`; at most one per path per process."""
    key = Path(path)
    with _SINKS_LOCK:
        sink = _SINKS.get(key)
        if sink is not None:
            return sink
        sink = _SINKS[key] = JsonlSink(key)
    get_event_bus().subscribe_all(sink)
    _logger.verbose(f"diagnostics sink installed: {key}")
    return sink
