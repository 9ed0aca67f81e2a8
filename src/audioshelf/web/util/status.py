from __future__ import annotations

import os
import time
from typing import Any

from audioshelf.conversion.registry import ConversionRegistry
from audioshelf.core import __version__
from audioshelf.core.diagnostics import utcnow_iso

_STARTED_MONO = time.monotonic()
_STARTED_AT = utcnow_iso()


def build_status(registry: ConversionRegistry | None = None) -> dict[str, Any]:
    """Process facts plus a conversion summary for `/api/status`."""
    status: dict[str, Any] = {
        "version": __version__,
        "pid": os.getpid(),
        "started_at": _STARTED_AT,
        "uptime_s": int(time.monotonic() - _STARTED_MONO),
    }
    if registry is None:
        return status

    active = [t for t in registry.tasks() if t.is_active]
    status["active_workers"] = registry.active_workers
    status["converting"] = sorted(t.book_id for t in active)
    status["pending_files"] = sum(t.total - t.completed - t.failed - t.abandoned for t in active)
    return status
