"""Process-wide conversion state.

One registry is owned by the orchestrator and shared with the web layer
through app.state. It holds the per-book progress map and the active
worker counter that bounds concurrency across all books.
"""

from __future__ import annotations

import threading

from audioshelf.conversion.model import ConversionStatus, ConversionTask
from audioshelf.core.diagnostics import utcnow_iso


class ConversionRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, ConversionTask] = {}
        self._active_workers = 0

    @property
    def active_workers(self) -> int:
        with self._lock:
            return self._active_workers

    def get(self, book_id: str) -> ConversionTask | None:
        with self._lock:
            return self._tasks.get(book_id)

    def tasks(self) -> list[ConversionTask]:
        with self._lock:
            return list(self._tasks.values())

    def try_begin(self, book_id: str, book_name: str, total: int) -> ConversionTask | None:
        """Register a new CONVERTING task, or None if one is already running."""
        with self._lock:
            existing = self._tasks.get(book_id)
            if existing is not None and existing.is_active:
                return None
            task = ConversionTask(book_id=book_id, book_name=book_name, total=total)
            task.transition(ConversionStatus.CONVERTING)
            task.started_at = utcnow_iso()
            self._tasks[book_id] = task
            return task

    def reserve_workers(self, wanted: int, limit: int) -> int:
        """Reserve up to `wanted` worker slots under the global `limit`.

        At least one slot is always granted so every book makes progress.
        """
        with self._lock:
            free = limit - self._active_workers
            granted = max(1, min(wanted, free))
            self._active_workers += granted
            return granted

    def release_worker(self) -> None:
        with self._lock:
            if self._active_workers > 0:
                self._active_workers -= 1
