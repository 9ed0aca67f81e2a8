from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ConversionStatus(StrEnum):
    IDLE = "idle"
    CONVERTING = "converting"
    DONE = "done"
    ERROR = "error"


_ALLOWED_TRANSITIONS: dict[ConversionStatus, set[ConversionStatus]] = {
    ConversionStatus.IDLE: {ConversionStatus.CONVERTING},
    ConversionStatus.CONVERTING: {ConversionStatus.DONE, ConversionStatus.ERROR},
    ConversionStatus.DONE: set(),
    ConversionStatus.ERROR: set(),
}


@dataclass
class ConversionTask:
    """In-memory progress of one book's conversion run.

    Counters only grow. `completed + failed + abandoned <= total` always
    holds, with equality once the task has left CONVERTING.
    """

    book_id: str
    book_name: str
    total: int
    completed: int = 0
    failed: int = 0
    abandoned: int = 0
    current_file: str = ""
    status: ConversionStatus = ConversionStatus.IDLE
    started_at: str | None = None
    finished_at: str | None = None

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def transition(self, new_status: ConversionStatus) -> None:
        with self._lock:
            self._transition_locked(new_status)

    def _transition_locked(self, new_status: ConversionStatus) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise ValueError(
                f"illegal conversion transition: {self.status.value} -> {new_status.value}"
            )
        self.status = new_status

    @property
    def is_active(self) -> bool:
        return self.status == ConversionStatus.CONVERTING

    @property
    def processed(self) -> int:
        return self.completed + self.failed

    def set_current(self, file_name: str) -> None:
        with self._lock:
            self.current_file = file_name

    def record_success(self) -> None:
        with self._lock:
            self._check_capacity()
            self.completed += 1

    def record_failure(self) -> None:
        with self._lock:
            self._check_capacity()
            self.failed += 1

    def _check_capacity(self) -> None:
        if self.completed + self.failed + self.abandoned >= self.total:
            raise ValueError(f"conversion counters exceed total={self.total}")

    def finish(self, *, abandoned: int, finished_at: str) -> ConversionStatus:
        """Close the task: all-failed is ERROR, anything else DONE."""
        with self._lock:
            self.abandoned = abandoned
            self.current_file = ""
            self.finished_at = finished_at
            if self.failed > 0 and self.completed == 0:
                final = ConversionStatus.ERROR
            else:
                final = ConversionStatus.DONE
            self._transition_locked(final)
            return final

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "book_id": self.book_id,
                "book_name": self.book_name,
                "total": self.total,
                "completed": self.completed,
                "failed": self.failed,
                "abandoned": self.abandoned,
                "current_file": self.current_file,
                "status": self.status.value,
                "started_at": self.started_at,
                "finished_at": self.finished_at,
            }
