"""Background conversion of legacy audio formats.

One coordinator thread per book starts a small pool of worker threads that
drain a shared queue of legacy files. Workers back off while the host is
overloaded and leave the queue when the overload persists; files still
queued when every worker has stopped are counted as abandoned and picked up
by the next run.
"""

from __future__ import annotations

import os
import queue
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from audioshelf.conversion.load import SystemLoadProbe
from audioshelf.conversion.model import ConversionTask
from audioshelf.conversion.registry import ConversionRegistry
from audioshelf.conversion.transcoder import CodecParams, Transcoder, convert_file, target_path
from audioshelf.core import diagnostics, events
from audioshelf.core.config import ConversionSettings
from audioshelf.core.errors import TranscodeError
from audioshelf.core.logging import get_logger
from audioshelf.core.models import Book

_LOGGER = get_logger(__name__)

COMPONENT = "conversion"


class ConversionOrchestrator:
    def __init__(
        self,
        registry: ConversionRegistry,
        transcoder: Transcoder,
        probe: SystemLoadProbe,
        settings: ConversionSettings | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        cpu_count: int | None = None,
    ) -> None:
        self.registry = registry
        self.transcoder = transcoder
        self.probe = probe
        self.settings = settings or ConversionSettings()
        self._sleep = sleep
        self._cpu_count = cpu_count or os.cpu_count() or 1
        self._threads_lock = threading.Lock()
        self._threads: dict[str, threading.Thread] = {}

    @property
    def params(self) -> CodecParams:
        s = self.settings
        return CodecParams(bitrate=s.bitrate, sample_rate=s.sample_rate, channels=s.channels)

    def collect_legacy_files(self, book: Book) -> list[Path]:
        return [ep.path for ep in book.iter_episodes() if ep.needs_conversion]

    @staticmethod
    def claim_targets(files: Iterable[Path]) -> tuple[list[Path], list[tuple[Path, Path]]]:
        """Split `files` so each `.m4a` target has exactly one source.

        Returns:
            (sources to convert, [(extra source, source that owns its target)])
        """
        owners: dict[Path, Path] = {}
        claimed: list[Path] = []
        extras: list[tuple[Path, Path]] = []
        for source in files:
            owner = owners.setdefault(target_path(source), source)
            if owner is source:
                claimed.append(source)
            else:
                extras.append((source, owner))
        return claimed, extras

    def worker_count(self, files: int) -> int:
        """Workers wanted for `files` legacy files, before global reservation."""
        wanted = max(1, min(self._cpu_count // 2, self.settings.max_workers))
        return max(1, min(wanted, files))

    def start(self, book: Book) -> ConversionTask | None:
        """Start converting `book` in the background.

        Returns:
            The new task, or None when there is nothing to convert or a run
            for this book is already in progress.
        """
        files = self.collect_legacy_files(book)
        if not files:
            return None

        task = self.registry.try_begin(book.id, book.name, len(files))
        if task is None:
            _LOGGER.debug(f"conversion already running: book_id={book.id}")
            return None

        claimed, extras = self.claim_targets(files)
        workers = self.registry.reserve_workers(self.worker_count(len(claimed)), self.settings.max_workers)

        pending: queue.Queue[Path] = queue.Queue()
        for path in claimed:
            pending.put(path)

        _LOGGER.info(f"conversion started: book={book.name!r} files={len(files)} workers={workers}")
        diagnostics.emit(
            events.CONVERSION_START,
            component=COMPONENT,
            operation="start",
            data={"book_id": book.id, "total": len(files), "workers": workers},
        )
        for source, owner in extras:
            self._record(task, source, f"target already claimed by {owner.name}")

        coordinator = threading.Thread(
            target=self._coordinate,
            args=(task, pending, workers),
            name=f"convert-{book.id}",
            daemon=True,
        )
        with self._threads_lock:
            self._threads[book.id] = coordinator
        coordinator.start()
        return task

    def start_pending(self, books: Iterable[Book]) -> list[ConversionTask]:
        """Start every book that has legacy files and no active run."""
        if not self.settings.enabled:
            return []
        started = []
        for book in books:
            if not any(ep.needs_conversion for ep in book.iter_episodes()):
                continue
            task = self.start(book)
            if task is not None:
                started.append(task)
        return started

    def status(self, book_id: str) -> ConversionTask | None:
        return self.registry.get(book_id)

    def wait(self, book_id: str, timeout: float | None = None) -> ConversionTask | None:
        """Block until the current run for `book_id` has finished (or timeout)."""
        with self._threads_lock:
            thread = self._threads.get(book_id)
        if thread is not None:
            thread.join(timeout)
        return self.registry.get(book_id)

    def _coordinate(self, task: ConversionTask, pending: queue.Queue[Path], workers: int) -> None:
        threads = [
            threading.Thread(
                target=self._work,
                args=(task, pending),
                name=f"convert-{task.book_id}-{i}",
                daemon=True,
            )
            for i in range(workers)
        ]
        try:
            for t in threads:
                t.start()
            for t in threads:
                t.join()
        finally:
            self._finalize(task, pending)

    def _finalize(self, task: ConversionTask, pending: queue.Queue[Path]) -> None:
        abandoned = 0
        while True:
            try:
                pending.get_nowait()
            except queue.Empty:
                break
            abandoned += 1

        status = task.finish(abandoned=abandoned, finished_at=diagnostics.utcnow_iso())
        summary = (
            f"book={task.book_name!r} status={status.value} completed={task.completed} "
            f"failed={task.failed} abandoned={abandoned} total={task.total}"
        )
        if abandoned:
            _LOGGER.warning(f"conversion stopped early under load: {summary}")
        else:
            _LOGGER.info(f"conversion finished: {summary}")

        diagnostics.emit(
            events.CONVERSION_END,
            component=COMPONENT,
            operation="finish",
            data=task.to_dict(),
        )

    def _wait_for_capacity(self, task: ConversionTask) -> bool:
        """False when the host stays overloaded through every retry."""
        limit = self.settings.load_limit
        if not self.probe.is_overloaded(limit):
            return True

        for attempt in range(1, self.settings.overload_retries + 1):
            _LOGGER.verbose(
                f"system overloaded, waiting {self.settings.overload_wait_seconds:g}s "
                f"(attempt {attempt}/{self.settings.overload_retries}) book_id={task.book_id}"
            )
            self._sleep(self.settings.overload_wait_seconds)
            if not self.probe.is_overloaded(limit):
                return True

        _LOGGER.warning(
            f"system still overloaded, worker leaving queue: book={task.book_name!r} "
            f"thread={threading.current_thread().name}"
        )
        return False

    def _work(self, task: ConversionTask, pending: queue.Queue[Path]) -> None:
        try:
            while not pending.empty():
                if not self._wait_for_capacity(task):
                    return
                try:
                    source = pending.get_nowait()
                except queue.Empty:
                    return
                self._convert_one(task, source)
        finally:
            self.registry.release_worker()

    def _convert_one(self, task: ConversionTask, source: Path) -> None:
        task.set_current(source.name)
        error: str | None = None
        try:
            convert_file(
                source,
                self.transcoder,
                self.params,
                min_output_bytes=self.settings.min_output_bytes,
            )
        except TranscodeError as e:
            error = e.reason
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
        self._record(task, source, error)

    def _record(self, task: ConversionTask, source: Path, error: str | None) -> None:
        if error is None:
            task.record_success()
        else:
            task.record_failure()
            _LOGGER.error(f"conversion failed: book={task.book_name!r} file={source.name!r} cause={error}")

        diagnostics.emit(
            events.CONVERSION_FILE,
            component=COMPONENT,
            operation="convert_file",
            data={"book_id": task.book_id, "file": source.name, "ok": error is None, "error": error},
        )
