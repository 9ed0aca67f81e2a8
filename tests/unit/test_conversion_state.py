"""Unit tests for conversion.model and conversion.registry."""

from __future__ import annotations

import pytest

from audioshelf.conversion.model import ConversionStatus, ConversionTask
from audioshelf.conversion.registry import ConversionRegistry


def _converting(total: int = 3) -> ConversionTask:
    task = ConversionTask(book_id="b1", book_name="Book", total=total)
    task.transition(ConversionStatus.CONVERTING)
    return task


class TestConversionTask:
    def test_starts_idle(self):
        task = ConversionTask(book_id="b1", book_name="Book", total=1)
        assert task.status == ConversionStatus.IDLE
        assert not task.is_active

    def test_illegal_transition(self):
        task = ConversionTask(book_id="b1", book_name="Book", total=1)
        with pytest.raises(ValueError, match="illegal"):
            task.transition(ConversionStatus.DONE)

    def test_counters_bounded_by_total(self):
        task = _converting(total=2)
        task.record_success()
        task.record_failure()
        with pytest.raises(ValueError):
            task.record_success()
        assert task.processed == 2

    def test_finish_done_with_any_success(self):
        task = _converting(total=3)
        task.record_success()
        task.record_failure()
        task.set_current("c.wma")

        status = task.finish(abandoned=1, finished_at="2026-01-01T00:00:00Z")

        assert status == ConversionStatus.DONE
        assert task.current_file == ""
        assert task.completed + task.failed + task.abandoned == task.total

    def test_finish_error_when_all_failed(self):
        task = _converting(total=2)
        task.record_failure()
        task.record_failure()
        assert task.finish(abandoned=0, finished_at="t") == ConversionStatus.ERROR

    def test_finish_done_when_everything_abandoned(self):
        task = _converting(total=2)
        assert task.finish(abandoned=2, finished_at="t") == ConversionStatus.DONE

    def test_cannot_finish_twice(self):
        task = _converting(total=1)
        task.record_success()
        task.finish(abandoned=0, finished_at="t")
        with pytest.raises(ValueError):
            task.finish(abandoned=0, finished_at="t")

    def test_to_dict(self):
        data = _converting(total=4).to_dict()
        assert data["status"] == "converting"
        assert data["total"] == 4
        assert "_lock" not in data


class TestConversionRegistry:
    def test_try_begin_registers_converting_task(self):
        registry = ConversionRegistry()
        task = registry.try_begin("b1", "Book", 2)
        assert task is not None
        assert task.is_active
        assert task.started_at is not None
        assert registry.get("b1") is task

    def test_try_begin_refuses_while_active(self):
        registry = ConversionRegistry()
        registry.try_begin("b1", "Book", 2)
        assert registry.try_begin("b1", "Book", 2) is None

    def test_try_begin_after_finish_replaces_task(self):
        registry = ConversionRegistry()
        first = registry.try_begin("b1", "Book", 1)
        first.record_success()
        first.finish(abandoned=0, finished_at="t")

        second = registry.try_begin("b1", "Book", 3)

        assert second is not None and second is not first
        assert registry.get("b1") is second

    def test_reserve_respects_limit(self):
        registry = ConversionRegistry()
        assert registry.reserve_workers(4, limit=5) == 4
        assert registry.reserve_workers(4, limit=5) == 1
        assert registry.active_workers == 5

    def test_reserve_always_grants_one(self):
        registry = ConversionRegistry()
        registry.reserve_workers(2, limit=2)
        assert registry.reserve_workers(3, limit=2) == 1
        assert registry.active_workers == 3

    def test_release_never_negative(self):
        registry = ConversionRegistry()
        registry.reserve_workers(1, limit=2)
        registry.release_worker()
        registry.release_worker()
        assert registry.active_workers == 0
