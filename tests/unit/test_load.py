"""Unit tests for conversion.load."""

from __future__ import annotations

import pytest

from audioshelf.conversion.load import SystemLoadProbe, read_meminfo, read_proc_stat


def _probe(cpu=None, memory=None, loadavg=None, cpu_count=4):
    cpu_samples = list(cpu or [])

    def cpu_reader():
        return cpu_samples.pop(0) if cpu_samples else None

    return SystemLoadProbe(
        cpu_reader=cpu_reader,
        memory_reader=lambda: memory,
        loadavg_reader=lambda: loadavg,
        cpu_count=cpu_count,
    )


class TestCpuBusy:
    def test_first_sample_uses_load_average(self):
        probe = _probe(cpu=[(100, 200)], loadavg=2.0, cpu_count=4)
        assert probe.cpu_busy() == pytest.approx(0.5)

    def test_load_average_capped(self):
        probe = _probe(cpu=[(100, 200)], loadavg=16.0, cpu_count=4)
        assert probe.cpu_busy() == 1.0

    def test_delta_between_samples(self):
        # 100 ticks elapsed, 25 of them idle
        probe = _probe(cpu=[(100, 200), (125, 300)], loadavg=0.0)
        probe.cpu_busy()
        assert probe.cpu_busy() == pytest.approx(0.75)

    def test_no_elapsed_ticks(self):
        probe = _probe(cpu=[(100, 200), (100, 200)], loadavg=0.0)
        probe.cpu_busy()
        assert probe.cpu_busy() == 0.0

    def test_without_proc_stat_uses_load_average(self):
        probe = _probe(cpu=[], loadavg=1.0, cpu_count=2)
        assert probe.cpu_busy() == pytest.approx(0.5)

    def test_nothing_available(self):
        assert _probe().cpu_busy() == 0.0


class TestMemoryBusy:
    def test_fraction_used(self):
        probe = _probe(memory=(1000, 250))
        assert probe.memory_busy() == pytest.approx(0.75)

    def test_unavailable(self):
        assert _probe(memory=None).memory_busy() == 0.0


def test_is_overloaded_either_resource():
    assert _probe(memory=(100, 5), loadavg=0.0).is_overloaded(0.85)
    assert _probe(cpu=[(0, 0)], loadavg=4.0, cpu_count=4, memory=(100, 90)).is_overloaded(0.85)
    assert not _probe(memory=(100, 50), loadavg=1.0, cpu_count=4).is_overloaded(0.85)


def test_read_proc_stat(tmp_path):
    stat = tmp_path / "stat"
    stat.write_text("cpu  10 0 20 70 0 0 0 0 0 0\ncpu0 5 0 10 35 0 0 0 0 0 0\n", encoding="ascii")
    assert read_proc_stat(stat) == (70, 100)


def test_read_proc_stat_missing(tmp_path):
    assert read_proc_stat(tmp_path / "missing") is None


def test_read_meminfo(tmp_path):
    meminfo = tmp_path / "meminfo"
    meminfo.write_text(
        "MemTotal:        1000 kB\nMemFree:          100 kB\nMemAvailable:     400 kB\n",
        encoding="ascii",
    )
    assert read_meminfo(meminfo) == (1000 * 1024, 400 * 1024)


def test_read_meminfo_without_available(tmp_path):
    meminfo = tmp_path / "meminfo"
    meminfo.write_text("MemTotal: 1000 kB\nMemFree: 100 kB\n", encoding="ascii")
    assert read_meminfo(meminfo) == (1000 * 1024, 100 * 1024)
