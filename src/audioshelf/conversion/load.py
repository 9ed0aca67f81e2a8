"""Host load sampling for conversion throttling.

CPU busy fraction comes from idle-tick deltas in /proc/stat between two
samples. The very first sample has no baseline and falls back to the
1-minute load average divided by the core count. Memory busy fraction is
(total - available) / total.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable
from pathlib import Path

CpuTimes = tuple[int, int]  # (idle ticks, total ticks)
MemoryInfo = tuple[int, int]  # (total bytes, available bytes)


def read_proc_stat(path: Path = Path("/proc/stat")) -> CpuTimes | None:
    """Aggregate (idle, total) ticks from the 'cpu' line, or None if unavailable."""
    try:
        with path.open(encoding="ascii") as f:
            for line in f:
                if line.startswith("cpu "):
                    ticks = [int(x) for x in line.split()[1:]]
                    if len(ticks) < 4:
                        return None
                    return ticks[3], sum(ticks)
    except (OSError, ValueError):
        return None
    return None


def read_meminfo(path: Path = Path("/proc/meminfo")) -> MemoryInfo | None:
    """(total, available) bytes from /proc/meminfo, falling back to sysconf."""
    values: dict[str, int] = {}
    try:
        with path.open(encoding="ascii") as f:
            for line in f:
                key, _, rest = line.partition(":")
                parts = rest.split()
                if parts:
                    values[key] = int(parts[0]) * 1024
    except (OSError, ValueError):
        values = {}

    total = values.get("MemTotal")
    available = values.get("MemAvailable", values.get("MemFree"))
    if total and available is not None:
        return total, available

    try:
        page = os.sysconf("SC_PAGE_SIZE")
        return os.sysconf("SC_PHYS_PAGES") * page, os.sysconf("SC_AVPHYS_PAGES") * page
    except (AttributeError, OSError, ValueError):
        return None


def read_loadavg() -> float | None:
    try:
        return os.getloadavg()[0]
    except (AttributeError, OSError):
        return None


class SystemLoadProbe:
    """Samples CPU and memory pressure.

    The CPU baseline is shared by every worker using this probe, so the
    delta always covers the interval since the most recent sample by any
    worker.
    """

    def __init__(
        self,
        *,
        cpu_reader: Callable[[], CpuTimes | None] = read_proc_stat,
        memory_reader: Callable[[], MemoryInfo | None] = read_meminfo,
        loadavg_reader: Callable[[], float | None] = read_loadavg,
        cpu_count: int | None = None,
    ) -> None:
        self._cpu_reader = cpu_reader
        self._memory_reader = memory_reader
        self._loadavg_reader = loadavg_reader
        self._cpu_count = cpu_count or os.cpu_count() or 1
        self._lock = threading.Lock()
        self._last_cpu: CpuTimes | None = None

    def _loadavg_fraction(self) -> float:
        load = self._loadavg_reader()
        if load is None:
            return 0.0
        return min(1.0, load / self._cpu_count)

    def cpu_busy(self) -> float:
        current = self._cpu_reader()
        if current is None:
            return self._loadavg_fraction()

        with self._lock:
            previous = self._last_cpu
            self._last_cpu = current

        if previous is None:
            return self._loadavg_fraction()

        idle_diff = current[0] - previous[0]
        total_diff = current[1] - previous[1]
        if total_diff <= 0:
            return 0.0
        return max(0.0, min(1.0, 1.0 - idle_diff / total_diff))

    def memory_busy(self) -> float:
        info = self._memory_reader()
        if info is None:
            return 0.0
        total, available = info
        if total <= 0:
            return 0.0
        return max(0.0, min(1.0, (total - available) / total))

    def is_overloaded(self, limit: float) -> bool:
        return self.cpu_busy() > limit or self.memory_busy() > limit
