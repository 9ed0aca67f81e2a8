"""Pytest configuration and fixtures."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from pathlib import Path

import pytest

from audioshelf.conversion.transcoder import CodecParams
from audioshelf.core.config import ConversionSettings, Settings
from audioshelf.core.errors import TranscodeError
from audioshelf.core.logging import VerbosityLevel, set_colors, set_verbosity


class FakeTranscoder:
    """Records calls and writes `output_size` bytes, or fails for chosen names.

    With `gate` set, every call blocks until the event is set.
    """

    def __init__(
        self,
        *,
        fail: Iterable[str] = (),
        output_size: int = 2048,
        gate: threading.Event | None = None,
    ) -> None:
        self.fail = set(fail)
        self.output_size = output_size
        self.gate = gate
        self.calls: list[tuple[Path, Path, CodecParams]] = []
        self._lock = threading.Lock()

    def transcode(self, source: Path, output: Path, params: CodecParams) -> None:
        with self._lock:
            self.calls.append((source, output, params))
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if source.name in self.fail:
            raise TranscodeError(source, "simulated failure")
        output.write_bytes(b"\0" * self.output_size)


class FakeLoadProbe:
    """Answers is_overloaded() from a script, then from `default`."""

    def __init__(self, script: Iterable[bool] = (), *, default: bool = False) -> None:
        self._script = list(script)
        self.default = default
        self.samples = 0
        self._lock = threading.Lock()

    def is_overloaded(self, limit: float) -> bool:
        with self._lock:
            self.samples += 1
            if self._script:
                return self._script.pop(0)
            return self.default


@pytest.fixture(autouse=True)
def _plain_logging():
    set_colors(False)
    set_verbosity(VerbosityLevel.NORMAL)
    yield
    set_verbosity(VerbosityLevel.NORMAL)


@pytest.fixture
def library_root(tmp_path: Path) -> Path:
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def make_file() -> Callable[..., Path]:
    """Create a file (and its parents) under a directory."""

    def _make(path: Path, size: int = 16, data: bytes | None = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data if data is not None else b"x" * size)
        return path

    return _make


@pytest.fixture
def conversion_settings() -> ConversionSettings:
    return ConversionSettings(max_workers=2, overload_wait_seconds=0, overload_retries=2)


@pytest.fixture
def settings(tmp_path: Path, library_root: Path, conversion_settings: ConversionSettings) -> Settings:
    return Settings(
        library_root=library_root,
        data_dir=tmp_path / "data",
        conversion=conversion_settings,
    )


@pytest.fixture
def fake_transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def fake_probe() -> FakeLoadProbe:
    return FakeLoadProbe()


@pytest.fixture
def make_transcoder() -> type[FakeTranscoder]:
    return FakeTranscoder


@pytest.fixture
def make_probe() -> type[FakeLoadProbe]:
    return FakeLoadProbe
