"""AudioShelf logging.

Verbosity is process-wide and has four levels:

    QUIET    warnings and errors
    NORMAL   + info (conversion start/end, metadata writes)
    VERBOSE  + per-file conversion progress, skipped directories
    DEBUG    + request boundaries, load samples

Lines look like `[2024-01-01 12:00:00] [info] message`. Errors go to stderr,
everything else to stdout. Each emitted line is also published on the LogBus
as a LogRecord; `set_log_sink` and the web log tap read it from there.
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum

from audioshelf.core.log_bus import LogRecord, get_log_bus


class VerbosityLevel(IntEnum):
    QUIET = 0
    NORMAL = 1
    VERBOSE = 2
    DEBUG = 3


@dataclass(frozen=True)
class _Level:
    name: str
    threshold: VerbosityLevel
    color: str


_DEBUG = _Level("DEBUG", VerbosityLevel.DEBUG, "\033[36m")
_VERBOSE = _Level("VERBOSE", VerbosityLevel.VERBOSE, "\033[34m")
_INFO = _Level("INFO", VerbosityLevel.NORMAL, "\033[32m")
_WARNING = _Level("WARNING", VerbosityLevel.QUIET, "\033[33m")
_ERROR = _Level("ERROR", VerbosityLevel.QUIET, "\033[31m")
_RESET = "\033[0m"

_verbosity = VerbosityLevel.NORMAL
_colors = True
_sink: Callable[[str], None] | None = None
_sink_subscriber: Callable[[LogRecord], None] | None = None


def set_verbosity(level: int | VerbosityLevel) -> None:
    global _verbosity
    _verbosity = VerbosityLevel(level)


def get_verbosity() -> VerbosityLevel:
    return _verbosity


def verbosity_from_name(name: str) -> VerbosityLevel:
    """Level for a `logging.level` config value (quiet|normal|verbose|debug).

    Raises:
        ValueError: If the name is unknown
    """
    try:
        return VerbosityLevel[(name or "").strip().upper()]
    except KeyError:
        raise ValueError(f"unknown logging level: {name!r}") from None


def set_colors(enabled: bool) -> None:
    """Color level tags when stdout is a terminal."""
    global _colors
    _colors = enabled


def set_log_sink(sink: Callable[[str], None] | None) -> None:
    """Send the plain text of every emitted line to `sink`; None removes it."""
    global _sink, _sink_subscriber

    bus = get_log_bus()
    if _sink_subscriber is not None:
        bus.unsubscribe_all(_sink_subscriber)
        _sink_subscriber = None
    _sink = sink
    if sink is None:
        return

    def _forward(record: LogRecord) -> None:
        sink(record.plain)

    _sink_subscriber = _forward
    bus.subscribe_all(_forward)


def get_log_sink() -> Callable[[str], None] | None:
    return _sink


class AudioShelfLogger:
    def __init__(self, name: str) -> None:
        self.name = name

    def _write(self, level: _Level, message: str) -> None:
        ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        tag = f"[{level.name.lower()}]"
        plain = f"[{ts}] {tag} {message}"
        get_log_bus().publish(LogRecord(level_name=level.name, plain=plain, logger_name=self.name))

        stream = sys.stderr if level is _ERROR else sys.stdout
        if _colors and stream.isatty():
            tag = f"{level.color}{tag}{_RESET}"
        print(f"[{ts}] {tag} {message}", file=stream, flush=True)

    def _log(self, level: _Level, message: str) -> None:
        if level.threshold <= _verbosity:
            self._write(level, message)

    def debug(self, message: str) -> None:
        self._log(_DEBUG, message)

    def verbose(self, message: str) -> None:
        self._log(_VERBOSE, message)

    def info(self, message: str) -> None:
        self._log(_INFO, message)

    def warning(self, message: str) -> None:
        self._log(_WARNING, message)

    def error(self, message: str) -> None:
        self._write(_ERROR, message)


_LOGGERS: dict[str, AudioShelfLogger] = {}
_LOGGERS_LOCK = threading.Lock()


def get_logger(name: str = __name__) -> AudioShelfLogger:
    """Logger for `name` (usually `__name__`); one instance per name."""
    with _LOGGERS_LOCK:
        logger = _LOGGERS.get(name)
        if logger is None:
            logger = _LOGGERS[name] = AudioShelfLogger(name)
        return logger
