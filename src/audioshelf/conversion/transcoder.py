"""Transcoding capability and the in-place file rewrite built on it."""

from __future__ import annotations

import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from audioshelf.core.errors import TranscodeError
from audioshelf.core.logging import get_logger

_LOGGER = get_logger(__name__)

TARGET_EXTENSION = ".m4a"
TEMP_SUFFIX = ".tmp"


@dataclass(frozen=True)
class CodecParams:
    """Target encoding. Defaults suit narrated speech: AAC 64k, 44.1 kHz, mono."""

    codec: str = "aac"
    bitrate: str = "64k"
    sample_rate: int = 44100
    channels: int = 1
    container: str = "mp4"


@runtime_checkable
class Transcoder(Protocol):
    def transcode(self, source: Path, output: Path, params: CodecParams) -> None:
        """Write `source` re-encoded with `params` to `output`.

        Raises:
            TranscodeError: On any failure
        """
        ...


class FFmpegTranscoder:
    """Transcoder running the ffmpeg command line non-interactively."""

    def __init__(self, ffmpeg_path: str = "ffmpeg") -> None:
        self.ffmpeg_path = ffmpeg_path

    def is_available(self) -> bool:
        return shutil.which(self.ffmpeg_path) is not None

    def build_command(self, source: Path, output: Path, params: CodecParams) -> list[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-loglevel",
            "error",
            "-y",
            "-i",
            str(source),
            "-vn",  # drop embedded cover streams
            "-c:a",
            params.codec,
            "-b:a",
            params.bitrate,
            "-ar",
            str(params.sample_rate),
            "-ac",
            str(params.channels),
            # Output name ends in .tmp, so the muxer must be explicit.
            "-f",
            params.container,
            str(output),
        ]

    def transcode(self, source: Path, output: Path, params: CodecParams) -> None:
        cmd = self.build_command(source, output, params)
        try:
            proc = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=False,
            )
        except OSError as e:
            raise TranscodeError(source, f"cannot run {self.ffmpeg_path}: {e}") from e

        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", "replace").strip() if proc.stderr else ""
            tail = stderr[-400:] if stderr else "no output"
            raise TranscodeError(source, f"ffmpeg exit code {proc.returncode}: {tail}")


def target_path(source: Path) -> Path:
    return source.with_name(source.stem + TARGET_EXTENSION)


def temp_path(source: Path) -> Path:
    target = target_path(source)
    return target.with_name(target.name + TEMP_SUFFIX)


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        _LOGGER.warning(f"could not remove {path}: {e}")


def convert_file(
    source: Path,
    transcoder: Transcoder,
    params: CodecParams | None = None,
    *,
    min_output_bytes: int = 1024,
) -> Path:
    """Rewrite `source` as `<stem>.m4a` next to it and delete the source.

    The transcoder writes `<stem>.m4a.tmp`; only a complete output is
    renamed over the target, so readers never see a partial `.m4a`. A target
    that already exists and is larger than `min_output_bytes` counts as a
    previous successful run: the stale source is deleted and nothing is
    transcoded.

    Returns:
        Path of the `.m4a` file

    Raises:
        TranscodeError: Source is left untouched
    """
    params = params or CodecParams()
    source = Path(source)
    target = target_path(source)
    tmp = temp_path(source)

    if target.exists():
        try:
            size = target.stat().st_size
        except OSError:
            size = 0
        if size > min_output_bytes:
            source.unlink(missing_ok=True)
            _LOGGER.verbose(f"already converted, removed stale source: {source.name}")
            return target
        _remove_quietly(target)

    t0 = time.monotonic()
    try:
        transcoder.transcode(source, tmp, params)
        if not tmp.is_file():
            raise TranscodeError(source, "transcoder produced no output")
        size = tmp.stat().st_size
        if size < min_output_bytes:
            raise TranscodeError(source, f"output too small ({size} bytes)")
        tmp.replace(target)
    except TranscodeError:
        _remove_quietly(tmp)
        raise
    except OSError as e:
        _remove_quietly(tmp)
        raise TranscodeError(source, f"file operation failed: {e}") from e

    try:
        source.unlink()
    except OSError as e:
        # The .m4a is complete; the next run removes the source.
        _LOGGER.warning(f"converted but could not delete source {source}: {e}")

    _LOGGER.verbose(f"converted {source.name} -> {target.name} ({time.monotonic() - t0:.1f}s)")
    return target
