"""HTTP byte ranges and audio response headers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import quote

from audioshelf.core.errors import RangeNotSatisfiableError

CHUNK_SIZE = 64 * 1024

DEFAULT_MIME_TYPE = "audio/mpeg"

MIME_TYPES: dict[str, str] = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
    ".aac": "audio/aac",
    ".m4a": "audio/mp4",
    ".wma": "audio/x-ms-wma",
    ".opus": "audio/opus",
    ".ape": "audio/ape",
}

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$", re.ASCII)


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int  # inclusive

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, size: int) -> str:
        return f"bytes {self.start}-{self.end}/{size}"


def parse_range(header: str | None, size: int) -> ByteRange | None:
    """Parse a single-range `Range` header against a file of `size` bytes.

    Accepts `bytes=start-end`, `bytes=start-` and the suffix form `bytes=-N`.
    An end past EOF is clamped to the last byte.

    Returns:
        None when there is no Range header

    Raises:
        RangeNotSatisfiableError: Malformed, multi-range or out-of-bounds
    """
    if header is None or not header.strip():
        return None

    m = _RANGE_RE.match(header.strip().replace(" ", ""))
    if m is None or size <= 0:
        raise RangeNotSatisfiableError(header, size)

    first, last = m.group(1), m.group(2)
    if not first and not last:
        raise RangeNotSatisfiableError(header, size)

    if not first:
        suffix = int(last)
        if suffix == 0:
            raise RangeNotSatisfiableError(header, size)
        return ByteRange(max(0, size - suffix), size - 1)

    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or start > end:
        raise RangeNotSatisfiableError(header, size)
    return ByteRange(start, min(end, size - 1))


def mime_type_for(extension: str) -> str:
    ext = extension.lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return MIME_TYPES.get(ext, DEFAULT_MIME_TYPE)


def _ascii_fallback(file_name: str) -> str:
    out = []
    for ch in file_name:
        if ch in '"\\' or not (32 <= ord(ch) < 127):
            out.append("_")
        else:
            out.append(ch)
    return "".join(out)


def content_disposition(file_name: str) -> str:
    """Attachment header carrying both an ASCII fallback and the UTF-8 name."""
    return (
        f'attachment; filename="{_ascii_fallback(file_name)}"; '
        f"filename*=UTF-8''{quote(file_name, safe='')}"
    )
