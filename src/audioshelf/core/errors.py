"""AudioShelf exceptions.

`http_status` on each class is the status the web layer answers with.
"""

from __future__ import annotations

from pathlib import Path


class AudioShelfError(Exception):
    """Base exception for all AudioShelf errors."""

    http_status = 500

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\nSuggestion: {self.suggestion}"
        return self.message


class ConfigError(AudioShelfError):
    """Invalid or unreadable configuration."""


class ValidationError(AudioShelfError):
    """Invalid caller-supplied value."""

    http_status = 400


class NotFoundError(AudioShelfError):
    """A catalog entry or the file behind it could not be resolved.

    `kind` is one of: book, season, episode, file, cover.
    """

    http_status = 404

    def __init__(self, kind: str, ident: str) -> None:
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found: {ident}")


class TranscodeError(AudioShelfError):
    """External transcoder failed or produced unusable output."""

    def __init__(self, source: Path | str, reason: str) -> None:
        self.source = Path(source)
        self.reason = reason
        super().__init__(
            f"Transcode failed for '{self.source.name}': {reason}",
            "Check that ffmpeg is installed and the source file is readable",
        )


class RangeNotSatisfiableError(AudioShelfError):
    """Requested byte range cannot be served for a file of this size."""

    http_status = 416

    def __init__(self, header: str, size: int) -> None:
        self.header = header
        self.size = size
        super().__init__(f"Range not satisfiable: {header!r} (size={size})")


class PayloadTooLargeError(AudioShelfError):
    """Request body exceeds the accepted size."""

    http_status = 413
