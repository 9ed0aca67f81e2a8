"""Per-book override records stored in a single JSON file.

Layout (keys are book ids):

    {
      "1k3x9a": {"custom_name": "盗墓笔记", "skip_intro": 12}
    }
"""

from __future__ import annotations

import json
import math
import threading
from pathlib import Path
from typing import Any

from audioshelf.core.errors import ValidationError
from audioshelf.core.logging import get_logger
from audioshelf.core.models import BookOverrides

_LOGGER = get_logger(__name__)

_STRING_FIELDS = ("custom_name", "description", "custom_cover")
_SECONDS_FIELDS = ("skip_intro", "skip_outro")
# Empty strings clear these instead of being stored.
_CLEAR_ON_EMPTY = ("custom_name", "custom_cover")


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


def _coerce_seconds(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"'{key}' must be a number of seconds")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError as e:
            raise ValidationError(f"'{key}' must be a number of seconds") from e
    if not isinstance(value, (int, float)):
        raise ValidationError(f"'{key}' must be a number of seconds")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"'{key}' must be a finite number of seconds")
    if value < 0:
        raise ValidationError(f"'{key}' must be >= 0", "Use 0 to disable skipping")
    return int(value)


def validate_metadata_update(payload: dict[str, Any]) -> dict[str, Any]:
    """Validate a partial metadata update.

    Returns the normalized update: keys present in `payload` only, seconds as
    int, None meaning "clear this override".

    Raises:
        ValidationError: On unknown keys or invalid values
    """
    if not isinstance(payload, dict):
        raise ValidationError("metadata update must be an object")

    known = set(BookOverrides.field_names())
    unknown = sorted(k for k in payload if k not in known)
    if unknown:
        allowed = ", ".join(BookOverrides.field_names())
        raise ValidationError(f"unknown metadata fields: {', '.join(unknown)}", f"Allowed: {allowed}")

    out: dict[str, Any] = {}
    for key, value in payload.items():
        if value is None:
            out[key] = None
        elif key in _STRING_FIELDS:
            if not isinstance(value, str):
                raise ValidationError(f"'{key}' must be a string")
            out[key] = None if (key in _CLEAR_ON_EMPTY and not value.strip()) else value
        elif key in _SECONDS_FIELDS:
            out[key] = _coerce_seconds(key, value)
    return out


class MetadataStore:
    """Keyed override store (get / merge / put) backed by a JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, dict[str, Any]]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            _LOGGER.error(f"metadata: failed to read {self._path}: {type(e).__name__}: {e}")
            return {}
        if not isinstance(data, dict):
            _LOGGER.warning(f"metadata: ignoring non-object content in {self._path}")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, dict)}

    def _save(self, data: dict[str, dict[str, Any]]) -> None:
        payload = json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True) + "\n"
        _atomic_write_text(self._path, payload)

    def all(self) -> dict[str, BookOverrides]:
        with self._lock:
            data = self._load()
        return {book_id: BookOverrides.from_dict(rec) for book_id, rec in data.items()}

    def get(self, book_id: str) -> BookOverrides:
        with self._lock:
            rec = self._load().get(book_id, {})
        return BookOverrides.from_dict(rec)

    def put(self, book_id: str, overrides: BookOverrides) -> None:
        with self._lock:
            data = self._load()
            if overrides.is_empty():
                data.pop(book_id, None)
            else:
                data[book_id] = overrides.to_dict()
            self._save(data)

    def merge(self, book_id: str, updates: dict[str, Any]) -> BookOverrides:
        """Apply a partial update onto the stored record.

        Raises:
            ValidationError: If `updates` is invalid
        """
        normalized = validate_metadata_update(updates)
        with self._lock:
            data = self._load()
            rec = dict(data.get(book_id, {}))
            for key, value in normalized.items():
                if value is None:
                    rec.pop(key, None)
                else:
                    rec[key] = value
            if rec:
                data[book_id] = rec
            else:
                data.pop(book_id, None)
            self._save(data)

        _LOGGER.info(f"metadata updated: book_id={book_id} fields={sorted(normalized)}")
        return BookOverrides.from_dict(rec)
