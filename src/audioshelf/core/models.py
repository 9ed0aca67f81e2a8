"""Catalog data model: Book -> Season -> Episode.

Instances are rebuilt on every scan and never mutated afterwards by the
catalog. Absolute paths are kept for the server side only and are not part of
any `to_dict()` payload.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from audioshelf.core.parser import needs_conversion as _needs_conversion

SYNTHETIC_SEASON_NAME = "全集"


@dataclass(slots=True, frozen=True)
class Episode:
    id: str
    name: str
    file_name: str
    path: Path
    sort_index: int
    format: str

    @property
    def needs_conversion(self) -> bool:
        return _needs_conversion(self.file_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "file_name": self.file_name,
            "format": self.format,
            "sort_index": self.sort_index,
            "needs_conversion": self.needs_conversion,
        }


@dataclass(slots=True)
class Season:
    id: str
    name: str
    folder_name: str
    sort_index: int
    path: Path
    episodes: list[Episode] = field(default_factory=list)

    def find_episode(self, episode_id: str) -> Episode | None:
        return next((e for e in self.episodes if e.id == episode_id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "folder_name": self.folder_name,
            "sort_index": self.sort_index,
            "episodes": [e.to_dict() for e in self.episodes],
        }


@dataclass(slots=True, frozen=True)
class BookOverrides:
    """User-supplied values layered over scanned defaults.

    Every field is optional; None means "not overridden".
    """

    custom_name: str | None = None
    description: str | None = None
    skip_intro: int | None = None
    skip_outro: int | None = None
    custom_cover: str | None = None

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def merged(self, other: BookOverrides) -> BookOverrides:
        """Field-by-field merge where `other` wins whenever it is set."""
        changes = {
            name: getattr(other, name)
            for name in self.field_names()
            if getattr(other, name) is not None
        }
        return replace(self, **changes)

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in self.field_names())

    def to_dict(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in self.field_names()
            if getattr(self, name) is not None
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BookOverrides:
        known = set(cls.field_names())
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(slots=True)
class Book:
    id: str
    folder_name: str
    default_name: str
    path: Path
    seasons: list[Season] = field(default_factory=list)
    overrides: BookOverrides = field(default_factory=BookOverrides)
    cover_file: Path | None = None

    @property
    def name(self) -> str:
        return self.overrides.custom_name or self.default_name

    @property
    def description(self) -> str:
        return self.overrides.description or ""

    @property
    def skip_intro(self) -> int:
        return self.overrides.skip_intro or 0

    @property
    def skip_outro(self) -> int:
        return self.overrides.skip_outro or 0

    @property
    def has_cover(self) -> bool:
        return self.cover_file is not None or bool(self.overrides.custom_cover)

    @property
    def total_episodes(self) -> int:
        return sum(len(s.episodes) for s in self.seasons)

    def find_season(self, season_id: str) -> Season | None:
        return next((s for s in self.seasons if s.id == season_id), None)

    def iter_episodes(self):
        for season in self.seasons:
            yield from season.episodes

    def summary_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "folder_name": self.folder_name,
            "description": self.description,
            "has_cover": self.has_cover,
            "skip_intro": self.skip_intro,
            "skip_outro": self.skip_outro,
            "season_count": len(self.seasons),
            "total_episodes": self.total_episodes,
        }

    def to_dict(self) -> dict[str, Any]:
        out = self.summary_dict()
        out["seasons"] = [s.to_dict() for s in self.seasons]
        return out


@dataclass(slots=True, frozen=True)
class ResolvedEpisode:
    book: Book
    season: Season
    episode: Episode
