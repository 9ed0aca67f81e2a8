"""Library scanner: directory tree -> Book/Season/Episode catalog.

Every call walks the filesystem again. There is no cache, so the catalog
always reflects what is on disk right now (including files the conversion
workers have just renamed). Callers depend on the Catalog protocol so a
cached implementation can replace LibraryScanner without touching them.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from audioshelf.core.errors import NotFoundError
from audioshelf.core.logging import get_logger
from audioshelf.core.metadata import MetadataStore
from audioshelf.core.models import (
    SYNTHETIC_SEASON_NAME,
    Book,
    BookOverrides,
    Episode,
    ResolvedEpisode,
    Season,
)
from audioshelf.core.parser import (
    clean_display_name,
    derive_id,
    extract_episode_ordinal,
    extract_ordinal,
    get_extension,
    is_audio_playable,
    strip_extension,
)

_LOGGER = get_logger(__name__)

COVER_NAMES = ("cover", "folder", "poster", "thumb")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp")


@runtime_checkable
class Catalog(Protocol):
    """Read access to the audiobook catalog."""

    def scan(self) -> list[Book]: ...

    def get_book(self, book_id: str) -> Book: ...

    def resolve(self, book_id: str, season_id: str, episode_id: str) -> ResolvedEpisode: ...

    def cover_path(self, book_id: str) -> Path | None: ...


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


def _is_dir(entry: os.DirEntry[str]) -> bool:
    try:
        return entry.is_dir()
    except OSError:
        return False


def _is_file(entry: os.DirEntry[str]) -> bool:
    try:
        return entry.is_file()
    except OSError:
        return False


def find_cover_image(directory: Path) -> Path | None:
    """Find cover art in `directory`.

    Files named cover/folder/poster/thumb (any case, common image
    extensions) win, in that order; otherwise the first image file in
    enumeration order. Unreadable directories yield None.
    """
    try:
        names = [e.name for e in os.scandir(directory) if _is_file(e)]
    except OSError:
        return None

    by_lower = {}
    for name in names:
        by_lower.setdefault(name.lower(), name)

    for stem in COVER_NAMES:
        for ext in IMAGE_EXTENSIONS:
            found = by_lower.get(f"{stem}{ext}")
            if found is not None:
                return directory / found

    for name in names:
        if get_extension(name) in IMAGE_EXTENSIONS:
            return directory / name

    return None


def build_episodes(directory: Path, file_names: Sequence[str]) -> list[Episode]:
    """Episodes for audio files in `directory`, ordered by episode ordinal.

    The sort is stable, so equal ordinals keep enumeration order.
    """
    episodes = [
        Episode(
            id=derive_id(name),
            name=clean_display_name(strip_extension(name)),
            file_name=name,
            path=directory / name,
            sort_index=extract_episode_ordinal(name),
            format=get_extension(name),
        )
        for name in file_names
    ]
    episodes.sort(key=lambda e: e.sort_index)
    return episodes


class LibraryScanner:
    """Catalog implementation that re-scans the library root on every call."""

    def __init__(self, root: Path, store: MetadataStore | None = None) -> None:
        self._root = Path(root)
        self._store = store

    @property
    def root(self) -> Path:
        return self._root

    def scan(self) -> list[Book]:
        root = self._root
        if not root.exists():
            _LOGGER.warning(f"library root does not exist, creating it: {root}")
            root.mkdir(parents=True, exist_ok=True)
            return []

        overrides = self._store.all() if self._store is not None else {}

        try:
            entries = list(os.scandir(root))
        except OSError as e:
            _LOGGER.error(f"library root unreadable: {root}: {type(e).__name__}: {e}")
            return []

        books: list[Book] = []
        for entry in entries:
            if _is_hidden(entry.name) or not _is_dir(entry):
                continue
            book = self._scan_book(Path(entry.path), entry.name, overrides)
            if book is not None:
                books.append(book)

        _LOGGER.debug(f"scan: root={root} books={len(books)}")
        return books

    def _scan_book(
        self, book_path: Path, folder_name: str, overrides: dict[str, BookOverrides]
    ) -> Book | None:
        book_id = derive_id(folder_name)
        try:
            entries = list(os.scandir(book_path))
        except OSError as e:
            _LOGGER.verbose(f"scan: skipping unreadable book dir {book_path}: {e}")
            return None

        audio_files = [
            e.name
            for e in entries
            if not _is_hidden(e.name) and _is_file(e) and is_audio_playable(e.name)
        ]
        sub_dirs = [e for e in entries if not _is_hidden(e.name) and _is_dir(e)]

        seasons: list[Season] = []
        if not sub_dirs and audio_files:
            seasons.append(
                Season(
                    id=derive_id(folder_name + "_s1"),
                    name=SYNTHETIC_SEASON_NAME,
                    folder_name=folder_name,
                    sort_index=1,
                    path=book_path,
                    episodes=build_episodes(book_path, audio_files),
                )
            )
        else:
            for sub in sub_dirs:
                season = self._scan_season(Path(sub.path), sub.name, book_id)
                if season is not None:
                    seasons.append(season)
            seasons.sort(key=lambda s: s.sort_index)

        if not seasons:
            return None

        cover = find_cover_image(book_path)
        if cover is None:
            for season in seasons:
                cover = find_cover_image(season.path)
                if cover is not None:
                    break

        return Book(
            id=book_id,
            folder_name=folder_name,
            default_name=clean_display_name(folder_name),
            path=book_path,
            seasons=seasons,
            overrides=overrides.get(book_id, BookOverrides()),
            cover_file=cover,
        )

    def _scan_season(self, season_path: Path, folder_name: str, book_id: str) -> Season | None:
        try:
            audio_files = [
                e.name
                for e in os.scandir(season_path)
                if not _is_hidden(e.name) and _is_file(e) and is_audio_playable(e.name)
            ]
        except OSError as e:
            _LOGGER.verbose(
                f"scan: skipping unreadable season dir book_id={book_id} path={season_path}: {e}"
            )
            return None

        if not audio_files:
            return None

        return Season(
            id=derive_id(folder_name),
            name=clean_display_name(folder_name),
            folder_name=folder_name,
            sort_index=extract_ordinal(folder_name),
            path=season_path,
            episodes=build_episodes(season_path, audio_files),
        )

    def get_book(self, book_id: str) -> Book:
        """Raises NotFoundError when no scanned book has this id."""
        for book in self.scan():
            if book.id == book_id:
                return book
        raise NotFoundError("book", book_id)

    def resolve(self, book_id: str, season_id: str, episode_id: str) -> ResolvedEpisode:
        """Resolve ids to an episode whose file currently exists.

        Raises:
            NotFoundError: kind is book, season, episode or file
        """
        book = self.get_book(book_id)
        season = book.find_season(season_id)
        if season is None:
            raise NotFoundError("season", season_id)
        episode = season.find_episode(episode_id)
        if episode is None:
            raise NotFoundError("episode", episode_id)
        if not episode.path.is_file():
            # Typically a conversion rename between scan and open.
            raise NotFoundError("file", episode.file_name)
        return ResolvedEpisode(book=book, season=season, episode=episode)

    def cover_path(self, book_id: str) -> Path | None:
        book = self.get_book(book_id)
        custom = book.overrides.custom_cover
        if custom:
            custom_path = Path(custom)
            if custom_path.is_file():
                return custom_path
            _LOGGER.warning(f"custom cover missing for book_id={book_id}: {custom}")
        return book.cover_file
