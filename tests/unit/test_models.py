"""Unit tests for core.models."""

from __future__ import annotations

from pathlib import Path

from audioshelf.core.models import Book, BookOverrides, Episode, Season


def _episode(name: str, index: int) -> Episode:
    return Episode(
        id=f"id-{name}",
        name=name.rsplit(".", 1)[0],
        file_name=name,
        path=Path("/library/Book") / name,
        sort_index=index,
        format="." + name.rsplit(".", 1)[1],
    )


def _book(overrides: BookOverrides | None = None) -> Book:
    season = Season(
        id="s1",
        name="Season",
        folder_name="Season",
        sort_index=1,
        path=Path("/library/Book/Season"),
        episodes=[_episode("01.mp3", 1), _episode("02.wma", 2)],
    )
    return Book(
        id="b1",
        folder_name="Book",
        default_name="Book",
        path=Path("/library/Book"),
        seasons=[season],
        overrides=overrides or BookOverrides(),
    )


class TestBookOverrides:
    def test_merged_other_wins_when_present(self):
        base = BookOverrides(custom_name="Old", skip_intro=5)
        merged = base.merged(BookOverrides(custom_name="New"))
        assert merged.custom_name == "New"
        assert merged.skip_intro == 5

    def test_to_dict_drops_unset(self):
        assert BookOverrides(description="d").to_dict() == {"description": "d"}

    def test_from_dict_ignores_unknown(self):
        ov = BookOverrides.from_dict({"custom_name": "X", "bogus": 1})
        assert ov == BookOverrides(custom_name="X")

    def test_is_empty(self):
        assert BookOverrides().is_empty()
        assert not BookOverrides(skip_outro=0).is_empty()


class TestBook:
    def test_defaults_without_overrides(self):
        book = _book()
        assert book.name == "Book"
        assert book.description == ""
        assert book.skip_intro == 0
        assert book.skip_outro == 0
        assert book.total_episodes == 2
        assert not book.has_cover

    def test_override_precedence(self):
        book = _book(BookOverrides(custom_name="Custom", skip_intro=12, custom_cover="/c.jpg"))
        assert book.name == "Custom"
        assert book.skip_intro == 12
        assert book.has_cover

    def test_episode_needs_conversion(self):
        eps = list(_book().iter_episodes())
        assert [e.needs_conversion for e in eps] == [False, True]

    def test_to_dict_has_no_paths(self):
        data = _book().to_dict()
        assert "path" not in data
        season = data["seasons"][0]
        assert "path" not in season
        assert set(season["episodes"][0]) == {
            "id",
            "name",
            "file_name",
            "format",
            "sort_index",
            "needs_conversion",
        }
        assert "/library" not in repr(data)

    def test_summary_keys(self):
        assert set(_book().summary_dict()) == {
            "id",
            "name",
            "folder_name",
            "description",
            "has_cover",
            "skip_intro",
            "skip_outro",
            "season_count",
            "total_episodes",
        }

    def test_find_season_and_episode(self):
        book = _book()
        season = book.find_season("s1")
        assert season is not None
        assert season.find_episode("id-02.wma") is not None
        assert season.find_episode("missing") is None
        assert book.find_season("missing") is None
