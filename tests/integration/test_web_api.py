"""Integration tests for the HTTP API."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from audioshelf.conversion.orchestrator import ConversionOrchestrator
from audioshelf.conversion.registry import ConversionRegistry
from audioshelf.core.config import ConfigResolver
from audioshelf.core.metadata import MetadataStore
from audioshelf.core.parser import derive_id
from audioshelf.core.scanner import LibraryScanner
from audioshelf.web.api.books import MAX_COVER_BYTES
from audioshelf.web.core import WebServer, uvicorn_log_level

AUDIO_BYTES = bytes(range(256)) * 4  # 1024 bytes, every offset distinguishable


@pytest.fixture
def orchestrator(settings, fake_transcoder, fake_probe):
    return ConversionOrchestrator(
        ConversionRegistry(),
        fake_transcoder,
        fake_probe,
        settings.conversion,
        sleep=lambda _s: None,
        cpu_count=2,
    )


@pytest.fixture
def app(settings, orchestrator):
    return WebServer().create_app(settings, orchestrator=orchestrator)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def episode_url(library_root, make_file):
    """A 1000-byte mp3 at MyBook/Chapter1/01.mp3; returns its stream path suffix."""
    make_file(library_root / "MyBook" / "Chapter1" / "01.mp3", data=AUDIO_BYTES[:1000])
    return f"{derive_id('MyBook')}/{derive_id('Chapter1')}/{derive_id('01.mp3')}"


class TestBooks:
    def test_list_books(self, client, library_root, make_file):
        make_file(library_root / "MyBook" / "Chapter1" / "01.mp3")
        make_file(library_root / "MyBook" / "Chapter1" / "02.mp3")

        resp = client.get("/api/books")

        assert resp.status_code == 200
        (item,) = resp.json()["items"]
        assert item["id"] == derive_id("MyBook")
        assert item["name"] == "MyBook"
        assert item["season_count"] == 1
        assert item["total_episodes"] == 2
        assert item["converting"] is None
        assert item["has_cover"] is False

    def test_empty_library(self, client):
        assert client.get("/api/books").json() == {"items": []}

    def test_book_detail_has_no_paths(self, client, library_root, make_file):
        make_file(library_root / "MyBook" / "Chapter1" / "02.mp3")
        make_file(library_root / "MyBook" / "Chapter1" / "01.mp3")

        resp = client.get(f"/api/books/{derive_id('MyBook')}")

        assert resp.status_code == 200
        item = resp.json()["item"]
        episodes = item["seasons"][0]["episodes"]
        assert [e["file_name"] for e in episodes] == ["01.mp3", "02.mp3"]
        assert str(library_root) not in resp.text

    def test_unknown_book_is_404(self, client):
        resp = client.get("/api/books/nope")
        assert resp.status_code == 404
        assert "book not found" in resp.json()["detail"]

    def test_listing_triggers_conversion(self, client, orchestrator, library_root, make_file):
        make_file(library_root / "MyBook" / "a.wma")
        book_id = derive_id("MyBook")

        client.get("/api/books")
        orchestrator.wait(book_id, timeout=10)

        status = client.get(f"/api/books/{book_id}/conversion-status").json()["item"]
        assert status["status"] == "done"
        assert status["completed"] == 1
        assert status["total"] == 1

        detail = client.get(f"/api/books/{book_id}").json()["item"]
        (episode,) = detail["seasons"][0]["episodes"]
        assert episode["file_name"] == "a.m4a"
        assert episode["needs_conversion"] is False
        assert detail["converting"] is None

    def test_conversion_status_without_task(self, client):
        assert client.get("/api/books/whatever/conversion-status").json() == {"item": None}


class TestMetadata:
    @pytest.fixture
    def book_id(self, library_root, make_file):
        make_file(library_root / "MyBook" / "01.mp3")
        return derive_id("MyBook")

    def test_update_and_read_back(self, client, book_id):
        resp = client.put(
            f"/api/books/{book_id}/metadata",
            json={"custom_name": "Renamed", "skip_intro": "12", "description": "About"},
        )

        assert resp.status_code == 200
        assert resp.json()["item"] == {"custom_name": "Renamed", "skip_intro": 12, "description": "About"}

        item = client.get(f"/api/books/{book_id}").json()["item"]
        assert item["name"] == "Renamed"
        assert item["skip_intro"] == 12
        assert item["skip_outro"] == 0

    def test_null_clears(self, client, book_id):
        client.put(f"/api/books/{book_id}/metadata", json={"custom_name": "Renamed"})
        resp = client.put(f"/api/books/{book_id}/metadata", json={"custom_name": None})

        assert resp.json()["item"] == {}
        assert client.get(f"/api/books/{book_id}").json()["item"]["name"] == "MyBook"

    def test_unknown_field_is_400(self, client, book_id):
        resp = client.put(f"/api/books/{book_id}/metadata", json={"title": "x"})
        assert resp.status_code == 400

    def test_negative_seconds_is_400(self, client, book_id):
        resp = client.put(f"/api/books/{book_id}/metadata", json={"skip_outro": -3})
        assert resp.status_code == 400

    @pytest.mark.parametrize(
        "body",
        [b'{"skip_intro": NaN}', b'{"skip_intro": "nan"}', b'{"skip_outro": 1e400}'],
    )
    def test_non_finite_seconds_is_400(self, client, book_id, body):
        resp = client.put(
            f"/api/books/{book_id}/metadata",
            content=body,
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert client.get(f"/api/books/{book_id}").json()["item"]["skip_intro"] == 0

    def test_unknown_book_is_404(self, client):
        resp = client.put("/api/books/nope/metadata", json={"custom_name": "x"})
        assert resp.status_code == 404


class TestCover:
    @pytest.fixture
    def book_id(self, library_root, make_file):
        make_file(library_root / "MyBook" / "01.mp3")
        return derive_id("MyBook")

    def test_placeholder_without_cover(self, client, book_id):
        resp = client.get(f"/api/books/{book_id}/cover")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("image/svg+xml")
        assert "<svg" in resp.text

    def test_folder_cover_served(self, client, library_root, make_file, book_id):
        make_file(library_root / "MyBook" / "cover.jpg", data=b"JPEGDATA")
        resp = client.get(f"/api/books/{book_id}/cover")
        assert resp.content == b"JPEGDATA"

    def test_upload_replaces_cover(self, client, settings, book_id):
        client.post(
            f"/api/books/{book_id}/cover", content=b"PNG1", headers={"Content-Type": "image/png"}
        )
        resp = client.post(
            f"/api/books/{book_id}/cover", content=b"JPG2", headers={"Content-Type": "image/jpeg"}
        )

        assert resp.status_code == 200
        assert resp.json()["item"]["custom_cover"] == str(settings.covers_dir / f"{book_id}.jpg")
        assert not (settings.covers_dir / f"{book_id}.png").exists()
        assert client.get(f"/api/books/{book_id}/cover").content == b"JPG2"
        assert client.get("/api/books").json()["items"][0]["has_cover"] is True

    def test_non_image_is_400(self, client, book_id):
        resp = client.post(
            f"/api/books/{book_id}/cover", content=b"hi", headers={"Content-Type": "text/plain"}
        )
        assert resp.status_code == 400

    def test_too_large_is_413(self, client, book_id):
        resp = client.post(
            f"/api/books/{book_id}/cover",
            content=b"\0" * (MAX_COVER_BYTES + 1),
            headers={"Content-Type": "image/png"},
        )
        assert resp.status_code == 413


class TestAudio:
    def test_full_stream(self, client, episode_url):
        resp = client.get(f"/api/audio/{episode_url}")

        assert resp.status_code == 200
        assert resp.headers["content-length"] == "1000"
        assert resp.headers["accept-ranges"] == "bytes"
        assert resp.headers["content-type"] == "audio/mpeg"
        assert resp.content == AUDIO_BYTES[:1000]

    def test_range_request(self, client, episode_url):
        resp = client.get(f"/api/audio/{episode_url}", headers={"Range": "bytes=0-99"})

        assert resp.status_code == 206
        assert resp.headers["content-range"] == "bytes 0-99/1000"
        assert resp.headers["content-length"] == "100"
        assert resp.content == AUDIO_BYTES[:100]

    def test_open_ended_range(self, client, episode_url):
        resp = client.get(f"/api/audio/{episode_url}", headers={"Range": "bytes=900-"})

        assert resp.status_code == 206
        assert resp.headers["content-range"] == "bytes 900-999/1000"
        assert resp.content == AUDIO_BYTES[900:1000]

    def test_suffix_range(self, client, episode_url):
        resp = client.get(f"/api/audio/{episode_url}", headers={"Range": "bytes=-10"})

        assert resp.status_code == 206
        assert resp.content == AUDIO_BYTES[990:1000]

    def test_unsatisfiable_range(self, client, episode_url):
        resp = client.get(f"/api/audio/{episode_url}", headers={"Range": "bytes=5000-"})

        assert resp.status_code == 416
        assert resp.headers["content-range"] == "bytes */1000"

    def test_invalid_season_is_404(self, client, episode_url):
        book_id, _season_id, episode_id = episode_url.split("/")
        resp = client.get(f"/api/audio/{book_id}/nope/{episode_id}")

        assert resp.status_code == 404
        assert "season not found" in resp.json()["detail"]

    def test_download_headers(self, client, library_root, make_file):
        make_file(library_root / "小说" / "第01集.mp3", data=AUDIO_BYTES)
        book_id = derive_id("小说")
        season_id = derive_id("小说_s1")
        episode_id = derive_id("第01集.mp3")

        resp = client.get(f"/api/audio/download/{book_id}/{season_id}/{episode_id}")

        assert resp.status_code == 200
        assert resp.headers["content-disposition"] == (
            "attachment; filename=\"_01_.mp3\"; filename*=UTF-8''%E7%AC%AC01%E9%9B%86.mp3"
        )
        assert resp.content == AUDIO_BYTES


    def test_download_of_vanished_file_is_404(self, settings, orchestrator, episode_url):
        class _RenamedAfterResolve(LibraryScanner):
            def resolve(self, book_id, season_id, episode_id):
                resolved = super().resolve(book_id, season_id, episode_id)
                resolved.episode.path.unlink()
                return resolved

        store = MetadataStore(settings.metadata_path)
        catalog = _RenamedAfterResolve(settings.library_root, store)
        app = WebServer().create_app(
            settings, catalog=catalog, metadata_store=store, orchestrator=orchestrator
        )
        with TestClient(app) as c:
            resp = c.get(f"/api/audio/download/{episode_url}")

        assert resp.status_code == 404
        assert "file not found" in resp.json()["detail"]


class TestServiceEndpoints:
    def test_health(self, client):
        assert client.get("/api/health").json() == {"ok": True}

    def test_status(self, client):
        data = client.get("/api/status").json()
        assert data["active_workers"] == 0
        assert data["converting"] == []
        assert isinstance(data["pid"], int)

    def test_logs_capture_recent_lines(self, client, library_root, make_file):
        make_file(library_root / "Book" / "01.mp3")
        client.put(f"/api/books/{derive_id('Book')}/metadata", json={"description": "x"})

        items = client.get("/api/logs?lines=50").json()["items"]
        assert any(i["level"] == "info" and "metadata updated" in i["line"] for i in items)

        last_id = items[-1]["id"]
        assert client.get(f"/api/logs?since_id={last_id}").json()["items"] == []

    def test_config(self, settings, orchestrator, tmp_path):
        resolver = ConfigResolver(
            cli_args={"web.port": 9999},
            user_config_path=tmp_path / "none.yaml",
            system_config_path=tmp_path / "none_system.yaml",
        )
        app = WebServer().create_app(settings, orchestrator=orchestrator, config_resolver=resolver)
        with TestClient(app) as c:
            data = c.get("/api/config").json()

        assert data["settings"]["library_root"] == str(settings.library_root)
        assert data["settings"]["conversion"]["max_workers"] == settings.conversion.max_workers
        assert data["sources"]["web.port"] == {"value": 9999, "source": "cli"}


@pytest.mark.parametrize(
    ("verbosity", "level"),
    [(0, "error"), (1, "info"), (2, "info"), (3, "debug")],
)
def test_uvicorn_log_level(verbosity, level):
    assert uvicorn_log_level(verbosity) == level
