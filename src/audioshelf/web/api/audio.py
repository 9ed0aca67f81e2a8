from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any, BinaryIO

from fastapi import FastAPI, Request
from fastapi.responses import StreamingResponse

from audioshelf.core.errors import NotFoundError
from audioshelf.core.models import ResolvedEpisode
from audioshelf.core.scanner import Catalog

from ..util.ranges import CHUNK_SIZE, content_disposition, mime_type_for, parse_range
from ..util.web_observability import web_operation


def _catalog(request: Request) -> Catalog:
    return request.app.state.catalog


def iter_file(f: BinaryIO, start: int, length: int, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield exactly `length` bytes from `start`, then close `f`."""
    try:
        f.seek(start)
        remaining = length
        while remaining > 0:
            chunk = f.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
    finally:
        f.close()


def _open(resolved: ResolvedEpisode) -> tuple[BinaryIO, int]:
    path = resolved.episode.path
    try:
        f = open(path, "rb")  # noqa: SIM115 - closed by iter_file
    except FileNotFoundError as e:
        raise NotFoundError("file", resolved.episode.file_name) from e
    return f, os.fstat(f.fileno()).st_size


def mount_audio(app: FastAPI) -> None:
    @app.get("/api/audio/download/{book_id}/{season_id}/{episode_id}")
    def download_audio(request: Request, book_id: str, season_id: str, episode_id: str) -> Any:
        ctx = {"book_id": book_id, "season_id": season_id, "episode_id": episode_id}
        with web_operation(request, name="audio.download", ctx=ctx):
            resolved = _catalog(request).resolve(book_id, season_id, episode_id)
            episode = resolved.episode
            f, size = _open(resolved)
            return StreamingResponse(
                iter_file(f, 0, size),
                media_type=mime_type_for(episode.format),
                headers={
                    "Content-Disposition": content_disposition(episode.file_name),
                    "Content-Length": str(size),
                },
            )

    @app.get("/api/audio/{book_id}/{season_id}/{episode_id}")
    def stream_audio(request: Request, book_id: str, season_id: str, episode_id: str) -> Any:
        ctx = {"book_id": book_id, "season_id": season_id, "episode_id": episode_id}
        with web_operation(request, name="audio.stream", ctx=ctx):
            resolved = _catalog(request).resolve(book_id, season_id, episode_id)
            media_type = mime_type_for(resolved.episode.format)
            f, size = _open(resolved)
            try:
                byte_range = parse_range(request.headers.get("range"), size)
            except Exception:
                f.close()
                raise

            if byte_range is None:
                return StreamingResponse(
                    iter_file(f, 0, size),
                    status_code=200,
                    media_type=media_type,
                    headers={"Content-Length": str(size), "Accept-Ranges": "bytes"},
                )

            return StreamingResponse(
                iter_file(f, byte_range.start, byte_range.length),
                status_code=206,
                media_type=media_type,
                headers={
                    "Content-Range": byte_range.content_range(size),
                    "Content-Length": str(byte_range.length),
                    "Accept-Ranges": "bytes",
                },
            )
