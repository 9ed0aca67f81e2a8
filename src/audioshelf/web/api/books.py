from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from audioshelf.conversion.orchestrator import ConversionOrchestrator
from audioshelf.core.config import Settings
from audioshelf.core.errors import PayloadTooLargeError, ValidationError
from audioshelf.core.metadata import MetadataStore
from audioshelf.core.models import Book
from audioshelf.core.scanner import IMAGE_EXTENSIONS, Catalog

from ..util.web_observability import web_operation

MAX_COVER_BYTES = 5 * 1024 * 1024

PLACEHOLDER_COVER_SVG = """<svg xmlns="http://www.w3.org/2000/svg" width="200" height="200" viewBox="0 0 200 200">
  <rect width="200" height="200" fill="#1e293b"/>
  <text x="100" y="90" text-anchor="middle" font-size="60" fill="#f59e0b">&#128218;</text>
  <text x="100" y="140" text-anchor="middle" font-size="14" fill="#94a3b8" font-family="sans-serif">有声书</text>
</svg>
"""

_COVER_SUBTYPES = {"jpeg": "jpg", "pjpeg": "jpg", "svg+xml": "svg", "x-ms-bmp": "bmp"}


class MetadataUpdate(BaseModel):
    """Partial override update. Omitted fields are untouched, null clears."""

    model_config = ConfigDict(extra="forbid")

    custom_name: str | None = None
    description: str | None = None
    skip_intro: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    skip_outro: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    custom_cover: str | None = None


def _catalog(request: Request) -> Catalog:
    return request.app.state.catalog


def _store(request: Request) -> MetadataStore:
    return request.app.state.metadata_store


def _orchestrator(request: Request) -> ConversionOrchestrator | None:
    return getattr(request.app.state, "orchestrator", None)


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _converting(request: Request, book_id: str) -> dict[str, int] | None:
    orch = _orchestrator(request)
    task = orch.status(book_id) if orch is not None else None
    if task is None or not task.is_active:
        return None
    return {"completed": task.completed, "total": task.total}


def _summary(request: Request, book: Book) -> dict[str, Any]:
    out = book.summary_dict()
    out["converting"] = _converting(request, book.id)
    return out


def cover_extension(content_type: str | None) -> str:
    """File extension for an `image/*` content type.

    Raises:
        ValidationError: Not an image content type
    """
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    major, _, subtype = mime.partition("/")
    if major != "image" or not subtype:
        raise ValidationError(
            f"cover upload requires an image/* content type, got {content_type!r}",
            "Send the raw image bytes with e.g. Content-Type: image/jpeg",
        )
    ext = _COVER_SUBTYPES.get(subtype, subtype)
    if not re.fullmatch(r"[a-z0-9]+", ext):
        raise ValidationError(f"unsupported image type: {mime}")
    return ext


def store_cover(covers_dir: Path, book_id: str, ext: str, data: bytes) -> Path:
    """Write `<covers_dir>/<book_id>.<ext>` and drop covers with other extensions."""
    covers_dir.mkdir(parents=True, exist_ok=True)
    target = covers_dir / f"{book_id}.{ext}"
    for old_ext in {e.lstrip(".") for e in IMAGE_EXTENSIONS} | {"svg"}:
        old = covers_dir / f"{book_id}.{old_ext}"
        if old != target:
            old.unlink(missing_ok=True)
    tmp = target.with_name(target.name + ".tmp")
    tmp.write_bytes(data)
    tmp.replace(target)
    return target


def mount_books(app: FastAPI) -> None:
    @app.get("/api/books")
    def list_books(request: Request) -> dict[str, Any]:
        with web_operation(request, name="books.list"):
            books = _catalog(request).scan()
            orch = _orchestrator(request)
            if orch is not None:
                orch.start_pending(books)
            return {"items": [_summary(request, b) for b in books]}

    @app.get("/api/books/{book_id}")
    def get_book(request: Request, book_id: str) -> dict[str, Any]:
        with web_operation(request, name="books.get", ctx={"book_id": book_id}):
            book = _catalog(request).get_book(book_id)
            item = book.to_dict()
            item["converting"] = _converting(request, book.id)
            return {"item": item}

    @app.get("/api/books/{book_id}/conversion-status")
    def conversion_status(request: Request, book_id: str) -> dict[str, Any]:
        orch = _orchestrator(request)
        task = orch.status(book_id) if orch is not None else None
        return {"item": task.to_dict() if task is not None else None}

    @app.put("/api/books/{book_id}/metadata")
    def update_metadata(request: Request, book_id: str, body: MetadataUpdate) -> dict[str, Any]:
        updates = body.model_dump(exclude_unset=True)
        with web_operation(request, name="books.metadata", ctx={"book_id": book_id, "fields": sorted(updates)}):
            _catalog(request).get_book(book_id)
            overrides = _store(request).merge(book_id, updates)
            return {"item": overrides.to_dict()}

    @app.get("/api/books/{book_id}/cover")
    def get_cover(request: Request, book_id: str) -> Response:
        with web_operation(request, name="books.cover", ctx={"book_id": book_id}):
            path = _catalog(request).cover_path(book_id)
            if path is not None and path.is_file():
                return FileResponse(path)
            return Response(content=PLACEHOLDER_COVER_SVG, media_type="image/svg+xml")

    @app.post("/api/books/{book_id}/cover")
    async def upload_cover(request: Request, book_id: str) -> dict[str, Any]:
        ext = cover_extension(request.headers.get("content-type"))
        declared = request.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > MAX_COVER_BYTES:
            raise PayloadTooLargeError(f"cover larger than {MAX_COVER_BYTES} bytes")
        data = await request.body()
        if len(data) > MAX_COVER_BYTES:
            raise PayloadTooLargeError(f"cover larger than {MAX_COVER_BYTES} bytes")
        if not data:
            raise ValidationError("cover upload is empty")

        def _save() -> dict[str, Any]:
            with web_operation(request, name="books.cover_upload", ctx={"book_id": book_id, "bytes": len(data)}):
                _catalog(request).get_book(book_id)
                target = store_cover(_settings(request).covers_dir, book_id, ext, data)
                overrides = _store(request).merge(book_id, {"custom_cover": str(target)})
                return {"item": overrides.to_dict()}

        return await run_in_threadpool(_save)
