from __future__ import annotations

import logging
import time
import traceback
from typing import Any

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from audioshelf.conversion.load import SystemLoadProbe
from audioshelf.conversion.orchestrator import ConversionOrchestrator
from audioshelf.conversion.registry import ConversionRegistry
from audioshelf.conversion.transcoder import FFmpegTranscoder
from audioshelf.core.config import ConfigResolver, Settings
from audioshelf.core.diagnostics import install_jsonl_sink
from audioshelf.core.errors import AudioShelfError, RangeNotSatisfiableError
from audioshelf.core.events import BOUNDARY_END, BOUNDARY_START
from audioshelf.core.logging import get_logger
from audioshelf.core.metadata import MetadataStore
from audioshelf.core.scanner import Catalog, LibraryScanner

from .api.audio import mount_audio
from .api.books import mount_books
from .api.config import mount_config
from .util.log_stream import get_log_tap
from .util.status import build_status
from .util.web_observability import ascii_safe, get_web_logger, publish


def uvicorn_log_level(verbosity: int) -> str:
    """uvicorn log level for a verbosity. Access logs are always off."""
    if verbosity <= 0:
        return "error"
    if verbosity <= 2:
        return "info"
    return "debug"


def _silence_uvicorn_loggers() -> None:
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = False
        logger.setLevel(logging.ERROR)


def _error_body(e: AudioShelfError) -> dict[str, Any]:
    body: dict[str, Any] = {"detail": e.message}
    if e.suggestion:
        body["suggestion"] = e.suggestion
    return body


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AudioShelfError)
    def _domain_error_handler(request: Request, exc: AudioShelfError) -> JSONResponse:
        headers: dict[str, str] = {}
        if isinstance(exc, RangeNotSatisfiableError):
            headers["Content-Range"] = f"bytes */{exc.size}"
        if exc.http_status >= 500:
            get_web_logger(request).error(ascii_safe(f"{request.method} {request.url.path}: {exc.message}"))
        return JSONResponse(status_code=exc.http_status, content=_error_body(exc), headers=headers)

    @app.exception_handler(RequestValidationError)
    def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": str(err.get("msg", ""))} for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"detail": "invalid request", "errors": errors})


class WebServer:
    """HTTP surface over the catalog, metadata store and conversion orchestrator."""

    def create_app(
        self,
        settings: Settings,
        *,
        catalog: Catalog | None = None,
        metadata_store: MetadataStore | None = None,
        orchestrator: ConversionOrchestrator | None = None,
        config_resolver: ConfigResolver | None = None,
        verbosity: int = 1,
    ) -> FastAPI:
        app = FastAPI(title="AudioShelf")

        store = metadata_store or MetadataStore(settings.metadata_path)
        if orchestrator is None:
            orchestrator = ConversionOrchestrator(
                ConversionRegistry(),
                FFmpegTranscoder(settings.conversion.ffmpeg_path),
                SystemLoadProbe(),
                settings.conversion,
            )

        app.state.settings = settings
        app.state.config_resolver = config_resolver
        app.state.metadata_store = store
        app.state.catalog = catalog or LibraryScanner(settings.library_root, store)
        app.state.orchestrator = orchestrator
        app.state.verbosity = int(verbosity)
        app.state.web_logger = get_logger("audioshelf.web")

        get_log_tap().install()
        if settings.diagnostics_enabled:
            install_jsonl_sink(settings.diagnostics_path)

        @app.middleware("http")
        async def _emit_route_boundary(request: Request, call_next: Any) -> Any:
            op = f"{request.method} {request.url.path}"
            logger = get_web_logger(request)

            start_data: dict[str, Any] = {"path": request.url.path, "method": request.method}
            if int(getattr(request.app.state, "verbosity", 1)) >= 3:
                start_data["query"] = dict(request.query_params)
            publish(BOUNDARY_START, op, start_data)
            logger.debug(ascii_safe(f"{op}: start {start_data}"))

            t0 = time.monotonic()
            try:
                response = await call_next(request)
            except Exception as e:
                fail_data: dict[str, Any] = {
                    "status": "failed",
                    "error_type": type(e).__name__,
                    "error": str(e),
                    "traceback": traceback.format_exc(),
                    "duration_ms": int((time.monotonic() - t0) * 1000),
                }
                publish(BOUNDARY_END, op, fail_data)
                logger.error(ascii_safe(f"{op}: failed {fail_data}"))
                raise

            end_data: dict[str, Any] = {
                "status": "succeeded",
                "status_code": int(getattr(response, "status_code", 200)),
                "duration_ms": int((time.monotonic() - t0) * 1000),
            }
            publish(BOUNDARY_END, op, end_data)
            logger.debug(ascii_safe(f"{op}: end {end_data}"))
            return response

        _install_error_handlers(app)

        mount_books(app)
        mount_audio(app)
        mount_config(app)

        @app.get("/api/health")
        def api_health() -> dict[str, Any]:
            return {"ok": True}

        @app.get("/api/status")
        def api_status(request: Request) -> dict[str, Any]:
            return build_status(request.app.state.orchestrator.registry)

        @app.get("/api/logs")
        def api_logs(since_id: int = 0, lines: int = 200) -> dict[str, Any]:
            tapped = get_log_tap().lines(since_id=max(0, since_id), limit=lines)
            return {"items": [{"id": t.id, "level": t.level.lower(), "line": t.line} for t in tapped]}

        return app

    def run(
        self,
        settings: Settings,
        *,
        config_resolver: ConfigResolver | None = None,
        verbosity: int = 1,
    ) -> None:
        """Run the web server in a standalone (non-async) context."""
        app = self.create_app(settings, config_resolver=config_resolver, verbosity=verbosity)
        log_level = uvicorn_log_level(int(verbosity))
        if int(verbosity) <= 0:
            _silence_uvicorn_loggers()
        uvicorn.run(
            app,
            host=settings.host,
            port=settings.port,
            log_level=log_level,
            access_log=False,
        )

    async def serve(
        self,
        settings: Settings,
        *,
        config_resolver: ConfigResolver | None = None,
        verbosity: int = 1,
    ) -> None:
        """Serve inside an existing asyncio event loop."""
        app = self.create_app(settings, config_resolver=config_resolver, verbosity=verbosity)
        log_level = uvicorn_log_level(int(verbosity))
        if int(verbosity) <= 0:
            _silence_uvicorn_loggers()
        config = uvicorn.Config(
            app,
            host=settings.host,
            port=settings.port,
            log_level=log_level,
            access_log=False,
        )
        server = uvicorn.Server(config)
        await server.serve()
