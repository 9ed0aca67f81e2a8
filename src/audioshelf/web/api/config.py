from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, Request

from audioshelf.core.config import ConfigResolver, Settings

from ..util.web_observability import web_operation


def settings_dict(settings: Settings) -> dict[str, Any]:
    return {
        "library_root": str(settings.library_root),
        "data_dir": str(settings.data_dir),
        "covers_dir": str(settings.covers_dir),
        "host": settings.host,
        "port": settings.port,
        "logging_level": settings.logging_level,
        "diagnostics_enabled": settings.diagnostics_enabled,
        "conversion": asdict(settings.conversion),
    }


def mount_config(app: FastAPI) -> None:
    @app.get("/api/config")
    def get_config(request: Request) -> dict[str, Any]:
        with web_operation(request, name="config.get"):
            out: dict[str, Any] = {"settings": settings_dict(request.app.state.settings)}
            resolver = getattr(request.app.state, "config_resolver", None)
            if isinstance(resolver, ConfigResolver):
                out["sources"] = {
                    key: {"value": src.value, "source": src.source}
                    for key, src in resolver.resolve_all().items()
                }
            return out
