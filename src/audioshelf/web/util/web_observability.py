from __future__ import annotations

import time
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import Request

from audioshelf.core.diagnostics import emit
from audioshelf.core.errors import AudioShelfError
from audioshelf.core.events import OPERATION_END, OPERATION_START
from audioshelf.core.logging import get_logger

COMPONENT = "web"


def ascii_safe(text: str) -> str:
    return (text or "").encode("ascii", "backslashreplace").decode("ascii")


def get_web_logger(request: Request) -> Any:
    injected = getattr(getattr(request, "app", None), "state", None)
    injected = getattr(injected, "web_logger", None)
    if injected is not None:
        return injected
    return get_logger("audioshelf.web")


def publish(event: str, operation: str, data: dict[str, Any]) -> None:
    emit(event, component=COMPONENT, operation=operation, data=data)


@contextmanager
def web_operation(
    request: Request,
    *,
    name: str,
    ctx: dict[str, Any] | None = None,
) -> Iterator[None]:
    """Emit operation.start/operation.end diagnostics around a handler body.

    Expected domain errors (not found, bad input) end the operation as
    "rejected" at verbose level; anything else is "failed" with a traceback.
    """
    ctx = dict(ctx or {})
    logger = get_web_logger(request)
    t0 = time.monotonic()

    def _end(status: str, **extra: Any) -> dict[str, Any]:
        data = {**ctx, "status": status, "duration_ms": int((time.monotonic() - t0) * 1000), **extra}
        publish(OPERATION_END, name, data)
        return data

    publish(OPERATION_START, name, ctx)
    logger.debug(ascii_safe(f"{name}: start {ctx}"))
    try:
        yield
    except AudioShelfError as e:
        data = _end("rejected", error_type=type(e).__name__, error=e.message)
        logger.verbose(ascii_safe(f"{name}: rejected {data}"))
        raise
    except Exception as e:
        data = _end("failed", error_type=type(e).__name__, error=str(e), traceback=traceback.format_exc())
        logger.error(ascii_safe(f"{name}: failed {data}"))
        raise
    data = _end("succeeded")
    logger.debug(ascii_safe(f"{name}: end {data}"))
