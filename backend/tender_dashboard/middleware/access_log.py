from __future__ import annotations

import time
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.logging import get_logger

log = get_logger("access")


def _route_template(request: Request) -> str | None:
    # "/api/approvals/{refNo}" rather than the concrete path, for grouping.
    route = request.scope.get("route")
    return getattr(route, "path", None)


class AccessLogMiddleware(BaseHTTPMiddleware):
    """One `request` event per call; 5xx at warning, crashes with traceback."""

    def __init__(self, app, *, exclude_paths: set[str] | None = None):
        super().__init__(app)
        self.exclude_paths = frozenset(exclude_paths or ())

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        started = time.perf_counter()
        fields: dict[str, Any] = {
            "http_method": request.method,
            "path": request.url.path,
            "query": request.url.query or None,
            "client_ip": request.client.host if request.client else None,
        }
        try:
            response = await call_next(request)
        except Exception:
            log.exception("request_failed", duration_ms=_elapsed_ms(started), **fields)
            raise

        (log.warning if response.status_code >= 500 else log.info)(
            "request",
            route=_route_template(request),
            status_code=response.status_code,
            duration_ms=_elapsed_ms(started),
            **fields,
        )
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 2)
