from __future__ import annotations

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.context import request_id_var

HEADER = "X-Request-Id"
# Caller-supplied ids end up in logs; anything outside this set is replaced.
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(inbound: str | None) -> str:
    candidate = str(inbound or "").strip()
    return candidate if _SAFE_ID.match(candidate) else uuid.uuid4().hex


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Sets request.state.request_id and the logging contextvar, and echoes the id back."""

    async def dispatch(self, request: Request, call_next):
        request_id = resolve_request_id(request.headers.get(HEADER))
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[HEADER] = request_id
        return response
