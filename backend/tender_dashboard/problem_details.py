"""
RFC 7807 problem responses (`application/problem+json`) for every error the API returns.

Shape: type, title, status, detail, instance, requestId, plus optional `errors`
(validation) and `extensions` (domain context such as missing config fields).
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.responses import ORJSONResponse

from .errors import DashboardError
from .settings import get_settings

PROBLEM_JSON = "application/problem+json"


def default_title(status_code: int) -> str:
    try:
        return HTTPStatus(int(status_code)).phrase
    except ValueError:
        return "Internal Server Error" if int(status_code) >= 500 else "Error"


def _hide_detail(status_code: int) -> bool:
    # 502 describes the spreadsheet source, not our internals; it stays visible.
    return status_code >= 500 and status_code != 502 and get_settings().is_production


def problem_payload(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
) -> dict[str, Any]:
    rid = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
    payload: dict[str, Any] = {
        "type": "about:blank",
        "title": title or default_title(status_code),
        "status": int(status_code),
        "detail": str(detail) if detail else None,
        "instance": request.url.path or None,
        "requestId": str(rid) if rid else None,
        "errors": errors or None,
        # Kept under one member so they never shadow the reserved ones.
        "extensions": extensions or None,
    }
    return {k: v for k, v in payload.items() if v is not None}


def problem_response(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
) -> ORJSONResponse:
    status_code = int(status_code)
    return ORJSONResponse(
        status_code=status_code,
        content=problem_payload(
            request=request,
            status_code=status_code,
            title=title,
            detail=None if _hide_detail(status_code) else detail,
            errors=errors,
            extensions=extensions,
        ),
        media_type=PROBLEM_JSON,
    )


def problem_for_error(request: Request, exc: DashboardError) -> ORJSONResponse:
    return problem_response(
        request=request,
        status_code=exc.status_code,
        title=exc.title,
        detail=exc.message,
        extensions=exc.extensions,
    )
