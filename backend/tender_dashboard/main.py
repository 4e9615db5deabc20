from __future__ import annotations

import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from .db.dynamodb.errors import DdbError
from .errors import DashboardError
from .middleware import AccessLogMiddleware, RequestContextMiddleware
from .middleware.cors import build_allowed_origins
from .modules.sync.auto_sync import AutoSyncScheduler
from .modules.sync.sync_orchestrator import boot_sync, load_config
from .observability.logging import configure_logging, get_logger
from .problem_details import problem_for_error, problem_response
from .routers import approvals, health, notification_rules, opportunities, sync_config, users
from .settings import settings

VERSION = "1.0.0"

API_ROUTERS = (
    opportunities.router,
    approvals.router,
    sync_config.router,
    notification_rules.router,
    users.router,
)

log = get_logger("app")


def _sync_interval_minutes() -> int:
    """Stored interval when a complete source is configured, else AUTO_SYNC_INTERVAL_MINUTES."""
    try:
        cfg = load_config()
    except Exception as e:  # noqa: BLE001
        log.warning("sync_interval_fallback", error=str(e))
        return settings.auto_sync_interval_minutes
    return cfg.syncIntervalMinutes if cfg.is_complete() else settings.auto_sync_interval_minutes


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.auto_sync = None

    if settings.boot_sync_enabled:
        # Requests are served while the first sync runs; a concurrent manual sync gets 409.
        threading.Thread(target=boot_sync, name="boot-sync", daemon=True).start()

    if settings.auto_sync_enabled:
        app.state.auto_sync = AutoSyncScheduler(interval_minutes=_sync_interval_minutes())
        app.state.auto_sync.start()
    else:
        log.info("auto_sync_disabled")

    yield

    if app.state.auto_sync is not None:
        app.state.auto_sync.shutdown()
        app.state.auto_sync = None
    log.info("app_stopped")


def register_error_handlers(app: FastAPI) -> None:
    """Every error leaves the API as application/problem+json."""

    @app.exception_handler(DashboardError)
    async def _domain_error(request: Request, exc: DashboardError) -> Response:
        (log.error if exc.status_code >= 500 else log.info)(
            "dashboard_error",
            error_type=type(exc).__name__,
            status_code=exc.status_code,
            path=request.url.path,
            error=exc.message,
        )
        return problem_for_error(request, exc)

    @app.exception_handler(DdbError)
    async def _storage_error(request: Request, exc: DdbError) -> Response:
        (log.warning if exc.status_code >= 500 else log.info)(
            "storage_error",
            error_type=type(exc).__name__,
            operation=exc.operation,
            path=request.url.path,
            error=exc.message,
        )
        return problem_response(
            request=request,
            status_code=exc.status_code,
            title=exc.title,
            detail=exc.message,
            extensions=exc.extensions(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> Response:
        detail = exc.detail
        if exc.status_code == 404 and detail in (None, "Not Found"):
            detail = "Route not found"
        return problem_response(request=request, status_code=exc.status_code, detail=str(detail or "") or None)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> Response:
        errors = [
            {
                "path": ".".join(str(p) for p in (e.get("loc") or ()) if p != "body"),
                "message": e.get("msg", "Invalid value"),
                "type": e.get("type"),
            }
            for e in exc.errors()
        ]
        return problem_response(
            request=request,
            status_code=422,
            title="Validation Failed",
            detail="Request validation failed",
            errors=errors,
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> Response:
        log.exception("unhandled_exception", http_method=request.method, path=request.url.path)
        return problem_response(request=request, status_code=500, detail=str(exc) or None)


def create_app() -> FastAPI:
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    log.info("app_starting", version=VERSION, settings=settings.to_log_safe_dict())

    app = FastAPI(
        title="Tender Dashboard Backend",
        version=VERSION,
        default_response_class=ORJSONResponse,
        redirect_slashes=False,
        lifespan=lifespan,
    )

    # Last added is outermost: request id wraps CORS wraps the access log.
    app.add_middleware(AccessLogMiddleware, exclude_paths={"/", "/api/health"})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=build_allowed_origins(
            frontend_base_url=settings.frontend_base_url,
            frontend_urls=settings.frontend_urls,
            include_dev=not settings.is_production,
        ),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-Id"],
        expose_headers=["X-Request-Id"],
        max_age=3000,
    )
    app.add_middleware(RequestContextMiddleware)

    register_error_handlers(app)

    app.include_router(health.router)
    for r in API_ROUTERS:
        app.include_router(r, prefix="/api")
    return app


app = create_app()
