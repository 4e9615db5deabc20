from __future__ import annotations

from fastapi import APIRouter

from ..modules.sync.sync_orchestrator import sync_in_progress
from ..settings import settings

router = APIRouter(tags=["health"])


@router.get("/")
def root():
    return {
        "message": "Tender Dashboard API",
        "version": "1.0.0",
        "status": "running",
        "environment": settings.environment,
        "endpoints": [
            "GET /api/opportunities",
            "POST /api/opportunities/sync-now",
            "GET /api/approvals",
            "POST /api/approvals",
            "GET /api/approval-logs",
            "GET /api/sync-config",
            "GET /api/notification-rules",
            "GET /api/users",
        ],
    }


@router.get("/api/health")
def health():
    return {
        "status": "ok",
        "dynamodb": "configured" if settings.ddb_table_name else "missing",
        "graph": "configured" if settings.graph_configured else "missing",
        "syncInProgress": sync_in_progress(),
    }
