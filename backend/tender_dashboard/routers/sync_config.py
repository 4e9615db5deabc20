from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from ..infrastructure.spreadsheets.graph_excel import GraphExcelClient
from ..modules.sync.sync_config import SyncConfig
from ..modules.sync.sync_orchestrator import load_config
from ..repositories import sync_config_repo, sync_runs_repo

router = APIRouter(tags=["sync-config"])


def _graph_client() -> GraphExcelClient:
    return GraphExcelClient()


class SyncConfigUpdate(BaseModel):
    sourceKind: Literal["google_sheets", "graph_excel"] = "graph_excel"
    spreadsheetId: str = ""
    sheetName: str = ""
    # None keeps the stored key, "" clears it.
    googleApiKey: str | None = None
    shareLink: str = ""
    driveId: str = ""
    fileId: str = ""
    worksheetName: str = ""
    dataRange: str = ""
    headerRowOffset: int = Field(default=0, ge=0)
    syncIntervalMinutes: int = Field(default=10, ge=1, le=24 * 60)
    yearHint: str | None = None
    fieldMapping: dict[str, Any] = Field(default_factory=dict)
    updatedBy: str | None = None


@router.get("/sync-config")
def get_sync_config():
    return load_config().public_dict()


@router.put("/sync-config")
def put_sync_config(body: SyncConfigUpdate, request: Request):
    stored = sync_config_repo.get_config() or {}
    data = body.model_dump()
    # Status stamps belong to the sync runs, not to the editor.
    for k in ("lastResolvedAt", "lastSyncAt", "lastSyncStatus", "lastSyncError"):
        if stored.get(k) is not None:
            data[k] = stored[k]
    saved = sync_config_repo.put_config(data, updated_by=body.updatedBy)

    scheduler = getattr(request.app.state, "auto_sync", None)
    if scheduler is not None and scheduler.interval_minutes != body.syncIntervalMinutes:
        scheduler.reschedule(body.syncIntervalMinutes)
    return SyncConfig.from_stored(saved).public_dict()


class ResolveShareLinkRequest(BaseModel):
    shareLink: str = Field(..., min_length=1)
    save: bool = True


@router.post("/sync-config/graph/resolve")
def resolve_share_link(body: ResolveShareLinkRequest):
    client = _graph_client()
    resolved = client.resolve_share_link(body.shareLink)
    worksheets = client.list_worksheets(drive_id=resolved["driveId"], file_id=resolved["fileId"])
    if body.save:
        sync_config_repo.record_resolved(
            drive_id=resolved["driveId"],
            file_id=resolved["fileId"],
            share_link=body.shareLink.strip(),
        )
    return {**resolved, "worksheets": worksheets}


@router.get("/sync-config/graph/worksheets")
def list_worksheets(
    driveId: str | None = Query(default=None),
    fileId: str | None = Query(default=None),
):
    cfg = load_config()
    drive_id = str(driveId or cfg.driveId or "").strip()
    file_id = str(fileId or cfg.fileId or "").strip()
    return {
        "driveId": drive_id,
        "fileId": file_id,
        "worksheets": _graph_client().list_worksheets(drive_id=drive_id, file_id=file_id),
    }


@router.get("/sync-config/runs")
def list_sync_runs(
    limit: int = Query(default=25, ge=1, le=200),
    nextToken: str | None = Query(default=None),
):
    return sync_runs_repo.list_runs(limit=limit, next_token=nextToken)
