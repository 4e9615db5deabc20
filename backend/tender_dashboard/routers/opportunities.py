from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..infrastructure.spreadsheets.graph_excel import GraphExcelClient
from ..modules.analytics import dashboard_metrics
from ..modules.sync.sync_config import SyncConfig
from ..modules.sync.sync_orchestrator import SyncOrchestrator, load_config
from ..observability.logging import get_logger
from ..repositories import opportunities_repo, sync_config_repo

router = APIRouter(tags=["opportunities"])
log = get_logger("opportunities")

REMEDIATION_STEPS = [
    "Open Sync Settings and configure the spreadsheet source (Google Sheets or a OneDrive/SharePoint share link).",
    "Check that the worksheet name and header row offset match the tracker.",
    "Run a manual sync with 'Sync now'.",
]


def _orchestrator() -> SyncOrchestrator:
    return SyncOrchestrator()


def _graph_client() -> GraphExcelClient:
    return GraphExcelClient()


class OpportunityFilters(BaseModel):
    stage: str | None = None
    group: str | None = None
    client: str | None = None
    lead: str | None = None
    search: str | None = None
    receivedFrom: date | None = None
    receivedTo: date | None = None


def _filters(
    stage: str | None = Query(default=None),
    group: str | None = Query(default=None),
    client: str | None = Query(default=None),
    lead: str | None = Query(default=None),
    search: str | None = Query(default=None),
    receivedFrom: date | None = Query(default=None),
    receivedTo: date | None = Query(default=None),
) -> OpportunityFilters:
    return OpportunityFilters(
        stage=stage,
        group=group,
        client=client,
        lead=lead,
        search=search,
        receivedFrom=receivedFrom,
        receivedTo=receivedTo,
    )


def _filtered(f: OpportunityFilters) -> list[dict[str, Any]]:
    return dashboard_metrics.filter_opportunities(
        opportunities_repo.list_opportunities(),
        stage=f.stage,
        group=f.group,
        client=f.client,
        lead=f.lead,
        search=f.search,
        received_from=f.receivedFrom,
        received_to=f.receivedTo,
    )


@router.get("/opportunities")
def list_opportunities(f: OpportunityFilters = Depends(_filters)):
    all_records = opportunities_repo.list_opportunities()
    if not all_records:
        cfg = sync_config_repo.get_config() or {}
        return {
            "opportunities": [],
            "count": 0,
            "message": "No data available",
            "remediation": REMEDIATION_STEPS,
            "lastSyncStatus": cfg.get("lastSyncStatus"),
            "lastSyncError": cfg.get("lastSyncError"),
        }

    records = dashboard_metrics.filter_opportunities(
        all_records,
        stage=f.stage,
        group=f.group,
        client=f.client,
        lead=f.lead,
        search=f.search,
        received_from=f.receivedFrom,
        received_to=f.receivedTo,
    )
    ptr = opportunities_repo.get_active_pointer() or {}
    return {
        "opportunities": records,
        "count": len(records),
        "totalCount": len(all_records),
        "syncId": ptr.get("syncId"),
        "lastSyncAt": ptr.get("syncedAt"),
    }


@router.get("/opportunities/summary")
def opportunities_summary(f: OpportunityFilters = Depends(_filters)):
    return dashboard_metrics.summary(_filtered(f))


@router.get("/opportunities/funnel")
def opportunities_funnel(f: OpportunityFilters = Depends(_filters)):
    return {"stages": dashboard_metrics.funnel(_filtered(f))}


@router.get("/opportunities/leaderboard")
def opportunities_leaderboard(f: OpportunityFilters = Depends(_filters)):
    return {"leads": dashboard_metrics.leaderboard(_filtered(f))}


@router.get("/opportunities/clients")
def opportunities_clients(
    f: OpportunityFilters = Depends(_filters),
    limit: int = Query(default=10, ge=1, le=100),
):
    return {"clients": dashboard_metrics.top_clients(_filtered(f), limit=limit)}


@router.get("/opportunities/data-health")
def opportunities_data_health():
    return dashboard_metrics.data_health(opportunities_repo.list_opportunities())


class SyncNowRequest(BaseModel):
    performedBy: str | None = None


@router.post("/opportunities/sync-now")
def sync_now(body: SyncNowRequest | None = None):
    config = load_config()
    result = _orchestrator().sync(config, trigger="manual")
    log.info("manual_sync_requested", by=(body.performedBy if body else None), run_id=result.runId)
    return result.to_dict()


class GoogleSheetsSyncRequest(BaseModel):
    spreadsheetId: str = Field(..., min_length=1)
    sheetName: str = Field(..., min_length=1)
    apiKey: str | None = None
    dataRange: str | None = None
    headerRowOffset: int | None = Field(default=None, ge=0)
    yearHint: str | None = None
    save: bool = False
    performedBy: str | None = None


@router.post("/opportunities/sync-google-sheets")
def sync_google_sheets(body: GoogleSheetsSyncRequest):
    base = load_config()
    overrides: dict[str, Any] = {
        "sourceKind": "google_sheets",
        "spreadsheetId": body.spreadsheetId.strip(),
        "sheetName": body.sheetName.strip(),
    }
    if body.apiKey:
        overrides["googleApiKey"] = body.apiKey.strip()
    if body.dataRange is not None:
        overrides["dataRange"] = body.dataRange.strip()
    if body.headerRowOffset is not None:
        overrides["headerRowOffset"] = body.headerRowOffset
    if body.yearHint is not None:
        overrides["yearHint"] = body.yearHint

    config = base.model_copy(update=overrides)
    if body.save:
        data = config.model_dump(exclude={"lastResolvedAt", "lastSyncAt", "lastSyncStatus", "lastSyncError"})
        if not body.apiKey:
            data["googleApiKey"] = None
        sync_config_repo.put_config(data, updated_by=body.performedBy)

    return _orchestrator().sync(config, trigger="manual").to_dict()


class GraphSyncRequest(BaseModel):
    shareLink: str | None = None
    driveId: str | None = None
    fileId: str | None = None
    worksheetName: str = Field(..., min_length=1)
    dataRange: str | None = None
    headerRowOffset: int | None = Field(default=None, ge=0)
    yearHint: str | None = None
    save: bool = False
    performedBy: str | None = None


@router.post("/opportunities/sync-graph")
def sync_graph(body: GraphSyncRequest):
    base = load_config()
    drive_id = str(body.driveId or "").strip()
    file_id = str(body.fileId or "").strip()
    share_link = str(body.shareLink or "").strip()

    if share_link and not (drive_id and file_id):
        resolved = _graph_client().resolve_share_link(share_link)
        drive_id, file_id = resolved["driveId"], resolved["fileId"]

    overrides: dict[str, Any] = {
        "sourceKind": "graph_excel",
        "driveId": drive_id,
        "fileId": file_id,
        "worksheetName": body.worksheetName.strip(),
    }
    if share_link:
        overrides["shareLink"] = share_link
    if body.dataRange is not None:
        overrides["dataRange"] = body.dataRange.strip()
    if body.headerRowOffset is not None:
        overrides["headerRowOffset"] = body.headerRowOffset
    if body.yearHint is not None:
        overrides["yearHint"] = body.yearHint

    config: SyncConfig = base.model_copy(update=overrides)
    if body.save:
        data = config.model_dump(exclude={"lastResolvedAt", "lastSyncAt", "lastSyncStatus", "lastSyncError"})
        data["googleApiKey"] = None
        sync_config_repo.put_config(data, updated_by=body.performedBy)

    return _orchestrator().sync(config, trigger="manual").to_dict()
