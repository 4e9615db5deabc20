from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table

SYNC_RUNS_PK = "SYNC_RUNS"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def sync_run_key(*, started_at: str, run_id: str) -> dict[str, str]:
    return {"pk": SYNC_RUNS_PK, "sk": f"RUN#{started_at}#{run_id}"}


def record_run(
    *,
    run_id: str,
    trigger: str,
    source: dict[str, Any] | None,
    status: str,
    started_at: str,
    duration_ms: int,
    synced_count: int = 0,
    skipped_count: int = 0,
    new_count: int = 0,
    notified_count: int = 0,
    sync_id: str | None = None,
    error: str | None = None,
) -> dict[str, Any]:
    item: dict[str, Any] = {
        **sync_run_key(started_at=started_at, run_id=run_id),
        "entityType": "SyncRun",
        "runId": run_id,
        "trigger": trigger,
        "source": source or {},
        "status": status,
        "startedAt": started_at,
        "finishedAt": now_iso(),
        "durationMs": int(duration_ms),
        "syncedCount": int(synced_count),
        "skippedCount": int(skipped_count),
        "newCount": int(new_count),
        "notifiedCount": int(notified_count),
        "syncId": sync_id,
        "error": error,
    }
    get_main_table().put_item(item=item)
    return {k: v for k, v in item.items() if k not in ("pk", "sk", "entityType")}


def list_runs(*, limit: int = 25, next_token: str | None = None) -> dict[str, Any]:
    pg = get_main_table().query_page(
        key_condition_expression=Key("pk").eq(SYNC_RUNS_PK) & Key("sk").begins_with("RUN#"),
        scan_index_forward=False,
        limit=max(1, min(200, int(limit or 25))),
        next_token=next_token,
    )
    items = [{k: v for k, v in it.items() if k not in ("pk", "sk", "entityType")} for it in pg.items]
    return {"items": items, "nextToken": pg.next_token}
